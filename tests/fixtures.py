"""Test doubles and upload builders shared across the test suite."""

import json
import time

import httpx
from redis.exceptions import ConnectionError as RedisConnectionError

USER_HEADERS = {"X-User-Id": "github_user-1", "X-User-Email": "ada@example.com"}


class InMemoryRedis:
    """The subset of redis.asyncio.Redis the cache layer uses."""

    def __init__(self, fail_ping: bool = False):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self._expires: dict[str, float] = {}
        self.fail_ping = fail_ping

    def _alive(self, key: str) -> bool:
        expires = self._expires.get(key)
        if expires is not None and expires <= time.monotonic():
            self.data.pop(key, None)
            self._expires.pop(key, None)
        return key in self.data

    async def ping(self):
        if self.fail_ping:
            raise RedisConnectionError("connection refused")
        return True

    async def get(self, key):
        return self.data[key] if self._alive(key) else None

    async def mget(self, keys):
        return [await self.get(key) for key in keys]

    async def set(self, key, value, ex=None):
        self.data[key] = value
        if ex is not None:
            self.ttls[key] = ex
            self._expires[key] = time.monotonic() + ex
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self._alive(key):
                removed += 1
            self.data.pop(key, None)
            self._expires.pop(key, None)
        return removed

    async def aclose(self):
        pass

    def keys_matching(self, fragment: str) -> list[str]:
        return [key for key in list(self.data) if fragment in key and self._alive(key)]

    def expire_all(self):
        self.data.clear()
        self._expires.clear()


class FakeTodoService:
    """Upstream todo service behind httpx.MockTransport."""

    def __init__(self):
        self.existing: list[dict] = []
        self.created: list[dict] = []
        self.fail_titles: set[str] = set()
        self.list_calls = 0
        self.list_status = 200

    def handle(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST" and request.url.path == "/todos":
            payload = json.loads(request.content)
            if payload["title"] in self.fail_titles:
                return httpx.Response(500, text="boom")
            todo = {"id": f"todo-{len(self.created) + 1}", **payload}
            self.created.append(todo)
            return httpx.Response(201, json={"success": True, "data": todo})
        if request.method == "GET" and request.url.path.startswith("/todos/user/"):
            self.list_calls += 1
            if self.list_status != 200:
                return httpx.Response(self.list_status, text="unavailable")
            return httpx.Response(200, json=self.existing + self.created)
        return httpx.Response(404, json={"error": "not found"})

    def titles(self) -> list[str]:
        return [todo["title"] for todo in self.created]


def upload(name: str, content: str | bytes, content_type: str) -> dict:
    if isinstance(content, str):
        content = content.encode("utf-8")
    return {"file": (name, content, content_type)}


def json_upload(data, name: str = "todos.json") -> dict:
    return upload(name, json.dumps(data), "application/json")


def csv_upload(text: str, name: str = "todos.csv") -> dict:
    return upload(name, text, "text/csv")
