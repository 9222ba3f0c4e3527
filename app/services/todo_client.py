"""HTTP client for the upstream todo service."""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from app.cache import layer
from app.cache.decorators import async_cached
from app.core.config import Settings, get_settings
from app.core.errors import TodoServiceError

logger = logging.getLogger(__name__)


def user_todos_key(user_id: str) -> str:
    return f"todos:user:{user_id}"


def user_stats_key(user_id: str) -> str:
    return f"stats:user:{user_id}"


@dataclass
class UpstreamResult:
    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None


class TodoServiceClient:
    """Thin async wrapper over the todo service's REST API.

    Writes never raise: every failure comes back as an unsuccessful
    ``UpstreamResult`` so a bad record cannot abort a batch.
    """

    def __init__(self, settings: Settings | None = None, client: httpx.AsyncClient | None = None):
        settings = settings or get_settings()
        self._client = client or httpx.AsyncClient(
            base_url=settings.todo_api_url,
            timeout=settings.todo_api_timeout,
        )

    async def create_todo(self, payload: dict[str, Any]) -> UpstreamResult:
        try:
            resp = await self._client.post("/todos", json=payload)
        except httpx.HTTPError as e:
            logger.warning("Todo create request failed: %s", e)
            return UpstreamResult(success=False, error=str(e))

        if resp.status_code not in (200, 201):
            logger.warning(
                "Todo service rejected create (%s): %s", resp.status_code, resp.text
            )
            return UpstreamResult(success=False, error=f"HTTP {resp.status_code}")

        try:
            body = resp.json()
        except ValueError:
            return UpstreamResult(success=False, error="Invalid JSON from todo service")

        # either a {success, data, error} envelope or the created todo itself
        if isinstance(body, dict) and "success" in body:
            data = body.get("data")
            if not body["success"] or not isinstance(data, dict) or "id" not in data:
                return UpstreamResult(success=False, error=body.get("error") or "Create failed")
            return UpstreamResult(success=True, data=data)
        if isinstance(body, dict) and "id" in body:
            return UpstreamResult(success=True, data=body)
        return UpstreamResult(success=False, error="Unexpected response from todo service")

    @async_cached(lambda self, user_id: user_todos_key(user_id))
    async def list_user_todos(self, user_id: str) -> list[dict[str, Any]]:
        try:
            resp = await self._client.get(f"/todos/user/{user_id}")
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TodoServiceError(f"Failed to load todos for user {user_id}: {e}") from e

        if isinstance(body, dict):
            body = body.get("data") if "data" in body else body.get("todos")
        if not isinstance(body, list):
            raise TodoServiceError("Unexpected todo list payload from todo service")
        return [todo for todo in body if isinstance(todo, dict) and "id" in todo]

    async def invalidate_user_todos(self, user_id: str):
        await layer.cache_layer.delete(user_todos_key(user_id), user_stats_key(user_id))

    async def aclose(self):
        await self._client.aclose()


_client: TodoServiceClient | None = None


def get_todo_client() -> TodoServiceClient:
    global _client
    if _client is None:
        _client = TodoServiceClient()
    return _client


async def close_todo_client():
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
