"""Shared pytest fixtures for the import API tests."""

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from app.cache.layer import cache_layer
from app.core.config import ImportConfig, Settings
from app.dependencies import get_import_config
from app.main import app
from app.services.todo_client import TodoServiceClient, get_todo_client
from tests.fixtures import USER_HEADERS, FakeTodoService, InMemoryRedis


@pytest.fixture
def settings():
    return Settings(import_chunk_size=2, import_concurrency=4)


@pytest.fixture
def fake_redis():
    return InMemoryRedis()


@pytest.fixture
async def cache(settings, fake_redis):
    """Module-level cache layer bound to the in-memory Redis."""
    cache_layer.reset()
    await cache_layer.init_cache(settings=settings, redis=fake_redis)
    yield cache_layer
    cache_layer.reset()


@pytest.fixture
def upstream():
    return FakeTodoService()


@pytest.fixture
async def todo_client(settings, upstream):
    http = httpx.AsyncClient(
        transport=httpx.MockTransport(upstream.handle), base_url="http://todo.test"
    )
    client = TodoServiceClient(settings, client=http)
    yield client
    await client.aclose()


@pytest.fixture
async def client(settings, cache, todo_client):
    """Async test client with the fakes wired into the app."""
    # built per request so tests can still tweak settings
    app.dependency_overrides[get_import_config] = lambda: ImportConfig.from_settings(settings)
    app.dependency_overrides[get_todo_client] = lambda: todo_client
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers=USER_HEADERS,
    ) as client:
        yield client
    app.dependency_overrides.clear()
