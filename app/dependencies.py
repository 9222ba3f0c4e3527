"""FastAPI providers for the import services.

Tests replace these through ``app.dependency_overrides``.
"""

from functools import lru_cache

from fastapi import Depends

from app.cache import layer
from app.cache.session_store import ImportSessionStore
from app.core.config import ImportConfig, get_settings
from app.services.batch_import import BatchImporter
from app.services.staged_import import StagedImporter
from app.services.todo_client import TodoServiceClient, get_todo_client


@lru_cache
def get_import_config() -> ImportConfig:
    """Built once per process from the cached settings."""
    return ImportConfig.from_settings(get_settings())


def get_session_store(
    config: ImportConfig = Depends(get_import_config),
) -> ImportSessionStore:
    return ImportSessionStore(layer.cache_layer, config.ttl_seconds)


def get_batch_importer(
    config: ImportConfig = Depends(get_import_config),
    client: TodoServiceClient = Depends(get_todo_client),
) -> BatchImporter:
    return BatchImporter(config, client)


def get_staged_importer(
    config: ImportConfig = Depends(get_import_config),
    store: ImportSessionStore = Depends(get_session_store),
    client: TodoServiceClient = Depends(get_todo_client),
) -> StagedImporter:
    return StagedImporter(config, store, client)
