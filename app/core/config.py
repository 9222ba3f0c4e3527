from dataclasses import dataclass
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    redis_dsn: str = "redis://localhost:6379/0"
    redis_pool_size: int = 5
    l1_maxsize: int = 2048
    l1_ttl_seconds: int = 60  # default L1 TTL
    l2_ttl_seconds: int = 300  # default Redis TTL
    cache_namespace: str = "todoimport:"

    todo_api_url: str = "http://localhost:3001"
    todo_api_timeout: float = 30.0

    import_chunk_size: int = 100
    import_ttl_sec: int = 1800
    import_concurrency: int = 4
    import_max_file_bytes: int = 10 * 1024 * 1024
    import_seed_existing: bool = False

    log_level: str = "INFO"


@dataclass(frozen=True)
class ImportConfig:
    """Import tuning knobs, resolved once from settings (see ``get_import_config``)."""

    chunk_size: int = 100
    ttl_seconds: int = 1800
    concurrency: int = 4
    max_file_bytes: int = 10 * 1024 * 1024
    seed_existing: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "ImportConfig":
        return cls(
            chunk_size=max(1, settings.import_chunk_size),
            ttl_seconds=max(1, settings.import_ttl_sec),
            concurrency=max(1, settings.import_concurrency),
            max_file_bytes=settings.import_max_file_bytes,
            seed_existing=settings.import_seed_existing,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()

