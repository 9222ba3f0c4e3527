"""Redis-backed state of staged imports.

A session is five JSON blobs under ``import:{user}:{import_id}:<part>``,
each written with the import TTL so abandoned sessions expire on their own.
Blobs are read and rewritten whole; there is no locking, so callers must
not run chunks of the same session concurrently.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from app.cache.layer import CacheLayer
from app.core.errors import ImportNotFound
from app.models import ExistingTodo, ImportRecord, ImportStatus, StageProgress

logger = logging.getLogger(__name__)

GROUPS = ("parents", "children")


@dataclass
class ImportSession:
    user_id: str
    import_id: str
    group: str
    records: list[ImportRecord]
    status: ImportStatus
    existing: list[ExistingTodo] = field(default_factory=list)
    idmap: dict[str, str] = field(default_factory=dict)

    @property
    def progress(self) -> StageProgress:
        return getattr(self.status, self.group)


class ImportSessionStore:
    def __init__(self, cache: CacheLayer, ttl_seconds: int):
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def key(user_id: str, import_id: str, part: str) -> str:
        return f"import:{user_id}:{import_id}:{part}"

    async def _write(self, user_id: str, import_id: str, parts: dict):
        await asyncio.gather(
            *(
                self.cache.write(self.key(user_id, import_id, part), value, self.ttl_seconds)
                for part, value in parts.items()
            )
        )

    async def create(
        self,
        user_id: str,
        import_id: str,
        parents: list[ImportRecord],
        children: list[ImportRecord],
        existing: list[ExistingTodo] | None = None,
    ) -> ImportStatus:
        status = ImportStatus(
            parents=StageProgress(total=len(parents)),
            children=StageProgress(total=len(children)),
        )
        await self._write(
            user_id,
            import_id,
            {
                "parents": [r.model_dump(mode="json") for r in parents],
                "children": [r.model_dump(mode="json") for r in children],
                "existing": [e.model_dump(mode="json") for e in existing or []],
                "idmap": {},
                "status": status.model_dump(mode="json"),
            },
        )
        logger.info(
            "Created import session %s for user %s (%d parents, %d children)",
            import_id,
            user_id,
            len(parents),
            len(children),
        )
        return status

    async def load(self, user_id: str, import_id: str, group: str) -> ImportSession:
        """Load the records of one group plus the shared session state."""
        if group not in GROUPS:
            raise ValueError(f"Unknown import group: {group}")

        records, existing, idmap, status = await self.cache.read_many(
            [
                self.key(user_id, import_id, part)
                for part in (group, "existing", "idmap", "status")
            ]
        )
        if records is None or status is None:
            raise ImportNotFound(import_id)

        return ImportSession(
            user_id=user_id,
            import_id=import_id,
            group=group,
            records=[ImportRecord.model_validate(r) for r in records],
            status=ImportStatus.model_validate(status),
            existing=[ExistingTodo.model_validate(e) for e in existing or []],
            idmap=dict(idmap or {}),
        )

    async def save(self, session: ImportSession, include_idmap: bool = True):
        parts = {
            "existing": [e.model_dump(mode="json") for e in session.existing],
            "status": session.status.model_dump(mode="json"),
        }
        if include_idmap:
            parts["idmap"] = session.idmap
        await self._write(session.user_id, session.import_id, parts)

    async def load_status(self, user_id: str, import_id: str) -> ImportStatus:
        (status,) = await self.cache.read_many([self.key(user_id, import_id, "status")])
        if status is None:
            raise ImportNotFound(import_id)
        return ImportStatus.model_validate(status)
