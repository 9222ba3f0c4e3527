"""Staged (resumable) imports.

A staged import runs as init -> parent chunks -> child chunks. The caller
drives every step and passes back the cursor it got from the previous
chunk; all state in between lives in the session store. Parents must be
finished before children are requested: a child whose parent has no id
mapping yet is skipped, not deferred.
"""

import logging
import secrets
import time

from redis.exceptions import RedisError

from app.cache.session_store import ImportSession, ImportSessionStore
from app.core.config import ImportConfig
from app.core.security import CurrentUser
from app.imports.matcher import DuplicateMatcher
from app.imports.parsers import parse_upload
from app.models import ExistingTodo, ImportRecord, ImportStage
from app.schemas import ChunkResponse, ProgressResponse, StagedInitResponse
from app.services.todo_client import TodoServiceClient

logger = logging.getLogger(__name__)


def new_import_id() -> str:
    return f"{int(time.time() * 1000)}-{secrets.token_hex(3)}"


class StagedImporter:
    def __init__(
        self, config: ImportConfig, store: ImportSessionStore, client: TodoServiceClient
    ):
        self.config = config
        self.store = store
        self.client = client

    async def init(
        self,
        user: CurrentUser,
        content: bytes,
        filename: str | None,
        content_type: str | None,
    ) -> StagedInitResponse:
        records = parse_upload(content, filename, content_type, self.config.max_file_bytes)
        parents = [r for r in records if not r.parent_original_id]
        children = [r for r in records if r.parent_original_id]

        existing: list[ExistingTodo] = []
        if self.config.seed_existing:
            existing = [
                ExistingTodo.from_api(todo)
                for todo in await self.client.list_user_todos(user.id)
            ]

        import_id = new_import_id()
        await self.store.create(user.id, import_id, parents, children, existing)
        return StagedInitResponse(
            import_id=import_id,
            total=len(records),
            parents=len(parents),
            children=len(children),
        )

    async def process_parents(
        self, user: CurrentUser, import_id: str, cursor: int | None = None, limit: int | None = None
    ) -> ChunkResponse:
        session = await self.store.load(user.id, import_id, "parents")
        session.status.stage = ImportStage.PARENTS
        matcher = DuplicateMatcher(session.existing)

        async def import_parent(record: ImportRecord) -> bool:
            match = matcher.find(record)
            if match is not None:
                # children of the skipped parent attach to the stored one
                if record.original_id:
                    session.idmap[record.original_id] = match.id
                return False

            result = await self.client.create_todo(
                record.to_create_payload(user.id, user.email, user.name)
            )
            if not result.success:
                return False
            created = ExistingTodo.from_api(result.data)
            matcher.add(created)
            if record.original_id:
                session.idmap[record.original_id] = created.id
            return True

        return await self._run_chunk(session, matcher, import_parent, cursor, limit)

    async def process_children(
        self, user: CurrentUser, import_id: str, cursor: int | None = None, limit: int | None = None
    ) -> ChunkResponse:
        session = await self.store.load(user.id, import_id, "children")
        session.status.stage = ImportStage.CHILDREN
        matcher = DuplicateMatcher(session.existing)

        async def import_child(record: ImportRecord) -> bool:
            parent_id = session.idmap.get(record.parent_original_id or "")
            if not parent_id:
                return False
            if matcher.find(record, scope=parent_id) is not None:
                return False

            result = await self.client.create_todo(
                record.to_create_payload(user.id, user.email, user.name, parent_id=parent_id)
            )
            if not result.success:
                return False
            created = ExistingTodo.from_api(result.data)
            if created.parent_id is None:
                created.parent_id = parent_id
            matcher.add(created)
            return True

        return await self._run_chunk(
            session, matcher, import_child, cursor, limit, include_idmap=False
        )

    async def _run_chunk(
        self,
        session: ImportSession,
        matcher: DuplicateMatcher,
        import_record,
        cursor: int | None,
        limit: int | None,
        include_idmap: bool = True,
    ) -> ChunkResponse:
        cursor = max(0, cursor or 0)
        limit = max(1, limit or self.config.chunk_size)
        batch = session.records[cursor:cursor + limit]

        imported = skipped = 0
        for record in batch:
            if await import_record(record):
                imported += 1
            else:
                skipped += 1

        next_cursor = cursor + len(batch)
        progress = session.progress
        progress.processed = min(progress.processed + len(batch), progress.total)
        progress.imported += imported
        progress.skipped += skipped

        session.existing = matcher.pool
        await self.store.save(session, include_idmap=include_idmap)
        if imported:
            try:
                await self.client.invalidate_user_todos(session.user_id)
            except RedisError as e:
                logger.warning(
                    "Todo cache invalidation failed for user %s: %s", session.user_id, e
                )

        done = next_cursor >= len(session.records)
        logger.info(
            "Import %s %s chunk [%d:%d]: %d imported, %d skipped%s",
            session.import_id,
            session.group,
            cursor,
            next_cursor,
            imported,
            skipped,
            " (done)" if done else "",
        )
        return ChunkResponse(
            next_cursor=next_cursor, done=done, imported=imported, skipped=skipped
        )

    async def progress(self, user: CurrentUser, import_id: str) -> ProgressResponse:
        status = await self.store.load_status(user.id, import_id)
        return ProgressResponse(
            import_id=import_id,
            stage=status.stage,
            parents=status.parents,
            children=status.children,
        )
