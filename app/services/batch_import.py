import asyncio
import logging
from typing import Awaitable, Callable, Sequence, TypeVar

from redis.exceptions import RedisError

from app.core.config import ImportConfig
from app.core.security import CurrentUser
from app.imports.matcher import DuplicateMatcher
from app.imports.parsers import parse_upload
from app.imports.text import day_key, normalize_text
from app.models import ExistingTodo, ImportRecord
from app.schemas import ImportResult
from app.services.todo_client import TodoServiceClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_bounded(
    items: Sequence[T], handler: Callable[[T], Awaitable[None]], concurrency: int
):
    """Run ``handler`` over ``items`` with at most ``concurrency`` in flight.

    Workers share one cursor; each takes the next item only after its
    previous handler call finished. Completion order is not item order.
    """
    cursor = 0

    async def worker():
        nonlocal cursor
        while cursor < len(items):
            item = items[cursor]
            cursor += 1
            await handler(item)

    workers = min(max(1, concurrency), len(items))
    await asyncio.gather(*(worker() for _ in range(workers)))


def batch_key(record: ImportRecord) -> str:
    if record.original_id:
        return f"id:{record.original_id}"
    return "|".join(
        (normalize_text(record.title), day_key(record.due_date) or "", record.category or "")
    )


def dedupe_batch(records: list[ImportRecord]) -> tuple[list[ImportRecord], int]:
    """Drop repeats inside one upload; the first occurrence wins."""
    seen: set[str] = set()
    unique = []
    for record in records:
        key = batch_key(record)
        if key in seen:
            continue
        seen.add(key)
        unique.append(record)
    return unique, len(records) - len(unique)


def summary_message(imported: int, skipped: int, total: int) -> str:
    if imported > 0:
        suffix = f" ({skipped} skipped)" if skipped > 0 else ""
        return f"Successfully imported {imported} todos{suffix}"
    return f"All {total} todos were skipped due to duplicates"


class BatchImporter:
    """Single-request import: parse, dedupe, then fan out creates."""

    def __init__(self, config: ImportConfig, client: TodoServiceClient):
        self.config = config
        self.client = client

    async def run(
        self,
        user: CurrentUser,
        content: bytes,
        filename: str | None,
        content_type: str | None,
    ) -> ImportResult:
        records = parse_upload(content, filename, content_type, self.config.max_file_bytes)

        existing = [
            ExistingTodo.from_api(todo) for todo in await self.client.list_user_todos(user.id)
        ]
        matcher = DuplicateMatcher(existing)
        unique, dropped = dedupe_batch(records)

        imported = 0
        skipped = dropped

        async def import_one(record: ImportRecord):
            nonlocal imported, skipped
            if matcher.find(record, related_keys=True) is not None:
                skipped += 1
                return
            result = await self.client.create_todo(
                record.to_create_payload(user.id, user.email, user.name)
            )
            if result.success:
                imported += 1
            else:
                skipped += 1

        await run_bounded(unique, import_one, self.config.concurrency)

        try:
            await self.client.invalidate_user_todos(user.id)
        except RedisError as e:
            logger.warning("Todo cache invalidation failed for user %s: %s", user.id, e)

        total = len(records)
        logger.info(
            "Import for user %s: %d imported, %d skipped of %d", user.id, imported, skipped, total
        )
        return ImportResult(
            imported_count=imported,
            skipped_count=skipped,
            total_count=total,
            message=summary_message(imported, skipped, total),
        )
