"""Upload parsing and row normalization.

Every uploaded file goes through ``validate_upload`` -> ``load_rows`` ->
``normalize_records``; everything downstream works on ``ImportRecord``
only, never on the raw rows.
"""

import csv
import io
import json
import logging
import re
from typing import Any

from app.core.errors import ImportFormatError
from app.imports.text import to_iso_utc
from app.models import ImportRecord, Priority, TodoStatus

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = frozenset({"application/json", "text/csv", "text/plain"})
ALLOWED_EXTENSIONS = (".json", ".csv")

# English export headers -> canonical row keys
CSV_HEADER_MAP = {
    "ID": "originalId",
    "Title": "title",
    "Description": "description",
    "Status": "status",
    "Completed": "completed",
    "Priority": "priority",
    "Category": "category",
    "Tags": "tags",
    "Parent ID": "parentOriginalId",
    "Due Date": "dueDate",
    "Created At": "createdAt",
    "Updated At": "updatedAt",
}

_PRIORITIES = {p.value for p in Priority}
_STATUSES = {s.value for s in TodoStatus}
_TRUTHY = {"true", "1", "yes", "y"}
# a quoted field, or a carriage return outside one
_QUOTED_OR_CR = re.compile(r'"(?:[^"]|"")*"|\r')


# ---------------------------------------------------------------------------
# File level
# ---------------------------------------------------------------------------


def validate_upload(
    filename: str | None, content_type: str | None, size: int, max_bytes: int
) -> None:
    name = (filename or "").lower()
    media_type = (content_type or "").split(";")[0].strip().lower()
    if media_type not in ALLOWED_CONTENT_TYPES and not name.endswith(ALLOWED_EXTENSIONS):
        raise ImportFormatError(
            "Invalid file format. Only JSON and CSV files are allowed."
        )
    if size > max_bytes:
        raise ImportFormatError(
            f"File size too large. Maximum size is {max_bytes // (1024 * 1024)}MB."
        )


def is_json_upload(filename: str | None, content_type: str | None) -> bool:
    return (filename or "").lower().endswith(".json") or "json" in (content_type or "")


def parse_csv_text(text: str) -> tuple[list[str], list[list[str]]]:
    """Split CSV text into trimmed headers and data rows.

    Quoted fields may contain commas and newlines; ``""`` inside quotes is
    a literal quote. Carriage returns outside quotes are dropped and
    all-blank rows are ignored.
    """
    if not text:
        return [], []
    if text.startswith("\ufeff"):
        text = text[1:]

    # unquoted \r never ends a record, it is dropped like the \r of CRLF
    text = _QUOTED_OR_CR.sub(lambda m: "" if m.group(0) == "\r" else m.group(0), text)
    try:
        rows = list(csv.reader(io.StringIO(text, newline="")))
    except csv.Error as e:
        raise ImportFormatError(f"Failed to parse CSV file: {e}") from e

    non_blank = [r for r in rows if any(cell.strip() for cell in r)]
    if not non_blank:
        return [], []
    headers = [h.strip() for h in non_blank[0]]
    return headers, non_blank[1:]


def csv_rows_to_dicts(headers: list[str], rows: list[list[str]]) -> list[dict[str, Any]]:
    keys = [CSV_HEADER_MAP.get(h, h.lower()) for h in headers]
    result = []
    for values in rows:
        item: dict[str, Any] = {}
        for key, value in zip(keys, values):
            value = value.strip()
            if not value or not key:
                continue
            item[key] = value.lower() in _TRUTHY if key == "completed" else value
        if item.get("title"):
            result.append(item)
    return result


def load_rows(
    content: bytes, filename: str | None, content_type: str | None
) -> list[dict[str, Any]]:
    """Decode an uploaded JSON or CSV file into raw row dicts."""
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ImportFormatError("File is not valid UTF-8 text.") from e

    if is_json_upload(filename, content_type):
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ImportFormatError(
                "Failed to parse file. Please check the file format."
            ) from e
        if isinstance(data, dict) and isinstance(data.get("todos"), list):
            rows = data["todos"]
        elif isinstance(data, list):
            rows = data
        else:
            raise ImportFormatError(
                "Invalid JSON structure. Expected format: {todos: [...]} or [...]"
            )
        return [row for row in rows if isinstance(row, dict)]

    headers, data_rows = parse_csv_text(text)
    if not headers or not data_rows:
        raise ImportFormatError("CSV file must have header and at least one data row")
    if "title" not in {CSV_HEADER_MAP.get(h, h.lower()) for h in headers}:
        raise ImportFormatError('CSV must contain a "Title" or "title" column')
    return csv_rows_to_dicts(headers, data_rows)


# ---------------------------------------------------------------------------
# Row level
# ---------------------------------------------------------------------------


def normalize_priority(value: Any) -> Priority:
    text = str(value or "").upper()
    return Priority(text) if text in _PRIORITIES else Priority.MEDIUM


def normalize_status(value: Any, completed: Any = None) -> TodoStatus:
    text = str(value or "").upper()
    if text in _STATUSES:
        return TodoStatus(text)
    if completed is True:
        return TodoStatus.DONE
    return TodoStatus.TODO


def normalize_tags(tags: Any) -> list[str]:
    if isinstance(tags, list):
        return [str(t) for t in tags]
    if isinstance(tags, str) and tags:
        return [t.strip() for t in tags.split(",") if t.strip()]
    return []


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)


def _opt_str(row: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = row.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def normalize_record(row: dict[str, Any]) -> ImportRecord | None:
    """Map one raw row onto ``ImportRecord``; None when the title is blank."""
    title = str(row.get("title") or "Untitled")
    if not title.strip():
        return None

    completed = row.get("completed")
    if completed is not None:
        completed = _coerce_bool(completed)

    due_date = to_iso_utc(row.get("dueDate"))
    if row.get("dueDate") and due_date is None:
        logger.debug("Dropping unparsable due date %r on %r", row.get("dueDate"), title)

    return ImportRecord(
        title=title,
        description=str(row.get("description") or ""),
        status=normalize_status(row.get("status"), completed),
        priority=normalize_priority(row.get("priority")),
        category=_opt_str(row, "category"),
        due_date=due_date,
        tags=normalize_tags(row.get("tags")),
        completed=completed,
        original_id=_opt_str(row, "originalId", "id"),
        original_created_at=_opt_str(row, "createdAt"),
        original_updated_at=_opt_str(row, "updatedAt"),
        external_id=_opt_str(row, "externalId"),
        external_source=_opt_str(row, "externalSource"),
        parent_original_id=_opt_str(row, "parentOriginalId", "parentId"),
    )


def normalize_records(rows: list[dict[str, Any]]) -> list[ImportRecord]:
    records = []
    for row in rows:
        record = normalize_record(row)
        if record is not None:
            records.append(record)
    return records


def parse_upload(
    content: bytes, filename: str | None, content_type: str | None, max_bytes: int
) -> list[ImportRecord]:
    """Validate, parse and normalize an upload; raises if nothing usable is left."""
    validate_upload(filename, content_type, len(content), max_bytes)
    records = normalize_records(load_rows(content, filename, content_type))
    if not records:
        raise ImportFormatError("No valid todo items found in the file.")
    logger.info("Parsed %d todo rows from %s", len(records), filename or "upload")
    return records
