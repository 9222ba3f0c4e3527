"""Title canonicalization and the similarity helpers used for dedup."""

import re
import unicodedata
from datetime import date, datetime, timezone
from typing import Any, Iterable

_WHITESPACE = re.compile(r"\s+")
_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def normalize_text(value: Any) -> str:
    """Canonical form of a title: NFKC, lowercase, no punctuation or symbols."""
    if not value:
        return ""
    text = unicodedata.normalize("NFKC", str(value)).lower()
    # Unicode categories P* (punctuation) and S* (symbols)
    text = "".join(" " if unicodedata.category(ch)[0] in "PS" else ch for ch in text)
    return _WHITESPACE.sub(" ", text).strip()


def tokenize(value: Any) -> frozenset[str]:
    return frozenset(token for token in normalize_text(value).split(" ") if token)


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    a, b = set(a), set(b)
    if not a and not b:
        return 1.0
    inter = len(a & b)
    return inter / (len(a) + len(b) - inter)


def parse_datetime(value: Any) -> datetime | None:
    """Parse an ISO-8601 value.

    Date-only strings are taken as UTC midnight; datetimes without an
    offset stay naive and are read as local time. Returns None when the
    value cannot be parsed.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if _DATE_ONLY.match(text):
        text += "T00:00:00+00:00"
    elif text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _local(dt: datetime) -> datetime:
    return dt if dt.tzinfo is None else dt.astimezone()


def to_iso_utc(value: Any) -> str | None:
    dt = parse_datetime(value)
    if dt is None:
        return None
    # naive values are local time; astimezone() resolves them first
    utc = dt.astimezone(timezone.utc)
    return utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def day_key(value: Any) -> str | None:
    """Local calendar day of a date value, or the raw text if unparsable."""
    if not value:
        return None
    dt = parse_datetime(value)
    if dt is None:
        return str(value)
    return _local(dt).date().isoformat()


def eq_day(d1: Any, d2: Any) -> bool:
    if not d1 and not d2:
        return True
    if not d1 or not d2:
        return False
    a, b = parse_datetime(d1), parse_datetime(d2)
    if a is None or b is None:
        return d1 == d2
    return _local(a).date() == _local(b).date()


def eq_nullable(x: str | None, y: str | None) -> bool:
    return (x or "") == (y or "")
