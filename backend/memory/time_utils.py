from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    # Fixed width keeps lexicographic order equal to chronological order in SQL.
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")
