from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def monotonic_after(previous: str | None, candidate: datetime | None = None) -> str:
    """Server timestamp that sorts strictly after ``previous``.

    Guards ``created_at <= updated_at`` against a clock that did not advance
    between two writes on the same row.
    """
    now = candidate or utc_now()
    floor = parse_iso(previous)
    if floor is not None and now <= floor:
        now = floor + timedelta(microseconds=1)
    return to_iso(now)
