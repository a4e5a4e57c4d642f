from __future__ import annotations

from datetime import UTC, datetime


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(moment: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps (SQLite drops tzinfo on the way back)."""
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def is_still_valid(expires_at: datetime | None, now: datetime) -> bool:
    """A certificate is valid while it has no expiry or expires after ``now``."""
    expiry = as_utc(expires_at)
    return expiry is None or expiry > now
