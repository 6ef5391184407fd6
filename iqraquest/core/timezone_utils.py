"""
UTC helpers for the settlement core.

All settlement timestamps are stored and compared in UTC. SQLite drops
tzinfo on the way back out, so anything loaded from the database is passed
through ``ensure_utc`` before arithmetic.
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
