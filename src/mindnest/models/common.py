"""Shared helpers for the domain table models."""
import secrets
import time
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC timestamp. Timestamp columns are declared as naive ``DateTime``."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id(prefix: str) -> str:
    """Prefixed, roughly time-ordered identifier, e.g. ``ws-18c2...``."""
    return f"{prefix}-{time.time_ns():016x}{secrets.token_hex(4)}"


def needs_sync(synced_at: Optional[datetime], updated_at: datetime) -> bool:
    """An entity needs sync iff it was never pushed or changed since the last push."""
    return synced_at is None or synced_at < updated_at
