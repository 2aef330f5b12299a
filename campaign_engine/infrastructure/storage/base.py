"""
Supabase Repository Base
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from supabase import Client

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def is_unique_violation(error: Exception) -> bool:
    """True when PostgREST reports a unique constraint conflict."""
    code = getattr(error, "code", None)
    if code == "23505":
        return True
    text = str(error).lower()
    return "23505" in text or "duplicate key" in text or "unique constraint" in text


class SupabaseRepository:
    """
    Shared plumbing for store access.

    supabase-py is synchronous; queries run in a worker thread so a slow
    request does not stall other items in the same tick.
    """

    def __init__(self, supabase: Client):
        self.supabase = supabase

    async def _execute(self, query) -> Any:
        return await asyncio.to_thread(query.execute)
