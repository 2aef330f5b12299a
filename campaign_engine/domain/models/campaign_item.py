"""
Campaign Item Model
One unit of outbound work inside a campaign
"""
from pydantic import BaseModel, Field
from typing import Optional, Set, Tuple
from datetime import datetime
from enum import Enum


class ItemStatus(str, Enum):
    """Lifecycle of a campaign item"""
    PENDING = "pending"
    QUEUED = "queued"            # Reserved by a worker
    IN_PROGRESS = "in_progress"  # Call dispatched, outcome pending
    COMPLETED = "completed"
    FAILED = "failed"


# Items counted against a tenant's concurrency cap
ACTIVE_STATUSES: Tuple[str, ...] = ("queued", "in_progress")

# Items that keep a campaign open
OPEN_STATUSES: Set[str] = {"pending", "queued", "in_progress"}

# Call dispositions that close an item as failed
FAILURE_DISPOSITIONS = ("failed", "busy", "no-answer", "no_answer", "voicemail", "error")

MAX_ERROR_LENGTH = 255


def item_status_for_call(outcome: Optional[str], ended_reason: Optional[str] = None) -> ItemStatus:
    """Terminal item status implied by an ended call's disposition."""
    disposition = f"{outcome or ''} {ended_reason or ''}".lower()
    if any(marker in disposition for marker in FAILURE_DISPOSITIONS):
        return ItemStatus.FAILED
    return ItemStatus.COMPLETED


def truncate_error(message: Optional[str]) -> Optional[str]:
    if message is None:
        return None
    return message[:MAX_ERROR_LENGTH]


class CampaignItem(BaseModel):
    """
    A reserved or pending unit of work.

    Only the batch scheduler claims, dispatches and fails items; webhook
    processing moves them to a terminal status once their call ends.
    """

    id: str
    campaign_id: str
    organization_id: str
    contact_id: Optional[str] = None

    status: ItemStatus = Field(default=ItemStatus.PENDING)
    attempt_count: int = Field(default=0, ge=0)
    last_error: Optional[str] = None

    reserved_at: Optional[datetime] = None
    reserved_by: Optional[str] = None
    next_try_at: Optional[datetime] = None

    voice_call_id: Optional[str] = None

    model_config = {"use_enum_values": True}

    @classmethod
    def from_row(cls, row: dict) -> "CampaignItem":
        """Build from a store row, tolerating nulls for counters."""
        data = dict(row)
        data["attempt_count"] = data.get("attempt_count") or 0
        data["status"] = data.get("status") or ItemStatus.PENDING.value
        return cls.model_validate(data)

    def __repr__(self) -> str:
        return (
            f"CampaignItem(id={self.id[:8]}..., "
            f"campaign={self.campaign_id[:8]}..., "
            f"status={self.status}, "
            f"attempt={self.attempt_count})"
        )
