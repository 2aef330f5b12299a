"""
Call Domain Models
"""
from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from enum import Enum


class CallStatus(str, Enum):
    """Provider lifecycle state of a call"""
    QUEUED = "queued"
    RINGING = "ringing"
    IN_PROGRESS = "in-progress"
    FORWARDING = "forwarding"
    ENDED = "ended"


class CallDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class Call(BaseModel):
    """Call record"""
    id: str
    organization_id: str
    direction: CallDirection = CallDirection.OUTBOUND
    status: CallStatus = CallStatus.QUEUED
    campaign_id: Optional[str] = None
    contact_id: Optional[str] = None
    provider: Optional[str] = None
    provider_call_id: Optional[str] = None
    duration_seconds: Optional[float] = None
    cost: Optional[float] = None
    outcome: Optional[str] = None
    ended_reason: Optional[str] = None
    ended_at: Optional[datetime] = None

    model_config = {"use_enum_values": True}

    @property
    def is_ended(self) -> bool:
        return self.status == CallStatus.ENDED.value
