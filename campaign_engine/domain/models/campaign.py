"""
Campaign Domain Models
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from datetime import datetime
from enum import Enum


class CampaignStatus(str, Enum):
    """Campaign status"""
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ResultsSummary(BaseModel):
    """Roll-up written when a campaign completes"""
    total: int = 0
    completed: int = 0
    failed: int = 0


class Campaign(BaseModel):
    """Campaign for outbound calls"""
    id: str
    organization_id: str
    name: Optional[str] = None
    type: Optional[str] = None
    status: CampaignStatus = CampaignStatus.DRAFT
    script_config: Dict[str, Any] = Field(default_factory=dict)
    results_summary: Optional[ResultsSummary] = None
    completed_at: Optional[datetime] = None

    model_config = {"use_enum_values": True}

    @property
    def assistant_id(self) -> Optional[str]:
        config = self.script_config or {}
        return config.get("assistant_id") or config.get("assistantId")


class CampaignCompletion(BaseModel):
    """A campaign closed by the completion reconciler"""
    campaign_id: str
    organization_id: str
    name: Optional[str] = None
    summary: ResultsSummary
    completed_at: datetime
