"""
Concurrency Gate
Caps simultaneous calls per tenant across all of its campaigns.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from campaign_engine.domain.models.organization import OrganizationControls
from campaign_engine.utils.redaction import hash_identifier

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY_CAP = 20


@dataclass
class ConcurrencyDecision:
    """Result of a concurrency check."""
    allowed: bool
    active: int
    cap: int


class ConcurrencyGate:
    """
    Counts the tenant's queued and in-progress items against its cap.

    The count lives in the store rather than in memory, so every worker
    and webhook process sees the same numbers.
    """

    def __init__(self, campaigns, default_cap: int = DEFAULT_CONCURRENCY_CAP):
        self.campaigns = campaigns
        self.default_cap = default_cap

    def cap_for(self, controls: Optional[OrganizationControls]) -> int:
        if controls and controls.max_concurrency_override is not None:
            return controls.max_concurrency_override
        return self.default_cap

    async def check(
        self,
        organization_id: str,
        controls: Optional[OrganizationControls] = None,
        exclude_item_id: Optional[str] = None
    ) -> ConcurrencyDecision:
        cap = self.cap_for(controls)
        active = await self.campaigns.count_active_items(organization_id, exclude_item_id=exclude_item_id)

        allowed = active < cap
        if not allowed:
            logger.info(
                f"Concurrency cap reached for org {hash_identifier(organization_id)}: "
                f"{active}/{cap} active"
            )
        return ConcurrencyDecision(allowed=allowed, active=active, cap=cap)
