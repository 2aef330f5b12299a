"""
Spend Circuit Breaker
Blocks new spend once a tenant's trailing 24h usage would pass its daily limit.

Failure paths:
- no policy row, or no limit configured: allow
- the store cannot be read: deny
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from campaign_engine.utils.redaction import hash_identifier

logger = logging.getLogger(__name__)

SPEND_WINDOW = timedelta(hours=24)


@dataclass
class BreakerDecision:
    """Result of a spend limit check."""
    allowed: bool
    reason: Optional[str] = None
    spend: float = 0.0
    limit: Optional[float] = None


class CircuitBreaker:
    """Rolling-window spend limit per tenant"""

    def __init__(self, organizations, window: timedelta = SPEND_WINDOW):
        self.organizations = organizations
        self.window = window

    async def check_limit(
        self,
        organization_id: str,
        estimated_cost: float,
        now: Optional[datetime] = None
    ) -> BreakerDecision:
        """
        Decide whether a new call of estimated_cost may start.

        Args:
            organization_id: Tenant
            estimated_cost: Incremental USD cost of the new operation
            now: Reference time for the spend window
        """
        now = now or datetime.now(timezone.utc)

        try:
            controls = await self.organizations.get_controls(organization_id)
            limit = (controls or {}).get("daily_spend_limit_usd")
            if limit is None:
                return BreakerDecision(allowed=True)

            limit = float(limit)
            spend = await self.organizations.get_rolling_spend(organization_id, now - self.window)
        except Exception as e:
            logger.error(
                f"Spend check failed for org {hash_identifier(organization_id)}, denying: {e}",
                exc_info=True
            )
            return BreakerDecision(allowed=False, reason="Spend check unavailable")

        projected = spend + estimated_cost
        if projected > limit:
            logger.warning(
                f"Daily spend limit reached for org {hash_identifier(organization_id)}: "
                f"{projected:.2f} > {limit:.2f}"
            )
            return BreakerDecision(
                allowed=False,
                reason=f"Daily spend limit exceeded ({projected:.2f} > {limit:.2f} USD)",
                spend=spend,
                limit=limit,
            )

        return BreakerDecision(allowed=True, spend=spend, limit=limit)
