"""
Billing Service
Tiered voice credit calculation and ledger charges for completed calls
"""
import logging
import math
from typing import Dict, Optional

from campaign_engine.core.config import ConfigManager
from campaign_engine.domain.models.organization import CreditUsage, LedgerResult
from campaign_engine.utils.redaction import hash_identifier

logger = logging.getLogger(__name__)

TIER_RANK: Dict[str, int] = {
    "budget": 0,
    "standard": 1,
    "premium": 2,
    "ultra": 3,
}

DEFAULT_VOICE_TIERS: Dict[str, int] = {
    "budget": 18,
    "standard": 30,
    "premium": 35,
    "ultra": 40,
}

DEFAULT_FALLBACK_COST_PER_MINUTE = 0.05
LEDGER_ENTRY_TYPE = "usage_voice"


class BillingService:
    """
    Credit usage and ledger application for voice calls.

    Tier = the higher of the assistant's model tier and its voice
    provider tier. Rates and maps come from config/default.yaml.
    """

    def __init__(self, organizations, config: Optional[ConfigManager] = None):
        self.organizations = organizations
        config = config or ConfigManager()

        self.voice_tiers: Dict[str, int] = config.get("billing.voice_tiers") or dict(DEFAULT_VOICE_TIERS)
        self.model_tiers: Dict[str, str] = config.get("billing.model_tiers") or {}
        self.voice_provider_tiers: Dict[str, str] = config.get("billing.voice_provider_tiers") or {}
        self.default_model_tier: str = config.get("billing.default_model_tier", "standard")
        self.default_voice_tier: str = config.get("billing.default_voice_tier", "budget")
        self.fallback_cost_per_minute = float(
            config.get("billing.fallback_cost_per_minute", DEFAULT_FALLBACK_COST_PER_MINUTE)
        )

    # =========================================================================
    # Credit calculation
    # =========================================================================

    def classify_tier(self, model: Optional[str] = None, voice_provider: Optional[str] = None) -> str:
        model_tier = self.model_tiers.get(model, self.default_model_tier) if model else self.default_model_tier
        voice_tier = (
            self.voice_provider_tiers.get(voice_provider.lower(), self.default_voice_tier)
            if voice_provider else self.default_voice_tier
        )
        return model_tier if TIER_RANK.get(model_tier, 0) >= TIER_RANK.get(voice_tier, 0) else voice_tier

    def credits_per_minute(self, tier: str) -> int:
        return int(self.voice_tiers.get(tier, self.voice_tiers.get(self.default_model_tier, 30)))

    def calculate_usage(
        self,
        duration_seconds: Optional[float],
        cost: Optional[float] = None,
        model: Optional[str] = None,
        voice_provider: Optional[str] = None
    ) -> CreditUsage:
        """
        Credits and USD cost for one call.

        Credits round up to the next whole credit. When the provider
        reports no cost, cost is estimated from duration.
        """
        duration = max(float(duration_seconds or 0), 0.0)
        tier = self.classify_tier(model, voice_provider)
        rate = self.credits_per_minute(tier)
        credits = math.ceil((duration / 60) * rate) if duration > 0 else 0

        if cost is None or cost <= 0:
            cost = duration * self.fallback_cost_per_minute / 60

        return CreditUsage(
            tier=tier,
            credits_per_minute=rate,
            credits=credits,
            duration_seconds=duration,
            cost=round(float(cost), 6),
        )

    # =========================================================================
    # Ledger
    # =========================================================================

    async def charge_call(self, organization_id: str, call_id: str, usage: CreditUsage) -> LedgerResult:
        """
        Record usage for a call.

        The call id is the ledger reference, so redelivered reports do not
        charge twice.
        """
        if usage.cost <= 0 and usage.credits <= 0:
            logger.info(f"Call {call_id} has no billable usage")
            return LedgerResult(applied=False)

        result = await self.organizations.apply_ledger_entry(
            organization_id=organization_id,
            amount=-usage.cost,
            entry_type=LEDGER_ENTRY_TYPE,
            description=f"Voice call ({usage.tier}, {int(usage.duration_seconds)}s)",
            reference_id=call_id,
            metadata=usage.to_metadata(),
        )

        if result.applied:
            logger.info(
                f"Charged org {hash_identifier(organization_id)} {usage.cost:.4f} USD "
                f"({usage.credits} credits) for call {call_id}"
            )
        else:
            logger.info(f"Ledger entry for call {call_id} already applied")
        return result
