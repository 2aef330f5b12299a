"""
Organization Repository
Governance controls, balances, spend and ledger access
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from campaign_engine.domain.models.organization import LedgerResult
from campaign_engine.infrastructure.storage.base import SupabaseRepository, to_iso

logger = logging.getLogger(__name__)


class OrganizationRepository(SupabaseRepository):
    """Tenant policy and billing persistence"""

    async def get_controls(self, organization_id: str) -> Optional[Dict[str, Any]]:
        """Raw controls row, or None when the tenant has no policy row."""
        response = await self._execute(
            self.supabase.table("organization_controls").select(
                "is_suspended, shadow_mode, max_concurrency_override, daily_spend_limit_usd"
            ).eq("organization_id", organization_id).limit(1)
        )
        return response.data[0] if response.data else None

    async def get_balance(self, organization_id: str) -> float:
        response = await self._execute(
            self.supabase.rpc("get_organization_balance", {
                "p_organization_id": organization_id,
            })
        )
        data = response.data
        if isinstance(data, list):
            data = data[0] if data else 0
        if isinstance(data, dict):
            data = data.get("balance", 0)
        return float(data or 0)

    async def get_rolling_spend(self, organization_id: str, since: datetime) -> float:
        """Usage charged to the tenant since the given time, in USD."""
        response = await self._execute(
            self.supabase.table("ledger_entries").select("amount").eq(
                "organization_id", organization_id
            ).lt("amount", 0).gte("created_at", to_iso(since))
        )
        return sum(abs(float(row.get("amount") or 0)) for row in (response.data or []))

    async def apply_ledger_entry(
        self,
        organization_id: str,
        amount: float,
        entry_type: str,
        description: str,
        reference_id: str,
        metadata: Dict[str, Any]
    ) -> LedgerResult:
        """Idempotent per reference_id; a repeat returns applied=False."""
        response = await self._execute(
            self.supabase.rpc("apply_ledger_entry", {
                "p_organization_id": organization_id,
                "p_amount": amount,
                "p_type": entry_type,
                "p_description": description,
                "p_reference_id": reference_id,
                "p_metadata": metadata,
            })
        )
        return LedgerResult.from_rpc(response.data)

    async def create_notification(
        self,
        organization_id: str,
        notification_type: str,
        title: str,
        message: str,
        category: str = "general",
        priority: str = "normal",
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        await self._execute(
            self.supabase.table("notifications").insert({
                "organization_id": organization_id,
                "type": notification_type,
                "title": title,
                "message": message,
                "category": category,
                "priority": priority,
                "metadata": metadata or {},
            })
        )
