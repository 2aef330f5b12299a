"""
Campaign Repository
Store access for campaigns, campaign items and contacts
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from campaign_engine.domain.models.campaign import Campaign, ResultsSummary
from campaign_engine.domain.models.campaign_item import ACTIVE_STATUSES, CampaignItem, ItemStatus, truncate_error
from campaign_engine.infrastructure.storage.base import SupabaseRepository, to_iso

logger = logging.getLogger(__name__)

RESERVATION_CLEARED = {"reserved_at": None, "reserved_by": None}


class CampaignRepository(SupabaseRepository):
    """Campaign and campaign item persistence"""

    # =========================================================================
    # Reservation
    # =========================================================================

    async def reserve_items(self, batch_size: int, worker_id: str) -> List[CampaignItem]:
        """
        Atomically claim up to batch_size eligible items for worker_id.

        The RPC locks candidate rows with FOR UPDATE SKIP LOCKED, so
        concurrent workers never receive the same item.
        """
        response = await self._execute(
            self.supabase.rpc("reserve_campaign_items", {
                "p_batch_size": batch_size,
                "p_worker_id": worker_id,
            })
        )
        return [CampaignItem.from_row(row) for row in (response.data or [])]

    # =========================================================================
    # Item transitions
    # =========================================================================

    async def count_active_items(self, organization_id: str, exclude_item_id: Optional[str] = None) -> int:
        """Items holding a concurrency slot for the tenant, across campaigns."""
        query = self.supabase.table("campaign_items").select(
            "id", count="exact"
        ).eq("organization_id", organization_id).in_("status", list(ACTIVE_STATUSES))
        if exclude_item_id:
            query = query.neq("id", exclude_item_id)

        response = await self._execute(query)
        return response.count or 0

    async def release_item(self, item_id: str, next_try_at: datetime) -> None:
        """Return a reserved item to pending without spending an attempt."""
        await self._execute(
            self.supabase.table("campaign_items").update({
                "status": ItemStatus.PENDING.value,
                "next_try_at": to_iso(next_try_at),
                **RESERVATION_CLEARED,
            }).eq("id", item_id)
        )

    async def record_failure(
        self,
        item_id: str,
        status: ItemStatus,
        attempt_count: int,
        error: str,
        next_try_at: datetime
    ) -> None:
        """Single write recording a failed attempt."""
        await self._execute(
            self.supabase.table("campaign_items").update({
                "status": status.value if hasattr(status, "value") else status,
                "attempt_count": attempt_count,
                "last_error": truncate_error(error),
                "next_try_at": to_iso(next_try_at),
                "voice_call_id": None,
                **RESERVATION_CLEARED,
            }).eq("id", item_id)
        )

    async def link_call(self, item_id: str, voice_call_id: str) -> None:
        """Attach the call record to a reserved item before it is dialed."""
        await self._execute(
            self.supabase.table("campaign_items").update({
                "voice_call_id": voice_call_id,
            }).eq("id", item_id)
        )

    async def mark_in_progress(self, item_id: str, voice_call_id: str) -> None:
        await self._execute(
            self.supabase.table("campaign_items").update({
                "status": ItemStatus.IN_PROGRESS.value,
                "voice_call_id": voice_call_id,
                "last_error": None,
                **RESERVATION_CLEARED,
            }).eq("id", item_id)
        )

    async def release_abandoned_reservations(self, reserved_before: datetime) -> int:
        """
        Return reservations that never reached a call back to pending.

        Covers workers that died or lost the store mid-tick.
        """
        response = await self._execute(
            self.supabase.table("campaign_items").update({
                "status": ItemStatus.PENDING.value,
                **RESERVATION_CLEARED,
            }).eq("status", ItemStatus.QUEUED.value).lt(
                "reserved_at", to_iso(reserved_before)
            ).is_("voice_call_id", "null")
        )
        return len(response.data or [])

    async def adopt_abandoned_dispatches(self, reserved_before: datetime) -> int:
        """
        Move abandoned reservations with a linked call to in_progress.

        The call may already have been placed, so the item is never
        dialed again; its webhook or the stale reconciler closes it.
        """
        response = await self._execute(
            self.supabase.table("campaign_items").update({
                "status": ItemStatus.IN_PROGRESS.value,
                **RESERVATION_CLEARED,
            }).eq("status", ItemStatus.QUEUED.value).lt(
                "reserved_at", to_iso(reserved_before)
            ).filter("voice_call_id", "not.is", "null")
        )
        return len(response.data or [])

    async def find_stale_in_progress(self, limit: int = 100) -> List[Dict[str, Any]]:
        """
        In-progress items whose call has already ended.

        Returns rows shaped ``{"id", "voice_call_id", "voice_calls": {...}}``.
        """
        response = await self._execute(
            self.supabase.table("campaign_items").select(
                "id, voice_call_id, voice_calls!inner(status, outcome, ended_reason)"
            ).eq("status", ItemStatus.IN_PROGRESS.value).eq(
                "voice_calls.status", "ended"
            ).limit(limit)
        )
        return response.data or []

    async def finish_item(self, item_id: str, status: ItemStatus) -> bool:
        """Move an in-progress item to a terminal status."""
        response = await self._execute(
            self.supabase.table("campaign_items").update({
                "status": status.value if hasattr(status, "value") else status,
            }).eq("id", item_id).eq("status", ItemStatus.IN_PROGRESS.value)
        )
        return bool(response.data)

    async def finish_items_for_call(self, voice_call_id: str, status: ItemStatus) -> int:
        """Propagate an ended call to the item that produced it."""
        response = await self._execute(
            self.supabase.table("campaign_items").update({
                "status": status.value if hasattr(status, "value") else status,
            }).eq("voice_call_id", voice_call_id).eq("status", ItemStatus.IN_PROGRESS.value)
        )
        return len(response.data or [])

    # =========================================================================
    # Campaigns
    # =========================================================================

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        response = await self._execute(
            self.supabase.table("campaigns").select(
                "id, organization_id, name, type, status, script_config"
            ).eq("id", campaign_id).limit(1)
        )
        if not response.data:
            return None
        return Campaign.model_validate(response.data[0])

    async def list_running_campaigns(self) -> List[Campaign]:
        response = await self._execute(
            self.supabase.table("campaigns").select(
                "id, organization_id, name, type, status"
            ).eq("status", "running")
        )
        return [Campaign.model_validate(row) for row in (response.data or [])]

    async def count_items(self, campaign_id: str, statuses: Optional[Iterable[str]] = None) -> int:
        query = self.supabase.table("campaign_items").select(
            "id", count="exact"
        ).eq("campaign_id", campaign_id)
        if statuses is not None:
            query = query.in_("status", list(statuses))

        response = await self._execute(query)
        return response.count or 0

    async def complete_campaign(self, campaign_id: str, summary: ResultsSummary, completed_at: datetime) -> bool:
        """
        Close a running campaign.

        Returns False when another reconciler got there first.
        """
        response = await self._execute(
            self.supabase.table("campaigns").update({
                "status": "completed",
                "completed_at": to_iso(completed_at),
                "results_summary": summary.model_dump(),
            }).eq("id", campaign_id).eq("status", "running")
        )
        return bool(response.data)

    # =========================================================================
    # Contacts
    # =========================================================================

    async def get_contact(self, contact_id: str, organization_id: str) -> Optional[Dict[str, Any]]:
        response = await self._execute(
            self.supabase.table("contacts").select(
                "id, phone_e164, name, first_name, last_name, metadata"
            ).eq("id", contact_id).eq("organization_id", organization_id).limit(1)
        )
        return response.data[0] if response.data else None
