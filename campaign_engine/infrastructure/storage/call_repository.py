"""
Call Repository
Store access for voice calls, their private artifacts and audit events
"""
import logging
from typing import Any, Dict, List, Optional

from campaign_engine.domain.models.call import Call, CallDirection, CallStatus
from campaign_engine.infrastructure.storage.base import (
    SupabaseRepository,
    is_unique_violation,
    to_iso,
    utcnow,
)

logger = logging.getLogger(__name__)

CALL_COLUMNS = (
    "id, organization_id, campaign_id, contact_id, direction, status, provider, "
    "provider_call_id, duration_seconds, cost, outcome, ended_reason, ended_at"
)


class CallRepository(SupabaseRepository):
    """Voice call persistence"""

    # =========================================================================
    # Call rows
    # =========================================================================

    async def create_outbound_call(
        self,
        organization_id: str,
        campaign_id: str,
        contact_id: Optional[str],
        provider: str = "voice_engine"
    ) -> str:
        """Insert a queued outbound call and return its id."""
        response = await self._execute(
            self.supabase.table("voice_calls").insert({
                "organization_id": organization_id,
                "campaign_id": campaign_id,
                "contact_id": contact_id,
                "direction": CallDirection.OUTBOUND.value,
                "status": CallStatus.QUEUED.value,
                "provider": provider,
            })
        )
        if not response.data:
            raise RuntimeError("Call record insert returned no row")
        return response.data[0]["id"]

    async def set_provider_call_id(self, call_id: str, provider_call_id: str, provider: str) -> None:
        await self._execute(
            self.supabase.table("voice_calls").update({
                "provider_call_id": provider_call_id,
                "provider": provider,
            }).eq("id", call_id)
        )

    async def get_call(self, call_id: str, organization_id: str) -> Optional[Call]:
        response = await self._execute(
            self.supabase.table("voice_calls").select(CALL_COLUMNS).eq(
                "id", call_id
            ).eq("organization_id", organization_id).limit(1)
        )
        return Call.model_validate(response.data[0]) if response.data else None

    async def find_by_provider_call_id(
        self,
        provider_call_id: str,
        organization_id: Optional[str] = None
    ) -> Optional[Call]:
        query = self.supabase.table("voice_calls").select(CALL_COLUMNS).eq(
            "provider_call_id", provider_call_id
        )
        if organization_id:
            query = query.eq("organization_id", organization_id)

        response = await self._execute(query.limit(1))
        return Call.model_validate(response.data[0]) if response.data else None

    async def insert_call(self, row: Dict[str, Any]) -> Call:
        """
        Insert a call first seen through a webhook.

        A concurrent insert for the same (organization_id, provider_call_id)
        loses the race; the existing row is returned instead.
        """
        try:
            response = await self._execute(self.supabase.table("voice_calls").insert(row))
            return Call.model_validate(response.data[0])
        except Exception as e:
            if not is_unique_violation(e):
                raise
            existing = await self.find_by_provider_call_id(
                row["provider_call_id"], row["organization_id"]
            )
            if existing is None:
                raise
            return existing

    async def update_status(self, call_id: str, status: str) -> bool:
        """Status overwrite that never leaves 'ended'."""
        response = await self._execute(
            self.supabase.table("voice_calls").update({
                "status": status,
            }).eq("id", call_id).neq("status", CallStatus.ENDED.value)
        )
        return bool(response.data)

    async def finalize_call(self, call_id: str, fields: Dict[str, Any]) -> bool:
        """
        Apply the terminal report once.

        Guarded on ended_at so a redelivered report cannot rewrite metrics.
        """
        update = {
            **fields,
            "status": CallStatus.ENDED.value,
            "ended_at": to_iso(utcnow()),
        }
        response = await self._execute(
            self.supabase.table("voice_calls").update(update).eq(
                "id", call_id
            ).is_("ended_at", "null")
        )
        return bool(response.data)

    # =========================================================================
    # Private artifacts and audit trail
    # =========================================================================

    async def save_private_artifacts(
        self,
        organization_id: str,
        call_id: str,
        transcript: Optional[str],
        summary: Optional[str],
        recording_ref: Optional[str]
    ) -> None:
        """Transcript and recording live outside the shared call row."""
        await self._execute(
            self.supabase.table("voice_call_private").upsert({
                "organization_id": organization_id,
                "call_id": call_id,
                "transcript_full": transcript,
                "transcript_summary": summary,
                "provider_recording_ref": recording_ref,
            }, on_conflict="call_id")
        )

    async def record_event(
        self,
        organization_id: str,
        call_id: Optional[str],
        event_type: str,
        payload: Dict[str, Any]
    ) -> None:
        await self._execute(
            self.supabase.table("voice_call_events").insert({
                "organization_id": organization_id,
                "call_id": call_id,
                "type": event_type,
                "payload": payload,
            })
        )

    async def get_outcome_rules(self, organization_id: str) -> List[Dict[str, Any]]:
        response = await self._execute(
            self.supabase.table("conversation_outcome_rules").select(
                "id, trigger_pattern, outcome_label, priority"
            ).eq("organization_id", organization_id).eq(
                "is_active", True
            ).order("priority", desc=True)
        )
        return response.data or []

    # =========================================================================
    # Webhook receipts (dedup)
    # =========================================================================

    async def claim_event_receipt(self, dedup_key: str, event_type: str, provider_call_id: Optional[str]) -> bool:
        """
        Record a webhook delivery.

        Returns False if the key was already recorded.
        """
        try:
            await self._execute(
                self.supabase.table("webhook_event_receipts").insert({
                    "dedup_key": dedup_key,
                    "event_type": event_type,
                    "provider_call_id": provider_call_id,
                })
            )
            return True
        except Exception as e:
            if is_unique_violation(e):
                return False
            raise

    async def release_event_receipt(self, dedup_key: str) -> None:
        await self._execute(
            self.supabase.table("webhook_event_receipts").delete().eq("dedup_key", dedup_key)
        )
