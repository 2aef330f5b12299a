"""
Webhook Ingestion Service
Authenticates, deduplicates and applies telephony provider webhooks.

Flow per delivery:
1. Signature + replay window (webhook_security)
2. Parse the envelope into a VoiceEvent
3. Claim a receipt for end-of-call reports (duplicate -> 200 'duplicate')
4. Resolve the tenant and call from metadata, then by provider call id
5. Ensure a call row exists
6. Apply the event: terminal report, audit trail or tool-call log
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from campaign_engine.core.config import Settings, get_settings
from campaign_engine.domain.exceptions import WebhookRejected
from campaign_engine.domain.models.call import Call, CallDirection, CallStatus
from campaign_engine.domain.models.campaign_item import item_status_for_call
from campaign_engine.domain.models.voice_event import (
    AUDIT_EVENT_TYPES,
    TOOL_EVENT_TYPES,
    VoiceEvent,
)
from campaign_engine.domain.services.webhook_security import authenticate_webhook
from campaign_engine.utils.redaction import hash_identifier

logger = logging.getLogger(__name__)

CALL_STATUSES = {status.value for status in CallStatus}


@dataclass
class WebhookResponse:
    """HTTP status and JSON body for the provider"""
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, status: str = "success") -> "WebhookResponse":
        return cls(200, {"status": status})

    @classmethod
    def error(cls, status_code: int, message: Optional[str] = None) -> "WebhookResponse":
        body = {"status": "error"}
        if message:
            body["message"] = message
        return cls(status_code, body)


def _known_status(value: Optional[str]) -> Optional[str]:
    return value if value in CALL_STATUSES else None


class WebhookIngestionService:
    """
    Applies provider webhooks to calls, campaign items and the ledger.

    End-of-call reports are applied at most once per delivery key; the
    call finalize and the ledger entry are each idempotent on their own,
    so a retried report after a partial failure completes the work
    without double charging.
    """

    def __init__(
        self,
        calls,
        campaigns,
        billing,
        outcome_classifier,
        notifications=None,
        settings: Optional[Settings] = None
    ):
        self.calls = calls
        self.campaigns = campaigns
        self.billing = billing
        self.outcome_classifier = outcome_classifier
        self.notifications = notifications
        self.settings = settings or get_settings()

    async def handle(
        self,
        raw_body: bytes,
        headers: Mapping[str, str],
        now_ms: Optional[int] = None
    ) -> WebhookResponse:
        try:
            delivered_at = authenticate_webhook(raw_body, headers, self.settings, now_ms)
        except WebhookRejected as e:
            return WebhookResponse.error(e.status_code, str(e))

        try:
            event = VoiceEvent.from_payload(json.loads(raw_body))
        except ValueError as e:
            logger.warning(f"Rejecting malformed webhook: {e}")
            return WebhookResponse.error(400, "Invalid payload")

        dedup_key = None
        if event.is_terminal_report:
            dedup_key = event.dedup_key(delivered_at)
            try:
                claimed = await self.calls.claim_event_receipt(
                    dedup_key, event.event_type, event.provider_call_id
                )
            except Exception as e:
                logger.error(f"Failed to record webhook receipt: {e}", exc_info=True)
                return WebhookResponse.error(500)
            if not claimed:
                logger.info(f"Duplicate {event.event_type} for provider call {event.provider_call_id}")
                return WebhookResponse.ok("duplicate")

        try:
            return await self._process(event)
        except WebhookRejected as e:
            if e.status_code >= 500:
                await self._release_receipt(dedup_key)
            return WebhookResponse.error(e.status_code, str(e))
        except Exception as e:
            logger.error(
                f"Webhook {event.event_type} processing failed for provider call "
                f"{event.provider_call_id}: {e}",
                exc_info=True
            )
            await self._release_receipt(dedup_key)
            return WebhookResponse.error(500)

    async def _release_receipt(self, dedup_key: Optional[str]) -> None:
        """Forget a delivery so the provider's retry is processed."""
        if not dedup_key:
            return
        try:
            await self.calls.release_event_receipt(dedup_key)
        except Exception as e:
            logger.error(f"Failed to release webhook receipt {dedup_key}: {e}", exc_info=True)

    # =========================================================================
    # Resolution
    # =========================================================================

    async def _process(self, event: VoiceEvent) -> WebhookResponse:
        organization_id, call = await self._resolve(event)
        if not organization_id:
            logger.info(f"Skipping {event.event_type}: no tenant for provider call {event.provider_call_id}")
            return WebhookResponse.ok("skipped")

        call = await self._ensure_call(event, organization_id, call)
        if call is None:
            logger.info(f"Skipping {event.event_type}: no call id in payload")
            return WebhookResponse.ok("skipped")

        if event.is_terminal_report:
            await self._handle_end_of_call(event, call)
        elif event.event_type in AUDIT_EVENT_TYPES:
            await self._handle_audit_event(event, call)
        elif event.event_type in TOOL_EVENT_TYPES:
            await self._handle_tool_event(event, call)
        else:
            logger.debug(f"Acknowledging unhandled webhook type {event.event_type}")

        return WebhookResponse.ok()

    async def _resolve(self, event: VoiceEvent) -> Tuple[Optional[str], Optional[Call]]:
        organization_id = event.organization_id
        call = None

        if organization_id and event.internal_call_id:
            call = await self.calls.get_call(event.internal_call_id, organization_id)

        if call is None and event.provider_call_id:
            call = await self.calls.find_by_provider_call_id(event.provider_call_id, organization_id)

        if call is not None and not organization_id:
            organization_id = call.organization_id

        return organization_id, call

    async def _ensure_call(self, event: VoiceEvent, organization_id: str, call: Optional[Call]) -> Optional[Call]:
        """
        Create the call row on first sight, otherwise apply the status.

        Status updates never move a call out of 'ended'; the terminal report
        sets 'ended' itself.
        """
        status = _known_status(event.status)

        if call is not None:
            if status and not event.is_terminal_report and not call.is_ended:
                if await self.calls.update_status(call.id, status):
                    call = call.model_copy(update={"status": status})
            return call

        if not event.provider_call_id:
            return None

        direction = event.metadata.get("direction") or event.direction or CallDirection.INBOUND.value
        if direction not in (CallDirection.INBOUND.value, CallDirection.OUTBOUND.value):
            direction = CallDirection.INBOUND.value

        row = {
            "organization_id": organization_id,
            "provider_call_id": event.provider_call_id,
            "direction": direction,
            "status": status or CallStatus.QUEUED.value,
            "campaign_id": event.campaign_id,
            "provider": "voice_engine",
        }
        try:
            call = await self.calls.insert_call(row)
        except Exception as e:
            logger.error(f"Failed to create call for provider call {event.provider_call_id}: {e}", exc_info=True)
            raise WebhookRejected(500, "Failed to create call record") from e

        logger.info(f"Created {direction} call {call.id} for org {hash_identifier(organization_id)}")
        return call

    # =========================================================================
    # Event handlers
    # =========================================================================

    async def _handle_end_of_call(self, event: VoiceEvent, call: Call) -> None:
        organization_id = call.organization_id

        outcome = await self.outcome_classifier.classify(
            organization_id, event.summary or event.transcript, event.ended_reason
        )
        usage = self.billing.calculate_usage(
            event.duration_seconds, event.cost, event.model_name, event.voice_provider
        )

        finalized = await self.calls.finalize_call(call.id, {
            "duration_seconds": usage.duration_seconds,
            "cost": usage.cost,
            "outcome": outcome,
            "ended_reason": event.ended_reason,
        })
        if not finalized:
            logger.info(f"Call {call.id} already finalized, resuming remaining steps")

        if event.transcript or event.summary or event.recording_url:
            await self.calls.save_private_artifacts(
                organization_id, call.id, event.transcript, event.summary, event.recording_url
            )

        if call.campaign_id:
            status = item_status_for_call(outcome, event.ended_reason)
            closed = await self.campaigns.finish_items_for_call(call.id, status)
            if closed:
                logger.info(f"Closed {closed} campaign item(s) for call {call.id} as {status.value}")

        try:
            ledger = await self.billing.charge_call(organization_id, call.id, usage)
        except Exception as e:
            logger.error(f"Ledger entry failed for call {call.id}: {e}", exc_info=True)
            raise WebhookRejected(500, "Billing failed") from e

        if self.notifications is None:
            return

        if ledger.applied:
            try:
                await self.notifications.notify_call_completed(organization_id, call.id, outcome, usage, ledger)
            except Exception as e:
                logger.warning(f"Call completed notification failed for call {call.id}: {e}")

        # Redeliveries that changed nothing are not announced again
        if not (finalized or ledger.applied):
            logger.info(f"Call {call.id} report already applied, tenant webhook skipped")
            return

        self.notifications.dispatch_tenant_webhook(organization_id, "call.completed", {
            "callId": call.id,
            "providerCallId": event.provider_call_id,
            "campaignId": call.campaign_id,
            "outcome": outcome,
            "endedReason": event.ended_reason,
            "durationSeconds": usage.duration_seconds,
            "cost": usage.cost,
            "credits": usage.credits,
            "tier": usage.tier,
        })

    async def _handle_audit_event(self, event: VoiceEvent, call: Call) -> None:
        await self.calls.record_event(call.organization_id, call.id, event.event_type, self._message(event))

    async def _handle_tool_event(self, event: VoiceEvent, call: Call) -> None:
        """Tool calls are recorded for audit only; nothing is executed."""
        logger.info(f"Received {event.event_type} for call {call.id}")
        await self.calls.record_event(call.organization_id, call.id, event.event_type, self._message(event))

    @staticmethod
    def _message(event: VoiceEvent) -> Dict[str, Any]:
        message = event.raw.get("message")
        return message if isinstance(message, dict) else event.raw


