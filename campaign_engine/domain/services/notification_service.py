"""
Notification Service
In-app notifications and outbound tenant webhooks.

Everything here is best effort: callers run these as detached tasks and
a failure is logged, never propagated.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from campaign_engine.core.config import ConfigManager, Settings, get_settings
from campaign_engine.domain.models.campaign import CampaignCompletion
from campaign_engine.domain.models.organization import CreditUsage, LedgerResult
from campaign_engine.utils.redaction import hash_identifier
from campaign_engine.utils.tasks import fire_and_forget

logger = logging.getLogger(__name__)

TENANT_WEBHOOK_TIMEOUT = 10.0


class NotificationService:
    """Notification rows and tenant webhook fan-out"""

    def __init__(
        self,
        organizations,
        settings: Optional[Settings] = None,
        config: Optional[ConfigManager] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.organizations = organizations
        self.settings = settings or get_settings()
        self.config = config or ConfigManager()
        self._http_client = http_client

    def _style(self, kind: str) -> Dict[str, str]:
        return {
            "category": self.config.get(f"notifications.{kind}.category", "general"),
            "priority": self.config.get(f"notifications.{kind}.priority", "normal"),
        }

    # =========================================================================
    # In-app notifications
    # =========================================================================

    async def notify_campaign_completed(self, completion: CampaignCompletion) -> None:
        summary = completion.summary
        name = completion.name or "Campaign"
        await self.organizations.create_notification(
            organization_id=completion.organization_id,
            notification_type="campaign_completed",
            title=f"{name} completed",
            message=(
                f"{summary.total} calls processed: "
                f"{summary.completed} completed, {summary.failed} failed."
            ),
            metadata={"campaign_id": completion.campaign_id, **summary.model_dump()},
            **self._style("campaign_completed"),
        )

    async def notify_call_completed(
        self,
        organization_id: str,
        call_id: str,
        outcome: Optional[str],
        usage: CreditUsage,
        ledger: LedgerResult
    ) -> None:
        """Call summary including what it cost and where the charge landed."""
        if not ledger.applied:
            funding = "already billed"
        elif ledger.from_balance:
            funding = "charged to balance"
        else:
            funding = "covered by plan allowance"

        minutes = usage.duration_seconds / 60
        await self.organizations.create_notification(
            organization_id=organization_id,
            notification_type="call_completed",
            title="Call completed",
            message=(
                f"Outcome: {outcome or 'unknown'}. {minutes:.1f} min, "
                f"{usage.credits} credits ({usage.tier}), ${usage.cost:.2f} {funding}."
            ),
            metadata={
                "call_id": call_id,
                "outcome": outcome,
                "ledger_applied": ledger.applied,
                "from_balance": ledger.from_balance,
                **usage.to_metadata(),
            },
            **self._style("call_completed"),
        )

    # =========================================================================
    # Tenant webhooks
    # =========================================================================

    async def send_tenant_webhook(self, organization_id: str, event_type: str, payload: Dict[str, Any]) -> bool:
        """
        POST an event to the tenant webhook dispatcher.

        Returns False when no dispatcher is configured.
        """
        url = self.settings.webhook_dispatch_url
        if not url:
            logger.debug("Tenant webhook dispatcher not configured, skipping")
            return False

        headers = {"Content-Type": "application/json"}
        if self.settings.internal_webhook_secret:
            headers["X-Internal-Secret"] = self.settings.internal_webhook_secret

        body = {
            "organizationId": organization_id,
            "eventType": event_type,
            "payload": payload,
        }

        if self._http_client is not None:
            response = await self._http_client.post(url, json=body, headers=headers, timeout=TENANT_WEBHOOK_TIMEOUT)
        else:
            async with httpx.AsyncClient(timeout=TENANT_WEBHOOK_TIMEOUT) as client:
                response = await client.post(url, json=body, headers=headers)

        if response.status_code >= 400:
            logger.warning(
                f"Tenant webhook {event_type} for org {hash_identifier(organization_id)} "
                f"returned {response.status_code}"
            )
            return False
        return True

    def dispatch_tenant_webhook(self, organization_id: str, event_type: str, payload: Dict[str, Any]):
        """Fire-and-forget wrapper around send_tenant_webhook."""
        return fire_and_forget(
            self.send_tenant_webhook(organization_id, event_type, payload),
            name=f"tenant_webhook:{event_type}",
        )
