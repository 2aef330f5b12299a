"""
Unit Tests for the Notification Service
Tests for in-app notifications and tenant webhook delivery
"""
import json
from datetime import datetime, timezone

import httpx
import pytest

from campaign_engine.core.config import ConfigManager, Settings
from campaign_engine.domain.models.campaign import CampaignCompletion, ResultsSummary
from campaign_engine.domain.models.organization import CreditUsage, LedgerResult
from campaign_engine.domain.services.notification_service import NotificationService
from campaign_engine.utils.tasks import drain_background_tasks

USAGE = CreditUsage(tier="premium", credits_per_minute=35, credits=70, duration_seconds=120, cost=0.42)


def dispatch_settings(**overrides) -> Settings:
    values = {
        "environment": "test",
        "webhook_dispatch_url": "https://hooks.internal/dispatch",
        "internal_webhook_secret": "internal-secret",
        "_env_file": None,
    }
    values.update(overrides)
    return Settings(**values)


def recording_client(status_code: int = 200):
    """httpx client whose transport records requests"""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status_code, json={"ok": status_code < 400})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), seen


class TestInAppNotifications:
    """Tests for notification rows"""

    @pytest.mark.asyncio
    async def test_campaign_completed(self, store, settings):
        """Test the campaign notification carries the summary"""
        service = NotificationService(store, settings, ConfigManager())
        completion = CampaignCompletion(
            campaign_id="camp-1",
            organization_id="org-1",
            name="Renewals",
            summary=ResultsSummary(total=3, completed=2, failed=1),
            completed_at=datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc),
        )

        await service.notify_campaign_completed(completion)

        notification = store.notifications[0]
        assert notification["type"] == "campaign_completed"
        assert notification["title"] == "Renewals completed"
        assert notification["category"] == "campaigns"
        assert notification["metadata"] == {"campaign_id": "camp-1", "total": 3, "completed": 2, "failed": 1}

    @pytest.mark.asyncio
    async def test_call_completed_funding_source(self, store, settings):
        """Test the message says where the charge landed"""
        service = NotificationService(store, settings, ConfigManager())

        await service.notify_call_completed("org-1", "call-1", "Hot Lead", USAGE, LedgerResult(applied=True))
        await service.notify_call_completed(
            "org-1", "call-2", None, USAGE, LedgerResult(applied=True, from_balance=False)
        )

        first, second = store.notifications
        assert "charged to balance" in first["message"]
        assert "Outcome: Hot Lead" in first["message"]
        assert "covered by plan allowance" in second["message"]
        assert "Outcome: unknown" in second["message"]
        assert second["metadata"]["from_balance"] is False


class TestTenantWebhooks:
    """Tests for send_tenant_webhook / dispatch_tenant_webhook"""

    @pytest.mark.asyncio
    async def test_not_configured(self, store, settings):
        """Test no dispatcher URL means nothing is sent"""
        client, seen = recording_client()
        service = NotificationService(store, settings, ConfigManager(), http_client=client)

        assert await service.send_tenant_webhook("org-1", "call.completed", {}) is False
        assert seen == []
        await client.aclose()

    @pytest.mark.asyncio
    async def test_posts_envelope_with_internal_secret(self, store):
        """Test the POST body and auth header"""
        client, seen = recording_client()
        service = NotificationService(store, dispatch_settings(), ConfigManager(), http_client=client)

        sent = await service.send_tenant_webhook("org-1", "call.completed", {"callId": "call-1"})

        assert sent is True
        request = seen[0]
        assert str(request.url) == "https://hooks.internal/dispatch"
        assert request.headers["X-Internal-Secret"] == "internal-secret"
        assert json.loads(request.content) == {
            "organizationId": "org-1",
            "eventType": "call.completed",
            "payload": {"callId": "call-1"},
        }
        await client.aclose()

    @pytest.mark.asyncio
    async def test_error_status_returns_false(self, store):
        """Test dispatcher errors are reported, not raised"""
        client, _ = recording_client(status_code=502)
        service = NotificationService(store, dispatch_settings(), ConfigManager(), http_client=client)

        assert await service.send_tenant_webhook("org-1", "call.completed", {}) is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_dispatch_swallows_transport_errors(self, store):
        """Test the detached send never raises into the caller"""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        service = NotificationService(store, dispatch_settings(), ConfigManager(), http_client=client)

        task = service.dispatch_tenant_webhook("org-1", "call.completed", {})
        await drain_background_tasks(timeout=1)

        assert task.done()
        assert task.result() is None
        await client.aclose()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
