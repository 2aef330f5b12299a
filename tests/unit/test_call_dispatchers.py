"""
Unit Tests for Call Dispatchers
Tests for the live provider client, shadow mode and the factory
"""
import json

import httpx
import pytest

from campaign_engine.core.config import Settings
from campaign_engine.domain.exceptions import ProviderError, ProviderTimeoutError, TerminalError
from campaign_engine.domain.models.dispatch import DispatchRequest
from campaign_engine.domain.services.error_classifier import ErrorCategory, classify_error
from campaign_engine.infrastructure.telephony.factory import DispatcherFactory
from campaign_engine.infrastructure.telephony.live_dispatcher import LiveCallDispatcher
from campaign_engine.infrastructure.telephony.shadow_dispatcher import ShadowCallDispatcher


def make_request(**overrides) -> DispatchRequest:
    values = {
        "to_number": "+15551234567",
        "customer_name": "Ada Lovelace",
        "assistant_id": "asst-1",
        "variables": {"first_name": "Ada", "company": "Analytical Engines"},
        "internal_call_id": "call-1",
        "organization_id": "org-1",
        "campaign_id": "camp-1",
        "campaign_type": "sales",
    }
    values.update(overrides)
    return DispatchRequest(**values)


def live_dispatcher(handler, api_key="test-provider-key", phone_number_id="pn-1") -> LiveCallDispatcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LiveCallDispatcher(
        api_url="https://provider.example.com/",
        api_key=api_key,
        phone_number_id=phone_number_id,
        timeout=5.0,
        client=client,
    )


class TestLiveCallDispatcher:
    """Tests for LiveCallDispatcher"""

    @pytest.mark.asyncio
    async def test_successful_dispatch(self):
        """Test the request shape and the returned provider id"""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(201, json={"id": "prov-123", "status": "queued"})

        result = await live_dispatcher(handler).dispatch(make_request())

        assert result.provider_call_id == "prov-123"
        assert result.provider == "live"

        request = seen[0]
        assert str(request.url) == "https://provider.example.com/call/phone"
        assert request.headers["Authorization"] == "Bearer test-provider-key"
        body = json.loads(request.content)
        assert body["assistantId"] == "asst-1"
        assert body["phoneNumberId"] == "pn-1"
        assert body["customer"] == {"number": "+15551234567", "name": "Ada Lovelace"}
        assert body["assistantOverrides"]["variableValues"]["company"] == "Analytical Engines"

    def test_correlation_metadata_in_payload(self):
        """Test call, tenant and campaign ids travel with the call"""
        dispatcher = LiveCallDispatcher("https://provider.example.com", "key")
        payload = dispatcher.build_payload(make_request())

        expected = {
            "internalCallId": "call-1",
            "organizationId": "org-1",
            "campaignId": "camp-1",
            "campaignType": "sales",
        }
        assert payload["metadata"] == expected
        assert payload["assistantOverrides"]["metadata"] == expected
        assert "phoneNumberId" not in payload

    @pytest.mark.asyncio
    async def test_non_2xx_raises_provider_error(self):
        """Test provider rejections carry status and body in the message"""
        dispatcher = live_dispatcher(lambda request: httpx.Response(503, text="upstream unavailable"))

        with pytest.raises(ProviderError) as exc_info:
            await dispatcher.dispatch(make_request())

        assert exc_info.value.status_code == 503
        assert str(exc_info.value) == "Provider API Error: 503 - upstream unavailable"
        assert classify_error(exc_info.value) == ErrorCategory.TRANSIENT

    @pytest.mark.asyncio
    async def test_429_classified_as_rate_limited(self):
        """Test throttling responses map to RATE_LIMITED"""
        dispatcher = live_dispatcher(lambda request: httpx.Response(429, text="Too Many Requests"))

        with pytest.raises(ProviderError) as exc_info:
            await dispatcher.dispatch(make_request())

        assert classify_error(exc_info.value) == ErrorCategory.RATE_LIMITED

    @pytest.mark.asyncio
    async def test_error_body_truncated(self):
        """Test long provider bodies are cut before they reach item errors"""
        dispatcher = live_dispatcher(lambda request: httpx.Response(400, text="x" * 5000))

        with pytest.raises(ProviderError) as exc_info:
            await dispatcher.dispatch(make_request())

        assert len(exc_info.value.body) == 200

    @pytest.mark.asyncio
    async def test_missing_call_id(self):
        """Test a 2xx without an id is a provider error"""
        dispatcher = live_dispatcher(lambda request: httpx.Response(200, json={"status": "queued"}))

        with pytest.raises(ProviderError, match="missing call id"):
            await dispatcher.dispatch(make_request())

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Test transport timeouts raise ProviderTimeoutError"""
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ProviderTimeoutError):
            await live_dispatcher(handler).dispatch(make_request())

    @pytest.mark.asyncio
    async def test_connection_error(self):
        """Test connection failures raise a transient ProviderError"""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ProviderError) as exc_info:
            await live_dispatcher(handler).dispatch(make_request())

        assert not isinstance(exc_info.value, ProviderTimeoutError)
        assert classify_error(exc_info.value) == ErrorCategory.TRANSIENT

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        """Test dispatch without credentials fails before any request"""
        seen = []
        dispatcher = live_dispatcher(lambda request: seen.append(request), api_key=None)

        with pytest.raises(ProviderError, match="API key"):
            await dispatcher.dispatch(make_request())
        assert seen == []

    @pytest.mark.asyncio
    async def test_missing_assistant_is_terminal(self):
        """Test a campaign without an assistant is not retried"""
        dispatcher = live_dispatcher(lambda request: httpx.Response(201, json={"id": "prov-1"}))

        with pytest.raises(TerminalError) as exc_info:
            await dispatcher.dispatch(make_request(assistant_id=None))

        assert classify_error(exc_info.value) == ErrorCategory.TERMINAL


class TestShadowCallDispatcher:
    """Tests for ShadowCallDispatcher"""

    @pytest.mark.asyncio
    async def test_synthetic_provider_id(self):
        """Test shadow dispatch returns a unique shadow-prefixed id"""
        dispatcher = ShadowCallDispatcher()

        first = await dispatcher.dispatch(make_request())
        second = await dispatcher.dispatch(make_request())

        assert first.provider == "shadow"
        assert first.provider_call_id.startswith("shadow-")
        assert first.provider_call_id != second.provider_call_id


class TestDispatcherFactory:
    """Tests for DispatcherFactory"""

    def test_for_mode(self):
        """Test shadow mode selects the shadow dispatcher"""
        factory = DispatcherFactory(Settings(provider_api_key="key", _env_file=None))

        assert isinstance(factory.for_mode(True), ShadowCallDispatcher)
        assert isinstance(factory.for_mode(False), LiveCallDispatcher)

    def test_instances_reused(self):
        """Test dispatchers are built once per factory"""
        factory = DispatcherFactory(Settings(_env_file=None))
        assert factory.create("live") is factory.create("live")

    def test_unknown_provider(self):
        """Test unknown names raise ValueError listing the options"""
        factory = DispatcherFactory(Settings(_env_file=None))

        with pytest.raises(ValueError, match="Available: live, shadow"):
            factory.create("carrier-pigeon")

    def test_list_providers(self):
        """Test the registry lists built-in dispatchers"""
        assert {"live", "shadow"} <= set(DispatcherFactory.list_providers())

    def test_register_custom_dispatcher(self):
        """Test a registered builder is used by create()"""
        DispatcherFactory.register("staging", lambda settings: ShadowCallDispatcher())
        try:
            factory = DispatcherFactory(Settings(_env_file=None))

            assert "staging" in DispatcherFactory.list_providers()
            assert isinstance(factory.create("staging"), ShadowCallDispatcher)
        finally:
            DispatcherFactory._providers.pop("staging", None)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
