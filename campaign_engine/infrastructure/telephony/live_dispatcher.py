"""
Live Call Dispatcher
Places outbound calls through the voice provider's REST API
"""
import logging
from typing import Any, Dict, Optional

import httpx

from campaign_engine.domain.exceptions import ProviderError, ProviderTimeoutError, TerminalError
from campaign_engine.domain.interfaces.call_dispatcher import CallDispatcher
from campaign_engine.domain.models.dispatch import DispatchRequest, DispatchResult
from campaign_engine.utils.redaction import hash_identifier, mask_phone_number

logger = logging.getLogger(__name__)

# Provider error bodies are copied into item errors; keep them short
MAX_ERROR_BODY = 200


class LiveCallDispatcher(CallDispatcher):
    """
    Provider REST client for call origination.

    Requirements:
    - PROVIDER_API_KEY for bearer auth
    - PROVIDER_PHONE_NUMBER_ID for the caller id, when the provider needs one
    """

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str],
        phone_number_id: Optional[str] = None,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self._api_url = api_url.rstrip("/")
        self._api_key = api_key
        self._phone_number_id = phone_number_id
        self._timeout = timeout
        self._client = client

    @property
    def name(self) -> str:
        return "live"

    def build_payload(self, request: DispatchRequest) -> Dict[str, Any]:
        """Provider request body for one call."""
        metadata = request.correlation_metadata()
        payload: Dict[str, Any] = {
            "assistantId": request.assistant_id,
            "customer": {
                "number": request.to_number,
                "name": request.customer_name,
            },
            "assistantOverrides": {
                "variableValues": request.variables,
                "metadata": metadata,
            },
            "metadata": metadata,
        }
        if self._phone_number_id:
            payload["phoneNumberId"] = self._phone_number_id
        return payload

    async def dispatch(self, request: DispatchRequest) -> DispatchResult:
        if not self._api_key:
            raise ProviderError("Provider API key not configured")
        if not request.assistant_id:
            raise TerminalError("Campaign assistant not found")

        logger.info(
            f"Dispatching call {request.internal_call_id} to "
            f"{mask_phone_number(request.to_number)} "
            f"(org={hash_identifier(request.organization_id)})"
        )

        try:
            if self._client is not None:
                response = await self._post(self._client, request)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await self._post(client, request)
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(f"Provider request timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Provider connection error: {e.__class__.__name__}") from e

        if response.status_code < 200 or response.status_code >= 300:
            body = response.text[:MAX_ERROR_BODY]
            logger.warning(f"Provider rejected call {request.internal_call_id}: {response.status_code}")
            raise ProviderError.from_response(response.status_code, body)

        try:
            provider_call_id = response.json().get("id")
        except ValueError:
            provider_call_id = None

        if not provider_call_id:
            raise ProviderError("Provider response missing call id")

        logger.info(f"Call {request.internal_call_id} accepted by provider as {provider_call_id}")
        return DispatchResult(provider_call_id=provider_call_id, provider=self.name)

    async def _post(self, client: httpx.AsyncClient, request: DispatchRequest) -> httpx.Response:
        return await client.post(
            f"{self._api_url}/call/phone",
            json=self.build_payload(request),
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            timeout=self._timeout,
        )
