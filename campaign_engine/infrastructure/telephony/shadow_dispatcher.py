"""
Shadow Call Dispatcher
Simulates dispatch for tenants in shadow mode; no call is placed.
"""
import logging
import uuid

from campaign_engine.domain.interfaces.call_dispatcher import CallDispatcher
from campaign_engine.domain.models.dispatch import DispatchRequest, DispatchResult
from campaign_engine.utils.redaction import hash_identifier, mask_phone_number

logger = logging.getLogger(__name__)


class ShadowCallDispatcher(CallDispatcher):
    """Logs the intended call and returns a synthetic provider id"""

    @property
    def name(self) -> str:
        return "shadow"

    async def dispatch(self, request: DispatchRequest) -> DispatchResult:
        provider_call_id = f"shadow-{uuid.uuid4()}"
        logger.info(
            f"[SHADOW] Would call {mask_phone_number(request.to_number)} "
            f"for org {hash_identifier(request.organization_id)} "
            f"(call={request.internal_call_id}, assistant={request.assistant_id}, "
            f"variables={sorted(request.variables)}) -> {provider_call_id}"
        )
        return DispatchResult(provider_call_id=provider_call_id, provider=self.name)
