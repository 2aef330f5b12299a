"""
Item Dispatch Pipeline
Admission checks and dispatch for one reserved campaign item.

Order of checks (each may stop the item):
1. Retry budget
2. Tenant concurrency (defers, does not fail)
3. Balance
4. Governance
5. Spend circuit breaker
6. Contact
then call record, variables, dispatch and write-back.

Only failures up to and including dispatch are recorded on the item.
Once the provider accepts a call the item is never returned to pending.
"""
import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from campaign_engine.domain.exceptions import BudgetError, GovernanceError, TerminalError
from campaign_engine.domain.models.campaign_item import CampaignItem, ItemStatus
from campaign_engine.domain.models.dispatch import DispatchRequest, DispatchResult
from campaign_engine.domain.models.organization import OrganizationControls
from campaign_engine.domain.services.backoff import compute_next_try_at
from campaign_engine.domain.services.error_classifier import ErrorCategory, classify_error, error_message
from campaign_engine.utils.redaction import hash_identifier

logger = logging.getLogger(__name__)

DISPATCH_FAILED_REASON = "dispatch-failed"


class ItemOutcome(str, Enum):
    """How an item left the pipeline without raising"""
    DISPATCHED = "dispatched"
    DEFERRED = "deferred"


def display_name(contact: Dict[str, Any]) -> str:
    name = (contact.get("name") or "").strip()
    if name:
        return name
    full_name = f"{contact.get('first_name') or ''} {contact.get('last_name') or ''}".strip()
    return full_name or "there"


def build_variables(contact: Dict[str, Any]) -> Dict[str, str]:
    """Template variables: string-valued contact metadata plus a display name."""
    metadata = contact.get("metadata") or {}
    variables = {
        key: value
        for key, value in metadata.items()
        if isinstance(value, str)
    }
    variables["name"] = display_name(contact)
    return variables


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)



@dataclass
class DispatchAttempt:
    """Progress of one item through the pipeline, visible to the failure path."""
    call_id: Optional[str] = None
    result: Optional[DispatchResult] = None


class ItemDispatchPipeline:
    """
    Drives one reserved item from admission to dispatch.

    Failures before the call is placed are recorded on the item (attempt,
    backoff, error text), the call record is closed, and the exception is
    re-raised so the scheduler can count it.
    """

    MAX_RETRIES = 5
    MIN_BALANCE_THRESHOLD = 1.00
    ESTIMATED_CALL_COST = 0.10
    CONCURRENCY_RELEASE_SECONDS = 30
    ITEM_TIMEOUT_SECONDS = 45.0
    WRITE_BACK_ATTEMPTS = 3
    WRITE_BACK_DELAY_SECONDS = 0.5

    def __init__(
        self,
        campaigns,
        calls,
        organizations,
        dispatchers,
        concurrency_gate,
        circuit_breaker,
        max_retries: int = MAX_RETRIES,
        min_balance: float = MIN_BALANCE_THRESHOLD,
        estimated_call_cost: float = ESTIMATED_CALL_COST,
        release_seconds: int = CONCURRENCY_RELEASE_SECONDS,
        item_timeout: Optional[float] = ITEM_TIMEOUT_SECONDS,
        write_back_delay: float = WRITE_BACK_DELAY_SECONDS,
        rng=None,
        clock: Callable[[], datetime] = _utcnow
    ):
        self.campaigns = campaigns
        self.calls = calls
        self.organizations = organizations
        self.dispatchers = dispatchers
        self.concurrency_gate = concurrency_gate
        self.circuit_breaker = circuit_breaker

        self.max_retries = max_retries
        self.min_balance = min_balance
        self.estimated_call_cost = estimated_call_cost
        self.release_seconds = release_seconds
        self.item_timeout = item_timeout
        self.write_back_delay = write_back_delay
        self.rng = rng or random
        self._clock = clock

    async def process(self, item: CampaignItem) -> ItemOutcome:
        """Run admission and dispatch under the per-item timeout, then write back."""
        attempt = DispatchAttempt()
        try:
            outcome = await asyncio.wait_for(
                self._admit_and_dispatch(item, attempt), timeout=self.item_timeout
            )
        except asyncio.TimeoutError:
            if attempt.result is None:
                error = TimeoutError(f"Item processing timed out after {self.item_timeout}s")
                await self._record_failure(item, error, attempt.call_id)
                raise error
            outcome = ItemOutcome.DISPATCHED
        except Exception as e:
            await self._record_failure(item, e, attempt.call_id)
            raise

        if outcome == ItemOutcome.DISPATCHED:
            await self._write_back(item, attempt)
        return outcome

    async def _admit_and_dispatch(self, item: CampaignItem, attempt: DispatchAttempt) -> ItemOutcome:
        org_id = item.organization_id

        # 1. Retry budget
        if item.attempt_count >= self.max_retries:
            raise TerminalError("Max retries exceeded")

        controls = OrganizationControls.from_row(org_id, await self.organizations.get_controls(org_id))

        # 2. Concurrency: release without spending an attempt
        decision = await self.concurrency_gate.check(org_id, controls, exclude_item_id=item.id)
        if not decision.allowed:
            retry_at = self._clock() + timedelta(seconds=self.release_seconds)
            await self.campaigns.release_item(item.id, retry_at)
            logger.info(f"Item {item.id} deferred: tenant at {decision.active}/{decision.cap} active calls")
            return ItemOutcome.DEFERRED

        # 3. Balance
        balance = await self.organizations.get_balance(org_id)
        if balance < self.min_balance:
            raise BudgetError("Insufficient Funds: Balance below threshold.")

        # 4. Governance
        if controls.is_suspended:
            raise GovernanceError("Governance: Organization Suspended.")

        # 5. Spend limit
        breaker = await self.circuit_breaker.check_limit(org_id, self.estimated_call_cost)
        if not breaker.allowed:
            raise BudgetError(f"Circuit Breaker: {breaker.reason}")

        # 6. Target
        contact = None
        if item.contact_id:
            contact = await self.campaigns.get_contact(item.contact_id, org_id)
        if not contact or not contact.get("phone_e164"):
            raise TerminalError("Invalid Contact Data")

        campaign = await self.campaigns.get_campaign(item.campaign_id)
        if campaign is None:
            raise TerminalError(f"Campaign {item.campaign_id} not found")

        # 7. Call record; its id correlates every later webhook.
        # Linked to the item before dialing so an abandoned reservation
        # is never dialed twice.
        dispatcher = self.dispatchers.for_mode(controls.shadow_mode)
        attempt.call_id = await self.calls.create_outbound_call(
            organization_id=org_id,
            campaign_id=item.campaign_id,
            contact_id=item.contact_id,
            provider=dispatcher.name,
        )
        await self.campaigns.link_call(item.id, attempt.call_id)

        # 8. Variables
        request = DispatchRequest(
            to_number=contact["phone_e164"],
            customer_name=display_name(contact),
            assistant_id=campaign.assistant_id,
            variables=build_variables(contact),
            internal_call_id=attempt.call_id,
            organization_id=org_id,
            campaign_id=item.campaign_id,
            campaign_type=campaign.type,
        )

        # 9. Dispatch
        attempt.result = await dispatcher.dispatch(request)

        logger.info(
            f"Item {item.id} dispatched via {dispatcher.name} "
            f"(org={hash_identifier(org_id)}, call={attempt.call_id})"
        )
        return ItemOutcome.DISPATCHED

    async def _write_back(self, item: CampaignItem, attempt: DispatchAttempt) -> None:
        """
        10. Mark the item in progress and store the provider call id.

        Each write is retried. If the store stays unavailable the item keeps
        its reservation and call link, and the scheduler later adopts it as
        in progress.
        """
        call_id = attempt.call_id
        result = attempt.result

        await self._retry_write(
            "mark_in_progress", item.id,
            lambda: self.campaigns.mark_in_progress(item.id, call_id),
        )
        await self._retry_write(
            "set_provider_call_id", item.id,
            lambda: self.calls.set_provider_call_id(call_id, result.provider_call_id, result.provider),
        )

    async def _retry_write(self, name: str, item_id: str, write: Callable[[], Awaitable[None]]) -> None:
        for n in range(1, self.WRITE_BACK_ATTEMPTS + 1):
            try:
                await write()
                return
            except Exception as e:
                logger.warning(
                    f"Write-back {name} failed for item {item_id} "
                    f"(attempt {n}/{self.WRITE_BACK_ATTEMPTS}): {e}"
                )
                if n < self.WRITE_BACK_ATTEMPTS:
                    await asyncio.sleep(self.write_back_delay)

        logger.error(f"Giving up on {name} for dispatched item {item_id}; call stays linked")

    async def _record_failure(
        self,
        item: CampaignItem,
        error: BaseException,
        call_id: Optional[str] = None
    ) -> None:
        """Persist attempt, backoff and error text in one update."""
        message = error_message(error) or error.__class__.__name__
        category = classify_error(message)
        next_attempt = item.attempt_count + 1
        is_terminal = category == ErrorCategory.TERMINAL or next_attempt >= self.max_retries

        status = ItemStatus.FAILED if is_terminal else ItemStatus.PENDING
        next_try_at = compute_next_try_at(category, item.attempt_count, now=self._clock(), rng=self.rng)

        logger.warning(
            f"Item {item.id} failed ({category.value}, attempt {next_attempt}/{self.max_retries}, "
            f"terminal={is_terminal}): {message}"
        )

        if call_id:
            await self._close_failed_call(call_id)

        try:
            await self.campaigns.record_failure(
                item.id,
                status=status,
                attempt_count=next_attempt,
                error=message,
                next_try_at=next_try_at,
            )
        except Exception as write_error:
            logger.error(f"Could not record failure for item {item.id}: {write_error}", exc_info=True)

    async def _close_failed_call(self, call_id: str) -> None:
        """End the call record of an attempt that never reached the provider."""
        try:
            await self.calls.finalize_call(call_id, {"ended_reason": DISPATCH_FAILED_REASON})
        except Exception as e:
            logger.error(f"Could not close call {call_id} after failed dispatch: {e}", exc_info=True)
