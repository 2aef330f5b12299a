"""
Batch Scheduler
One tick of the campaign worker: reconcile, reserve, fan out.
"""
import asyncio
import logging
import time
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List

from campaign_engine.domain.exceptions import ReservationError
from campaign_engine.domain.models.campaign_item import CampaignItem, item_status_for_call
from campaign_engine.domain.services.dispatch_pipeline import ItemOutcome

logger = logging.getLogger(__name__)


def generate_worker_id() -> str:
    """Opaque reservation owner token: worker-{epoch_ms}-{8 hex}"""
    return f"worker-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TickResult:
    """Summary of one scheduler tick."""
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    deferred: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class BatchScheduler:
    """
    Runs one scheduling tick.

    Steps:
    1. Reclaim reservations abandoned by dead or disconnected workers
    2. Close in-progress items whose call already ended
    3. Close campaigns with no open items
    4. Reserve a batch for this worker (atomic in the store)
    5. Run every reserved item through the dispatch pipeline concurrently

    Items are isolated from each other: one failure never cancels siblings.
    """

    BATCH_SIZE = 10
    MAX_PARALLEL = 10
    RESERVATION_TIMEOUT_SECONDS = 120.0

    def __init__(
        self,
        campaigns,
        pipeline,
        reconciler,
        worker_id: str,
        batch_size: int = BATCH_SIZE,
        max_parallel: int = MAX_PARALLEL,
        reservation_timeout: float = RESERVATION_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = _utcnow
    ):
        self.campaigns = campaigns
        self.pipeline = pipeline
        self.reconciler = reconciler
        self.worker_id = worker_id
        self.batch_size = batch_size
        self.max_parallel = max_parallel
        self.reservation_timeout = reservation_timeout
        self._clock = clock

    async def run(self) -> TickResult:
        """
        Execute one tick.

        Raises:
            ReservationError: If the batch could not be reserved
        """
        await self._reclaim_abandoned_reservations()
        await self._reconcile_stale_items()
        await self._reconcile_campaigns()

        try:
            items = await self.campaigns.reserve_items(self.batch_size, self.worker_id)
        except Exception as e:
            logger.error(f"Reservation failed for {self.worker_id}: {e}", exc_info=True)
            raise ReservationError(f"Reservation failed: {e}") from e

        if not items:
            logger.debug("No eligible campaign items")
            return TickResult()

        logger.info(f"{self.worker_id} reserved {len(items)} items")
        result = await self._dispatch_batch(items)
        logger.info(
            f"Tick complete: processed={result.processed}, succeeded={result.succeeded}, "
            f"failed={result.failed}, deferred={result.deferred}"
        )
        return result

    async def _dispatch_batch(self, items: List[CampaignItem]) -> TickResult:
        semaphore = asyncio.Semaphore(self.max_parallel)

        async def guarded(item: CampaignItem) -> ItemOutcome:
            async with semaphore:
                return await self.pipeline.process(item)

        outcomes = await asyncio.gather(
            *(guarded(item) for item in items),
            return_exceptions=True
        )

        result = TickResult(processed=len(items))
        for item, outcome in zip(items, outcomes):
            if isinstance(outcome, BaseException):
                result.failed += 1
                logger.debug(f"Item {item.id} failed: {outcome}")
            elif outcome == ItemOutcome.DEFERRED:
                result.deferred += 1
            else:
                result.succeeded += 1
        return result

    async def _reclaim_abandoned_reservations(self) -> None:
        """
        Free items left queued past the reservation timeout.

        Unlinked items go back to pending. Items already linked to a call
        may have been dialed and move to in_progress instead.
        """
        cutoff = self._clock() - timedelta(seconds=self.reservation_timeout)
        try:
            released = await self.campaigns.release_abandoned_reservations(cutoff)
            adopted = await self.campaigns.adopt_abandoned_dispatches(cutoff)
            if released or adopted:
                logger.warning(
                    f"Reclaimed abandoned reservations: released={released}, adopted={adopted}"
                )
        except Exception as e:
            logger.error(f"Reservation reclaim failed: {e}", exc_info=True)

    async def _reconcile_stale_items(self) -> int:
        """Copy ended call state onto items still marked in_progress."""
        try:
            rows = await self.campaigns.find_stale_in_progress()
            closed = 0
            for row in rows:
                call = row.get("voice_calls") or {}
                if isinstance(call, list):
                    call = call[0] if call else {}
                status = item_status_for_call(call.get("outcome"), call.get("ended_reason"))
                if await self.campaigns.finish_item(row["id"], status):
                    closed += 1
            if closed:
                logger.info(f"Reconciled {closed} stale in-progress items")
            return closed
        except Exception as e:
            logger.error(f"Stale item reconciliation failed: {e}", exc_info=True)
            return 0

    async def _reconcile_campaigns(self) -> None:
        if self.reconciler is None:
            return
        try:
            await self.reconciler.run()
        except Exception as e:
            logger.error(f"Campaign completion reconciliation failed: {e}", exc_info=True)
