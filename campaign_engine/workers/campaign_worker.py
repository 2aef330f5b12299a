"""
Campaign Worker
Background worker that drives the batch scheduler

Run as separate process:
    python -m campaign_engine.workers.campaign_worker
"""
import asyncio
import logging
import signal
from typing import Optional

from dotenv import load_dotenv
from supabase import create_client

from campaign_engine.core.config import ConfigManager, Settings, get_settings
from campaign_engine.domain.services.batch_scheduler import BatchScheduler, TickResult, generate_worker_id
from campaign_engine.domain.services.circuit_breaker import CircuitBreaker
from campaign_engine.domain.services.completion_reconciler import CompletionReconciler
from campaign_engine.domain.services.concurrency_gate import ConcurrencyGate
from campaign_engine.domain.services.dispatch_pipeline import ItemDispatchPipeline
from campaign_engine.domain.services.notification_service import NotificationService
from campaign_engine.infrastructure.storage.call_repository import CallRepository
from campaign_engine.infrastructure.storage.campaign_repository import CampaignRepository
from campaign_engine.infrastructure.storage.organization_repository import OrganizationRepository
from campaign_engine.infrastructure.telephony.factory import DispatcherFactory
from campaign_engine.utils.tasks import drain_background_tasks

load_dotenv()

logger = logging.getLogger(__name__)

# Configure logging for worker
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


class CampaignWorker:
    """
    Background worker for outbound campaigns.

    Responsibilities:
    - Run one scheduler tick per interval
    - Back off on consecutive failures and stop after too many
    - Keep running totals for get_stats()

    Architecture:
    - Runs as separate process from FastAPI
    - Any number of workers may run; the store serializes reservations
    - The worker id is fixed for the life of the process
    """

    MAX_CONSECUTIVE_ERRORS = 10
    SHUTDOWN_DRAIN_SECONDS = 10.0

    def __init__(self, settings: Optional[Settings] = None, scheduler: Optional[BatchScheduler] = None):
        self.settings = settings or get_settings()
        self.worker_id = scheduler.worker_id if scheduler is not None else generate_worker_id()
        self.scheduler = scheduler

        self.running = False
        self._stop_event: Optional[asyncio.Event] = None

        # Stats
        self._ticks = 0
        self._items_processed = 0
        self._items_succeeded = 0
        self._items_failed = 0
        self._items_deferred = 0
        self._tick_errors = 0

    @property
    def tick_interval(self) -> float:
        return self.settings.tick_interval_seconds

    async def initialize(self) -> None:
        """Build repositories and services on a fresh Supabase client."""
        if self.scheduler is not None:
            return

        logger.info(f"Initializing Campaign Worker {self.worker_id}...")

        supabase_url = self.settings.supabase_url
        supabase_key = self.settings.supabase_service_key

        if not supabase_url or not supabase_key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")

        supabase = create_client(supabase_url, supabase_key)
        campaigns = CampaignRepository(supabase)
        calls = CallRepository(supabase)
        organizations = OrganizationRepository(supabase)

        pipeline = ItemDispatchPipeline(
            campaigns=campaigns,
            calls=calls,
            organizations=organizations,
            dispatchers=DispatcherFactory(self.settings),
            concurrency_gate=ConcurrencyGate(campaigns, self.settings.default_concurrency_cap),
            circuit_breaker=CircuitBreaker(organizations),
            max_retries=self.settings.max_retries,
            min_balance=self.settings.min_balance_threshold,
            estimated_call_cost=self.settings.estimated_call_cost,
            release_seconds=self.settings.concurrency_release_seconds,
            item_timeout=self.settings.item_timeout_seconds,
        )
        reconciler = CompletionReconciler(
            campaigns,
            notifications=NotificationService(organizations, self.settings, ConfigManager()),
        )
        self.scheduler = BatchScheduler(
            campaigns=campaigns,
            pipeline=pipeline,
            reconciler=reconciler,
            worker_id=self.worker_id,
            batch_size=self.settings.batch_size,
            max_parallel=self.settings.max_parallel_items,
            reservation_timeout=self.settings.reservation_timeout_seconds,
        )

        logger.info("Campaign Worker initialized successfully")

    async def run(self) -> None:
        """
        Main worker loop.

        Each iteration runs one tick, then waits for the tick interval.
        Failures back off for min(5 * n, 60) seconds.
        """
        await self.initialize()

        self.running = True
        self._stop_event = asyncio.Event()
        consecutive_errors = 0

        logger.info(f"Campaign Worker {self.worker_id} started")

        while self.running:
            try:
                result = await self.scheduler.run()
                self._record_tick(result)
                consecutive_errors = 0
                await self._wait(self.tick_interval)

            except asyncio.CancelledError:
                logger.info("Worker received cancellation signal")
                break
            except Exception as e:
                consecutive_errors += 1
                self._tick_errors += 1
                logger.error(f"Worker error ({consecutive_errors}): {e}", exc_info=True)

                if consecutive_errors >= self.MAX_CONSECUTIVE_ERRORS:
                    logger.critical("Too many consecutive errors, stopping worker")
                    break

                await self._wait(min(5 * consecutive_errors, 60))

        await self.shutdown()

    async def _wait(self, seconds: float) -> None:
        """Sleep that ends early when stop() is called."""
        if not self.running:
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def stop(self) -> None:
        self.running = False
        if self._stop_event is not None:
            self._stop_event.set()

    def _record_tick(self, result: TickResult) -> None:
        self._ticks += 1
        self._items_processed += result.processed
        self._items_succeeded += result.succeeded
        self._items_failed += result.failed
        self._items_deferred += result.deferred

    async def shutdown(self) -> None:
        """Graceful shutdown."""
        logger.info("Shutting down Campaign Worker...")
        self.running = False

        await drain_background_tasks(timeout=self.SHUTDOWN_DRAIN_SECONDS)

        logger.info(
            f"Campaign Worker shutdown complete. "
            f"Ticks: {self._ticks}, Processed: {self._items_processed}, Failed: {self._items_failed}"
        )

    def get_stats(self) -> dict:
        """Get worker statistics."""
        return {
            "worker_id": self.worker_id,
            "running": self.running,
            "ticks": self._ticks,
            "tick_errors": self._tick_errors,
            "items_processed": self._items_processed,
            "items_succeeded": self._items_succeeded,
            "items_failed": self._items_failed,
            "items_deferred": self._items_deferred,
        }


async def main():
    """Entry point for running the campaign worker as separate process."""
    worker = CampaignWorker()

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        worker.stop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    try:
        await worker.run()
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")


if __name__ == "__main__":
    asyncio.run(main())
