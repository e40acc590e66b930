"""
Sync Worker - periodic authoritative re-sync

Runs ReconciliationOrchestrator.run_sync_with_budget() every
SYNC_INTERVAL_SECONDS. A failed or over-budget pass is logged and the next
tick retries; nothing here is fatal to the process.
"""
import asyncio
import logging
import signal

from dotenv import load_dotenv

from config.settings import get_settings
from services.reconciliation import ReconciliationOrchestrator, SyncResult

logger = logging.getLogger(__name__)


class SyncWorker:
    """Interval loop around the full re-sync"""

    def __init__(
        self,
        orchestrator: ReconciliationOrchestrator,
        interval_seconds: float = 600,
        worker_name: str = "sync",
    ):
        self.orchestrator = orchestrator
        self.interval_seconds = interval_seconds
        self.worker_name = worker_name
        self.running = False
        self.passes_ok = 0
        self.passes_failed = 0
        self._stop = asyncio.Event()

    async def run_once(self) -> SyncResult:
        result = await self.orchestrator.run_sync_with_budget()
        if result.success:
            self.passes_ok += 1
            logger.info(f"[{self.worker_name}] Pass ok: {result.to_dict()}")
        else:
            self.passes_failed += 1
            logger.error(f"[{self.worker_name}] Pass failed: {result.error}")
        return result

    def stop(self):
        self.running = False
        self._stop.set()

    async def start(self):
        self._setup_signal_handlers()
        self.running = True
        logger.info(f"[{self.worker_name}] Started, interval {self.interval_seconds}s")

        while self.running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                logger.info(f"[{self.worker_name}] Received cancellation signal")
                break
            except Exception as e:
                self.passes_failed += 1
                logger.error(f"[{self.worker_name}] Sync loop error: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

        logger.info(
            f"[{self.worker_name}] Shutting down. "
            f"Passes ok: {self.passes_ok}, failed: {self.passes_failed}"
        )

    def _setup_signal_handlers(self):
        """Setup graceful shutdown on SIGTERM/SIGINT"""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.stop)


async def main():
    """Main worker entry point"""
    from repositories import close_db_pool, get_db_pool
    from services.wiring import build_services

    load_dotenv()
    settings = get_settings()

    db_pool = await get_db_pool()
    services = build_services(settings, db_pool)
    worker = SyncWorker(services.orchestrator, interval_seconds=settings.sync_interval_seconds)

    try:
        await worker.start()
    finally:
        await services.close()
        await close_db_pool()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
    )
    asyncio.run(main())
