"""
Queue consumer loop shared by the push event workers.

A subclass supplies parse_job() (raw dict -> typed event, None to skip) and
process() (apply it, True if anything changed). One bad job never stops the
loop: it is counted, logged through handle_error() and the loop moves on.
"""
import asyncio
import logging
import signal
from typing import Optional

from services.job_queue import JobQueue

logger = logging.getLogger(__name__)


class BaseWorker:

    def __init__(self, job_queue: JobQueue, worker_name: str, queue_name: str,
                 poll_timeout: int = 5):
        self.job_queue = job_queue
        self.worker_name = worker_name
        self.queue_name = queue_name
        self.poll_timeout = poll_timeout
        self.running = False
        self.jobs_processed = 0
        self.jobs_skipped = 0
        self.jobs_failed = 0

    @property
    def stats(self) -> dict:
        return {
            'processed': self.jobs_processed,
            'skipped': self.jobs_skipped,
            'failed': self.jobs_failed,
        }

    def stop(self):
        if self.running:
            logger.info(f"[{self.worker_name}] Stopping after current job")
        self.running = False

    async def start(self):
        self._setup_signal_handlers()
        self.running = True
        logger.info(f"[{self.worker_name}] Consuming {self.queue_name}")

        while self.running:
            try:
                job = await self.job_queue.dequeue(self.queue_name, timeout=self.poll_timeout)
            except asyncio.CancelledError:
                break
            except Exception as e:
                # Redis unavailable; back off and poll again
                logger.error(f"[{self.worker_name}] Dequeue failed: {e}")
                await asyncio.sleep(1)
                continue

            if job is not None:
                await self.handle_job(job)

        logger.info(f"[{self.worker_name}] Stopped: {self.stats}")

    async def handle_job(self, job: dict):
        try:
            parsed = self.parse_job(job)
            if parsed is None:
                self.jobs_skipped += 1
            elif await self.process(parsed):
                self.jobs_processed += 1
            else:
                self.jobs_skipped += 1
        except Exception as e:
            self.jobs_failed += 1
            await self.handle_error(job, e)

    def _setup_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.stop)

    def parse_job(self, job: dict) -> Optional[object]:
        raise NotImplementedError(f"{self.__class__.__name__} must implement parse_job()")

    async def process(self, parsed) -> bool:
        raise NotImplementedError(f"{self.__class__.__name__} must implement process()")

    async def handle_error(self, job: dict, error: Exception):
        """
        Log and move on. Push events are advisory: the periodic re-sync
        rebuilds whatever a failed event would have written.
        """
        logger.error(f"[{self.worker_name}] Job failed {job}: {error}", exc_info=True)
