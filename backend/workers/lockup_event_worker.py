"""
Lockup Event Worker - applies push events to the leaderboard

Consumes queue:lockup:events (filled by the webhook endpoint) and runs the
optimistic update path:
- LockUpCreated -> ReconciliationOrchestrator.apply_optimistic_lockup
- Unlock        -> ReconciliationOrchestrator.apply_unlock

Every update is advisory; the periodic re-sync is the system of record.
"""
import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Optional, Union

from dotenv import load_dotenv

from config.settings import get_settings
from models.domain.lockup import LockupRecord, MalformedLockupError, parse_lockup_record
from services.job_queue import LOCKUP_EVENTS_QUEUE, JobQueue
from services.reconciliation import ReconciliationOrchestrator
from services.worker_base import BaseWorker
from utils.amounts import AmountUnit
from utils.hash_utils import normalize_content_hash

logger = logging.getLogger(__name__)

LOCKUP_CREATED = 'LockUpCreated'
UNLOCK = 'Unlock'


@dataclass
class UnlockEvent:
    lockup_id: int
    content_hash: Optional[str] = None


def parse_unlock_event(data: dict) -> UnlockEvent:
    """Unlock events carry lockUpId (and sometimes the cast hash)"""
    raw_id = None
    for key in ('lockUpId', 'lockupId', 'lockup_id'):
        if data.get(key) is not None:
            raw_id = data[key]
            break
    if raw_id is None:
        raise MalformedLockupError("unlock event without lockup id")
    try:
        lockup_id = int(str(raw_id).strip())
    except ValueError:
        raise MalformedLockupError(f"unlock event lockup id {raw_id!r} is not an integer")

    reference = data.get('castHash') or data.get('title')
    return UnlockEvent(lockup_id=lockup_id, content_hash=normalize_content_hash(reference))


class LockupEventWorker(BaseWorker):
    """Optimistic single-event updates"""

    def __init__(
        self,
        job_queue: JobQueue,
        orchestrator: ReconciliationOrchestrator,
        amount_unit: AmountUnit = AmountUnit.BASE,
        worker_id: int = 1,
    ):
        super().__init__(
            job_queue=job_queue,
            worker_name=f"lockup-events-{worker_id}",
            queue_name=LOCKUP_EVENTS_QUEUE,
        )
        self.orchestrator = orchestrator
        self.amount_unit = AmountUnit(amount_unit)

    def parse_job(self, job: dict) -> Optional[Union[LockupRecord, UnlockEvent]]:
        event_type = job.get('event_type')
        data = job.get('data') or {}
        try:
            if event_type == LOCKUP_CREATED:
                return parse_lockup_record(data, self.amount_unit)
            if event_type == UNLOCK:
                return parse_unlock_event(data)
        except MalformedLockupError as e:
            logger.warning(f"[{self.worker_name}] Dropping malformed {event_type} event: {e}")
            return None

        logger.warning(f"[{self.worker_name}] Unknown event type {event_type!r}")
        return None

    async def process(self, parsed: Union[LockupRecord, UnlockEvent]) -> bool:
        if isinstance(parsed, UnlockEvent):
            return await self.orchestrator.apply_unlock(parsed.lockup_id, parsed.content_hash)
        return await self.orchestrator.apply_optimistic_lockup(parsed)


async def main():
    """Main worker entry point"""
    from repositories import close_db_pool, get_db_pool
    from services.wiring import build_services

    load_dotenv()
    settings = get_settings()

    db_pool = await get_db_pool()
    job_queue = JobQueue(settings.redis_url)
    await job_queue.connect()

    services = build_services(settings, db_pool)
    worker = LockupEventWorker(
        job_queue,
        services.orchestrator,
        amount_unit=AmountUnit(settings.webhook_amount_unit),
        worker_id=int(os.getenv("WORKER_ID", "1")),
    )
    logger.info("Starting lockup event worker")

    try:
        await worker.start()
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down...")
    finally:
        await services.close()
        await job_queue.close()
        await close_db_pool()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
    )
    asyncio.run(main())
