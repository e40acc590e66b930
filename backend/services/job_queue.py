"""
Redis list queue for lockup push events.

The webhook handler LPUSHes decoded events; LockupEventWorker processes
BRPOP them, so each event is applied by exactly one process in arrival
order. Payloads that cannot be decoded are moved to `<queue>:dead` with the
reason instead of being dropped.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)

LOCKUP_EVENTS_QUEUE = 'queue:lockup:events'
DEAD_LETTER_SUFFIX = ':dead'


def dead_letter_queue(queue_name: str) -> str:
    return f"{queue_name}{DEAD_LETTER_SUFFIX}"


class JobQueue:
    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self.redis = None

    async def connect(self):
        self.redis = await redis.from_url(self.redis_url, decode_responses=True)

    async def close(self):
        if self.redis:
            await self.redis.close()
            self.redis = None

    async def enqueue(self, queue_name: str, job: dict):
        await self.redis.lpush(queue_name, json.dumps(job, default=str))

    async def dequeue(self, queue_name: str, timeout: int = 5) -> Optional[dict]:
        """Next job, or None on timeout or when the popped payload was dead-lettered"""
        popped = await self.redis.brpop(queue_name, timeout=timeout)
        if not popped:
            return None

        raw = popped[1]
        try:
            job = json.loads(raw)
        except (TypeError, ValueError) as e:
            await self.dead_letter(queue_name, raw, f"undecodable: {e}")
            return None
        if not isinstance(job, dict):
            await self.dead_letter(queue_name, raw, "not an object")
            return None
        return job

    async def dead_letter(self, queue_name: str, raw, reason: str):
        logger.warning(f"Dead-lettering job from {queue_name}: {reason}")
        await self.redis.lpush(dead_letter_queue(queue_name), json.dumps({
            'queue': queue_name,
            'payload': raw,
            'reason': reason,
            'failed_at': datetime.now(timezone.utc).isoformat(),
        }, default=str))

    async def queue_length(self, queue_name: str) -> int:
        return await self.redis.llen(queue_name)

    async def enqueue_lockup_event(self, event_type: str, data: dict):
        """
        Queue a webhook event ('LockUpCreated' or 'Unlock') for the event worker.

        `data` is the decoded event payload exactly as the webhook delivered it.
        """
        await self.enqueue(LOCKUP_EVENTS_QUEUE, {
            'event_type': event_type,
            'data': data,
            'received_at': datetime.now(timezone.utc).isoformat(),
        })
