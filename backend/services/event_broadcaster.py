"""
EventBroadcaster - fan-out of lockup push events to SSE subscribers

One instance per API process. Each subscriber owns an asyncio.Queue; a
bounded history of recent events is replayed to new subscribers.
Events are broadcast before they are applied, so clients see them as soon
as the webhook lands.
"""
import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Deque, List, Set

logger = logging.getLogger(__name__)

HISTORY_SIZE = 100
SUBSCRIBER_QUEUE_SIZE = 256


class EventBroadcaster:
    """In-process publish/subscribe registry"""

    def __init__(self, history_size: int = HISTORY_SIZE):
        self._subscribers: Set[asyncio.Queue] = set()
        self._history: Deque[dict] = deque(maxlen=history_size)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def recent_events(self) -> List[dict]:
        return list(self._history)

    def subscribe(self, replay: bool = True) -> asyncio.Queue:
        """Register a subscriber; optionally pre-load the recent history"""
        queue: asyncio.Queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        if replay:
            for event in self._history:
                queue.put_nowait(event)
        self._subscribers.add(queue)
        logger.debug(f"Subscriber added ({len(self._subscribers)} total)")
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        self._subscribers.discard(queue)
        logger.debug(f"Subscriber removed ({len(self._subscribers)} total)")

    def publish(self, event_type: str, data: dict) -> dict:
        """
        Record and fan out one event.

        A subscriber whose queue is full is dropped (slow client).

        Returns:
            The event as delivered
        """
        event = {
            'type': event_type,
            'data': data,
            'timestamp': datetime.now(timezone.utc).isoformat(),
        }
        self._history.append(event)

        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Dropping slow event subscriber")
                self._subscribers.discard(queue)
        return event


# Process-wide instance used by the API
broadcaster = EventBroadcaster()
