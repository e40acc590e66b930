"""
Simple in-memory TTL cache for upstream snapshots (token price)
"""

import time
from typing import Any, Dict, Optional, Tuple
from threading import Lock


class SimpleCache:
    """Thread-safe in-memory cache with TTL"""

    def __init__(self, default_ttl: int = 60):
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._lock = Lock()
        self.default_ttl = default_ttl

    def get(self, key: str) -> Optional[Any]:
        """Value for key, or None if missing or expired"""
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None
            value, expires_at = item
            if time.monotonic() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None):
        expires_at = time.monotonic() + (ttl or self.default_ttl)
        with self._lock:
            self._entries[key] = (value, expires_at)

    def clear(self):
        with self._lock:
            self._entries.clear()


# Token price snapshots; one minute is fresh enough for USD display values
price_cache = SimpleCache(default_ttl=60)
