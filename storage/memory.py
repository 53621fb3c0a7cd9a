"""
In-memory KV store for tests and local development.

Deterministic, no external dependencies. Expiry is checked on read.
"""

import time
from typing import Callable, Dict, Optional, Tuple

from storage.base import KVStore


class InMemoryKVStore(KVStore):
    """
    Dict-backed KV store.

    Properties:
    - Expired values behave as absent (and are dropped on read)
    - put() overwrites fully
    - Clock is injectable for TTL tests
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self.storage: Dict[str, Tuple[str, Optional[float]]] = {}  # {key: (value, expires_at)}

    async def get(self, key: str) -> Optional[str]:
        entry = self.storage.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            self.storage.pop(key, None)
            return None
        return value

    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        expires_at = None
        if ttl_seconds is not None and ttl_seconds > 0:
            expires_at = self._clock() + ttl_seconds
        self.storage[key] = (str(value), expires_at)
