"""
Replay Guard

Rejects callbacks whose (timestamp, nonce) pair was already accepted.

Checks, in order (each a distinct reason):
1. missing_timestamp_or_nonce
2. invalid_timestamp
3. timestamp_out_of_range   (|now - ts| > tolerance)
4. kv_missing / kv_unavailable   (fail closed, never open)
5. replay_detected

Accepted pairs are remembered for max(ttl_floor, tolerance) seconds.
Outside the tolerance window the timestamp check already rejects, so
longer retention is unnecessary.

The read and the write are not atomic: two identical requests landing
at the same instant can both pass.
"""

import hashlib
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

from storage.base import KVStore

logger = logging.getLogger(__name__)

NONCE_KEY_PREFIX = "wxnonce:"
DEFAULT_TOLERANCE_SECONDS = 600
DEFAULT_NONCE_TTL_FLOOR_SECONDS = 60


@dataclass(frozen=True)
class ReplayCheckResult:
    ok: bool
    reason: Optional[str] = None


ACCEPTED = ReplayCheckResult(ok=True)


def nonce_key(timestamp: str, nonce: str) -> str:
    digest = hashlib.sha1(f"wxnonce|{timestamp}|{nonce}".encode("utf-8")).hexdigest()
    return f"{NONCE_KEY_PREFIX}{digest}"


class ReplayGuard:
    def __init__(
        self,
        kv: Optional[KVStore],
        tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
        ttl_floor_seconds: int = DEFAULT_NONCE_TTL_FLOOR_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.kv = kv
        self.tolerance_seconds = tolerance_seconds
        self.ttl_floor_seconds = ttl_floor_seconds
        self._clock = clock

    @property
    def nonce_ttl_seconds(self) -> int:
        return max(self.ttl_floor_seconds, self.tolerance_seconds)

    async def check(self, timestamp: Optional[str], nonce: Optional[str]) -> ReplayCheckResult:
        """
        Check and record a (timestamp, nonce) pair.

        Returns:
            ReplayCheckResult(ok=True) when accepted, otherwise ok=False
            with a machine-readable reason
        """
        if not timestamp or not nonce:
            return ReplayCheckResult(False, "missing_timestamp_or_nonce")

        try:
            ts = float(timestamp)
        except ValueError:
            return ReplayCheckResult(False, "invalid_timestamp")
        if not math.isfinite(ts):
            return ReplayCheckResult(False, "invalid_timestamp")

        now = math.floor(self._clock())
        if abs(now - ts) > self.tolerance_seconds:
            return ReplayCheckResult(False, "timestamp_out_of_range")

        if self.kv is None:
            return ReplayCheckResult(False, "kv_missing")

        key = nonce_key(timestamp, nonce)
        try:
            if await self.kv.get(key):
                return ReplayCheckResult(False, "replay_detected")
            await self.kv.put(key, "1", self.nonce_ttl_seconds)
        except Exception as e:
            logger.error(f"Replay guard store error: {e}", extra={"error": type(e).__name__})
            return ReplayCheckResult(False, "kv_unavailable")

        return ACCEPTED
