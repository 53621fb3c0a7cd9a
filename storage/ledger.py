"""
Idempotent Job Ledger

Maps a deterministic job key to a status record so duplicate link
submissions collapse into one tracked job.

State machine:

    (absent | failed | stale processing) --claim--> processing
    processing --complete--> success   (terminal for SUCCESS_TTL)
    processing --fail------> failed    (retryable after next submission)

Staleness re-entry: a processing record older than the liveness window is
treated as abandoned and may be re-claimed. Two executions can then race
for the same key; this is a deliberate at-least-once relaxation.
"""

import hashlib
import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

from storage.base import KVStore

logger = logging.getLogger(__name__)

IDEM_KEY_PREFIX = "idem:"

PROCESSING_TTL_SECONDS = 7 * 24 * 3600
SUCCESS_TTL_SECONDS = 30 * 24 * 3600
FAILED_TTL_SECONDS = 24 * 3600
DEFAULT_PROCESSING_STALE_SECONDS = 2 * 60


class JobStatus(str, Enum):
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


class LedgerDecision(str, Enum):
    """Outcome of looking up a job key before running it."""

    REUSE_RESULT = "reuse_result"
    STILL_PROCESSING = "still_processing"
    RUN = "run"


class LedgerUnavailableError(Exception):
    """No KV store bound to the ledger."""

    code = "kv_missing"


@dataclass
class IdempotencyRecord:
    """Persisted status of one job key."""

    status: JobStatus
    created_at: str
    updated_at: str
    result_url: Optional[str] = None
    path: Optional[str] = None
    source_url: Optional[str] = None
    error_code: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        extra = data.pop("extra") or {}
        payload = {k: v for k, v in data.items() if v is not None}
        payload.update(extra)
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IdempotencyRecord":
        known = {"status", "created_at", "updated_at", "result_url", "path", "source_url", "error_code"}
        return cls(
            status=JobStatus(data["status"]),
            created_at=data.get("created_at") or data.get("updated_at") or "",
            updated_at=data.get("updated_at") or "",
            result_url=data.get("result_url"),
            path=data.get("path"),
            source_url=data.get("source_url"),
            error_code=data.get("error_code"),
            extra={k: v for k, v in data.items() if k not in known},
        )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def derive_job_key(
    sender: str,
    url: str,
    message_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """
    Derive the idempotency key for a link submission.

    Prefers the platform message id (``wxmsg:{sender}:{id}``). Without one,
    hashes sender, URL and the UTC calendar day, so identical submissions
    from the same sender on the same day collapse into one job.
    """
    if message_id:
        return f"wxmsg:{sender}:{message_id}"
    day = (now or _utc_now()).astimezone(timezone.utc).strftime("%Y-%m-%d")
    digest = hashlib.sha1(f"{sender}|{url}|{day}".encode("utf-8")).hexdigest()
    return f"wxurl:{digest}"


class IdempotencyLedger:
    """
    KV-backed job ledger.

    Every transition is one full-record KV write. Reads and writes are
    not compare-and-swap; concurrent callers may both observe an absent
    or stale record.
    """

    def __init__(
        self,
        kv: Optional[KVStore],
        processing_stale_seconds: int = DEFAULT_PROCESSING_STALE_SECONDS,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.kv = kv
        self.processing_stale_seconds = processing_stale_seconds
        self._clock = clock

    def _require_kv(self) -> KVStore:
        if self.kv is None:
            raise LedgerUnavailableError("KV store binding missing")
        return self.kv

    async def get_record(self, key: str) -> Optional[IdempotencyRecord]:
        """Read a record; unreadable rows are treated as absent."""
        raw = await self._require_kv().get(f"{IDEM_KEY_PREFIX}{key}")
        if not raw:
            return None
        try:
            return IdempotencyRecord.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Unreadable ledger record ignored: {e}", extra={"idem_key": key})
            return None

    async def put_record(
        self,
        key: str,
        fields: Dict[str, Any],
        ttl_seconds: Optional[int] = None,
    ) -> IdempotencyRecord:
        """
        Write a record built from ``fields``.

        Sets ``updated_at`` to now and keeps the original ``created_at``
        (from ``fields``, else from the existing row, else now).
        """
        kv = self._require_kv()
        now = self._clock().isoformat()

        created_at = fields.get("created_at")
        if not created_at:
            existing = await self.get_record(key)
            created_at = existing.created_at if existing else now

        payload = {k: v for k, v in fields.items() if k not in ("created_at", "updated_at")}
        payload["created_at"] = created_at
        payload["updated_at"] = now
        if isinstance(payload.get("status"), JobStatus):
            payload["status"] = payload["status"].value

        record = IdempotencyRecord.from_dict(payload)
        await kv.put(f"{IDEM_KEY_PREFIX}{key}", json.dumps(record.to_dict()), ttl_seconds)
        return record

    def is_recent(self, iso: Optional[str], within_seconds: Optional[int] = None) -> bool:
        """True if ``iso`` lies within the window ending now."""
        parsed = _parse_iso(iso)
        if parsed is None:
            return False
        window = timedelta(seconds=self.processing_stale_seconds if within_seconds is None else within_seconds)
        return self._clock() - parsed <= window

    def decide(self, record: Optional[IdempotencyRecord]) -> LedgerDecision:
        """Apply the lookup decision table to an existing record."""
        if record is None:
            return LedgerDecision.RUN
        if record.status is JobStatus.SUCCESS and record.result_url:
            return LedgerDecision.REUSE_RESULT
        if record.status is JobStatus.PROCESSING and self.is_recent(record.updated_at):
            return LedgerDecision.STILL_PROCESSING
        return LedgerDecision.RUN

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def claim(self, key: str, source_url: Optional[str] = None) -> IdempotencyRecord:
        fields: Dict[str, Any] = {"status": JobStatus.PROCESSING}
        if source_url:
            fields["source_url"] = source_url
        return await self.put_record(key, fields, ttl_seconds=PROCESSING_TTL_SECONDS)

    async def complete(self, key: str, result_url: str, path: Optional[str] = None) -> IdempotencyRecord:
        fields: Dict[str, Any] = {"status": JobStatus.SUCCESS, "result_url": result_url}
        if path:
            fields["path"] = path
        return await self.put_record(key, fields, ttl_seconds=SUCCESS_TTL_SECONDS)

    async def fail(self, key: str, error_code: str) -> IdempotencyRecord:
        return await self.put_record(
            key,
            {"status": JobStatus.FAILED, "error_code": error_code},
            ttl_seconds=FAILED_TTL_SECONDS,
        )
