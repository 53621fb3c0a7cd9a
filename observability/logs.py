"""
Request-scoped logging helpers.

Logging is strictly passive:
- Every callback gets a request id, attached to each record via ``extra``
- Openids are masked before they reach a log line
- Credentials and tokens are never logged

Also hosts :func:`best_effort`, the explicit "attempt, log, ignore" wrapper
for work that must never fail the caller (cache writes, cleanup,
notifications after the HTTP reply has gone out).
"""

import logging
import uuid
from typing import Any, Awaitable, Callable, MutableMapping, Optional, Tuple, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


def new_request_id() -> str:
    """Fresh correlation id for one inbound request."""
    return uuid.uuid4().hex


def mask_openid(openid: Optional[str]) -> str:
    """Mask an openid for logging: ``abcd***wxyz`` (or ``***`` when short)."""
    if not openid:
        return ""
    if len(openid) <= 8:
        return "***"
    return f"{openid[:4]}***{openid[-4:]}"


class RequestLogAdapter(logging.LoggerAdapter):
    """
    LoggerAdapter that stamps ``request_id`` onto every record.

    Usage:
        log = RequestLogAdapter(logger, request_id)
        log.info("wechat_received", extra={"msg_type": "link"})
    """

    def __init__(self, base: logging.Logger, request_id: str):
        super().__init__(base, {"request_id": request_id})

    @property
    def request_id(self) -> str:
        return self.extra["request_id"]

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("request_id", self.extra["request_id"])
        kwargs["extra"] = extra
        return f"[{self.extra['request_id']}] {msg}", kwargs


async def best_effort(
    operation: Callable[[], Awaitable[T]],
    description: str,
    log: Optional[logging.Logger] = None,
    default: Optional[T] = None,
) -> Optional[T]:
    """
    Attempt a non-critical async operation; log and swallow any failure.

    Args:
        operation: Zero-arg coroutine factory
        description: Short event name for the log line
        log: Logger (or adapter) to report on
        default: Value returned when the operation fails

    Returns:
        The operation's result, or ``default`` on failure
    """
    try:
        return await operation()
    except Exception as e:
        (log or logger).warning(
            f"{description} failed (ignored): {e}",
            extra={"event": description, "error": type(e).__name__},
        )
        return default
