"""Logging helpers: request correlation, PII masking, best-effort wrapper."""

from observability.logs import RequestLogAdapter, best_effort, mask_openid, new_request_id

__all__ = [
    "RequestLogAdapter",
    "best_effort",
    "mask_openid",
    "new_request_id",
]
