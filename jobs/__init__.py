"""Job execution: retry policy, background supervision, link orchestration."""

from .orchestrator import (
    ACCEPTED_ASYNC_TEXT,
    FAILURE_TEXT,
    PROCESSING_TEXT,
    JobOutcome,
    LinkJob,
    LinkOrchestrator,
    error_code_for,
)
from .retry import is_timeout, is_transport_error, retry_always, with_retry
from .supervisor import BackgroundSupervisor

__all__ = [
    "LinkOrchestrator",
    "LinkJob",
    "JobOutcome",
    "error_code_for",
    "PROCESSING_TEXT",
    "ACCEPTED_ASYNC_TEXT",
    "FAILURE_TEXT",
    "BackgroundSupervisor",
    "with_retry",
    "retry_always",
    "is_timeout",
    "is_transport_error",
]
