"""
Storage exports.

KV boundary, engines, and the records built on top of it.
"""

from .base import KVStore, KVStoreError
from .bindings import Binding, BindingStore, BindingStoreUnavailableError
from .ledger import (
    IdempotencyLedger,
    IdempotencyRecord,
    JobStatus,
    LedgerDecision,
    LedgerUnavailableError,
    derive_job_key,
)
from .memory import InMemoryKVStore
from .sqlite import SQLiteKVStore

__all__ = [
    "KVStore",
    "KVStoreError",
    "InMemoryKVStore",
    "SQLiteKVStore",
    "Binding",
    "BindingStore",
    "BindingStoreUnavailableError",
    "IdempotencyLedger",
    "IdempotencyRecord",
    "JobStatus",
    "LedgerDecision",
    "LedgerUnavailableError",
    "derive_job_key",
]
