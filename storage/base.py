"""
Abstract key-value store interface.

Every persisted record (nonces, ledger rows, bindings, token cache) goes
through this boundary. Storage engines are swappable.

Contract:
- get() returns None for missing OR expired keys
- put() overwrites the whole value (no merge)
- ttl_seconds=None means no expiry
- Values are UTF-8 strings (callers JSON-encode)
"""

from abc import ABC, abstractmethod
from typing import Optional


class KVStoreError(Exception):
    """Storage engine unavailable or failed."""

    code = "kv_unavailable"


class KVStore(ABC):
    """
    Abstract KV boundary.
    Components depend ONLY on this interface.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """
        Read a value.

        Args:
            key: Full key (callers add their own prefix)

        Returns:
            The stored string, or None if absent or expired

        Raises:
            KVStoreError: Engine unavailable
        """
        raise NotImplementedError

    @abstractmethod
    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        """
        Write a value, replacing any previous one.

        Args:
            key: Full key
            value: String value
            ttl_seconds: Expiry in seconds; None or <= 0 keeps it forever

        Raises:
            KVStoreError: Engine unavailable
        """
        raise NotImplementedError
