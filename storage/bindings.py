"""
Per-sender GitHub bindings.

Created or overwritten only by an explicit bind command. Never deleted
by the service; the owner manages the lifecycle.
"""

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Optional

from storage.base import KVStore

logger = logging.getLogger(__name__)

USER_KEY_PREFIX = "user:"


class BindingStoreUnavailableError(Exception):
    """No KV store bound."""

    code = "kv_missing"


@dataclass
class Binding:
    github_token_enc: str
    default_repo: str
    default_path: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class BindingStore:
    def __init__(self, kv: Optional[KVStore]):
        self.kv = kv

    def _require_kv(self) -> KVStore:
        if self.kv is None:
            raise BindingStoreUnavailableError("KV store binding missing")
        return self.kv

    async def get(self, openid: str) -> Optional[Binding]:
        raw = await self._require_kv().get(f"{USER_KEY_PREFIX}{openid}")
        if not raw:
            return None
        try:
            data = json.loads(raw)
            return Binding(
                github_token_enc=data["github_token_enc"],
                default_repo=data["default_repo"],
                default_path=data["default_path"],
                created_at=data.get("created_at"),
                updated_at=data.get("updated_at"),
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Unreadable binding ignored: {e}")
            return None

    async def save(self, openid: str, binding: Binding) -> Binding:
        """Persist ``binding`` (no TTL), keeping the first ``created_at``."""
        kv = self._require_kv()
        now = datetime.now(timezone.utc).isoformat()

        created_at = binding.created_at
        if not created_at:
            existing = await self.get(openid)
            created_at = existing.created_at if existing and existing.created_at else now

        stored = Binding(
            github_token_enc=binding.github_token_enc,
            default_repo=binding.default_repo,
            default_path=binding.default_path,
            created_at=created_at,
            updated_at=now,
        )
        await kv.put(f"{USER_KEY_PREFIX}{openid}", json.dumps(asdict(stored)))
        return stored
