"""
Infrastructure configuration system.

Environment-based selection of the KV engine, the security components
and the external collaborators.
Defaults favour a single-process, local-first deployment (SQLite KV).
"""

import logging
import os
from dataclasses import dataclass
from typing import Literal, Optional

from jobs.supervisor import BackgroundSupervisor
from security.envelope import EnvelopeConfigError, decode_aes_key
from security.replay_guard import ReplayGuard
from security.token_vault import TokenVault, TokenVaultConfigError
from services.articles import HttpArticleFetcher
from services.base import ArticleFetcher, Notifier, Publisher
from services.github import DEFAULT_API_URL, GitHubPublisher
from storage.base import KVStore
from storage.memory import InMemoryKVStore
from storage.sqlite import SQLiteKVStore
from transport.wechat.sender import AccessTokenCache, WeChatCustomerServiceSender

logger = logging.getLogger(__name__)

KVBackendType = Literal["sqlite", "memory"]


def _flag(name: str, default: str = "true") -> bool:
    # Only an explicit "false" disables a flag
    return os.getenv(name, default).strip().lower() != "false"


@dataclass
class InfraConfig:
    """Infrastructure configuration from environment."""

    # WeChat
    wechat_token: str
    wechat_app_id: str
    wechat_app_secret: str
    wechat_aes_key: str

    # Replay guard
    replay_protect: bool
    timestamp_tolerance_seconds: int
    nonce_ttl_floor_seconds: int

    # Ledger
    processing_stale_seconds: int

    # Token vault
    token_encryption_key_b64: str

    # GitHub
    github_verify_on_bind: bool
    github_default_branch: str
    github_api_url: str

    # KV
    kv_backend: KVBackendType
    kv_sqlite_path: str

    # Jobs
    shutdown_grace_seconds: float
    fetch_timeout_seconds: float

    @classmethod
    def from_env(cls) -> "InfraConfig":
        """
        Load configuration from environment variables.

        Defaults:
        - KV: sqlite (./ruminer_kv.db)
        - Replay protection on, 600s tolerance
        - Notifications off unless WECHAT_APP_ID and WECHAT_APP_SECRET are set
        """
        return cls(
            # WeChat Configuration
            wechat_token=os.getenv("WECHAT_TOKEN", ""),
            wechat_app_id=os.getenv("WECHAT_APP_ID", ""),
            wechat_app_secret=os.getenv("WECHAT_APP_SECRET", ""),
            wechat_aes_key=os.getenv("WECHAT_AES_KEY", ""),

            # Replay Guard Configuration
            replay_protect=_flag("WECHAT_REPLAY_PROTECT"),
            timestamp_tolerance_seconds=int(os.getenv("WECHAT_TIMESTAMP_TOLERANCE_SECONDS", "600")),
            nonce_ttl_floor_seconds=int(os.getenv("WECHAT_NONCE_TTL_FLOOR_SECONDS", "60")),

            # Ledger Configuration
            processing_stale_seconds=int(os.getenv("IDEM_PROCESSING_STALE_SECONDS", "120")),

            # Token Vault Configuration
            token_encryption_key_b64=os.getenv("TOKEN_ENCRYPTION_KEY_BASE64", ""),

            # GitHub Configuration
            github_verify_on_bind=_flag("GITHUB_VERIFY_ON_BIND"),
            github_default_branch=os.getenv("GITHUB_DEFAULT_BRANCH", "main"),
            github_api_url=os.getenv("GITHUB_API_URL", DEFAULT_API_URL),

            # KV Configuration
            kv_backend=os.getenv("KV_BACKEND", "sqlite"),  # type: ignore
            kv_sqlite_path=os.getenv("KV_SQLITE_PATH", "./ruminer_kv.db"),

            # Job Configuration
            shutdown_grace_seconds=float(os.getenv("SHUTDOWN_GRACE_SECONDS", "25")),
            fetch_timeout_seconds=float(os.getenv("FETCH_TIMEOUT_SECONDS", "8")),
        )

    @property
    def notifications_enabled(self) -> bool:
        return bool(self.wechat_app_id and self.wechat_app_secret)

    def create_kv_store(self) -> KVStore:
        """Create KV engine based on configuration."""
        if self.kv_backend == "memory":
            return InMemoryKVStore()
        elif self.kv_backend == "sqlite":
            return SQLiteKVStore(self.kv_sqlite_path)
        else:
            logger.warning(f"Unknown KV_BACKEND={self.kv_backend!r}, using sqlite")
            return SQLiteKVStore(self.kv_sqlite_path)

    def create_replay_guard(self, kv: Optional[KVStore]) -> Optional[ReplayGuard]:
        """Create replay guard (or None if WECHAT_REPLAY_PROTECT=false)."""
        if not self.replay_protect:
            return None
        return ReplayGuard(
            kv,
            tolerance_seconds=self.timestamp_tolerance_seconds,
            ttl_floor_seconds=self.nonce_ttl_floor_seconds,
        )

    def create_token_vault(self) -> Optional[TokenVault]:
        """
        Create the credential vault (or None if no key is configured).

        Raises:
            TokenVaultConfigError: Key malformed, or identical to the
                message envelope key
        """
        if not self.token_encryption_key_b64:
            return None
        vault = TokenVault.from_base64(self.token_encryption_key_b64)

        if self.wechat_aes_key:
            try:
                message_key = decode_aes_key(self.wechat_aes_key)
            except EnvelopeConfigError:
                # A malformed message key is reported on the first safe-mode request
                message_key = None
            if message_key is not None and vault.uses_key(message_key):
                raise TokenVaultConfigError("TOKEN_ENCRYPTION_KEY_BASE64 must differ from WECHAT_AES_KEY")
        return vault

    def create_notifier(self, kv: Optional[KVStore]) -> Optional[Notifier]:
        """Create customer-service sender (or None if app credentials are missing)."""
        if not self.notifications_enabled:
            return None
        return WeChatCustomerServiceSender(
            app_id=self.wechat_app_id,
            app_secret=self.wechat_app_secret,
            token_cache=AccessTokenCache(kv),
        )

    def create_fetcher(self) -> ArticleFetcher:
        return HttpArticleFetcher(timeout_seconds=self.fetch_timeout_seconds)

    def create_publisher(self) -> Publisher:
        return GitHubPublisher(
            default_branch=self.github_default_branch,
            api_url=self.github_api_url,
        )

    def create_supervisor(self) -> BackgroundSupervisor:
        return BackgroundSupervisor(grace_seconds=self.shutdown_grace_seconds)


def get_config() -> InfraConfig:
    """Get global infrastructure configuration."""
    return InfraConfig.from_env()
