"""
Infrastructure initialization and bootstrap.

Singleton pattern for wiring every component from configuration.
Collaborators can be injected (tests, alternative deployments); anything
not injected is created from InfraConfig.
"""

import logging
from typing import Optional

from jobs.orchestrator import LinkOrchestrator
from jobs.supervisor import BackgroundSupervisor
from security.replay_guard import ReplayGuard
from security.token_vault import TokenVault
from services.base import ArticleFetcher, Notifier, Publisher
from storage.base import KVStore
from storage.bindings import BindingStore
from storage.ledger import IdempotencyLedger
from transport.wechat.handlers import MessageHandler

from .config import InfraConfig, get_config

logger = logging.getLogger(__name__)

_UNSET = object()


class InfraBootstrap:
    """
    Bootstrap infrastructure based on configuration.

    Singleton pattern - single instance per process.
    """

    _instance: Optional["InfraBootstrap"] = None

    def __init__(
        self,
        config: Optional[InfraConfig] = None,
        kv: Optional[KVStore] = None,
        fetcher: Optional[ArticleFetcher] = None,
        publisher: Optional[Publisher] = None,
        notifier=_UNSET,
        vault=_UNSET,
        supervisor: Optional[BackgroundSupervisor] = None,
    ):
        """
        Initialize bootstrap with configuration.

        ``notifier`` and ``vault`` accept an explicit None (feature off);
        leave them unset to build them from configuration.
        """
        self.config = config or get_config()

        self.kv: KVStore = kv or self.config.create_kv_store()
        self.replay_guard: Optional[ReplayGuard] = self.config.create_replay_guard(self.kv)
        self.vault: Optional[TokenVault] = self.config.create_token_vault() if vault is _UNSET else vault
        self.fetcher: ArticleFetcher = fetcher or self.config.create_fetcher()
        self.publisher: Publisher = publisher or self.config.create_publisher()
        self.notifier: Optional[Notifier] = self.config.create_notifier(self.kv) if notifier is _UNSET else notifier
        self.supervisor: BackgroundSupervisor = supervisor or self.config.create_supervisor()

        self.ledger = IdempotencyLedger(self.kv, processing_stale_seconds=self.config.processing_stale_seconds)
        self.bindings = BindingStore(self.kv)
        self.orchestrator = LinkOrchestrator(
            ledger=self.ledger,
            vault=self.vault,
            fetcher=self.fetcher,
            publisher=self.publisher,
            notifier=self.notifier,
            supervisor=self.supervisor,
        )
        self.handler = MessageHandler(
            bindings=self.bindings,
            orchestrator=self.orchestrator,
            publisher=self.publisher,
            vault=self.vault,
            verify_on_bind=self.config.github_verify_on_bind,
        )
        logger.info(f"Infrastructure ready: {self!r}")

    @classmethod
    def get_instance(cls, config: Optional[InfraConfig] = None) -> "InfraBootstrap":
        """
        Get singleton instance.

        Args:
            config: Optional custom configuration (only used first time)

        Returns:
            Singleton InfraBootstrap instance
        """
        if cls._instance is None:
            cls._instance = cls(config)
        return cls._instance

    @classmethod
    def reset(cls):
        """Reset singleton (for testing)."""
        cls._instance = None

    async def shutdown(self) -> int:
        """Drain background jobs within the grace period; returns jobs left running."""
        return await self.supervisor.drain()

    def __repr__(self) -> str:
        return (
            f"InfraBootstrap(kv={type(self.kv).__name__}, "
            f"replay_guard={'on' if self.replay_guard else 'off'}, "
            f"vault={'on' if self.vault else 'off'}, "
            f"mode={'fire-and-forget' if self.notifier else 'sync'})"
        )


def bootstrap_infrastructure(config: Optional[InfraConfig] = None) -> InfraBootstrap:
    """
    Bootstrap all infrastructure components.

    Args:
        config: Optional custom configuration

    Returns:
        InfraBootstrap instance with all components initialized
    """
    return InfraBootstrap.get_instance(config)
