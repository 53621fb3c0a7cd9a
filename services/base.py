"""
External collaborator interfaces.

The job body talks to the outside world only through these boundaries:

- ArticleFetcher: url -> Markdown + title
- Publisher:      Markdown -> location in the user's repository
- Notifier:       out-of-band text message to the sender

Failures are typed so the ledger can record a short machine code and the
user only ever sees a fixed message.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


# ============================================================================
# ERRORS
# ============================================================================

class CollaboratorError(Exception):
    """Base class for collaborator failures. ``code`` lands in the ledger."""

    code = "collaborator_failed"


class FetchBlockedError(CollaboratorError):
    """URL rejected before any request (scheme, localhost, private range)."""

    def __init__(self, reason: str):
        super().__init__(f"fetch blocked: {reason}")
        self.reason = reason
        self.code = f"fetch_blocked:{reason}"


class FetchFailedError(CollaboratorError):
    """Upstream answered with a non-success status."""

    def __init__(self, status: int):
        super().__init__(f"fetch failed: HTTP {status}")
        self.status = status
        self.code = f"fetch_failed:{status}"


class TransformError(CollaboratorError):
    """HTML could not be turned into Markdown."""

    code = "transform_failed"


class PublishError(CollaboratorError):
    """Repository write (or access check) failed."""

    def __init__(self, message: str, status: int):
        super().__init__(f"{message}: {status}")
        self.status = status
        self.code = f"{message.replace(' ', '_')}:{status}"


class NotificationError(CollaboratorError):
    """Out-of-band message could not be delivered."""

    code = "notify_failed"


# ============================================================================
# RESULTS
# ============================================================================

@dataclass(frozen=True)
class FetchedArticle:
    markdown: str
    resolved_title: str


@dataclass(frozen=True)
class PublishResult:
    title: str
    path: str
    location: str


# ============================================================================
# INTERFACES
# ============================================================================

class ArticleFetcher(ABC):
    @abstractmethod
    async def fetch(self, url: str, title_hint: str = "") -> FetchedArticle:
        """
        Fetch ``url`` and convert its main content to Markdown.

        Raises:
            FetchBlockedError, FetchFailedError, TransformError
        """
        raise NotImplementedError


class Publisher(ABC):
    @abstractmethod
    async def verify_access(self, credential: str, destination: str) -> None:
        """
        Check that ``credential`` can reach ``destination``.

        Raises:
            PublishError: Destination not reachable with this credential
        """
        raise NotImplementedError

    @abstractmethod
    async def publish(
        self,
        credential: str,
        destination: str,
        path_prefix: str,
        title: str,
        source_url: str,
        content: str,
    ) -> PublishResult:
        """
        Write ``content`` under ``path_prefix`` in ``destination``.

        Raises:
            PublishError: Write rejected
        """
        raise NotImplementedError


class Notifier(ABC):
    @abstractmethod
    async def send_text(self, recipient: str, text: str) -> None:
        """
        Deliver a text message to ``recipient``.

        Raises:
            NotificationError: Delivery failed
        """
        raise NotImplementedError
