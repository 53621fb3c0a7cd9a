"""
External collaborator exports.

Interfaces plus the default httpx-backed implementations.
"""

from .articles import HttpArticleFetcher, html_to_markdown, validate_fetch_url
from .base import (
    ArticleFetcher,
    CollaboratorError,
    FetchBlockedError,
    FetchedArticle,
    FetchFailedError,
    NotificationError,
    Notifier,
    PublishError,
    Publisher,
    PublishResult,
    TransformError,
)
from .github import GitHubPublisher, slugify

__all__ = [
    "ArticleFetcher",
    "Publisher",
    "Notifier",
    "FetchedArticle",
    "PublishResult",
    "CollaboratorError",
    "FetchBlockedError",
    "FetchFailedError",
    "TransformError",
    "PublishError",
    "NotificationError",
    "HttpArticleFetcher",
    "GitHubPublisher",
    "html_to_markdown",
    "validate_fetch_url",
    "slugify",
]
