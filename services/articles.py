"""
Article fetch-and-convert.

Default ArticleFetcher: downloads a shared link and turns its main
content into Markdown.

Pipeline:
    validate_fetch_url -> GET (timeout retries) -> extract main HTML
    -> markdownify -> cleanup

SSRF guard: http/https only; localhost names, loopback, private,
link-local and unspecified addresses are refused, including on every
redirect hop.
"""

import ipaddress
import logging
import re
import socket
from typing import Callable, List, Optional, Union
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup, Tag
from markdownify import ATX, MarkdownConverter

from jobs.retry import is_timeout, with_retry
from services.base import (
    ArticleFetcher,
    FetchBlockedError,
    FetchedArticle,
    FetchFailedError,
    TransformError,
)

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; RuminerWeChatService/1.0)"
NOISE_TAGS = ("script", "style", "nav", "footer", "aside", "noscript")
DEFAULT_TITLE = "Untitled"

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

# Dotted, decimal, octal and hex IPv4 forms; hostnames never match
_NUMERIC_HOST_RE = re.compile(r"^(0x[0-9a-f]+|[0-9]+)(\.(0x[0-9a-f]+|[0-9]+)){0,3}$")


# ============================================================================
# SSRF GUARD
# ============================================================================

def _parse_ip(host: str) -> Optional[IPAddress]:
    """
    Parse ``host`` as an IP literal, including the legacy IPv4 spellings
    resolvers accept (``2130706433``, ``0x7f000001``, ``127.1``, ``0177.0.0.1``).
    """
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        pass
    if not _NUMERIC_HOST_RE.match(host):
        return None
    try:
        return ipaddress.IPv4Address(socket.inet_aton(host))
    except OSError:
        return None


def _is_blocked_ip(host: str) -> bool:
    ip = _parse_ip(host)
    if ip is None:
        return False
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_unspecified


def validate_fetch_url(raw_url: str) -> str:
    """
    Validate a user-supplied URL before fetching it.

    Returns:
        The URL, unchanged

    Raises:
        FetchBlockedError: invalid_url, invalid_protocol,
            localhost_blocked or private_ip_blocked
    """
    try:
        parsed = urlparse(raw_url or "")
    except ValueError:
        raise FetchBlockedError("invalid_url") from None

    if parsed.scheme not in ("http", "https"):
        raise FetchBlockedError("invalid_protocol" if parsed.scheme else "invalid_url")

    host = (parsed.hostname or "").lower()
    if not host:
        raise FetchBlockedError("invalid_url")
    if host == "localhost" or host.endswith(".localhost"):
        raise FetchBlockedError("localhost_blocked")
    if _is_blocked_ip(host):
        raise FetchBlockedError("private_ip_blocked")
    return raw_url


async def _guard_request(request: httpx.Request) -> None:
    validate_fetch_url(str(request.url))


# ============================================================================
# HTML -> MARKDOWN
# ============================================================================

def extract_main_html(soup: BeautifulSoup) -> Tag:
    """Pick the article body: WeChat #js_content, then <article>, then <body>."""
    for name in NOISE_TAGS:
        for el in soup.find_all(name):
            el.decompose()
    return soup.select_one("#js_content") or soup.find("article") or soup.body or soup


def extract_title(soup: BeautifulSoup) -> str:
    activity = soup.select_one("#activity-name")
    if activity and activity.get_text(strip=True):
        return activity.get_text(strip=True)

    for attrs in ({"property": "og:title"}, {"name": "title"}):
        meta = soup.find("meta", attrs=attrs)
        if meta and (meta.get("content") or "").strip():
            return meta["content"].strip()

    if soup.title and soup.title.get_text(strip=True):
        return soup.title.get_text(strip=True)

    h1 = soup.find("h1")
    if h1 and h1.get_text(strip=True):
        return h1.get_text(strip=True)
    return ""


def _code_language(pre: Tag) -> str:
    for node in (pre, pre.find("code")):
        if node is None:
            continue
        for cls in node.get("class") or []:
            if cls.startswith("language-"):
                return cls[len("language-"):]
    return ""


def _promote_lazy_images(main: Tag) -> None:
    # WeChat lazy-loads images: the real URL sits in data-src
    for img in main.find_all("img"):
        if not img.get("src") and img.get("data-src"):
            img["src"] = img["data-src"]


def render_markdown(main: Tag) -> str:
    _promote_lazy_images(main)
    converter = MarkdownConverter(
        heading_style=ATX,
        bullets="-",
        code_language_callback=_code_language,
    )
    return converter.convert_soup(main)


def cleanup_markdown(markdown: str) -> str:
    text = markdown.replace("\r\n", "\n")
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def html_to_markdown(html: str, title_hint: str = "") -> FetchedArticle:
    """
    Convert a full HTML page to Markdown.

    Raises:
        TransformError: Parsing or conversion failed
    """
    try:
        soup = BeautifulSoup(html, "html.parser")
        extracted_title = extract_title(soup)
        markdown = cleanup_markdown(render_markdown(extract_main_html(soup)))
    except Exception as e:
        raise TransformError(f"html conversion failed: {e}") from e

    title = (title_hint or extracted_title or DEFAULT_TITLE).strip()
    return FetchedArticle(markdown=markdown, resolved_title=title)


# ============================================================================
# FETCHER
# ============================================================================

class HttpArticleFetcher(ArticleFetcher):
    """httpx-based fetcher with timeout retries and one extra try on 5xx."""

    def __init__(
        self,
        timeout_seconds: float = 8.0,
        retries: int = 2,
        base_delay_ms: int = 300,
        client_factory: Optional[Callable[..., httpx.AsyncClient]] = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.retries = retries
        self.base_delay_ms = base_delay_ms
        self._client_factory = client_factory or httpx.AsyncClient

    def _client(self) -> httpx.AsyncClient:
        hooks: List = [_guard_request]
        return self._client_factory(
            timeout=self.timeout_seconds,
            follow_redirects=True,
            headers={
                "user-agent": USER_AGENT,
                "accept": "text/html,application/xhtml+xml",
            },
            event_hooks={"request": hooks},
        )

    async def fetch(self, url: str, title_hint: str = "") -> FetchedArticle:
        target = validate_fetch_url(url)

        async with self._client() as client:
            response = await with_retry(
                lambda: client.get(target),
                retries=self.retries,
                base_delay_ms=self.base_delay_ms,
                should_retry=is_timeout,
            )
            if not response.is_success and 500 <= response.status_code <= 599:
                logger.info(f"Upstream {response.status_code}, retrying once")
                response = await client.get(target)

        if not response.is_success:
            raise FetchFailedError(response.status_code)

        article = html_to_markdown(response.text, title_hint)
        logger.info(
            "Article converted",
            extra={"md_chars": len(article.markdown)},
        )
        return article
