"""
GitHub publisher.

Default Publisher: commits the converted article as a Markdown file via
the repository contents API.

- File name: slugified title (``article-<ms>`` when the slug is empty)
- Body: YAML front-matter (title, date, source) + Markdown
- Existing file at the same path is updated (its SHA is looked up first)
- Only transport-level errors are retried; HTTP 4xx/5xx answers are not
"""

import base64
import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import httpx

from jobs.retry import is_transport_error, with_retry
from services.base import PublishError, PublishResult, Publisher

logger = logging.getLogger(__name__)

USER_AGENT = "ruminer-wechat-service"
DEFAULT_API_URL = "https://api.github.com"


def slugify(text: str) -> str:
    base = (text or "").lower()
    base = re.sub(r"['\"`]", "", base)
    base = re.sub(r"[^a-z0-9]+", "-", base)
    return re.sub(r"-+", "-", base).strip("-")


def build_frontmatter(title: str, source_url: str, now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now(timezone.utc)).isoformat()
    safe_title = str(title).replace('"', '\\"')
    return f'---\ntitle: "{safe_title}"\ndate: {stamp}\nsource: {source_url}\n---\n\n'


class GitHubPublisher(Publisher):
    def __init__(
        self,
        default_branch: str = "main",
        api_url: str = DEFAULT_API_URL,
        timeout_seconds: float = 15.0,
        client_factory: Optional[Callable[..., httpx.AsyncClient]] = None,
    ):
        self.default_branch = default_branch
        self.api_url = api_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client_factory = client_factory or httpx.AsyncClient

    def _headers(self, token: str) -> Dict[str, str]:
        return {
            "accept": "application/vnd.github+json",
            "authorization": f"Bearer {token}",
            "user-agent": USER_AGENT,
        }

    async def _request(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        base_delay_ms: int = 300,
        **kwargs: Any,
    ) -> httpx.Response:
        return await with_retry(
            lambda: client.request(method, url, **kwargs),
            retries=2,
            base_delay_ms=base_delay_ms,
            should_retry=is_transport_error,
        )

    async def verify_access(self, credential: str, destination: str) -> None:
        async with self._client_factory(timeout=self.timeout_seconds) as client:
            response = await self._request(
                client, "GET", f"{self.api_url}/repos/{destination}", headers=self._headers(credential)
            )
        if not response.is_success:
            raise PublishError("github repo access failed", response.status_code)

    async def _get_content_sha(self, client: httpx.AsyncClient, token: str, repo: str, path: str) -> Optional[str]:
        response = await self._request(
            client,
            "GET",
            f"{self.api_url}/repos/{repo}/contents/{path}",
            headers=self._headers(token),
            params={"ref": self.default_branch},
        )
        if response.status_code == 404:
            return None
        if not response.is_success:
            raise PublishError("github get content failed", response.status_code)
        return response.json().get("sha")

    async def publish(
        self,
        credential: str,
        destination: str,
        path_prefix: str,
        title: str,
        source_url: str,
        content: str,
    ) -> PublishResult:
        safe_title = title or "Untitled"
        slug = slugify(safe_title) or f"article-{int(time.time() * 1000)}"
        path = f"{path_prefix}{slug}.md"
        body = build_frontmatter(safe_title, source_url) + content.strip() + "\n"

        payload: Dict[str, Any] = {
            "message": f"Save article: {safe_title}",
            "content": base64.b64encode(body.encode("utf-8")).decode("ascii"),
            "branch": self.default_branch,
        }

        async with self._client_factory(timeout=self.timeout_seconds) as client:
            sha = await self._get_content_sha(client, credential, destination, path)
            if sha:
                payload["sha"] = sha
            response = await self._request(
                client,
                "PUT",
                f"{self.api_url}/repos/{destination}/contents/{path}",
                base_delay_ms=400,
                headers={**self._headers(credential), "content-type": "application/json"},
                json=payload,
            )

        if not response.is_success:
            raise PublishError("github write failed", response.status_code)

        data = response.json() or {}
        location = (data.get("content") or {}).get("html_url") or (
            f"https://github.com/{destination}/blob/{self.default_branch}/{path}"
        )
        logger.info("GitHub write done", extra={"repo": destination, "path": path})
        return PublishResult(title=safe_title, path=path, location=location)
