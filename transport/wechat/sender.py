"""
WeChat Customer-Service Sender

Sends out-of-band text messages (job results) to a user.
Used only in fire-and-forget mode, after the callback reply has gone out.

Access tokens come from a two-tier cache owned by the sender:

    memory tier  ->  KV tier  ->  remote issue
                                  (stable_token endpoint, then legacy token endpoint)

A token is usable only while it has more than TOKEN_EXPIRY_SKEW_SECONDS left.
Cache reads/writes are best-effort: a broken cache never blocks sending.
"""

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import httpx

from observability import best_effort, mask_openid
from services.base import NotificationError, Notifier
from storage.base import KVStore

logger = logging.getLogger(__name__)

WECHAT_API_URL = "https://api.weixin.qq.com"
TOKEN_KV_KEY = "wechat:access_token"
TOKEN_EXPIRY_SKEW_SECONDS = 90
TOKEN_MAX_TTL_SECONDS = 7200
TOKEN_SAFETY_MARGIN_SECONDS = 300
TOKEN_MIN_TTL_SECONDS = 60


class WeChatTokenError(NotificationError):
    """Access token could not be issued."""

    def __init__(self, message: str, errcode: Optional[int] = None):
        super().__init__(message)
        self.errcode = errcode
        self.code = f"wechat_token_failed:{errcode}" if errcode else "wechat_token_failed"


# ============================================================================
# TOKEN CACHE
# ============================================================================

@dataclass
class CachedToken:
    access_token: str
    expires_at: float  # epoch seconds
    updated_at: str

    def to_json(self) -> str:
        return json.dumps({
            "access_token": self.access_token,
            "expires_at_ms": int(self.expires_at * 1000),
            "updated_at": self.updated_at,
        })

    @classmethod
    def from_json(cls, raw: str) -> Optional["CachedToken"]:
        data = json.loads(raw)
        if not data.get("access_token") or not isinstance(data.get("expires_at_ms"), (int, float)):
            return None
        return cls(
            access_token=data["access_token"],
            expires_at=data["expires_at_ms"] / 1000.0,
            updated_at=data.get("updated_at", ""),
        )


class AccessTokenCache:
    """
    Two-tier access token cache.

    The in-process tier is checked first, then the shared KV tier.
    Instances are owned by the sender; nothing here is module-global.
    """

    def __init__(
        self,
        kv: Optional[KVStore] = None,
        clock: Callable[[], float] = time.time,
        skew_seconds: int = TOKEN_EXPIRY_SKEW_SECONDS,
    ):
        self.kv = kv
        self.memory: Optional[CachedToken] = None
        self._clock = clock
        self.skew_seconds = skew_seconds

    def is_usable(self, token: Optional[CachedToken]) -> bool:
        return token is not None and token.expires_at > self._clock() + self.skew_seconds

    async def lookup(self) -> Optional[str]:
        if self.is_usable(self.memory):
            return self.memory.access_token

        if self.kv is None:
            return None

        async def _read() -> Optional[CachedToken]:
            raw = await self.kv.get(TOKEN_KV_KEY)
            return CachedToken.from_json(raw) if raw else None

        cached = await best_effort(_read, "wechat_token_cache_read", logger)
        if self.is_usable(cached):
            self.memory = cached
            return cached.access_token
        return None

    async def store(self, access_token: str, expires_in: int) -> CachedToken:
        ttl_seconds = max(
            TOKEN_MIN_TTL_SECONDS,
            min(expires_in, TOKEN_MAX_TTL_SECONDS) - TOKEN_SAFETY_MARGIN_SECONDS,
        )
        entry = CachedToken(
            access_token=access_token,
            expires_at=self._clock() + ttl_seconds,
            updated_at=datetime.now(timezone.utc).isoformat(),
        )
        self.memory = entry
        if self.kv is not None:
            await best_effort(
                lambda: self.kv.put(TOKEN_KV_KEY, entry.to_json(), ttl_seconds),
                "wechat_token_cache_write",
                logger,
            )
        return entry


# ============================================================================
# SENDER
# ============================================================================

def _token_error(data: Dict[str, Any], fallback: str) -> WeChatTokenError:
    errcode = data.get("errcode")
    if isinstance(errcode, int) and errcode != 0:
        # e.g. 40243 AppSecret frozen, 61004 IP not whitelisted
        return WeChatTokenError(f"wechat_token_failed:{errcode}:{data.get('errmsg') or 'unknown'}", errcode)
    return WeChatTokenError(fallback)


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class WeChatCustomerServiceSender(Notifier):
    """Customer-service message API client."""

    def __init__(
        self,
        app_id: str,
        app_secret: str,
        token_cache: Optional[AccessTokenCache] = None,
        api_url: str = WECHAT_API_URL,
        timeout_seconds: float = 10.0,
        client_factory: Optional[Callable[..., httpx.AsyncClient]] = None,
    ):
        if not app_id or not app_secret:
            raise WeChatTokenError("wechat_token_missing_config")
        self.app_id = app_id
        self.app_secret = app_secret
        self.token_cache = token_cache or AccessTokenCache()
        self.api_url = api_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client_factory = client_factory or httpx.AsyncClient

    async def _issue_stable(self, client: httpx.AsyncClient) -> Dict[str, Any]:
        response = await client.post(
            f"{self.api_url}/cgi-bin/stable_token",
            json={
                "grant_type": "client_credential",
                "appid": self.app_id,
                "secret": self.app_secret,
                "force_refresh": False,
            },
        )
        return self._check_token_response(response)

    async def _issue_legacy(self, client: httpx.AsyncClient) -> Dict[str, Any]:
        response = await client.get(
            f"{self.api_url}/cgi-bin/token",
            params={"grant_type": "client_credential", "appid": self.app_id, "secret": self.app_secret},
        )
        return self._check_token_response(response)

    @staticmethod
    def _check_token_response(response: httpx.Response) -> Dict[str, Any]:
        data = _json_or_empty(response)
        if not response.is_success:
            raise _token_error(data, f"wechat_token_http_failed:{response.status_code}")
        if not data.get("access_token"):
            raise _token_error(data, f"wechat_token_missing:{data.get('errmsg') or 'unknown'}")
        return data

    async def get_access_token(self, client: httpx.AsyncClient) -> str:
        cached = await self.token_cache.lookup()
        if cached:
            return cached

        try:
            issued = await self._issue_stable(client)
        except (WeChatTokenError, httpx.HTTPError) as e:
            logger.warning(f"Stable token endpoint failed, falling back to legacy: {e}")
            issued = await self._issue_legacy(client)

        entry = await self.token_cache.store(issued["access_token"], int(issued.get("expires_in") or 7200))
        return entry.access_token

    async def send_text(self, recipient: str, text: str) -> None:
        try:
            async with self._client_factory(timeout=self.timeout_seconds) as client:
                access_token = await self.get_access_token(client)
                response = await client.post(
                    f"{self.api_url}/cgi-bin/message/custom/send",
                    params={"access_token": access_token},
                    json={"touser": recipient, "msgtype": "text", "text": {"content": text}},
                )
        except httpx.HTTPError as e:
            raise NotificationError(f"wechat send request failed: {e}") from e

        data = _json_or_empty(response)
        if not response.is_success or data.get("errcode"):
            raise NotificationError(f"wechat_send_failed:{data.get('errcode') or response.status_code}")

        logger.info("Customer-service message sent", extra={"openid": mask_openid(recipient)})
