"""
WeChat Customer-Service Sender Tests

Access token caching and message sending, against httpx.MockTransport.
"""

import json

import httpx
import pytest

from fakes import BrokenKVStore
from services.base import NotificationError
from transport.wechat.sender import (
    TOKEN_KV_KEY,
    AccessTokenCache,
    CachedToken,
    WeChatCustomerServiceSender,
    WeChatTokenError,
)


class Clock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeWeChatApi:
    """Records requests; token endpoints configurable per test."""

    def __init__(self, stable=None, legacy=None, send=None):
        self.requests = []
        self.stable = stable or (200, {"access_token": "STABLE", "expires_in": 7200})
        self.legacy = legacy or (200, {"access_token": "LEGACY", "expires_in": 7200})
        self.send = send or (200, {"errcode": 0, "errmsg": "ok"})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/cgi-bin/stable_token":
            return self._respond(self.stable)
        if request.url.path == "/cgi-bin/token":
            return self._respond(self.legacy)
        if request.url.path == "/cgi-bin/message/custom/send":
            return self._respond(self.send)
        return httpx.Response(404)

    @staticmethod
    def _respond(canned) -> httpx.Response:
        status_code, body = canned
        if body is None:
            return httpx.Response(status_code)
        return httpx.Response(status_code, json=body)

    def paths(self):
        return [r.url.path for r in self.requests]


def _sender(api: FakeWeChatApi, cache: AccessTokenCache = None) -> WeChatCustomerServiceSender:
    transport = httpx.MockTransport(api)
    return WeChatCustomerServiceSender(
        app_id="wx123",
        app_secret="secret",
        token_cache=cache or AccessTokenCache(),
        client_factory=lambda **kw: httpx.AsyncClient(transport=transport, **kw),
    )


class TestAccessTokenCache:
    @pytest.mark.asyncio
    async def test_ttl_capped_with_margin(self, kv):
        clock = Clock()
        cache = AccessTokenCache(kv, clock=clock)

        entry = await cache.store("T", 100_000)
        assert entry.expires_at == clock.now + 7200 - 300

    @pytest.mark.asyncio
    async def test_ttl_floor(self, kv):
        clock = Clock()
        entry = await AccessTokenCache(kv, clock=clock).store("T", 100)
        assert entry.expires_at == clock.now + 60

    @pytest.mark.asyncio
    async def test_memory_tier_first(self, kv):
        cache = AccessTokenCache(kv, clock=Clock())
        await cache.store("T", 7200)
        await kv.put(TOKEN_KV_KEY, "not json")

        assert await cache.lookup() == "T"

    @pytest.mark.asyncio
    async def test_kv_tier_shared_between_instances(self, kv):
        clock = Clock()
        await AccessTokenCache(kv, clock=clock).store("SHARED", 7200)

        other = AccessTokenCache(kv, clock=clock)
        assert other.memory is None
        assert await other.lookup() == "SHARED"
        assert other.memory.access_token == "SHARED"

    @pytest.mark.asyncio
    async def test_skew_makes_token_unusable(self, kv):
        clock = Clock()
        cache = AccessTokenCache(kv, clock=clock)
        await cache.store("T", 7200)

        clock.now += 7200 - 300 - 90
        assert await cache.lookup() is None

    @pytest.mark.asyncio
    async def test_kv_record_format(self, kv):
        clock = Clock()
        await AccessTokenCache(kv, clock=clock).store("T", 7200)

        data = json.loads(await kv.get(TOKEN_KV_KEY))
        assert data["access_token"] == "T"
        assert data["expires_at_ms"] == int((clock.now + 6900) * 1000)
        assert data["updated_at"]

    @pytest.mark.asyncio
    async def test_broken_kv_never_blocks(self):
        cache = AccessTokenCache(BrokenKVStore(), clock=Clock())

        assert await cache.lookup() is None
        await cache.store("T", 7200)
        assert await cache.lookup() == "T"

    def test_malformed_record_ignored(self):
        assert CachedToken.from_json(json.dumps({"access_token": "T"})) is None
        assert CachedToken.from_json(json.dumps({"expires_at_ms": 1})) is None


class TestSender:
    def test_requires_credentials(self):
        with pytest.raises(WeChatTokenError):
            WeChatCustomerServiceSender(app_id="", app_secret="s")

    @pytest.mark.asyncio
    async def test_send_with_stable_token(self):
        api = FakeWeChatApi()

        await _sender(api).send_text("oUser1234567890", "Saved: Post")

        assert api.paths() == ["/cgi-bin/stable_token", "/cgi-bin/message/custom/send"]
        token_body = json.loads(api.requests[0].content)
        assert token_body["grant_type"] == "client_credential"
        assert token_body["appid"] == "wx123"
        send = api.requests[1]
        assert send.url.params["access_token"] == "STABLE"
        assert json.loads(send.content) == {
            "touser": "oUser1234567890",
            "msgtype": "text",
            "text": {"content": "Saved: Post"},
        }

    @pytest.mark.asyncio
    async def test_token_reused_across_sends(self, kv):
        api = FakeWeChatApi()
        sender = _sender(api, AccessTokenCache(kv))

        await sender.send_text("oUser1234567890", "a")
        await sender.send_text("oUser1234567890", "b")

        assert api.paths().count("/cgi-bin/stable_token") == 1

    @pytest.mark.asyncio
    async def test_falls_back_to_legacy_endpoint(self):
        api = FakeWeChatApi(stable=(200, {"errcode": 40013, "errmsg": "invalid appid"}))

        await _sender(api).send_text("oUser1234567890", "x")

        assert api.paths() == ["/cgi-bin/stable_token", "/cgi-bin/token", "/cgi-bin/message/custom/send"]
        assert api.requests[1].url.params["appid"] == "wx123"
        assert api.requests[2].url.params["access_token"] == "LEGACY"

    @pytest.mark.asyncio
    async def test_both_token_endpoints_fail(self):
        api = FakeWeChatApi(
            stable=(500, None),
            legacy=(200, {"errcode": 40243, "errmsg": "AppSecret frozen"}),
        )

        with pytest.raises(WeChatTokenError) as exc_info:
            await _sender(api).send_text("oUser1234567890", "x")
        assert exc_info.value.errcode == 40243
        assert exc_info.value.code == "wechat_token_failed:40243"

    @pytest.mark.asyncio
    async def test_send_errcode_raises(self):
        api = FakeWeChatApi(send=(200, {"errcode": 45015, "errmsg": "response out of time limit"}))

        with pytest.raises(NotificationError):
            await _sender(api).send_text("oUser1234567890", "x")

    @pytest.mark.asyncio
    async def test_transport_error_wrapped(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        transport = httpx.MockTransport(handler)
        sender = WeChatCustomerServiceSender(
            app_id="wx123",
            app_secret="secret",
            client_factory=lambda **kw: httpx.AsyncClient(transport=transport, **kw),
        )

        with pytest.raises(NotificationError):
            await sender.send_text("oUser1234567890", "x")
