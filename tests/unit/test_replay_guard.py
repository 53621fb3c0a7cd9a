"""
Replay Guard Tests

Timestamp window + one-shot nonce, failing closed on store errors.
"""

import pytest

from fakes import BrokenKVStore
from security.replay_guard import ReplayGuard, nonce_key
from storage.memory import InMemoryKVStore

NOW = 1_700_000_000


@pytest.fixture
def guard(kv):
    return ReplayGuard(kv, tolerance_seconds=600, clock=lambda: NOW)


class TestReplayGuard:
    @pytest.mark.asyncio
    async def test_first_use_accepted(self, guard):
        result = await guard.check(str(NOW), "n1")
        assert result.ok is True
        assert result.reason is None

    @pytest.mark.asyncio
    async def test_replay_within_window_rejected(self, guard):
        assert (await guard.check(str(NOW), "n1")).ok
        result = await guard.check(str(NOW), "n1")
        assert result.ok is False
        assert result.reason == "replay_detected"

    @pytest.mark.asyncio
    async def test_same_nonce_new_timestamp_accepted(self, guard):
        assert (await guard.check(str(NOW), "n1")).ok
        assert (await guard.check(str(NOW - 1), "n1")).ok

    @pytest.mark.asyncio
    async def test_timestamp_outside_tolerance_rejected(self, guard, kv):
        result = await guard.check(str(NOW - 601), "fresh-nonce")
        assert result.reason == "timestamp_out_of_range"
        result = await guard.check(str(NOW + 601), "another-nonce")
        assert result.reason == "timestamp_out_of_range"
        # Nothing recorded for rejected requests
        assert kv.storage == {}

    @pytest.mark.asyncio
    async def test_edge_of_tolerance_accepted(self, guard):
        assert (await guard.check(str(NOW - 600), "edge")).ok

    @pytest.mark.asyncio
    async def test_missing_fields(self, guard):
        assert (await guard.check(None, "n")).reason == "missing_timestamp_or_nonce"
        assert (await guard.check(str(NOW), "")).reason == "missing_timestamp_or_nonce"

    @pytest.mark.asyncio
    async def test_non_numeric_timestamp(self, guard):
        assert (await guard.check("yesterday", "n")).reason == "invalid_timestamp"
        assert (await guard.check("nan", "n")).reason == "invalid_timestamp"

    @pytest.mark.asyncio
    async def test_no_store_fails_closed(self):
        guard = ReplayGuard(None, clock=lambda: NOW)
        assert (await guard.check(str(NOW), "n")).reason == "kv_missing"

    @pytest.mark.asyncio
    async def test_broken_store_fails_closed(self):
        guard = ReplayGuard(BrokenKVStore(), clock=lambda: NOW)
        result = await guard.check(str(NOW), "n")
        assert result.ok is False
        assert result.reason == "kv_unavailable"

    @pytest.mark.asyncio
    async def test_nonce_marker_ttl(self):
        kv = InMemoryKVStore(clock=lambda: NOW)
        guard = ReplayGuard(kv, tolerance_seconds=600, clock=lambda: NOW)
        await guard.check(str(NOW), "n1")
        _, expires_at = kv.storage[nonce_key(str(NOW), "n1")]
        assert expires_at == NOW + 600


class TestNonceTtl:
    def test_ttl_is_tolerance_when_larger(self):
        assert ReplayGuard(None, tolerance_seconds=600).nonce_ttl_seconds == 600

    def test_ttl_floor(self):
        assert ReplayGuard(None, tolerance_seconds=10).nonce_ttl_seconds == 60
        assert ReplayGuard(None, tolerance_seconds=10, ttl_floor_seconds=120).nonce_ttl_seconds == 120

    def test_nonce_key_is_stable_and_prefixed(self):
        assert nonce_key("1", "a") == nonce_key("1", "a")
        assert nonce_key("1", "a") != nonce_key("1", "b")
        assert nonce_key("1", "a").startswith("wxnonce:")
