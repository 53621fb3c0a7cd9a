"""
Application entry point tests: routes, health checks, lifespan wiring.
"""

import os
from unittest.mock import patch

from fastapi.testclient import TestClient

from config import Config
from infra import InfraBootstrap, InfraConfig
from storage.memory import InMemoryKVStore


def _app_with_infra():
    from main import app

    with patch.dict(os.environ, {"KV_BACKEND": "memory", "WECHAT_TOKEN": "tok"}, clear=True):
        config = InfraConfig.from_env()
    app.state.infra = InfraBootstrap(config=config, kv=InMemoryKVStore(), notifier=None, vault=None)
    return app


class TestRoutes:
    def teardown_method(self):
        InfraBootstrap.reset()

    def test_routes_registered(self):
        app = _app_with_infra()
        paths = set(app.openapi()["paths"])

        assert {"/api/callback", "/api/healthz", "/health/live", "/health/ready", "/"} <= paths

    def test_root_and_liveness(self):
        client = TestClient(_app_with_infra())

        assert client.get("/health/live").json() == {"status": "alive"}
        root = client.get("/").json()
        assert root["endpoints"]["wechat_callback"] == "POST /api/callback"

    def test_readiness_reports_missing_token(self):
        client = TestClient(_app_with_infra())

        with patch.object(Config, "WECHAT_TOKEN", ""):
            body = client.get("/health/ready").json()
        assert body == {"status": "not_ready", "reason": "missing: WECHAT_TOKEN"}

        with patch.object(Config, "WECHAT_TOKEN", "tok"):
            assert client.get("/health/ready").json() == {"status": "ready"}

    def test_lifespan_keeps_injected_infra_and_drains(self):
        app = _app_with_infra()
        infra = app.state.infra

        with TestClient(app) as client:
            assert client.get("/api/healthz").status_code == 200
            assert app.state.infra is infra
