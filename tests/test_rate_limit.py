"""Tests for the rate limiting middleware and client identity resolution."""

import logging
from types import SimpleNamespace
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient
from starlette.authentication import (
    AuthCredentials,
    AuthenticationBackend,
    SimpleUser,
)
from starlette.middleware.authentication import AuthenticationMiddleware

from lms_gateway.app.core.config import Settings
from lms_gateway.app.main import create_app
from lms_gateway.app.middleware.rate_limit import is_control_plane_path, resolve_client_identity
from lms_gateway.app.services.rate_limit import (
    AdmissionController,
    Bandwidth,
    BucketPolicy,
    TrafficClass,
)

RATE_LIMIT_BODY = {
    "error": "TOO_MANY_REQUESTS",
    "message": "Rate limit exceeded. Please try again later.",
}


def make_controller(clock, enabled=True):
    # 5 per minute for every class
    policy = BucketPolicy(bandwidths=(Bandwidth.per_minute(5),))
    return AdmissionController(
        policies={tc: policy for tc in TrafficClass},
        enabled=enabled,
        clock=clock,
    )


def build_app(controller):
    app = create_app(settings=Settings(_env_file=None), controller=controller)

    @app.post("/api/auth/login")
    async def login():
        return {"token": "t"}

    @app.get("/api/lms/courses")
    async def courses():
        return {"courses": []}

    @app.post("/api/lms/upload/material")
    async def upload():
        return {"stored": True}

    @app.get("/ui/home")
    async def ui_home():
        return {"page": "home"}

    return app


class HeaderUserBackend(AuthenticationBackend):
    """Treats X-Test-User as an already verified principal."""

    async def authenticate(self, conn):
        name = conn.headers.get("X-Test-User")
        if not name:
            return None
        return AuthCredentials(["authenticated"]), SimpleUser(name)


class TestRateLimitMiddleware:
    """End-to-end behaviour through a FastAPI app."""

    @pytest.fixture
    def controller(self, clock):
        return make_controller(clock)

    @pytest.fixture
    def client(self, controller):
        return TestClient(build_app(controller))

    def test_sixth_login_gets_429(self, client):
        headers = {"X-Forwarded-For": "1.2.3.4"}
        for expected_remaining in [4, 3, 2, 1, 0]:
            resp = client.post("/api/auth/login", headers=headers)
            assert resp.status_code == 200
            assert resp.headers["X-RateLimit-Remaining"] == str(expected_remaining)

        resp = client.post("/api/auth/login", headers=headers)
        assert resp.status_code == 429
        assert resp.json() == RATE_LIMIT_BODY
        assert resp.headers["Retry-After"] == "12"

    def test_limit_and_remaining_headers_match(self, client):
        resp = client.get("/api/lms/courses")
        assert resp.headers["X-RateLimit-Limit"] == "4"
        assert resp.headers["X-RateLimit-Remaining"] == "4"

    def test_denied_request_does_not_reach_handler(self, controller, clock):
        calls = []
        app = create_app(settings=Settings(_env_file=None), controller=controller)

        @app.get("/api/lms/counted")
        async def counted():
            calls.append(1)
            return {}

        client = TestClient(app)
        for _ in range(7):
            client.get("/api/lms/counted")
        assert len(calls) == 5

    def test_exempt_paths_have_no_headers(self, client):
        for _ in range(10):
            resp = client.get("/ui/home")
            assert resp.status_code == 200
            assert "X-RateLimit-Remaining" not in resp.headers

    def test_clients_have_independent_buckets(self, client):
        for _ in range(5):
            client.post("/api/auth/login", headers={"X-Forwarded-For": "10.0.0.1"})
        assert client.post("/api/auth/login", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 429

        resp = client.post("/api/auth/login", headers={"X-Forwarded-For": "10.0.0.2"})
        assert resp.status_code == 200

    def test_upload_has_its_own_bucket(self, client):
        for _ in range(5):
            client.get("/api/lms/courses")
        assert client.get("/api/lms/courses").status_code == 429
        assert client.post("/api/lms/upload/material").status_code == 200

    def test_recovers_after_refill(self, client, clock):
        for _ in range(5):
            client.get("/api/lms/courses")
        assert client.get("/api/lms/courses").status_code == 429

        clock.advance(120)
        assert client.get("/api/lms/courses").status_code == 200

    def test_disabled_limiter_allows_everything(self, clock):
        client = TestClient(build_app(make_controller(clock, enabled=False)))
        for _ in range(50):
            resp = client.post("/api/auth/login")
            assert resp.status_code == 200
            assert "X-RateLimit-Limit" not in resp.headers

    def test_429_carries_request_id(self, client):
        for _ in range(5):
            client.get("/api/lms/courses")
        resp = client.get("/api/lms/courses", headers={"X-Request-ID": "req-42"})
        assert resp.status_code == 429
        assert resp.headers["X-Request-ID"] == "req-42"

    def test_deny_is_logged(self, client, caplog, monkeypatch):
        # The package logger does not propagate once logging is configured
        monkeypatch.setattr(logging.getLogger("lms_gateway"), "propagate", True)
        for _ in range(5):
            client.get("/api/lms/courses", headers={"X-Real-IP": "192.0.2.7"})
        with caplog.at_level("WARNING", logger="lms_gateway.app.middleware.rate_limit"):
            client.get("/api/lms/courses", headers={"X-Real-IP": "192.0.2.7"})
        assert "Rate limit exceeded for client: ip:192.0.2.7 on path: /api/lms/courses" in caplog.text

    def test_authenticated_user_keyed_by_principal(self, controller):
        app = build_app(controller)
        app.add_middleware(AuthenticationMiddleware, backend=HeaderUserBackend())
        client = TestClient(app)

        # Same IP, different users
        for _ in range(5):
            client.get("/api/lms/courses", headers={"X-Test-User": "alice"})
        assert client.get("/api/lms/courses", headers={"X-Test-User": "alice"}).status_code == 429
        assert client.get("/api/lms/courses", headers={"X-Test-User": "bob"}).status_code == 200

        assert "api:user:alice" in controller.registry
        assert "api:user:bob" in controller.registry


class TestResolveClientIdentity:
    """Identity resolution order."""

    def make_request(self, headers=None, host="127.0.0.1", principal=None, user=None):
        request = Mock()
        request.headers = headers or {}
        request.client = SimpleNamespace(host=host) if host else None
        request.state = SimpleNamespace(principal=principal) if principal else SimpleNamespace()
        request.scope = {"user": user} if user is not None else {}
        return request

    def test_principal_wins(self):
        request = self.make_request(headers={"X-Forwarded-For": "10.0.0.1"}, principal="instructor@lms.io")
        assert resolve_client_identity(request) == "user:instructor@lms.io"

    def test_scope_user(self):
        request = self.make_request(user=SimpleUser("student7"))
        assert resolve_client_identity(request) == "user:student7"

    def test_scope_user_identity_preferred_over_display_name(self):
        user = SimpleNamespace(is_authenticated=True, identity="u-1017", display_name="Alice")
        request = self.make_request(user=user)
        assert resolve_client_identity(request) == "user:u-1017"

    def test_unauthenticated_scope_user_ignored(self):
        request = self.make_request(user=SimpleNamespace(is_authenticated=False, display_name=""))
        assert resolve_client_identity(request) == "ip:127.0.0.1"

    def test_forwarded_for_first_hop(self):
        request = self.make_request(headers={"X-Forwarded-For": " 10.0.0.1 , 192.168.1.1"})
        assert resolve_client_identity(request) == "ip:10.0.0.1"

    def test_real_ip_fallback(self):
        request = self.make_request(headers={"X-Real-IP": "172.16.0.9"})
        assert resolve_client_identity(request) == "ip:172.16.0.9"

    def test_forwarded_for_preferred_over_real_ip(self):
        request = self.make_request(headers={"X-Forwarded-For": "10.0.0.1", "X-Real-IP": "172.16.0.9"})
        assert resolve_client_identity(request) == "ip:10.0.0.1"

    def test_empty_forwarded_for_falls_through(self):
        request = self.make_request(headers={"X-Forwarded-For": " , 10.0.0.1", "X-Real-IP": "172.16.0.9"})
        assert resolve_client_identity(request) == "ip:172.16.0.9"

    def test_peer_address(self):
        request = self.make_request(host="198.51.100.3")
        assert resolve_client_identity(request) == "ip:198.51.100.3"

    def test_no_client(self):
        request = self.make_request(host=None)
        assert resolve_client_identity(request) == "ip:unknown"


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("/admin", True),
        ("/admin/rate-limits/upload:ip:1.2.3.4", True),
        ("/metrics", True),
        ("/stats", True),
        ("/health", True),
        ("/healthz", False),
        ("/api/admin/users", False),
        ("/api/lms/upload/file", False),
    ],
)
def test_control_plane_paths(path, expected):
    assert is_control_plane_path(path) is expected
