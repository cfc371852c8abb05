# Tests for endpoint rate limiting and the audit trail.
# Created: 2026-02-20

import json

import pytest

from authgate.api.oauth2.events import AuditEventSink, emit_event
from authgate.security import rate_limiter
from authgate.security.audit import AuditLogger, AuditSeverity, get_audit_logger
from authgate.security.rate_limiter import RateLimiter, RateLimitInfo


class TestRateLimiter:
    """Tests for the token-bucket RateLimiter."""

    def test_check_returns_info(self):
        limiter = RateLimiter(rate=10.0, capacity=5)
        info = limiter.check("test-client")
        assert isinstance(info, RateLimitInfo)
        assert info.allowed is True
        assert info.limit == 5
        assert info.remaining >= 0

    def test_check_denied(self):
        limiter = RateLimiter(rate=0.1, capacity=2)
        # Exhaust bucket
        limiter.check("client")
        limiter.check("client")
        info = limiter.check("client")
        assert info.allowed is False
        assert info.remaining == 0

    def test_keys_are_independent(self):
        limiter = RateLimiter(rate=0.1, capacity=1)
        assert limiter.allow("a") is True
        assert limiter.allow("a") is False
        assert limiter.allow("b") is True

    def test_headers_on_denied(self):
        limiter = RateLimiter(rate=0.1, capacity=1)
        limiter.check("client")
        info = limiter.check("client")
        headers = info.headers()
        assert info.allowed is False
        assert "Retry-After" in headers
        assert int(headers["Retry-After"]) > 0

    def test_cleanup_and_reset(self):
        limiter = RateLimiter(rate=1.0, capacity=1)
        limiter.check("client")
        assert limiter.cleanup(max_age=3600) == 0
        assert limiter.cleanup(max_age=-1) == 1
        limiter.check("client")
        limiter.reset()
        assert limiter.allow("client") is True

    def test_preconfigured_tiers(self):
        assert rate_limiter.token_limiter.capacity == 30
        assert rate_limiter.auth_limiter.capacity == 10
        assert rate_limiter.backchannel_limiter.capacity == 10


class TestRateLimitInfo:
    def test_headers_format(self):
        info = RateLimitInfo(allowed=True, limit=60, remaining=59, reset_after=1.5)
        h = info.headers()
        assert h["X-RateLimit-Limit"] == "60"
        assert h["X-RateLimit-Remaining"] == "59"
        assert h["X-RateLimit-Reset"] == "2"  # ceil(1.5)
        assert "Retry-After" not in h

    def test_headers_denied_format(self):
        info = RateLimitInfo(allowed=False, limit=60, remaining=0, reset_after=3.7)
        assert info.headers()["Retry-After"] == "4"  # ceil(3.7)


class TestEndpointLimits:
    @pytest.fixture
    def tight(self, monkeypatch):
        limiter = RateLimiter(rate=0.01, capacity=1)
        monkeypatch.setattr(rate_limiter, "token_limiter", limiter)
        monkeypatch.setattr(rate_limiter, "auth_limiter", limiter)
        monkeypatch.setattr(rate_limiter, "backchannel_limiter", limiter)
        return limiter

    @pytest.mark.parametrize(
        "path", ["/oauth/token", "/oauth/introspect", "/oauth/revoke", "/oauth/ciba/auth"]
    )
    def test_post_endpoints_answer_429(self, client, tight, path):
        client.post(path, data={"token": "x"})
        resp = client.post(path, data={"token": "x"})
        assert resp.status_code == 429
        assert resp.json()["error"] == "slow_down"
        assert int(resp.headers["retry-after"]) >= 1

    def test_authorize_is_limited(self, client, tight):
        params = {"client_id": "c1", "redirect_uri": "https://app/cb"}
        client.get("/oauth/authorize", params=params, follow_redirects=False)
        resp = client.get("/oauth/authorize", params=params, follow_redirects=False)
        assert resp.status_code == 429

    def test_429_carries_limit_headers(self, client, tight):
        client.post("/oauth/token", data={"grant_type": "client_credentials"})
        resp = client.post("/oauth/token", data={"grant_type": "client_credentials"})
        assert resp.status_code == 429
        assert resp.headers["x-ratelimit-limit"] == "1"
        assert resp.headers["x-ratelimit-remaining"] == "0"
        assert resp.headers["retry-after"] == resp.headers["x-ratelimit-reset"]

    def test_device_verification_page_is_limited(self, client, tight):
        client.get("/oauth/device", params={"user_code": "WDJB-MJHT"})
        resp = client.get("/oauth/device", params={"user_code": "WDJB-MJHT"})
        assert resp.status_code == 429

    def test_device_approval_is_limited(self, client, tight, alice_headers):
        body = {"user_code": "WDJB-MJHT", "approve": True}
        client.post("/oauth/device/verify", json=body, headers=alice_headers)
        resp = client.post("/oauth/device/verify", json=body, headers=alice_headers)
        assert resp.status_code == 429

    def test_ciba_completion_is_limited(self, client, tight, alice_headers):
        client.post("/oauth/ciba/complete/req-1", json={"approved": True}, headers=alice_headers)
        resp = client.post(
            "/oauth/ciba/complete/req-1", json={"approved": True}, headers=alice_headers
        )
        assert resp.status_code == 429

    def test_ciba_status_is_limited(self, client, tight):
        params = {"client_id": "c1", "client_secret": "s"}
        client.get("/oauth/ciba/status/req-1", params=params)
        resp = client.get("/oauth/ciba/status/req-1", params=params)
        assert resp.status_code == 429

    def test_device_authorization_uses_backchannel_tier(self, client, monkeypatch):
        monkeypatch.setattr(rate_limiter, "backchannel_limiter", RateLimiter(0.01, 1))
        monkeypatch.setattr(rate_limiter, "token_limiter", RateLimiter(100.0, 100))
        client.post("/oauth/device/authorize", data={"client_id": "c1"})
        resp = client.post("/oauth/device/authorize", data={"client_id": "c1"})
        assert resp.status_code == 429

    def test_user_code_guessing_is_cut_off(self, client, monkeypatch, alice_headers):
        monkeypatch.setattr(rate_limiter, "auth_limiter", RateLimiter(0.01, 3))
        codes = [f"AAAA-BBB{c}" for c in "CDFGH"]
        statuses = [
            client.post(
                "/oauth/device/verify",
                json={"user_code": code, "approve": True},
                headers=alice_headers,
            ).status_code
            for code in codes
        ]
        assert statuses[:3] == [404, 404, 404]
        assert statuses[3:] == [429, 429]


class TestAuditLog:
    def _entries(self, path):
        return [json.loads(line) for line in path.read_text().splitlines()]

    def test_log_api_event(self, tmp_path):
        audit = AuditLogger(log_path=tmp_path / "audit.jsonl")
        event_id = audit.log_api_event(
            action="client_created",
            target="client:abc123",
            actor="admin",
            name="Web",
        )
        assert event_id
        (entry,) = self._entries(tmp_path / "audit.jsonl")
        assert entry["id"] == event_id
        assert entry["action"] == "client_created"
        assert entry["target"] == "client:abc123"
        assert entry["actor"] == "admin"
        assert entry["status"] == "success"
        assert entry["context"] == {"name": "Web"}

    def test_callbacks_see_every_write(self, tmp_path):
        audit = AuditLogger(log_path=tmp_path / "audit.jsonl")
        seen = []
        audit.on_log(seen.append)
        audit.log_api_event(action="token_issued", target="client:c1")
        assert [e["action"] for e in seen] == ["token_issued"]

    def test_failing_callback_does_not_block_write(self, tmp_path):
        audit = AuditLogger(log_path=tmp_path / "audit.jsonl")

        def broken(_):
            raise RuntimeError("boom")

        audit.on_log(broken)
        audit.log_api_event(action="token_issued", target="client:c1")
        assert len(self._entries(tmp_path / "audit.jsonl")) == 1

    def test_singleton_uses_configured_path(self, tmp_path):
        audit = get_audit_logger()
        assert audit.log_path == tmp_path / "audit.jsonl"
        assert get_audit_logger() is audit

    def test_event_sink_severity(self, tmp_path):
        audit = AuditLogger(log_path=tmp_path / "audit.jsonl")
        sink = AuditEventSink(audit)
        sink.emit("client_revoked", "client:c1", actor="admin")
        sink.emit("token_issued", "client:c1", token_id="t1")
        revoked, issued = self._entries(tmp_path / "audit.jsonl")
        assert revoked["severity"] == AuditSeverity.CRITICAL.value
        assert revoked["actor"] == "admin"
        assert issued["severity"] == AuditSeverity.INFO.value
        assert issued["actor"] == "system"
        assert issued["context"] == {"token_id": "t1"}

    def test_emit_event_survives_broken_sink(self):
        class Broken:
            def emit(self, action, target, **context):
                raise OSError("disk full")

        emit_event(Broken(), "token_issued", "client:c1")
        emit_event(None, "token_issued", "client:c1")

    def test_provider_writes_audit_trail(self, tmp_path):
        from authgate.api.oauth2.provider import OAuthProvider

        provider = OAuthProvider()
        provider.clients.create_client("Web", client_id="web")
        entries = self._entries(tmp_path / "audit.jsonl")
        assert any(
            e["action"] == "client_created" and e["target"] == "client:web" for e in entries
        )
