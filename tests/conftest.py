# Shared fixtures for the authgate test suite.
# Created: 2026-02-20

import pytest
from fastapi.testclient import TestClient

from authgate.api.oauth2.events import RecordingEventSink
from authgate.api.oauth2.provider import OAuthProvider, reset_oauth_provider
from authgate.api.oauth2.users import issue_session_token
from authgate.config import Settings, reset_settings
from authgate.security.audit import reset_audit_logger
from authgate.security.rate_limiter import reset_all

TEST_JWT_SECRET = "test-signing-key-0123456789abcdef0123456789abcdef"
TEST_ISSUER = "https://auth.example.test"


class RecordingNotifier:
    """Notification channel that remembers what it was asked to send."""

    def __init__(self):
        self.prompts = []
        self.callbacks = []

    def send_user_prompt(self, request, client):
        self.prompts.append((request.auth_req_id, client.id))

    def send_client_callback(self, request, client):
        self.callbacks.append((request.auth_req_id, request.status.value))


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path):
    """Keep singletons, rate-limit buckets and the audit file per-test."""
    monkeypatch.setenv("AUTHGATE_JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setenv("AUTHGATE_AUDIT_LOG_PATH", str(tmp_path / "audit.jsonl"))
    monkeypatch.setenv("AUTHGATE_ISSUER", TEST_ISSUER)
    reset_settings()
    reset_audit_logger()
    reset_oauth_provider()
    reset_all()
    yield
    reset_settings()
    reset_audit_logger()
    reset_oauth_provider()
    reset_all()


@pytest.fixture
def settings():
    return Settings(_env_file=None, jwt_secret=TEST_JWT_SECRET, issuer=TEST_ISSUER)


@pytest.fixture
def events():
    return RecordingEventSink()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def provider(settings, events, notifier, monkeypatch):
    """A fresh provider installed as the process-wide singleton."""
    import authgate.api.oauth2.provider as mod

    instance = OAuthProvider(settings=settings, events=events, notifier=notifier)
    monkeypatch.setattr(mod, "_provider", instance)
    return instance


@pytest.fixture
def api_app(provider):
    from authgate.api.serve import create_api_app

    return create_api_app()


@pytest.fixture
def client(api_app):
    return TestClient(api_app)


@pytest.fixture
def alice(provider):
    return provider.users.add_user("alice@example.com", name="Alice", user_id="alice")


@pytest.fixture
def alice_headers(provider, alice):
    token = issue_session_token(provider.session_jwt, alice.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(provider):
    """Bearer access token carrying the wildcard scope."""
    admin_client, _ = provider.clients.create_client("admin-console", allowed_scopes=["*"])
    issued = provider.server.issue_tokens(
        client_id=admin_client.id, user_id=None, scopes=["*"], with_refresh=False
    )
    return {"Authorization": f"Bearer {issued.jwt}"}
