# Tests for outbound CIBA notifications.
# Created: 2026-02-20

from datetime import timedelta

import httpx
import pytest

from authgate.api.oauth2 import notifications
from authgate.api.oauth2.models import CibaRequest, CibaStatus, Client, DeliveryMode, utcnow
from authgate.api.oauth2.notifications import (
    LoggingNotificationChannel,
    WebhookNotificationChannel,
    callback_payload,
)


def _request(mode=DeliveryMode.PING, token="cnt-1", status=CibaStatus.COMPLETE):
    return CibaRequest(
        id="1",
        auth_req_id="ciba_abc",
        client_id="bank",
        user_id="alice",
        scopes=["openid"],
        expires_at=utcnow() + timedelta(minutes=5),
        delivery_mode=mode,
        client_notification_token=token,
        status=status,
        binding_message="Pay 10 EUR",
    )


def _client(endpoint="https://bank/cb"):
    metadata = {"backchannel_token_delivery_mode": "ping"}
    if endpoint:
        metadata["backchannel_client_notification_endpoint"] = endpoint
    return Client(id="bank", name="Bank", metadata=metadata)


@pytest.fixture
def posts(monkeypatch):
    sent = []

    def fake_post(url, json=None, headers=None, timeout=None):
        sent.append((url, json, headers))
        return httpx.Response(200, request=httpx.Request("POST", url))

    monkeypatch.setattr(notifications.httpx, "post", fake_post)
    return sent


def _flush(channel):
    channel._executor.shutdown(wait=True)


class TestWebhookChannel:
    def test_ping_callback(self, posts):
        channel = WebhookNotificationChannel()
        channel.send_client_callback(_request(), _client())
        _flush(channel)
        assert posts == [
            (
                "https://bank/cb",
                {"auth_req_id": "ciba_abc", "status": "Complete"},
                {"Authorization": "Bearer cnt-1"},
            )
        ]

    def test_poll_clients_get_no_callback(self, posts):
        channel = WebhookNotificationChannel()
        channel.send_client_callback(_request(mode=DeliveryMode.POLL), _client())
        _flush(channel)
        assert posts == []

    def test_missing_endpoint_is_skipped(self, posts):
        channel = WebhookNotificationChannel()
        channel.send_client_callback(_request(), _client(endpoint=None))
        _flush(channel)
        assert posts == []

    def test_user_prompt(self, posts):
        channel = WebhookNotificationChannel(user_prompt_url="https://push/prompt")
        channel.send_user_prompt(_request(), _client())
        _flush(channel)
        ((url, payload, _),) = posts
        assert url == "https://push/prompt"
        assert payload["user_id"] == "alice"
        assert payload["binding_message"] == "Pay 10 EUR"

    def test_user_prompt_without_endpoint(self, posts):
        channel = WebhookNotificationChannel()
        channel.send_user_prompt(_request(), _client())
        _flush(channel)
        assert posts == []

    def test_delivery_failure_is_logged(self, monkeypatch, caplog):
        def failing_post(url, **kwargs):
            raise httpx.ConnectError("refused")

        monkeypatch.setattr(notifications.httpx, "post", failing_post)
        channel = WebhookNotificationChannel()
        channel.send_client_callback(_request(), _client())
        _flush(channel)
        assert "Notification to https://bank/cb failed" in caplog.text


class TestLoggingChannel:
    def test_logs_prompt(self, caplog):
        caplog.set_level("INFO", logger="authgate.api.oauth2.notifications")
        LoggingNotificationChannel().send_user_prompt(_request(), _client())
        assert "alice" in caplog.text

    def test_payload(self):
        assert callback_payload(_request(status=CibaStatus.DENIED)) == {
            "auth_req_id": "ciba_abc",
            "status": "Denied",
        }
