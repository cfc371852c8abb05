# Outbound CIBA notifications.
# Created: 2026-02-20
#
# Two messages leave the server during a CIBA flow: the prompt asking the
# user to approve, and the callback telling a ping/push client the request
# is done. Both are fire-and-forget: delivery runs on a worker thread and a
# failure is logged, never propagated to the request that triggered it.

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Protocol

import httpx

from authgate.api.oauth2.models import CibaRequest, Client, DeliveryMode

logger = logging.getLogger(__name__)


class NotificationChannel(Protocol):
    def send_user_prompt(self, request: CibaRequest, client: Client) -> None: ...

    def send_client_callback(self, request: CibaRequest, client: Client) -> None: ...


class LoggingNotificationChannel:
    """Only logs; for development and for deployments that poll exclusively."""

    def send_user_prompt(self, request: CibaRequest, client: Client) -> None:
        logger.info(
            "CIBA approval needed from user %s for %s (binding message: %r)",
            request.user_id,
            client.name,
            request.binding_message,
        )

    def send_client_callback(self, request: CibaRequest, client: Client) -> None:
        logger.info("CIBA request for client %s finished: %s", client.id, request.status.value)


def callback_payload(request: CibaRequest) -> dict[str, Any]:
    """Body POSTed to a ping or push client's notification endpoint."""
    return {"auth_req_id": request.auth_req_id, "status": request.status.value}


class WebhookNotificationChannel:
    """Delivers prompts and callbacks over HTTP with httpx."""

    def __init__(
        self,
        timeout: float = 5.0,
        user_prompt_url: str | None = None,
        max_workers: int = 4,
    ):
        self.timeout = timeout
        self.user_prompt_url = user_prompt_url or None
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ciba")

    def _post(self, url: str, payload: dict[str, Any], headers: dict[str, str]) -> None:
        try:
            response = httpx.post(url, json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Notification to %s failed: %s", url, exc)

    def _submit(self, url: str, payload: dict[str, Any], headers: dict[str, str]) -> None:
        self._executor.submit(self._post, url, payload, headers)

    def send_user_prompt(self, request: CibaRequest, client: Client) -> None:
        if not self.user_prompt_url:
            logger.debug("No user prompt endpoint; %s waits for approval", request.auth_req_id)
            return
        self._submit(
            self.user_prompt_url,
            {
                "auth_req_id": request.auth_req_id,
                "user_id": request.user_id,
                "client_id": client.id,
                "client_name": client.name,
                "scope": " ".join(request.scopes),
                "binding_message": request.binding_message,
                "expires_at": request.expires_at.isoformat(),
            },
            {},
        )

    def send_client_callback(self, request: CibaRequest, client: Client) -> None:
        if request.delivery_mode == DeliveryMode.POLL:
            return
        endpoint = client.notification_endpoint
        if not endpoint:
            logger.warning("Client %s has no notification endpoint", client.id)
            return
        headers = {}
        if request.client_notification_token:
            # CIBA §10.2: the client authenticates the callback with its own token
            headers["Authorization"] = f"Bearer {request.client_notification_token}"
        self._submit(endpoint, callback_payload(request), headers)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)


def dispatch_safely(send, request: CibaRequest, client: Client) -> None:
    """Call one channel method, swallowing and logging any failure."""
    try:
        send(request, client)
    except Exception:
        logger.warning("Notification dispatch failed for %s", request.auth_req_id, exc_info=True)
