# Device Authorization Grant (RFC 8628).
# Created: 2026-02-20
#
# pending -> authorized -> consumed, with denied/expired as the other
# terminal states. Every status change is a conditional write in storage, so
# concurrent pollers of one authorized device get exactly one token response.

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from authgate.api.oauth2.client_auth import ClientCredentials
from authgate.api.oauth2.credentials import (
    generate_id,
    generate_token,
    generate_user_code,
    normalize_user_code,
)
from authgate.api.oauth2.errors import (
    AccessDenied,
    AuthorizationPending,
    ExpiredToken,
    InvalidGrant,
    NotFoundError,
    ServerError,
    SlowDown,
    ValidationError,
)
from authgate.api.oauth2.events import EventSink, emit_event
from authgate.api.oauth2.models import DeviceAuthorization, DeviceStatus
from authgate.api.oauth2.scopes import format_scope
from authgate.api.oauth2.server import AuthorizationServer
from authgate.api.oauth2.users import UserDirectory

logger = logging.getLogger(__name__)

DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"

DEVICE_CODE_TTL = timedelta(minutes=30)
POLL_INTERVAL = 5
SLOW_DOWN_INCREMENT = 5  # RFC 8628 §3.5
_USER_CODE_ATTEMPTS = 10

_LIVE = (DeviceStatus.PENDING, DeviceStatus.AUTHORIZED)


class DeviceAuthorizationEngine:
    """Issues device/user code pairs and redeems them once the user approves."""

    def __init__(
        self,
        server: AuthorizationServer,
        verification_uri: str = "/oauth/device",
        expires_in: timedelta = DEVICE_CODE_TTL,
        interval: int = POLL_INTERVAL,
        users: UserDirectory | None = None,
        events: EventSink | None = None,
    ):
        self.server = server
        self.storage = server.storage
        self.verification_uri = verification_uri
        self.expires_in = expires_in
        self.interval = interval
        self.users = users
        self.events = events

    def _unique_user_code(self) -> str:
        for _ in range(_USER_CODE_ATTEMPTS):
            code = generate_user_code()
            if not self.storage.user_code_in_use(code):
                return code
        raise ServerError("Could not allocate a unique user code")

    def create_device_authorization(
        self, creds: ClientCredentials, scope: str | None = None
    ) -> dict[str, Any]:
        """Start a device flow for the calling client (RFC 8628 §3.2)."""
        if not creds.client_id and not creds.authorization:
            raise ValidationError("client_id is required")
        result = self.server.authenticator.require(creds)
        scopes = self.server.scopes.validate_for_client(scope, result.client)

        now = self.server.clock()
        user_code = self._unique_user_code()
        device = DeviceAuthorization(
            id=generate_id(),
            device_code=generate_token(40),
            user_code=user_code,
            client_id=result.client_id,
            scopes=scopes,
            verification_uri=self.verification_uri,
            verification_uri_complete=f"{self.verification_uri}?user_code={user_code}",
            expires_at=now + self.expires_in,
            interval=self.interval,
            created_at=now,
        )
        self.storage.save_device(device)
        emit_event(
            self.events,
            "device_authorization_created",
            f"client:{device.client_id}",
            scope=format_scope(scopes),
        )
        return {
            "device_code": device.device_code,
            "user_code": device.user_code,
            "verification_uri": device.verification_uri,
            "verification_uri_complete": device.verification_uri_complete,
            "expires_in": int(self.expires_in.total_seconds()),
            "interval": device.interval,
        }

    def _expire(self, device: DeviceAuthorization) -> None:
        self.storage.revoke_device_code_if_active(device.device_code, DeviceStatus.EXPIRED)

    def _find_by_user_code(self, user_code: str) -> DeviceAuthorization:
        device = self.storage.get_device_by_user_code(normalize_user_code(user_code or ""))
        if device is None:
            raise NotFoundError("Invalid or expired user code")
        return device

    def get_verification(self, user_code: str) -> dict[str, Any]:
        """What the verification page shows the user before approval."""
        device = self._find_by_user_code(user_code)
        now = self.server.clock()
        if device.is_expired(now) or device.status != DeviceStatus.PENDING:
            raise NotFoundError("Invalid or expired user code")
        client = self.storage.get_client(device.client_id)
        return {
            "user_code": device.user_code,
            "client_id": device.client_id,
            "client_name": client.name if client else None,
            "scopes": list(device.scopes),
            "expires_in": max(0, int((device.expires_at - now).total_seconds())),
        }

    def authorize(self, user_code: str, user_id: str, approve: bool = True) -> DeviceAuthorization:
        """The signed-in user approves (or denies) the device behind *user_code*."""
        device = self._find_by_user_code(user_code)
        if device.is_expired(self.server.clock()):
            self._expire(device)
            raise ExpiredToken("The user code has expired")
        if device.status != DeviceStatus.PENDING:
            raise ValidationError("This device has already been processed")

        client = self.storage.get_client(device.client_id)
        if client is None or client.revoked:
            raise NotFoundError("Invalid or expired user code")
        if self.users is not None and not self.users.can_access_client(user_id, client):
            raise AccessDenied("User may not authorize this client")

        updated = self.storage.authorize_device_if_pending(device.device_code, user_id, approve)
        if updated is None:
            raise ValidationError("This device has already been processed")
        emit_event(
            self.events,
            "device_authorized" if approve else "device_denied",
            f"client:{device.client_id}",
            actor=user_id,
        )
        return updated

    def poll_device_token(
        self, creds: ClientCredentials, device_code: str | None
    ) -> dict[str, Any]:
        """Device-side polling (RFC 8628 §3.4/3.5)."""
        if not device_code:
            raise ValidationError("device_code is required")
        result = self.server.authenticator.require(creds)
        device = self.storage.get_device_by_device_code(device_code)
        if device is None or device.client_id != result.client_id:
            raise InvalidGrant("Invalid device code")

        now = self.server.clock()
        if device.status in _LIVE and device.is_expired(now):
            self._expire(device)
            raise ExpiredToken("The device code has expired")

        if device.status == DeviceStatus.EXPIRED:
            raise ExpiredToken("The device code has expired")
        if device.status == DeviceStatus.DENIED:
            raise AccessDenied("The user denied the request")
        if device.status == DeviceStatus.CONSUMED:
            raise InvalidGrant("The device code has already been used")

        if device.status == DeviceStatus.PENDING:
            previous = self.storage.record_device_poll(device.device_code, now)
            if previous is not None and (now - previous).total_seconds() < device.interval:
                interval = self.storage.slow_device_polling(
                    device.device_code, SLOW_DOWN_INCREMENT
                )
                raise SlowDown(f"Poll at most every {interval} seconds")
            raise AuthorizationPending()

        # Authorized: the conditional transition picks the single winner
        consumed = self.storage.revoke_device_code_if_active(device.device_code)
        if consumed is None:
            raise InvalidGrant("The device code has already been used")

        issued = self.server.issue_tokens(
            client_id=consumed.client_id,
            user_id=consumed.user_id,
            scopes=consumed.scopes,
            cnf_thumbprint=result.mtls_thumbprint,
            event="device_token_granted",
        )
        return issued.as_response(now)
