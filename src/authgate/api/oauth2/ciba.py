# Client-Initiated Backchannel Authentication (OpenID CIBA).
# Created: 2026-02-20
#
# A client asks the server to authenticate a user out of band. The request
# stays Pending until the user approves (Complete) or denies (Denied), or it
# runs out of time (Expired). All three outcomes are terminal, and a
# Complete request can be redeemed for tokens exactly once.

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import jwt

from authgate.api.oauth2.client_auth import ClientCredentials
from authgate.api.oauth2.credentials import generate_alphanumeric, generate_id
from authgate.api.oauth2.errors import (
    AccessDenied,
    AuthorizationPending,
    ExpiredToken,
    InvalidGrant,
    NotFoundError,
    SlowDown,
    UnauthorizedClient,
    UnknownUserId,
    UnsupportedGrantType,
    ValidationError,
)
from authgate.api.oauth2.events import EventSink, emit_event
from authgate.api.oauth2.models import CibaRequest, CibaStatus, Client, DeliveryMode
from authgate.api.oauth2.notifications import (
    LoggingNotificationChannel,
    NotificationChannel,
    dispatch_safely,
)
from authgate.api.oauth2.scopes import format_scope
from authgate.api.oauth2.server import AuthorizationServer
from authgate.api.oauth2.users import UserDirectory

logger = logging.getLogger(__name__)

CIBA_GRANT_TYPE = "urn:openid:params:grant-type:ciba"
AUTH_REQ_ID_PREFIX = "ciba_"

DEFAULT_EXPIRY = 600
MIN_EXPIRY = 60
MAX_EXPIRY = 1800
POLL_INTERVAL = 5
SLOW_DOWN_INCREMENT = 5
MAX_BINDING_MESSAGE = 100
USER_CODE_LENGTHS = range(4, 9)


@dataclass
class BackchannelAuthRequest:
    """Parameters of a backchannel authentication request (CIBA §7.1)."""

    scope: str | None = None
    login_hint: str | None = None
    login_hint_token: str | None = None
    id_token_hint: str | None = None
    binding_message: str | None = None
    user_code: str | None = None
    requested_expiry: int | None = None
    client_notification_token: str | None = None
    acr_values: str | None = None

    @property
    def hint_count(self) -> int:
        return sum(1 for h in (self.login_hint, self.login_hint_token, self.id_token_hint) if h)


def clamp_expiry(
    requested: int | None,
    minimum: int = MIN_EXPIRY,
    maximum: int = MAX_EXPIRY,
    default: int = DEFAULT_EXPIRY,
) -> int:
    """Pull *requested* into [minimum, maximum]; None means *default*."""
    if requested is None:
        return default
    return max(minimum, min(maximum, int(requested)))


def generate_auth_req_id() -> str:
    return AUTH_REQ_ID_PREFIX + generate_alphanumeric(32)


def decode_login_hint_token(token: str) -> str:
    """Base64 JSON ``{"user_id": ...}``, or base64 of a bare user id."""
    try:
        raw = base64.b64decode(token, validate=True).decode("utf-8")
    except (binascii.Error, ValueError, UnicodeDecodeError):
        raise ValidationError("Invalid login_hint_token") from None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return raw.strip()
    if isinstance(data, dict) and data.get("user_id"):
        return str(data["user_id"])
    return raw.strip()


class CibaEngine:
    """Backchannel authentication requests and their token exchange."""

    def __init__(
        self,
        server: AuthorizationServer,
        users: UserDirectory | None = None,
        notifier: NotificationChannel | None = None,
        default_expiry: int = DEFAULT_EXPIRY,
        min_expiry: int = MIN_EXPIRY,
        max_expiry: int = MAX_EXPIRY,
        poll_interval: int = POLL_INTERVAL,
        events: EventSink | None = None,
    ):
        self.server = server
        self.storage = server.storage
        self.users = users
        self.notifier = notifier or LoggingNotificationChannel()
        self.default_expiry = default_expiry
        self.min_expiry = min_expiry
        self.max_expiry = max_expiry
        self.poll_interval = poll_interval
        self.events = events

    # ------------------------------------------------------------------
    # Backchannel authentication endpoint
    # ------------------------------------------------------------------

    def _validate(self, request: BackchannelAuthRequest) -> None:
        if request.hint_count == 0:
            raise ValidationError("A login_hint, login_hint_token or id_token_hint is required")
        if request.binding_message and len(request.binding_message) > MAX_BINDING_MESSAGE:
            raise ValidationError(
                f"binding_message must be at most {MAX_BINDING_MESSAGE} characters"
            )
        if request.user_code is not None and len(request.user_code) not in USER_CODE_LENGTHS:
            raise ValidationError("user_code must be 4 to 8 characters")

    def resolve_user_identity(self, request: BackchannelAuthRequest, client: Client) -> str:
        """Turn whichever hint was sent into a known user id."""
        if request.id_token_hint:
            try:
                claims = self.server.decode_token(request.id_token_hint, verify_exp=False)
            except jwt.PyJWTError:
                raise ValidationError("Invalid id_token_hint") from None
            if claims.get("aud") != client.id:
                raise ValidationError("id_token_hint was issued to another client")
            candidate = str(claims.get("sub") or "")
        elif request.login_hint_token:
            candidate = decode_login_hint_token(request.login_hint_token)
        else:
            candidate = (request.login_hint or "").strip()

        if not candidate:
            raise UnknownUserId()
        if self.users is None:
            return candidate
        user = self.users.find_by_login_hint(candidate)
        if user is None:
            raise UnknownUserId()
        return user.id

    def create_backchannel_auth_request(
        self, creds: ClientCredentials, request: BackchannelAuthRequest
    ) -> dict[str, Any]:
        result = self.server.authenticator.require(creds)
        client = result.client
        mode = client.delivery_mode
        if mode is None:
            raise UnauthorizedClient("Client is not registered for CIBA")

        self._validate(request)
        if mode != DeliveryMode.POLL and not request.client_notification_token:
            raise ValidationError("client_notification_token is required for ping and push")

        scopes = self.server.scopes.validate_for_client(request.scope, client)
        user_id = self.resolve_user_identity(request, client)
        if self.users is not None and not self.users.can_access_client(user_id, client):
            raise AccessDenied("User may not authorize this client")

        expires_in = clamp_expiry(
            request.requested_expiry, self.min_expiry, self.max_expiry, self.default_expiry
        )
        now = self.server.clock()
        record = CibaRequest(
            id=generate_id(),
            auth_req_id=generate_auth_req_id(),
            client_id=client.id,
            user_id=user_id,
            scopes=scopes,
            expires_at=now + timedelta(seconds=expires_in),
            delivery_mode=mode,
            interval=self.poll_interval if mode == DeliveryMode.POLL else None,
            binding_message=request.binding_message,
            user_code=request.user_code,
            client_notification_token=request.client_notification_token,
            acr_values=request.acr_values,
            created_at=now,
        )
        self.storage.save_ciba_request(record)
        emit_event(
            self.events,
            "ciba_request_created",
            f"client:{client.id}",
            actor=user_id,
            scope=format_scope(scopes),
            delivery_mode=mode.value,
        )
        dispatch_safely(self.notifier.send_user_prompt, record, client)

        body: dict[str, Any] = {"auth_req_id": record.auth_req_id, "expires_in": expires_in}
        if record.interval is not None:
            body["interval"] = record.interval
        return body

    # ------------------------------------------------------------------
    # User decision
    # ------------------------------------------------------------------

    def complete_user_authentication(
        self, auth_req_id: str, user_id: str, approved: bool
    ) -> CibaRequest:
        """Record the user's decision. Only a Pending request can be decided."""
        record = self.storage.get_ciba_request(auth_req_id)
        if record is None or record.user_id != user_id:
            raise NotFoundError("Authentication request not found or already processed")
        now = self.server.clock()
        if record.status == CibaStatus.PENDING and record.is_expired(now):
            self.storage.transition_ciba_status(
                auth_req_id, CibaStatus.PENDING, CibaStatus.EXPIRED
            )
            raise ExpiredToken("The authentication request has expired")

        target = CibaStatus.COMPLETE if approved else CibaStatus.DENIED
        updated = self.storage.transition_ciba_status(
            auth_req_id, CibaStatus.PENDING, target, completed_at=now
        )
        if updated is None:
            raise NotFoundError("Authentication request not found or already processed")

        emit_event(
            self.events,
            "ciba_request_completed",
            f"client:{updated.client_id}",
            actor=user_id,
            status=updated.status.value,
        )
        client = self.storage.get_client(updated.client_id)
        if client is not None and updated.delivery_mode != DeliveryMode.POLL:
            dispatch_safely(self.notifier.send_client_callback, updated, client)
        return updated

    # ------------------------------------------------------------------
    # Token endpoint
    # ------------------------------------------------------------------

    def exchange_ciba_for_tokens(
        self, creds: ClientCredentials, grant_type: str | None, auth_req_id: str | None
    ) -> dict[str, Any]:
        if grant_type != CIBA_GRANT_TYPE:
            raise UnsupportedGrantType()
        if not auth_req_id:
            raise ValidationError("auth_req_id is required")

        result = self.server.authenticator.require(creds)
        record = self.storage.get_ciba_request(auth_req_id)
        if record is None or record.client_id != result.client_id:
            raise InvalidGrant("Invalid auth_req_id")

        now = self.server.clock()
        if record.is_expired(now):
            if record.status == CibaStatus.PENDING:
                self.storage.transition_ciba_status(
                    auth_req_id, CibaStatus.PENDING, CibaStatus.EXPIRED
                )
            raise ExpiredToken("The authentication request has expired")

        if record.status == CibaStatus.PENDING:
            previous = self.storage.record_ciba_poll(auth_req_id, now)
            interval = record.interval or self.poll_interval
            if previous is not None and (now - previous).total_seconds() < interval:
                interval = self.storage.slow_ciba_polling(auth_req_id, SLOW_DOWN_INCREMENT)
                raise SlowDown(f"Poll at most every {interval} seconds")
            raise AuthorizationPending()
        if record.status == CibaStatus.DENIED:
            raise AccessDenied("The user denied the authentication request")
        if record.status == CibaStatus.EXPIRED:
            raise ExpiredToken("The authentication request has expired")

        # Complete: only the first redemption gets tokens
        if not self.storage.consume_ciba_request(auth_req_id):
            raise InvalidGrant("The authentication request has already been used")

        issued = self.server.issue_tokens(
            client_id=record.client_id,
            user_id=record.user_id,
            scopes=record.scopes,
            cnf_thumbprint=result.mtls_thumbprint,
            event="ciba_token_granted",
        )
        if "openid" in record.scopes:
            issued.id_token = self.server.create_id_token(
                user_id=record.user_id,
                client_id=record.client_id,
                nonce=issued.access_token.id,
                auth_time=record.completed_at,
            )
        return issued.as_response(now)

    # ------------------------------------------------------------------
    # Status and housekeeping
    # ------------------------------------------------------------------

    def get_status(self, creds: ClientCredentials, auth_req_id: str) -> dict[str, Any]:
        result = self.server.authenticator.require(creds)
        record = self.storage.get_ciba_request(auth_req_id)
        if record is None or record.client_id != result.client_id:
            raise NotFoundError("Authentication request not found")
        now = self.server.clock()
        status = record.status
        if status == CibaStatus.PENDING and record.is_expired(now):
            status = CibaStatus.EXPIRED
        return {
            "auth_req_id": record.auth_req_id,
            "status": status.value,
            "consumed": record.consumed,
            "expires_in": max(0, int((record.expires_at - now).total_seconds())),
            "binding_message": record.binding_message,
        }

    def cleanup_expired_requests(self) -> int:
        """Mark stale Pending requests Expired. Deletion is the sweeper's job."""
        return self.storage.expire_ciba_requests(self.server.clock())
