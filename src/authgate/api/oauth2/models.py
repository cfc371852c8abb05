# OAuth2 data models.
# Created: 2026-02-20

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from authgate.api.oauth2.errors import InvalidStateTransition


def utcnow() -> datetime:
    return datetime.now(UTC)


class ClientAuthMethod(str, Enum):
    """How a client proved its identity at the token endpoint."""

    NONE = "none"
    CLIENT_SECRET_BASIC = "client_secret_basic"
    CLIENT_SECRET_POST = "client_secret_post"
    CLIENT_SECRET_JWT = "client_secret_jwt"
    PRIVATE_KEY_JWT = "private_key_jwt"
    TLS_CLIENT_AUTH = "tls_client_auth"


class DeliveryMode(str, Enum):
    """CIBA token delivery modes a client can register."""

    POLL = "poll"
    PING = "ping"
    PUSH = "push"


class DeviceStatus(str, Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    CONSUMED = "consumed"
    DENIED = "denied"
    EXPIRED = "expired"


class CibaStatus(str, Enum):
    PENDING = "Pending"
    COMPLETE = "Complete"
    DENIED = "Denied"
    EXPIRED = "Expired"


_DEVICE_TRANSITIONS: dict[DeviceStatus, frozenset[DeviceStatus]] = {
    DeviceStatus.PENDING: frozenset(
        {DeviceStatus.AUTHORIZED, DeviceStatus.DENIED, DeviceStatus.EXPIRED}
    ),
    DeviceStatus.AUTHORIZED: frozenset({DeviceStatus.CONSUMED, DeviceStatus.EXPIRED}),
}

_CIBA_TRANSITIONS: dict[CibaStatus, frozenset[CibaStatus]] = {
    CibaStatus.PENDING: frozenset({CibaStatus.COMPLETE, CibaStatus.DENIED, CibaStatus.EXPIRED}),
}


def advance_device_status(current: DeviceStatus, target: DeviceStatus) -> DeviceStatus:
    """Return *target* if the move is allowed, else raise InvalidStateTransition."""
    if target not in _DEVICE_TRANSITIONS.get(current, frozenset()):
        raise InvalidStateTransition(f"Device authorization cannot move {current} -> {target}")
    return target


def advance_ciba_status(current: CibaStatus, target: CibaStatus) -> CibaStatus:
    """Return *target* if the move is allowed, else raise InvalidStateTransition.

    Complete, Denied and Expired are terminal.
    """
    if target not in _CIBA_TRANSITIONS.get(current, frozenset()):
        raise InvalidStateTransition(f"CIBA request cannot move {current} -> {target}")
    return target


@dataclass
class Client:
    """Registered OAuth2 client.

    ``secret`` is whatever the directory stored: the plaintext secret, or a
    bcrypt hash when secret hashing is enabled.
    """

    id: str
    name: str
    secret: str | None = None
    redirect_uris: list[str] = field(default_factory=list)
    user_id: str | None = None
    personal_access_client: bool = False
    password_client: bool = False
    revoked: bool = False
    # None: any unrestricted scope. Restricted scopes must be listed here.
    allowed_scopes: list[str] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_public(self) -> bool:
        return not self.secret

    def is_valid_redirect_uri(self, uri: str) -> bool:
        # Exact string match only (RFC 6749 §3.1.2.3)
        return uri in self.redirect_uris

    @property
    def delivery_mode(self) -> DeliveryMode | None:
        mode = self.metadata.get("backchannel_token_delivery_mode")
        try:
            return DeliveryMode(mode) if mode else None
        except ValueError:
            return None

    @property
    def notification_endpoint(self) -> str | None:
        return self.metadata.get("backchannel_client_notification_endpoint")

    @property
    def certificate_thumbprint(self) -> str | None:
        return self.metadata.get("tls_client_certificate_thumbprint")


@dataclass
class Scope:
    """Named permission that can be attached to a token."""

    id: str
    name: str
    description: str | None = None
    is_default: bool = False
    # Only clients that list it in allowed_scopes may be granted it
    restricted: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class AuthorizationCode:
    """Short-lived, single-use authorization code."""

    id: str
    user_id: str
    client_id: str
    scopes: list[str]
    redirect_uri: str
    expires_at: datetime
    code_challenge: str | None = None
    code_challenge_method: str | None = None  # "S256" or "plain"
    revoked: bool = False
    created_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at


@dataclass
class AccessToken:
    """Issued access token. The JWT handed to the client carries ``id`` as ``jti``."""

    id: str
    client_id: str
    scopes: list[str]
    user_id: str | None = None
    name: str | None = None
    expires_at: datetime | None = None
    revoked: bool = False
    cnf_thumbprint: str | None = None
    # Token exchange: who acts for the subject, and an audience other than the client
    actor: str | None = None
    audience: str | None = None
    created_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at is not None and (now or utcnow()) >= self.expires_at

    def is_valid(self, now: datetime | None = None) -> bool:
        return not self.revoked and not self.is_expired(now)

    def has_scope(self, name: str) -> bool:
        from authgate.api.oauth2.scopes import has_scope

        return has_scope(self.scopes, name)


@dataclass
class RefreshToken:
    id: str
    access_token_id: str
    expires_at: datetime
    revoked: bool = False
    created_at: datetime = field(default_factory=utcnow)

    def is_valid(self, now: datetime | None = None) -> bool:
        return not self.revoked and (now or utcnow()) < self.expires_at


@dataclass
class DeviceAuthorization:
    """RFC 8628 device authorization record."""

    id: str
    device_code: str
    user_code: str
    client_id: str
    scopes: list[str]
    verification_uri: str
    verification_uri_complete: str
    expires_at: datetime
    interval: int = 5
    status: DeviceStatus = DeviceStatus.PENDING
    user_id: str | None = None
    last_polled_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def user_authorized(self) -> bool:
        return self.status in (DeviceStatus.AUTHORIZED, DeviceStatus.CONSUMED)

    @property
    def revoked(self) -> bool:
        return self.status in (DeviceStatus.CONSUMED, DeviceStatus.DENIED, DeviceStatus.EXPIRED)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at


@dataclass
class CibaRequest:
    """Backchannel authentication request (OpenID CIBA)."""

    id: str
    auth_req_id: str
    client_id: str
    user_id: str
    scopes: list[str]
    expires_at: datetime
    delivery_mode: DeliveryMode = DeliveryMode.POLL
    interval: int | None = None
    binding_message: str | None = None
    user_code: str | None = None
    client_notification_token: str | None = None
    acr_values: str | None = None
    status: CibaStatus = CibaStatus.PENDING
    consumed: bool = False
    completed_at: datetime | None = None
    last_polled_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at


@dataclass
class TokenBlacklistEntry:
    """Invalidates an already-issued JWT before its natural expiry."""

    token_hash: str
    expires_at: datetime
    user_id: str | None = None
    reason: str = "revoked"
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class PushedAuthorizationRequest:
    """Authorization parameters a client pushed ahead of the redirect (RFC 9126)."""

    id: str
    request_uri: str
    client_id: str
    redirect_uri: str
    scopes: list[str]
    code_challenge: str
    expires_at: datetime
    code_challenge_method: str = "S256"
    state: str | None = None
    used: bool = False
    created_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at
