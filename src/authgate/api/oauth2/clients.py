# Client directory: registration and lifecycle of OAuth2 clients.
# Created: 2026-02-20

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlsplit

from authgate.api.oauth2.credentials import generate_client_secret, generate_id, hash_password
from authgate.api.oauth2.errors import ConflictError, NotFoundError, ValidationError
from authgate.api.oauth2.events import EventSink, emit_event
from authgate.api.oauth2.models import Client, DeliveryMode, utcnow
from authgate.api.oauth2.storage import OAuthStorage

logger = logging.getLogger(__name__)


def _validate_redirect_uris(uris: list[str]) -> list[str]:
    cleaned = []
    for uri in uris:
        uri = uri.strip()
        parts = urlsplit(uri)
        if not parts.scheme or parts.fragment:
            # RFC 6749 §3.1.2: absolute URI without a fragment
            raise ValidationError(f"Invalid redirect URI: {uri!r}")
        cleaned.append(uri)
    return list(dict.fromkeys(cleaned))


def _clean_scopes(names: list[str] | None) -> list[str] | None:
    if names is None:
        return None
    return list(dict.fromkeys(n.strip() for n in names if n and n.strip()))


def _validate_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    mode = metadata.get("backchannel_token_delivery_mode")
    if mode is not None:
        try:
            mode = DeliveryMode(mode)
        except ValueError:
            raise ValidationError("Unknown backchannel_token_delivery_mode") from None
        if mode != DeliveryMode.POLL and not metadata.get(
            "backchannel_client_notification_endpoint"
        ):
            raise ValidationError(
                "ping and push clients need backchannel_client_notification_endpoint"
            )
    return dict(metadata)


class ClientDirectory:
    """Create, look up, update and revoke clients.

    Secrets are generated here and returned in plaintext exactly once, from
    ``create_client`` or ``regenerate_secret``. When ``hash_secrets`` is on
    only a bcrypt hash is kept, which rules out ``client_secret_jwt``.
    """

    def __init__(
        self,
        storage: OAuthStorage,
        secret_length: int = 64,
        hash_secrets: bool = False,
        events: EventSink | None = None,
    ):
        self.storage = storage
        self.secret_length = secret_length
        self.hash_secrets = hash_secrets
        self.events = events

    def _new_secret(self, plain: str | None = None) -> tuple[str, str]:
        plain = plain or generate_client_secret(self.secret_length)
        stored = hash_password(plain) if self.hash_secrets else plain
        return plain, stored

    def create_client(
        self,
        name: str,
        redirect_uris: list[str] | None = None,
        user_id: str | None = None,
        personal_access_client: bool = False,
        password_client: bool = False,
        confidential: bool = True,
        metadata: dict[str, Any] | None = None,
        client_id: str | None = None,
        secret: str | None = None,
        allowed_scopes: list[str] | None = None,
    ) -> tuple[Client, str | None]:
        """Register a client. Returns the record and its plaintext secret (or None).

        *client_id* and *secret* let an operator import a client provisioned
        elsewhere; both are generated when omitted. *allowed_scopes* of None
        lets the client request any unrestricted scope.
        """
        if not name or not name.strip():
            raise ValidationError("Client name is required")
        if client_id and self.storage.get_client(client_id) is not None:
            raise ConflictError("Client id already registered")

        plain: str | None = None
        stored: str | None = None
        # Personal access clients never hold a secret
        if confidential and not personal_access_client:
            plain, stored = self._new_secret(secret)

        client = Client(
            id=client_id or generate_id(),
            name=name.strip(),
            secret=stored,
            redirect_uris=_validate_redirect_uris(redirect_uris or []),
            user_id=user_id,
            personal_access_client=personal_access_client,
            password_client=password_client,
            allowed_scopes=_clean_scopes(allowed_scopes),
            metadata=_validate_metadata(metadata or {}),
        )
        self.storage.save_client(client)
        emit_event(self.events, "client_created", f"client:{client.id}", actor=user_id or "admin")
        return client, plain

    def get_client(self, client_id: str, include_revoked: bool = True) -> Client:
        client = self.storage.get_client(client_id)
        if client is None or (client.revoked and not include_revoked):
            raise NotFoundError("Client not found")
        return client

    def find_active(self, client_id: str | None) -> Client | None:
        if not client_id:
            return None
        client = self.storage.get_client(client_id)
        if client is None or client.revoked:
            return None
        return client

    def list_clients(
        self, user_id: str | None = None, include_revoked: bool = False
    ) -> list[Client]:
        return self.storage.list_clients(user_id=user_id, include_revoked=include_revoked)

    def update_client(
        self,
        client_id: str,
        name: str | None = None,
        redirect_uris: list[str] | None = None,
        revoked: bool | None = None,
        metadata: dict[str, Any] | None = None,
        allowed_scopes: list[str] | None = None,
    ) -> Client:
        client = self.get_client(client_id)
        if revoked is False and client.revoked:
            raise ValidationError("A revoked client cannot be reinstated")
        if name is not None:
            if not name.strip():
                raise ValidationError("Client name is required")
            client.name = name.strip()
        if redirect_uris is not None:
            client.redirect_uris = _validate_redirect_uris(redirect_uris)
        if metadata is not None:
            client.metadata = _validate_metadata(metadata)
        if allowed_scopes is not None:
            client.allowed_scopes = _clean_scopes(allowed_scopes)
        client.updated_at = utcnow()
        self.storage.save_client(client)
        if revoked and not client.revoked:
            return self.revoke_client(client_id)
        return client

    def revoke_client(self, client_id: str) -> Client:
        """Soft-revoke the client and every access token issued to it."""
        client = self.get_client(client_id)
        if client.revoked:
            return client
        client.revoked = True
        client.updated_at = utcnow()
        self.storage.save_client(client)
        count = self.storage.revoke_tokens_for_client(client_id)
        emit_event(self.events, "client_revoked", f"client:{client_id}", tokens_revoked=count)
        return client

    def delete_client(self, client_id: str) -> None:
        self.get_client(client_id)
        self.storage.revoke_tokens_for_client(client_id)
        self.storage.delete_client(client_id)
        logger.info("Deleted client %s", client_id)

    def regenerate_secret(self, client_id: str) -> str:
        client = self.get_client(client_id, include_revoked=False)
        if client.personal_access_client:
            raise ValidationError("Personal access clients do not have secrets")
        plain, stored = self._new_secret()
        client.secret = stored
        client.updated_at = utcnow()
        self.storage.save_client(client)
        emit_event(self.events, "client_secret_regenerated", f"client:{client_id}")
        return plain

    def find_personal_access_client(self) -> Client | None:
        """The oldest non-revoked personal access client."""
        for client in self.storage.list_clients():
            if client.personal_access_client:
                return client
        return None
