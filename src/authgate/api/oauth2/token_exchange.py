# OAuth 2.0 Token Exchange (RFC 8693).
# Created: 2026-02-20
#
# A confidential client trades a token this server issued for a new access
# token about the same subject. With an actor_token the result is a
# delegation and names the actor in an ``act`` claim; without one it is
# impersonation. Clients opt in per mode through the ``token_exchange``
# metadata list, which defaults to delegation only. The new token never
# carries more scope, or outlives, the token it was exchanged for.

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from authgate.api.oauth2.client_auth import ClientCredentials
from authgate.api.oauth2.errors import (
    InvalidGrant,
    InvalidScope,
    InvalidTarget,
    InvalidToken,
    UnauthorizedClient,
    ValidationError,
)
from authgate.api.oauth2.models import Client
from authgate.api.oauth2.scopes import has_scope, parse_scope
from authgate.api.oauth2.server import AuthorizationServer

logger = logging.getLogger(__name__)

TOKEN_EXCHANGE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:token-exchange"

ACCESS_TOKEN_TYPE = "urn:ietf:params:oauth:token-type:access_token"
REFRESH_TOKEN_TYPE = "urn:ietf:params:oauth:token-type:refresh_token"
JWT_TOKEN_TYPE = "urn:ietf:params:oauth:token-type:jwt"

DELEGATION = "delegation"
IMPERSONATION = "impersonation"
DEFAULT_MODES = (DELEGATION,)


@dataclass
class TokenExchangeRequest:
    subject_token: str | None = None
    subject_token_type: str | None = None
    actor_token: str | None = None
    actor_token_type: str | None = None
    scope: str | None = None
    requested_token_type: str | None = None
    audience: str | None = None
    resource: str | None = None

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> TokenExchangeRequest:
        return cls(
            subject_token=params.get("subject_token"),
            subject_token_type=params.get("subject_token_type"),
            actor_token=params.get("actor_token"),
            actor_token_type=params.get("actor_token_type"),
            scope=params.get("scope"),
            requested_token_type=params.get("requested_token_type"),
            audience=params.get("audience"),
            resource=params.get("resource"),
        )


@dataclass
class _TokenContext:
    """What an input token says about who it represents."""

    user_id: str | None
    client_id: str
    scopes: list[str]
    actor: str | None
    expires_at: datetime | None

    @property
    def principal(self) -> str:
        return self.user_id or self.client_id


def exchange_modes(client: Client) -> tuple[str, ...]:
    modes = client.metadata.get("token_exchange")
    if modes is None:
        return DEFAULT_MODES
    return tuple(modes)


class TokenExchangeEngine:
    def __init__(self, server: AuthorizationServer):
        self.server = server
        self.storage = server.storage

    def exchange(self, creds: ClientCredentials, request: TokenExchangeRequest) -> dict[str, Any]:
        """``token-exchange`` grant (RFC 8693 §2.1)."""
        if not request.subject_token:
            raise ValidationError("subject_token is required")
        if not request.subject_token_type:
            raise ValidationError("subject_token_type is required")
        if request.actor_token_type and not request.actor_token:
            raise ValidationError("actor_token_type given without actor_token")
        if request.actor_token and not request.actor_token_type:
            raise ValidationError("actor_token_type is required with actor_token")
        if request.requested_token_type not in (None, "", ACCESS_TOKEN_TYPE, JWT_TOKEN_TYPE):
            raise ValidationError("Only access tokens can be requested")

        result = self.server.authenticator.require(creds)
        if result.is_public:
            raise UnauthorizedClient("Public clients cannot exchange tokens")
        client = result.client
        audience = self._target(client, request)

        subject = self._resolve(client, request.subject_token, request.subject_token_type)
        actor = None
        if request.actor_token:
            actor = self._resolve(client, request.actor_token, request.actor_token_type)

        mode = DELEGATION if actor is not None else IMPERSONATION
        if mode not in exchange_modes(client):
            raise UnauthorizedClient(f"Client is not allowed {mode} token exchange")

        requested = parse_scope(request.scope) or list(subject.scopes)
        for name in requested:
            if not has_scope(subject.scopes, name):
                raise InvalidScope(f"Scope '{name}' exceeds the subject token")
            if actor is not None and not has_scope(actor.scopes, name):
                raise InvalidScope(f"Scope '{name}' exceeds the actor token")
        scopes = self.server.scopes.validate_for_client(requested, client) if requested else []

        now = self.server.clock()
        ttl = self.server.lifetimes.access
        if subject.expires_at is not None:
            ttl = min(ttl, subject.expires_at - now)

        issued = self.server.issue_tokens(
            client_id=client.id,
            user_id=subject.user_id,
            scopes=scopes,
            with_refresh=False,
            ttl=ttl,
            cnf_thumbprint=result.mtls_thumbprint,
            actor=actor.principal if actor is not None else subject.actor,
            audience=audience,
            event="token_exchanged",
        )
        logger.info(
            "Client %s exchanged a token for %s (%s)", client.id, subject.principal, mode
        )
        body = issued.as_response(now)
        body["issued_token_type"] = ACCESS_TOKEN_TYPE
        return body

    def _target(self, client: Client, request: TokenExchangeRequest) -> str | None:
        """The audience of the new token, if the client asked for one it may have."""
        allowed = {self.server.issuer, client.id}
        allowed.update(client.metadata.get("token_exchange_audiences", ()))
        target = None
        for value in (request.audience, request.resource):
            if not value:
                continue
            if value not in allowed:
                raise InvalidTarget(f"Tokens cannot be issued for {value}")
            target = target or value
        return None if target == client.id else target

    def _resolve(self, client: Client, token: str, token_type: str | None) -> _TokenContext:
        if token_type in (ACCESS_TOKEN_TYPE, JWT_TOKEN_TYPE):
            try:
                record = self.server.validate_token_and_scopes(token)
            except InvalidToken:
                raise InvalidGrant("The presented token is invalid, expired or revoked") from None
            return _TokenContext(
                record.user_id, record.client_id, record.scopes, record.actor, record.expires_at
            )
        if token_type == REFRESH_TOKEN_TYPE:
            stored = self.storage.get_refresh_token(token)
            if stored is None or not stored.is_valid(self.server.clock()):
                raise InvalidGrant("The presented token is invalid, expired or revoked")
            access = self.storage.get_access_token(stored.access_token_id)
            # Refresh tokens stay bound to the client they were issued to
            if access is None or access.client_id != client.id:
                raise InvalidGrant("The presented token is invalid, expired or revoked")
            return _TokenContext(
                access.user_id, access.client_id, access.scopes, access.actor, stored.expires_at
            )
        raise ValidationError(f"Unsupported token type: {token_type}")
