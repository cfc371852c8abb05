# Pushed Authorization Requests (RFC 9126).
# Created: 2026-02-20
#
# A client posts its authorization parameters over an authenticated back
# channel and gets a short-lived request_uri back. The browser then carries
# only client_id and request_uri to /oauth/authorize. A request_uri is bound
# to the client that pushed it and is spent when the code is issued.

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import timedelta
from typing import Any

from authgate.api.oauth2.client_auth import ClientCredentials
from authgate.api.oauth2.credentials import PKCE_METHODS, generate_id, generate_token
from authgate.api.oauth2.errors import (
    InvalidRequestUri,
    UnsupportedResponseType,
    ValidationError,
)
from authgate.api.oauth2.events import EventSink, emit_event
from authgate.api.oauth2.models import Client, PushedAuthorizationRequest
from authgate.api.oauth2.scopes import format_scope
from authgate.api.oauth2.server import AuthorizationServer

logger = logging.getLogger(__name__)

REQUEST_URI_PREFIX = "urn:ietf:params:oauth:request_uri:"
PAR_TTL = timedelta(seconds=90)


def requires_pushed_requests(client: Client, server_wide: bool = False) -> bool:
    """Whether *client* must start every authorization with a pushed request."""
    return server_wide or bool(client.metadata.get("require_pushed_authorization_requests"))


class PushedAuthorizationEngine:
    """Stores pushed authorization requests and hands them back to /authorize."""

    def __init__(
        self,
        server: AuthorizationServer,
        expires_in: timedelta = PAR_TTL,
        events: EventSink | None = None,
    ):
        self.server = server
        self.storage = server.storage
        self.expires_in = expires_in
        self.events = events

    def push(self, creds: ClientCredentials, params: Mapping[str, Any]) -> dict[str, Any]:
        """Validate and store an authorization request (RFC 9126 §2.1).

        Everything /authorize would reject is rejected here, so the user is
        never sent off with a request that cannot succeed.
        """
        result = self.server.authenticator.require(creds)
        client = result.client
        if params.get("request_uri"):
            raise ValidationError("request_uri cannot be used in a pushed request")
        if params.get("request"):
            raise ValidationError("Request objects are not supported")
        if (params.get("response_type") or "code") != "code":
            raise UnsupportedResponseType()

        redirect_uri = params.get("redirect_uri")
        if not redirect_uri:
            raise ValidationError("redirect_uri is required")
        if not client.is_valid_redirect_uri(redirect_uri):
            raise ValidationError("redirect_uri is not registered for this client")

        code_challenge = params.get("code_challenge")
        if not code_challenge:
            raise ValidationError("code_challenge is required")
        method = params.get("code_challenge_method") or "S256"
        if method not in PKCE_METHODS:
            raise ValidationError("code_challenge_method must be S256 or plain")

        scopes = self.server.scopes.validate_for_client(params.get("scope"), client)
        now = self.server.clock()
        pushed = PushedAuthorizationRequest(
            id=generate_id(),
            request_uri=REQUEST_URI_PREFIX + generate_token(32),
            client_id=client.id,
            redirect_uri=redirect_uri,
            scopes=scopes,
            code_challenge=code_challenge,
            code_challenge_method=method,
            state=params.get("state") or None,
            expires_at=now + self.expires_in,
            created_at=now,
        )
        self.storage.save_pushed_request(pushed)
        emit_event(
            self.events,
            "authorization_request_pushed",
            f"client:{client.id}",
            scope=format_scope(scopes),
        )
        return {
            "request_uri": pushed.request_uri,
            "expires_in": int(self.expires_in.total_seconds()),
        }

    def resolve(self, client_id: str, request_uri: str | None) -> PushedAuthorizationRequest:
        """The live request behind *request_uri*. Does not spend it."""
        if not request_uri:
            raise ValidationError("request_uri is required")
        pushed = self.storage.get_pushed_request(request_uri)
        if pushed is None or pushed.used or pushed.client_id != client_id:
            raise InvalidRequestUri()
        if pushed.is_expired(self.server.clock()):
            raise InvalidRequestUri("The request_uri has expired")
        return pushed

    def redeem(self, client_id: str, request_uri: str | None) -> PushedAuthorizationRequest:
        """Resolve and spend *request_uri*; a second redemption fails."""
        pushed = self.resolve(client_id, request_uri)
        if not self.storage.consume_pushed_request(pushed.request_uri):
            logger.warning("Replay of spent request_uri (client %s)", client_id)
            raise InvalidRequestUri("The request_uri has already been used")
        return pushed
