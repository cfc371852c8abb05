# OAuth2 error taxonomy.
# Created: 2026-02-20
#
# Every failure raised by the engines is an OAuthError carrying the RFC 6749
# error code. The HTTP layer renders them as {"error", "error_description"}.

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class OAuthError(Exception):
    """Base class for protocol-level errors."""

    error = "invalid_request"
    status_code = 400
    default_description = "The request is invalid"

    def __init__(self, description: str | None = None):
        self.description = description or self.default_description
        super().__init__(self.description)

    def to_dict(self) -> dict[str, str]:
        return {"error": self.error, "error_description": self.description}


class ValidationError(OAuthError):
    error = "invalid_request"


class AuthenticationError(OAuthError):
    error = "invalid_client"
    status_code = 401
    default_description = "Client authentication failed"


class InvalidGrant(OAuthError):
    error = "invalid_grant"
    default_description = "The provided grant is invalid, expired or revoked"


class InvalidScope(OAuthError):
    error = "invalid_scope"
    default_description = "The requested scope is invalid or unknown"


class UnauthorizedClient(OAuthError):
    error = "unauthorized_client"
    default_description = "The client is not authorized to use this grant type"


class UnsupportedGrantType(OAuthError):
    error = "unsupported_grant_type"
    default_description = "The grant type is not supported"


class UnsupportedResponseType(OAuthError):
    error = "unsupported_response_type"
    default_description = "Only response_type=code is supported"


class AuthorizationPending(OAuthError):
    error = "authorization_pending"
    default_description = "The user has not yet completed authorization"


class SlowDown(OAuthError):
    error = "slow_down"
    default_description = "Polling too frequently; increase the interval"


class ExpiredToken(OAuthError):
    error = "expired_token"
    default_description = "The request has expired"


class AccessDenied(OAuthError):
    error = "access_denied"
    default_description = "The user denied the request"


class UnknownUserId(OAuthError):
    """CIBA: the login hint did not resolve to a user."""

    error = "unknown_user_id"
    default_description = "The user hint could not be resolved"


class InvalidRequestUri(OAuthError):
    """PAR: the request_uri is unknown, spent, expired or bound to another client."""

    error = "invalid_request_uri"
    default_description = "The request_uri is invalid or expired"


class InvalidTarget(OAuthError):
    """Token exchange: the requested audience or resource is not allowed."""

    error = "invalid_target"
    default_description = "The requested audience or resource is not allowed"


class InvalidToken(OAuthError):
    error = "invalid_token"
    status_code = 401
    default_description = "The access token is invalid, expired or revoked"


class InsufficientScope(OAuthError):
    error = "insufficient_scope"
    status_code = 403
    default_description = "The access token lacks a required scope"


class RateLimited(OAuthError):
    error = "slow_down"
    status_code = 429
    default_description = "Too many requests"

    def __init__(
        self,
        description: str | None = None,
        retry_after: int = 1,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(description)
        self.retry_after = retry_after
        self.headers = headers or {}


class NotFoundError(OAuthError):
    error = "not_found"
    status_code = 404
    default_description = "Resource not found"


class ConflictError(OAuthError):
    error = "conflict"
    status_code = 409
    default_description = "Resource already exists"


class ServerError(OAuthError):
    error = "server_error"
    status_code = 500
    default_description = "The server encountered an unexpected condition"


class InvalidStateTransition(ServerError):
    """A device or CIBA record was asked to leave a terminal state."""


def install_exception_handlers(app) -> None:
    """Register JSON renderers for OAuthError and unexpected exceptions on *app*."""
    from fastapi import Request
    from fastapi.responses import JSONResponse

    async def _oauth_error(request: Request, exc: OAuthError) -> JSONResponse:
        headers = {"Cache-Control": "no-store"}
        if isinstance(exc, AuthenticationError):
            headers["WWW-Authenticate"] = 'Basic realm="authgate"'
        elif isinstance(exc, InvalidToken | InsufficientScope):
            headers["WWW-Authenticate"] = f'Bearer error="{exc.error}"'
        elif isinstance(exc, RateLimited):
            headers.update(exc.headers)
            headers["Retry-After"] = str(exc.retry_after)
        if isinstance(exc, ServerError):
            logger.error("Server error on %s: %s", request.url.path, exc.description)
            body = ServerError().to_dict()
        else:
            body = exc.to_dict()
        return JSONResponse(status_code=exc.status_code, content=body, headers=headers)

    async def _unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(status_code=500, content=ServerError().to_dict())

    app.add_exception_handler(OAuthError, _oauth_error)
    app.add_exception_handler(Exception, _unexpected)
