# Shared FastAPI dependencies for the API layer.
# Created: 2026-02-20

from __future__ import annotations

import logging
import math
from typing import Any

import jwt
from fastapi import Request

from authgate.api.oauth2.client_auth import ClientCredentials
from authgate.api.oauth2.errors import InvalidToken, RateLimited, ValidationError
from authgate.api.oauth2.models import AccessToken
from authgate.security.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def enforce_rate_limit(request: Request, limiter: RateLimiter) -> None:
    info = limiter.check(client_ip(request))
    if not info.allowed:
        raise RateLimited(retry_after=max(1, math.ceil(info.reset_after)), headers=info.headers())


async def request_params(request: Request) -> dict[str, Any]:
    """Form body for OAuth endpoints; JSON accepted as a convenience."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            data = await request.json()
        except ValueError:
            raise ValidationError("Malformed JSON body") from None
        if not isinstance(data, dict):
            raise ValidationError("Request body must be an object")
        return {k: v for k, v in data.items() if v is not None}
    form = await request.form()
    return {k: v for k, v in form.items() if isinstance(v, str)}


def client_credentials(request: Request, params: dict[str, Any]) -> ClientCredentials:
    """Client credentials of *request*; certificate headers only from trusted proxies."""
    from authgate.api.oauth2.provider import get_oauth_provider

    trusted = client_ip(request) in get_oauth_provider().settings.trusted_proxy_ips
    return ClientCredentials.from_request(
        request.headers, params, trust_certificate_headers=trusted
    )


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_optional_user(request: Request) -> str | None:
    """User id from an end-user session bearer token, or None."""
    token = _bearer_token(request)
    if token is None:
        return None
    from authgate.api.oauth2.provider import get_oauth_provider

    try:
        claims = get_oauth_provider().session_jwt.decode(token)
    except jwt.PyJWTError:
        return None
    # Access tokens share the signing key by default; only session tokens count here
    if claims.get("typ") != "session" or not claims.get("sub"):
        return None
    return str(claims["sub"])


def get_current_user(request: Request) -> str:
    user_id = get_optional_user(request)
    if user_id is None:
        raise InvalidToken("A signed-in user session is required")
    return user_id


def require_oauth_scope(*scopes: str):
    """FastAPI dependency that requires a bearer access token with every listed scope.

    Usage::

        @router.get("/clients", dependencies=[Depends(require_oauth_scope("admin"))])
        async def list_clients(...): ...

    The wildcard scope ``*`` satisfies any requirement.
    """

    async def _check(request: Request) -> AccessToken:
        token = _bearer_token(request)
        if token is None:
            raise InvalidToken("Bearer access token required")
        from authgate.api.oauth2.provider import get_oauth_provider

        record = get_oauth_provider().server.validate_token_and_scopes(token, scopes)
        request.state.access_token = record
        return record

    return _check
