# OAuth2 router: authorize, PAR, token, introspect, revoke.
# Created: 2026-02-20

from __future__ import annotations

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from authgate.api.deps import (
    client_credentials,
    enforce_rate_limit,
    get_optional_user,
    request_params,
)
from authgate.api.oauth2.errors import OAuthError, UnsupportedResponseType, ValidationError
from authgate.api.v1.schemas.oauth2 import (
    IntrospectionResponse,
    PushedAuthorizationResponse,
    RevokeResponse,
    TokenResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["OAuth2"])

NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def _redirect(uri: str, params: dict[str, str]) -> RedirectResponse:
    sep = "&" if "?" in uri else "?"
    return RedirectResponse(f"{uri}{sep}{urlencode(params)}", status_code=302)


def _error_redirect(uri: str, exc: OAuthError, state: str) -> RedirectResponse:
    params = {"error": exc.error, "error_description": exc.description}
    if state:
        params["state"] = state
    return _redirect(uri, params)


@router.get("/oauth/authorize")
async def authorize(
    request: Request,
    response_type: str = Query("code"),
    client_id: str = Query(...),
    redirect_uri: str | None = Query(None),
    scope: str | None = Query(None),
    state: str = Query(""),
    code_challenge: str | None = Query(None),
    code_challenge_method: str | None = Query(None),
    request_uri: str | None = Query(None),
):
    """Authorization code endpoint (PKCE required).

    With ``request_uri`` the parameters come from an earlier pushed request
    and any others on the query string are ignored. Problems with the client
    or redirect URI are answered directly; everything else is reported back to
    the client through the redirect URI.
    """
    from authgate.api.oauth2.par import requires_pushed_requests
    from authgate.api.oauth2.provider import get_oauth_provider
    from authgate.security.rate_limiter import auth_limiter

    enforce_rate_limit(request, auth_limiter)
    provider = get_oauth_provider()

    client = provider.clients.find_active(client_id)
    if client is None:
        raise ValidationError("Unknown client_id")

    if request_uri:
        pushed = provider.par.resolve(client.id, request_uri)
        response_type = "code"
        redirect_uri = pushed.redirect_uri
        scope = " ".join(pushed.scopes)
        state = pushed.state or ""
        code_challenge = pushed.code_challenge
        code_challenge_method = pushed.code_challenge_method
    elif requires_pushed_requests(
        client, provider.settings.require_pushed_authorization_requests
    ):
        raise ValidationError("This client must use a pushed authorization request")

    if not redirect_uri:
        raise ValidationError("redirect_uri is required")
    if not client.is_valid_redirect_uri(redirect_uri):
        raise ValidationError("redirect_uri is not registered for this client")

    if response_type != "code":
        return _error_redirect(redirect_uri, UnsupportedResponseType(), state)
    if not code_challenge:
        return _error_redirect(
            redirect_uri, ValidationError("code_challenge is required"), state
        )

    user_id = get_optional_user(request)
    if user_id is None:
        return _redirect(provider.settings.login_url, {"next": str(request.url)})

    try:
        if request_uri:
            provider.par.redeem(client.id, request_uri)
        auth_code = provider.server.authorize(
            user_id=user_id,
            client_id=client.id,
            redirect_uri=redirect_uri,
            scope=scope,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
        )
    except OAuthError as exc:
        logger.info("Authorization request for client %s refused: %s", client.id, exc.error)
        return _error_redirect(redirect_uri, exc, state)

    params = {"code": auth_code.id}
    if state:
        params["state"] = state
    return _redirect(redirect_uri, params)


@router.post(
    "/oauth/par",
    response_model=PushedAuthorizationResponse,
    status_code=201,
)
async def pushed_authorization_request(request: Request):
    """RFC 9126 pushed authorization request (client-authenticated)."""
    from authgate.api.oauth2.provider import get_oauth_provider
    from authgate.security.rate_limiter import auth_limiter

    enforce_rate_limit(request, auth_limiter)
    params = await request_params(request)
    creds = client_credentials(request, params)
    body = get_oauth_provider().par.push(creds, params)
    return JSONResponse(content=body, status_code=201, headers=NO_STORE)


@router.post("/oauth/token", response_model=TokenResponse, response_model_exclude_none=True)
async def token(request: Request):
    """Token endpoint. Form-encoded; dispatches on ``grant_type``."""
    from authgate.api.oauth2.provider import get_oauth_provider
    from authgate.security.rate_limiter import token_limiter

    enforce_rate_limit(request, token_limiter)
    params = await request_params(request)
    creds = client_credentials(request, params)
    body = get_oauth_provider().token(params.get("grant_type"), creds, params)
    return JSONResponse(content=body, headers=NO_STORE)


@router.post(
    "/oauth/introspect",
    response_model=IntrospectionResponse,
    response_model_exclude_none=True,
)
async def introspect(request: Request):
    """RFC 7662 token introspection."""
    from authgate.api.oauth2.provider import get_oauth_provider
    from authgate.security.rate_limiter import token_limiter

    enforce_rate_limit(request, token_limiter)
    params = await request_params(request)
    result = get_oauth_provider().server.introspect(
        params.get("token"), params.get("token_type_hint")
    )
    return JSONResponse(content=result, headers=NO_STORE)


@router.post("/oauth/revoke", response_model=RevokeResponse)
async def revoke(request: Request):
    """RFC 7009 revocation. Unknown tokens are not an error."""
    from authgate.api.oauth2.provider import get_oauth_provider
    from authgate.security.rate_limiter import token_limiter

    enforce_rate_limit(request, token_limiter)
    params = await request_params(request)
    token_value = params.get("token")
    if not token_value:
        raise ValidationError("token is required")
    get_oauth_provider().server.revoke(token_value, params.get("token_type_hint"))
    return RevokeResponse()
