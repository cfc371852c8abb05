# CIBA router: backchannel authentication, user decision, status.
# Created: 2026-02-20

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from authgate.api.deps import (
    client_credentials,
    enforce_rate_limit,
    get_current_user,
    request_params,
    require_oauth_scope,
)
from authgate.api.v1.schemas.ciba import (
    BackchannelAuthResponse,
    CibaCompleteRequest,
    CibaCompleteResponse,
    CibaStatusResponse,
)
from authgate.api.v1.schemas.common import CountResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["CIBA"])


@router.post(
    "/oauth/ciba/auth",
    response_model=BackchannelAuthResponse,
    response_model_exclude_none=True,
)
async def backchannel_authenticate(request: Request):
    """Backchannel authentication endpoint (client-authenticated)."""
    from authgate.api.oauth2.provider import get_oauth_provider
    from authgate.security.rate_limiter import backchannel_limiter

    enforce_rate_limit(request, backchannel_limiter)
    provider = get_oauth_provider()
    params = await request_params(request)
    creds = client_credentials(request, params)
    body = provider.ciba.create_backchannel_auth_request(
        creds, provider.backchannel_request(params)
    )
    return JSONResponse(content=body, headers={"Cache-Control": "no-store"})


@router.post("/oauth/ciba/complete/{auth_req_id}", response_model=CibaCompleteResponse)
async def complete_authentication(
    auth_req_id: str,
    request: Request,
    body: CibaCompleteRequest | None = None,
    user_id: str = Depends(get_current_user),
):
    """The user named in the request approves or denies it."""
    from authgate.api.oauth2.provider import get_oauth_provider
    from authgate.security.rate_limiter import auth_limiter

    enforce_rate_limit(request, auth_limiter)
    approved = body.approved if body is not None else True
    record = get_oauth_provider().ciba.complete_user_authentication(
        auth_req_id, user_id, approved
    )
    return CibaCompleteResponse(auth_req_id=record.auth_req_id, status=record.status.value)


@router.get("/oauth/ciba/status/{auth_req_id}", response_model=CibaStatusResponse)
async def request_status(auth_req_id: str, request: Request):
    """Status of one of the calling client's requests."""
    from authgate.api.oauth2.provider import get_oauth_provider
    from authgate.security.rate_limiter import auth_limiter

    enforce_rate_limit(request, auth_limiter)
    creds = client_credentials(request, dict(request.query_params))
    return get_oauth_provider().ciba.get_status(creds, auth_req_id)


@router.post(
    "/oauth/ciba/cleanup",
    response_model=CountResponse,
    dependencies=[Depends(require_oauth_scope("admin"))],
)
async def cleanup_requests():
    """Mark stale Pending requests as Expired."""
    from authgate.api.oauth2.provider import get_oauth_provider

    return CountResponse(count=get_oauth_provider().ciba.cleanup_expired_requests())
