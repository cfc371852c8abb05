# Device authorization router (RFC 8628).
# Created: 2026-02-20

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from authgate.api.deps import (
    client_credentials,
    enforce_rate_limit,
    get_current_user,
    request_params,
)
from authgate.api.oauth2.device import DEVICE_CODE_GRANT_TYPE
from authgate.api.oauth2.errors import UnsupportedGrantType
from authgate.api.v1.schemas.device import (
    DeviceAuthorizationResponse,
    DeviceVerificationInfo,
    DeviceVerifyRequest,
    DeviceVerifyResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Device"])


@router.post("/oauth/device/authorize", response_model=DeviceAuthorizationResponse)
async def device_authorize(request: Request):
    """Start a device flow; the device shows ``user_code`` to its user."""
    from authgate.api.oauth2.provider import get_oauth_provider
    from authgate.security.rate_limiter import backchannel_limiter

    enforce_rate_limit(request, backchannel_limiter)
    params = await request_params(request)
    creds = client_credentials(request, params)
    body = get_oauth_provider().device.create_device_authorization(creds, params.get("scope"))
    return JSONResponse(content=body, headers={"Cache-Control": "no-store"})


@router.post("/oauth/device/token")
async def device_token(request: Request):
    """Device polling endpoint. Same answers as the token endpoint's device grant."""
    from authgate.api.oauth2.provider import get_oauth_provider
    from authgate.security.rate_limiter import token_limiter

    enforce_rate_limit(request, token_limiter)
    params = await request_params(request)
    grant_type = params.get("grant_type")
    if grant_type and grant_type != DEVICE_CODE_GRANT_TYPE:
        raise UnsupportedGrantType()
    creds = client_credentials(request, params)
    body = get_oauth_provider().device.poll_device_token(creds, params.get("device_code"))
    return JSONResponse(content=body, headers={"Cache-Control": "no-store"})


@router.get("/oauth/device", response_model=DeviceVerificationInfo)
async def device_verification(request: Request, user_code: str = Query(...)):
    """Details the verification page shows before the user approves."""
    from authgate.api.oauth2.provider import get_oauth_provider
    from authgate.security.rate_limiter import auth_limiter

    enforce_rate_limit(request, auth_limiter)
    return get_oauth_provider().device.get_verification(user_code)


@router.post("/oauth/device/verify", response_model=DeviceVerifyResponse)
async def device_verify(
    request: Request,
    body: DeviceVerifyRequest,
    user_id: str = Depends(get_current_user),
):
    """The signed-in user approves or denies a device."""
    from authgate.api.oauth2.provider import get_oauth_provider
    from authgate.security.rate_limiter import auth_limiter

    enforce_rate_limit(request, auth_limiter)
    device = get_oauth_provider().device.authorize(body.user_code, user_id, body.approve)
    return DeviceVerifyResponse(user_code=device.user_code, status=device.status.value)
