# Device authorization schemas (RFC 8628).
# Created: 2026-02-20

from __future__ import annotations

from pydantic import BaseModel

from authgate.api.v1.schemas.common import APIResponse


class DeviceAuthorizationResponse(APIResponse):
    device_code: str
    user_code: str
    verification_uri: str
    verification_uri_complete: str
    expires_in: int
    interval: int


class DeviceVerificationInfo(APIResponse):
    user_code: str
    client_id: str
    client_name: str | None = None
    scopes: list[str]
    expires_in: int


class DeviceVerifyRequest(BaseModel):
    user_code: str
    approve: bool = True


class DeviceVerifyResponse(APIResponse):
    user_code: str
    status: str
