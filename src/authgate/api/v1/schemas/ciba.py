# CIBA schemas.
# Created: 2026-02-20

from __future__ import annotations

from pydantic import BaseModel

from authgate.api.v1.schemas.common import APIResponse


class BackchannelAuthResponse(APIResponse):
    auth_req_id: str
    expires_in: int
    interval: int | None = None


class CibaCompleteRequest(BaseModel):
    approved: bool = True


class CibaCompleteResponse(APIResponse):
    auth_req_id: str
    status: str


class CibaStatusResponse(APIResponse):
    auth_req_id: str
    status: str
    consumed: bool
    expires_in: int
    binding_message: str | None = None
