# Personal access token schemas.
# Created: 2026-02-20

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from authgate.api.v1.schemas.common import APIResponse


class CreatePersonalTokenRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    scope: str | list[str] | None = None
    expires_in: int | None = Field(default=None, gt=0, description="Lifetime in seconds")


class PersonalTokenInfo(APIResponse):
    id: str
    name: str | None = None
    client_id: str
    scopes: list[str]
    expires_at: datetime | None = None
    created_at: datetime


class PersonalTokenCreatedResponse(PersonalTokenInfo):
    """The bearer JWT is only returned here."""

    access_token: str
    token_type: str = "Bearer"
