# Client admin schemas.
# Created: 2026-02-20

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from authgate.api.v1.schemas.common import APIResponse


class CreateClientRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    redirect_uris: list[str] = Field(default_factory=list)
    user_id: str | None = None
    confidential: bool = True
    personal_access_client: bool = False
    password_client: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)
    client_id: str | None = Field(default=None, description="Import an existing client id")
    allowed_scopes: list[str] | None = Field(
        default=None, description="Scopes the client may request; required for restricted scopes"
    )


class UpdateClientRequest(BaseModel):
    name: str | None = None
    redirect_uris: list[str] | None = None
    revoked: bool | None = None
    metadata: dict[str, Any] | None = None
    allowed_scopes: list[str] | None = None


class ClientInfo(APIResponse):
    """Client as listed by the admin API. Secrets are never included."""

    id: str
    name: str
    redirect_uris: list[str]
    user_id: str | None = None
    personal_access_client: bool = False
    password_client: bool = False
    confidential: bool = True
    revoked: bool = False
    allowed_scopes: list[str] | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class ClientCreatedResponse(ClientInfo):
    """Returned once on creation. ``client_secret`` is not retrievable later."""

    client_secret: str | None = None


class ClientSecretResponse(APIResponse):
    client_id: str
    client_secret: str
