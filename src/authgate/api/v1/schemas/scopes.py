# Scope admin schemas.
# Created: 2026-02-20

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from authgate.api.v1.schemas.common import APIResponse


class CreateScopeRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    is_default: bool = False
    restricted: bool = False


class UpdateScopeRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    is_default: bool | None = None
    restricted: bool | None = None


class ValidateScopesRequest(BaseModel):
    scope: str | list[str] | None = None


class ScopeInfo(APIResponse):
    id: str
    name: str
    description: str | None = None
    is_default: bool = False
    restricted: bool = False
    created_at: datetime
    updated_at: datetime


class ValidateScopesResponse(APIResponse):
    valid: bool = True
    scopes: list[str]
