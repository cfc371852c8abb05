# Scope admin router.
# Created: 2026-02-20

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from authgate.api.deps import require_oauth_scope
from authgate.api.v1.schemas.common import OkResponse
from authgate.api.v1.schemas.scopes import (
    CreateScopeRequest,
    ScopeInfo,
    UpdateScopeRequest,
    ValidateScopesRequest,
    ValidateScopesResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Scopes"], dependencies=[Depends(require_oauth_scope("admin"))])


@router.get("/oauth/scopes", response_model=list[ScopeInfo])
async def list_scopes():
    from authgate.api.oauth2.provider import get_oauth_provider

    return [ScopeInfo.model_validate(s) for s in get_oauth_provider().scopes.list_scopes()]


@router.post("/oauth/scopes", response_model=ScopeInfo, status_code=201)
async def create_scope(body: CreateScopeRequest):
    from authgate.api.oauth2.provider import get_oauth_provider

    scope = get_oauth_provider().scopes.create_scope(
        body.name,
        description=body.description,
        is_default=body.is_default,
        restricted=body.restricted,
    )
    return ScopeInfo.model_validate(scope)


@router.post("/oauth/scopes/validate", response_model=ValidateScopesResponse)
async def validate_scopes(body: ValidateScopesRequest):
    """Resolve a scope request the way the grant endpoints would."""
    from authgate.api.oauth2.provider import get_oauth_provider

    names = get_oauth_provider().scopes.validate_scope_names(body.scope)
    return ValidateScopesResponse(scopes=names)


@router.get("/oauth/scopes/by-name/{name}", response_model=ScopeInfo)
async def get_scope_by_name(name: str):
    from authgate.api.oauth2.provider import get_oauth_provider

    return ScopeInfo.model_validate(get_oauth_provider().scopes.get_scope_by_name(name))


@router.get("/oauth/scopes/{scope_id}", response_model=ScopeInfo)
async def get_scope(scope_id: str):
    from authgate.api.oauth2.provider import get_oauth_provider

    return ScopeInfo.model_validate(get_oauth_provider().scopes.get_scope(scope_id))


@router.patch("/oauth/scopes/{scope_id}", response_model=ScopeInfo)
async def update_scope(scope_id: str, body: UpdateScopeRequest):
    from authgate.api.oauth2.provider import get_oauth_provider

    scope = get_oauth_provider().scopes.update_scope(
        scope_id,
        name=body.name,
        description=body.description,
        is_default=body.is_default,
        restricted=body.restricted,
    )
    return ScopeInfo.model_validate(scope)


@router.delete("/oauth/scopes/{scope_id}", response_model=OkResponse)
async def delete_scope(scope_id: str):
    """Delete a scope. The wildcard scope cannot be deleted."""
    from authgate.api.oauth2.provider import get_oauth_provider

    get_oauth_provider().scopes.delete_scope(scope_id)
    return OkResponse()
