# Personal access token router. Acts on behalf of the signed-in user.
# Created: 2026-02-20

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from authgate.api.deps import get_current_user
from authgate.api.oauth2.models import AccessToken
from authgate.api.v1.schemas.common import CountResponse, OkResponse
from authgate.api.v1.schemas.tokens import (
    CreatePersonalTokenRequest,
    PersonalTokenCreatedResponse,
    PersonalTokenInfo,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Personal Access Tokens"])


def _info(token: AccessToken) -> dict:
    return {
        "id": token.id,
        "name": token.name,
        "client_id": token.client_id,
        "scopes": token.scopes,
        "expires_at": token.expires_at,
        "created_at": token.created_at,
    }


@router.post(
    "/oauth/personal-access-tokens",
    response_model=PersonalTokenCreatedResponse,
    status_code=201,
)
async def create_token(
    body: CreatePersonalTokenRequest, user_id: str = Depends(get_current_user)
):
    """Create a personal access token. The JWT is returned only once."""
    from authgate.api.oauth2.provider import get_oauth_provider

    issued = get_oauth_provider().server.create_personal_access_token(
        user_id, body.name, scope=body.scope, expires_in=body.expires_in
    )
    return PersonalTokenCreatedResponse(**_info(issued.access_token), access_token=issued.jwt)


@router.get("/oauth/personal-access-tokens", response_model=list[PersonalTokenInfo])
async def list_tokens(user_id: str = Depends(get_current_user)):
    """The user's live tokens, from any client."""
    from authgate.api.oauth2.provider import get_oauth_provider

    tokens = get_oauth_provider().server.list_user_tokens(user_id)
    return [PersonalTokenInfo(**_info(t)) for t in tokens]


@router.delete("/oauth/personal-access-tokens/{token_id}", response_model=OkResponse)
async def revoke_token(token_id: str, user_id: str = Depends(get_current_user)):
    from authgate.api.oauth2.provider import get_oauth_provider

    get_oauth_provider().server.revoke_user_token(user_id, token_id)
    return OkResponse()


@router.delete("/oauth/personal-access-tokens", response_model=CountResponse)
async def revoke_all_tokens(user_id: str = Depends(get_current_user)):
    from authgate.api.oauth2.provider import get_oauth_provider

    return CountResponse(count=get_oauth_provider().server.revoke_all_user_tokens(user_id))
