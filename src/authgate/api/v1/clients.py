# Client admin router: register and manage OAuth2 clients.
# Created: 2026-02-20

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from authgate.api.deps import require_oauth_scope
from authgate.api.oauth2.models import Client
from authgate.api.v1.schemas.clients import (
    ClientCreatedResponse,
    ClientInfo,
    ClientSecretResponse,
    CreateClientRequest,
    UpdateClientRequest,
)
from authgate.api.v1.schemas.common import OkResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Clients"], dependencies=[Depends(require_oauth_scope("admin"))])


def _info(client: Client) -> dict:
    return {
        "id": client.id,
        "name": client.name,
        "redirect_uris": client.redirect_uris,
        "user_id": client.user_id,
        "personal_access_client": client.personal_access_client,
        "password_client": client.password_client,
        "confidential": not client.is_public,
        "revoked": client.revoked,
        "allowed_scopes": client.allowed_scopes,
        "metadata": client.metadata,
        "created_at": client.created_at,
        "updated_at": client.updated_at,
    }


@router.post("/oauth/clients", response_model=ClientCreatedResponse, status_code=201)
async def create_client(body: CreateClientRequest):
    """Register a client. The plaintext secret is returned only once."""
    from authgate.api.oauth2.provider import get_oauth_provider

    client, secret = get_oauth_provider().clients.create_client(
        name=body.name,
        redirect_uris=body.redirect_uris,
        user_id=body.user_id,
        personal_access_client=body.personal_access_client,
        password_client=body.password_client,
        confidential=body.confidential,
        metadata=body.metadata,
        client_id=body.client_id,
        allowed_scopes=body.allowed_scopes,
    )
    return ClientCreatedResponse(**_info(client), client_secret=secret)


@router.get("/oauth/clients", response_model=list[ClientInfo])
async def list_clients(
    user_id: str | None = Query(None),
    include_revoked: bool = Query(False),
):
    """List clients (no secrets exposed)."""
    from authgate.api.oauth2.provider import get_oauth_provider

    clients = get_oauth_provider().clients.list_clients(
        user_id=user_id, include_revoked=include_revoked
    )
    return [ClientInfo(**_info(c)) for c in clients]


@router.get("/oauth/clients/{client_id}", response_model=ClientInfo)
async def get_client(client_id: str):
    from authgate.api.oauth2.provider import get_oauth_provider

    return ClientInfo(**_info(get_oauth_provider().clients.get_client(client_id)))


@router.patch("/oauth/clients/{client_id}", response_model=ClientInfo)
async def update_client(client_id: str, body: UpdateClientRequest):
    from authgate.api.oauth2.provider import get_oauth_provider

    client = get_oauth_provider().clients.update_client(
        client_id,
        name=body.name,
        redirect_uris=body.redirect_uris,
        revoked=body.revoked,
        metadata=body.metadata,
        allowed_scopes=body.allowed_scopes,
    )
    return ClientInfo(**_info(client))


@router.post("/oauth/clients/{client_id}/revoke", response_model=ClientInfo)
async def revoke_client(client_id: str):
    """Revoke the client and every access token issued to it."""
    from authgate.api.oauth2.provider import get_oauth_provider

    return ClientInfo(**_info(get_oauth_provider().clients.revoke_client(client_id)))


@router.post("/oauth/clients/{client_id}/secret", response_model=ClientSecretResponse)
async def regenerate_secret(client_id: str):
    from authgate.api.oauth2.provider import get_oauth_provider

    secret = get_oauth_provider().clients.regenerate_secret(client_id)
    return ClientSecretResponse(client_id=client_id, client_secret=secret)


@router.delete("/oauth/clients/{client_id}", response_model=OkResponse)
async def delete_client(client_id: str):
    from authgate.api.oauth2.provider import get_oauth_provider

    get_oauth_provider().clients.delete_client(client_id)
    return OkResponse()
