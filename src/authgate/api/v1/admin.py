# Maintenance router: expiry sweep and bulk revocation.
# Created: 2026-02-20

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from authgate.api.deps import require_oauth_scope
from authgate.api.v1.schemas.common import CountResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Admin"], dependencies=[Depends(require_oauth_scope("admin"))])


@router.post("/oauth/admin/cleanup")
async def cleanup_expired() -> dict[str, int]:
    """Run the expiry sweep now and report what it removed."""
    from authgate.api.oauth2.provider import get_oauth_provider

    return get_oauth_provider().sweeper.sweep_once()


@router.post("/oauth/admin/users/{user_id}/revoke-tokens", response_model=CountResponse)
async def revoke_user_tokens(user_id: str):
    """Revoke every access token (and its refresh token) held by a user."""
    from authgate.api.oauth2.provider import get_oauth_provider

    return CountResponse(count=get_oauth_provider().server.revoke_all_user_tokens(user_id))
