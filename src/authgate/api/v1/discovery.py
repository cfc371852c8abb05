# OpenID Provider configuration document.
# Created: 2026-02-20

from __future__ import annotations

from fastapi import APIRouter

from authgate.api.oauth2.client_auth import ASYMMETRIC_ALGORITHMS, HMAC_ALGORITHMS
from authgate.api.oauth2.models import ClientAuthMethod
from authgate.api.v1.schemas.oauth2 import DiscoveryDocument

router = APIRouter(tags=["Discovery"])


@router.get("/.well-known/openid-configuration", response_model=DiscoveryDocument)
async def openid_configuration():
    from authgate.api.oauth2.provider import GRANT_TYPES, get_oauth_provider

    provider = get_oauth_provider()
    issuer = provider.server.issuer

    return DiscoveryDocument(
        issuer=issuer,
        authorization_endpoint=f"{issuer}/oauth/authorize",
        token_endpoint=f"{issuer}/oauth/token",
        introspection_endpoint=f"{issuer}/oauth/introspect",
        revocation_endpoint=f"{issuer}/oauth/revoke",
        device_authorization_endpoint=f"{issuer}/oauth/device/authorize",
        backchannel_authentication_endpoint=f"{issuer}/oauth/ciba/auth",
        pushed_authorization_request_endpoint=f"{issuer}/oauth/par",
        require_pushed_authorization_requests=(
            provider.settings.require_pushed_authorization_requests
        ),
        scopes_supported=[s.name for s in provider.scopes.list_scopes()],
        grant_types_supported=list(GRANT_TYPES),
        token_endpoint_auth_methods_supported=[m.value for m in ClientAuthMethod],
        token_endpoint_auth_signing_alg_values_supported=sorted(
            HMAC_ALGORITHMS | ASYMMETRIC_ALGORITHMS
        ),
        id_token_signing_alg_values_supported=[provider.settings.jwt_algorithm],
    )
