# OAuth2 schemas.
# Created: 2026-02-20

from __future__ import annotations

from pydantic import BaseModel, Field


class TokenRequest(BaseModel):
    """Token endpoint parameters (form-encoded on the wire)."""

    grant_type: str | None = None
    code: str | None = None
    code_verifier: str | None = None
    client_id: str | None = None
    redirect_uri: str | None = None
    refresh_token: str | None = None
    scope: str | None = None
    device_code: str | None = None
    auth_req_id: str | None = None
    subject_token: str | None = None
    subject_token_type: str | None = None
    actor_token: str | None = None
    actor_token_type: str | None = None
    requested_token_type: str | None = None
    audience: str | None = None
    resource: str | None = None


class TokenResponse(BaseModel):
    """OAuth2 token response."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int | None = None
    refresh_token: str | None = None
    scope: str = ""
    id_token: str | None = None
    issued_token_type: str | None = Field(default=None, description="Token exchange only")


class IntrospectionResponse(BaseModel):
    """RFC 7662 introspection response; inactive tokens carry only ``active``."""

    active: bool
    scope: str | None = None
    client_id: str | None = None
    sub: str | None = None
    username: str | None = None
    token_type: str | None = None
    exp: int | None = None
    iat: int | None = None
    aud: str | None = None
    jti: str | None = None
    act: dict[str, str] | None = None


class PushedAuthorizationResponse(BaseModel):
    """RFC 9126 §2.2 response."""

    request_uri: str
    expires_in: int


class RevokeResponse(BaseModel):
    revoked: bool = True


class OAuthErrorResponse(BaseModel):
    error: str
    error_description: str = Field(default="")


class DiscoveryDocument(BaseModel):
    """Subset of OpenID Provider Metadata (and RFC 8414) this server advertises."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    introspection_endpoint: str
    revocation_endpoint: str
    device_authorization_endpoint: str
    backchannel_authentication_endpoint: str
    pushed_authorization_request_endpoint: str
    require_pushed_authorization_requests: bool = False
    scopes_supported: list[str]
    response_types_supported: list[str] = ["code"]
    grant_types_supported: list[str]
    token_endpoint_auth_methods_supported: list[str]
    token_endpoint_auth_signing_alg_values_supported: list[str]
    code_challenge_methods_supported: list[str] = ["S256", "plain"]
    backchannel_token_delivery_modes_supported: list[str] = ["poll", "ping", "push"]
    backchannel_user_code_parameter_supported: bool = True
    tls_client_certificate_bound_access_tokens: bool = True
    subject_types_supported: list[str] = ["public"]
    id_token_signing_alg_values_supported: list[str]
