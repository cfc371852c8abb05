# OAuth2 Authorization Server: grants, token issuance and token lifecycle.
# Created: 2026-02-20
#
# Implements the authorization code flow with PKCE (RFC 7636), refresh token
# rotation, client credentials, introspection (RFC 7662) and revocation
# (RFC 7009). Device, CIBA and token-exchange flows build on issue_tokens().

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import jwt

from authgate.api.oauth2.client_auth import ClientAuthenticator, ClientCredentials
from authgate.api.oauth2.credentials import (
    PKCE_METHODS,
    JwtCodec,
    generate_id,
    generate_token,
    token_fingerprint,
    verify_pkce,
)
from authgate.api.oauth2.errors import (
    AccessDenied,
    AuthenticationError,
    InsufficientScope,
    InvalidGrant,
    InvalidScope,
    InvalidToken,
    NotFoundError,
    UnauthorizedClient,
    ValidationError,
)
from authgate.api.oauth2.events import EventSink, emit_event
from authgate.api.oauth2.models import (
    AccessToken,
    AuthorizationCode,
    RefreshToken,
    TokenBlacklistEntry,
    utcnow,
)
from authgate.api.oauth2.scopes import ScopeRegistry, format_scope, has_scope, parse_scope
from authgate.api.oauth2.storage import OAuthStorage
from authgate.api.oauth2.users import UserDirectory

logger = logging.getLogger(__name__)

# Token lifetimes
ACCESS_TOKEN_TTL = timedelta(hours=1)
REFRESH_TOKEN_TTL = timedelta(days=7)
CLIENT_CREDENTIALS_TTL = timedelta(hours=1)
CODE_TTL = timedelta(minutes=10)
PERSONAL_ACCESS_TOKEN_TTL = timedelta(days=365)
ID_TOKEN_TTL = timedelta(hours=1)


@dataclass(frozen=True)
class TokenLifetimes:
    access: timedelta = ACCESS_TOKEN_TTL
    refresh: timedelta = REFRESH_TOKEN_TTL
    client_credentials: timedelta = CLIENT_CREDENTIALS_TTL
    auth_code: timedelta = CODE_TTL

    @classmethod
    def from_settings(cls, settings: Any) -> TokenLifetimes:
        return cls(
            access=timedelta(seconds=settings.access_token_ttl),
            refresh=timedelta(seconds=settings.refresh_token_ttl),
            client_credentials=timedelta(seconds=settings.client_credentials_ttl),
            auth_code=timedelta(seconds=settings.auth_code_ttl),
        )


@dataclass
class IssuedTokens:
    """Result of one issuance: the stored records plus the bearer strings."""

    access_token: AccessToken
    jwt: str
    refresh_token: RefreshToken | None = None
    id_token: str | None = None

    def as_response(self, now: datetime) -> dict[str, Any]:
        body: dict[str, Any] = {
            "access_token": self.jwt,
            "token_type": "Bearer",
            "scope": format_scope(self.access_token.scopes),
        }
        if self.access_token.expires_at is not None:
            body["expires_in"] = max(0, int((self.access_token.expires_at - now).total_seconds()))
        if self.refresh_token is not None:
            body["refresh_token"] = self.refresh_token.id
        if self.id_token is not None:
            body["id_token"] = self.id_token
        return body


class AuthorizationServer:
    """OAuth2 grant and token engine.

    The signing key arrives inside ``jwt_codec``; nothing here reads settings
    or the environment.
    """

    def __init__(
        self,
        storage: OAuthStorage,
        scopes: ScopeRegistry,
        authenticator: ClientAuthenticator,
        jwt_codec: JwtCodec,
        lifetimes: TokenLifetimes | None = None,
        issuer: str = "",
        users: UserDirectory | None = None,
        events: EventSink | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.scopes = scopes
        self.authenticator = authenticator
        self.jwt = jwt_codec
        self.lifetimes = lifetimes or TokenLifetimes()
        self.issuer = issuer
        self.users = users
        self.events = events
        self.clock = clock

    # ------------------------------------------------------------------
    # Authorization endpoint
    # ------------------------------------------------------------------

    def authorize(
        self,
        *,
        user_id: str,
        client_id: str,
        redirect_uri: str,
        scope: str | None = None,
        code_challenge: str | None = None,
        code_challenge_method: str | None = None,
    ) -> AuthorizationCode:
        """Issue an authorization code for an authenticated user."""
        client = self.storage.get_client(client_id)
        if client is None or client.revoked:
            raise AuthenticationError("Unknown client")
        if not client.is_valid_redirect_uri(redirect_uri):
            raise ValidationError("redirect_uri is not registered for this client")

        method: str | None = None
        if code_challenge:
            method = code_challenge_method or "S256"
            if method not in PKCE_METHODS:
                raise ValidationError("code_challenge_method must be S256 or plain")
        elif code_challenge_method:
            raise ValidationError("code_challenge_method given without code_challenge")
        elif client.is_public:
            raise ValidationError("Public clients must use PKCE")

        if self.users is not None and not self.users.can_access_client(user_id, client):
            raise AccessDenied("User may not authorize this client")

        scopes = self.scopes.validate_for_client(scope, client)
        now = self.clock()
        auth_code = AuthorizationCode(
            id=generate_token(32),
            user_id=user_id,
            client_id=client.id,
            scopes=scopes,
            redirect_uri=redirect_uri,
            code_challenge=code_challenge or None,
            code_challenge_method=method,
            expires_at=now + self.lifetimes.auth_code,
        )
        self.storage.save_auth_code(auth_code)
        emit_event(
            self.events,
            "authorization_code_issued",
            f"client:{client.id}",
            actor=user_id,
            scope=format_scope(scopes),
        )
        return auth_code

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------

    def exchange_authorization_code(
        self,
        creds: ClientCredentials,
        code: str | None,
        redirect_uri: str | None,
        code_verifier: str | None = None,
    ) -> dict[str, Any]:
        """``authorization_code`` grant. The code is spent whatever the outcome."""
        if not code:
            raise ValidationError("code is required")

        auth_code = self.storage.get_auth_code(code)
        if auth_code is None:
            raise InvalidGrant("Invalid authorization code")
        # Revoke first: only the caller that flips the flag may continue
        if not self.storage.consume_auth_code(code):
            logger.warning("Replay of spent authorization code (client %s)", auth_code.client_id)
            raise InvalidGrant("Authorization code has already been used")

        now = self.clock()
        if auth_code.is_expired(now):
            raise InvalidGrant("Authorization code has expired")
        if not redirect_uri:
            raise ValidationError("redirect_uri is required")

        result = self.authenticator.require(creds)
        if result.client_id != auth_code.client_id:
            raise InvalidGrant("Authorization code was issued to another client")
        if auth_code.redirect_uri != redirect_uri:
            raise InvalidGrant("redirect_uri does not match the authorization request")

        if auth_code.code_challenge:
            if not code_verifier:
                raise InvalidGrant("code_verifier is required")
            if not verify_pkce(
                code_verifier, auth_code.code_challenge, auth_code.code_challenge_method
            ):
                raise InvalidGrant("PKCE verification failed")
        else:
            if code_verifier:
                raise InvalidGrant("code_verifier supplied but no code_challenge was registered")
            if result.is_public:
                raise InvalidGrant("Public clients must use PKCE")

        issued = self.issue_tokens(
            client_id=auth_code.client_id,
            user_id=auth_code.user_id,
            scopes=auth_code.scopes,
            cnf_thumbprint=result.mtls_thumbprint,
        )
        return issued.as_response(now)

    def refresh(
        self, creds: ClientCredentials, refresh_token: str | None, scope: str | None = None
    ) -> dict[str, Any]:
        """``refresh_token`` grant with rotation.

        An optional *scope* may narrow the original grant, never widen it.
        """
        if not refresh_token:
            raise ValidationError("refresh_token is required")

        result = self.authenticator.require(creds)
        stored = self.storage.get_refresh_token(refresh_token)
        now = self.clock()
        if stored is None or not stored.is_valid(now):
            raise InvalidGrant("Invalid refresh token")
        access = self.storage.get_access_token(stored.access_token_id)
        if access is None or access.client_id != result.client_id:
            raise InvalidGrant("Invalid refresh token")

        scopes = list(access.scopes)
        requested = parse_scope(scope)
        if requested:
            if not all(has_scope(access.scopes, name) for name in requested):
                raise InvalidScope("Requested scope exceeds the original grant")
            scopes = self.scopes.validate_for_client(requested, result.client)

        # Conditional revoke decides the single winner of concurrent refreshes
        if not self.storage.revoke_refresh_token(stored.id):
            raise InvalidGrant("Invalid refresh token")
        self.storage.revoke_access_token(access.id)

        issued = self.issue_tokens(
            client_id=access.client_id,
            user_id=access.user_id,
            scopes=scopes,
            name=access.name,
            cnf_thumbprint=result.mtls_thumbprint or access.cnf_thumbprint,
            event="token_refreshed",
        )
        return issued.as_response(now)

    def client_credentials(self, creds: ClientCredentials, scope: str | None) -> dict[str, Any]:
        """``client_credentials`` grant: no user, no refresh token."""
        result = self.authenticator.require(creds)
        if result.is_public:
            raise UnauthorizedClient("Public clients cannot use client_credentials")
        scopes = self.scopes.validate_for_client(scope, result.client)
        issued = self.issue_tokens(
            client_id=result.client_id,
            user_id=None,
            scopes=scopes,
            with_refresh=False,
            ttl=self.lifetimes.client_credentials,
            cnf_thumbprint=result.mtls_thumbprint,
        )
        return issued.as_response(self.clock())

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue_tokens(
        self,
        *,
        client_id: str,
        user_id: str | None,
        scopes: Iterable[str],
        name: str | None = None,
        with_refresh: bool = True,
        ttl: timedelta | None = None,
        cnf_thumbprint: str | None = None,
        actor: str | None = None,
        audience: str | None = None,
        event: str = "token_issued",
    ) -> IssuedTokens:
        """Persist an access token (and refresh token) and sign the JWT."""
        now = self.clock()
        access = AccessToken(
            id=generate_id(),
            client_id=client_id,
            user_id=user_id,
            scopes=list(scopes),
            name=name,
            expires_at=now + (ttl or self.lifetimes.access),
            cnf_thumbprint=cnf_thumbprint,
            actor=actor,
            audience=audience,
            created_at=now,
        )
        self.storage.save_access_token(access)

        refresh: RefreshToken | None = None
        if with_refresh:
            refresh = RefreshToken(
                id=generate_token(40),
                access_token_id=access.id,
                expires_at=now + self.lifetimes.refresh,
                created_at=now,
            )
            self.storage.save_refresh_token(refresh)

        emit_event(
            self.events,
            event,
            f"client:{client_id}",
            actor=user_id or client_id,
            token_id=access.id,
            scope=format_scope(access.scopes),
        )
        return IssuedTokens(
            access_token=access, jwt=self.generate_jwt(access), refresh_token=refresh
        )

    def generate_jwt(self, token: AccessToken) -> str:
        issued_at = token.created_at
        expires_at = token.expires_at or issued_at + timedelta(days=1)
        claims: dict[str, Any] = {
            "sub": token.user_id or "",
            "aud": token.audience or token.client_id,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": token.id,
            "scopes": list(token.scopes),
        }
        if token.cnf_thumbprint:
            # RFC 8705 §3.1 certificate-bound access token
            claims["cnf"] = {"x5t#S256": token.cnf_thumbprint}
        if token.actor:
            # RFC 8693 §4.1 delegation
            claims["act"] = {"sub": token.actor}
        return self.jwt.encode(claims)

    def create_id_token(
        self,
        *,
        user_id: str,
        client_id: str,
        nonce: str | None = None,
        auth_time: datetime | None = None,
    ) -> str:
        """OpenID Connect ID token signed with the server key."""
        now = self.clock()
        claims: dict[str, Any] = {
            "iss": self.issuer,
            "aud": client_id,
            "sub": user_id,
            "iat": int(now.timestamp()),
            "exp": int((now + ID_TOKEN_TTL).timestamp()),
            "auth_time": int((auth_time or now).timestamp()),
        }
        if nonce:
            claims["nonce"] = nonce
        return self.jwt.encode(claims)

    # ------------------------------------------------------------------
    # Validation, introspection, revocation
    # ------------------------------------------------------------------

    def decode_token(self, token: str, verify_exp: bool = True) -> dict[str, Any]:
        return self.jwt.decode(token, verify_exp=verify_exp)

    def validate_token_and_scopes(
        self, token: str, required: Iterable[str] = ()
    ) -> AccessToken:
        """Resolve a bearer JWT to a live access token holding every *required* scope."""
        try:
            claims = self.decode_token(token)
        except jwt.PyJWTError:
            raise InvalidToken() from None
        record = self.storage.get_access_token(str(claims.get("jti", "")))
        now = self.clock()
        if record is None or not record.is_valid(now):
            raise InvalidToken()
        if self.storage.is_blacklisted(token_fingerprint(token), now):
            raise InvalidToken()
        missing = [name for name in required if not record.has_scope(name)]
        if missing:
            raise InsufficientScope(f"Missing scope: {' '.join(missing)}")
        return record

    def introspect(self, token: str | None, token_type_hint: str | None = None) -> dict[str, Any]:
        """RFC 7662 response. Never raises; unknown or broken tokens are inactive."""
        inactive = {"active": False}
        if not token:
            return inactive
        now = self.clock()

        if token_type_hint != "refresh_token":
            try:
                claims = self.decode_token(token, verify_exp=False)
            except jwt.PyJWTError:
                claims = None
            if claims is not None:
                record = self.storage.get_access_token(str(claims.get("jti", "")))
                if record is None or not record.is_valid(now):
                    return inactive
                if self.storage.is_blacklisted(token_fingerprint(token), now):
                    return inactive
                body = {
                    "active": True,
                    "scope": format_scope(record.scopes),
                    "client_id": record.client_id,
                    "sub": claims.get("sub", ""),
                    "username": record.user_id,
                    "token_type": "Bearer",
                    "exp": claims.get("exp"),
                    "iat": claims.get("iat"),
                    "aud": claims.get("aud"),
                    "jti": record.id,
                }
                if record.actor:
                    body["act"] = {"sub": record.actor}
                return body

        refresh = self.storage.get_refresh_token(token)
        if refresh is None or not refresh.is_valid(now):
            return inactive
        access = self.storage.get_access_token(refresh.access_token_id)
        if access is None:
            return inactive
        return {
            "active": True,
            "scope": format_scope(access.scopes),
            "client_id": access.client_id,
            "sub": access.user_id or "",
            "token_type": "refresh_token",
            "exp": int(refresh.expires_at.timestamp()),
            "iat": int(refresh.created_at.timestamp()),
        }

    def revoke(self, token: str, token_type_hint: str | None = None) -> bool:
        """RFC 7009 revocation. Returns whether anything was revoked; callers
        answer 200 either way."""
        now = self.clock()
        if token_type_hint != "refresh_token":
            try:
                claims = self.decode_token(token, verify_exp=False)
            except jwt.PyJWTError:
                claims = None
            if claims is not None:
                record = self.storage.get_access_token(str(claims.get("jti", "")))
                if record is None:
                    return False
                revoked = self.storage.revoke_access_token(record.id)
                exp = claims.get("exp")
                if isinstance(exp, int | float) and exp > now.timestamp():
                    self.storage.add_blacklist_entry(
                        TokenBlacklistEntry(
                            token_hash=token_fingerprint(token),
                            user_id=record.user_id,
                            expires_at=datetime.fromtimestamp(exp, tz=now.tzinfo),
                            reason="revoked",
                        )
                    )
                if revoked:
                    emit_event(
                        self.events,
                        "token_revoked",
                        f"client:{record.client_id}",
                        token_id=record.id,
                    )
                return revoked

        refresh = self.storage.get_refresh_token(token)
        if refresh is None:
            return False
        revoked = self.storage.revoke_refresh_token(refresh.id)
        if revoked:
            emit_event(
                self.events,
                "token_revoked",
                "refresh_token",
                access_token_id=refresh.access_token_id,
            )
        return revoked

    # ------------------------------------------------------------------
    # User-owned tokens
    # ------------------------------------------------------------------

    def create_personal_access_token(
        self,
        user_id: str,
        name: str,
        scope: str | Iterable[str] | None = None,
        expires_in: int | None = None,
    ) -> IssuedTokens:
        """Issue a long-lived token through the oldest personal access client."""
        if not name or not name.strip():
            raise ValidationError("Token name is required")
        client = next(
            (c for c in self.storage.list_clients() if c.personal_access_client), None
        )
        if client is None:
            raise ValidationError("No personal access client is configured")
        scopes = self.scopes.validate_for_client(scope, client)
        ttl = timedelta(seconds=expires_in) if expires_in else PERSONAL_ACCESS_TOKEN_TTL
        return self.issue_tokens(
            client_id=client.id,
            user_id=user_id,
            scopes=scopes,
            name=name.strip(),
            with_refresh=False,
            ttl=ttl,
        )

    def list_user_tokens(self, user_id: str) -> list[AccessToken]:
        now = self.clock()
        return [t for t in self.storage.list_access_tokens(user_id=user_id) if t.is_valid(now)]

    def revoke_user_token(self, user_id: str, token_id: str) -> None:
        token = self.storage.get_access_token(token_id)
        if token is None or token.user_id != user_id:
            raise NotFoundError("Token not found")
        if self.storage.revoke_access_token(token_id):
            emit_event(
                self.events,
                "token_revoked",
                f"client:{token.client_id}",
                actor=user_id,
                token_id=token_id,
            )

    def revoke_all_user_tokens(self, user_id: str) -> int:
        count = self.storage.revoke_tokens_for_user(user_id)
        emit_event(self.events, "user_tokens_revoked", f"user:{user_id}", count=count)
        return count
