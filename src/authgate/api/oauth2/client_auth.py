# Client authentication.
# Created: 2026-02-20
#
# Five methods are tried in a fixed order, strongest first:
#   1. tls_client_auth      (RFC 8705, certificate forwarded by a trusted TLS terminator)
#   2. JWT client assertion (RFC 7523, client_secret_jwt / private_key_jwt)
#   3. client_secret_basic
#   4. client_secret_post
#   5. none                 (public client, only if it has no stored secret)
#
# A method applies only when its credentials are present. A failed method
# falls through to the next one. Failure reasons are logged, never returned.

from __future__ import annotations

import base64
import hashlib
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from urllib.parse import unquote, unquote_plus

import jwt
from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding

from authgate.api.oauth2.credentials import (
    b64url,
    constant_time_equals,
    is_hashed_secret,
    verify_secret,
)
from authgate.api.oauth2.errors import AuthenticationError
from authgate.api.oauth2.models import Client, ClientAuthMethod, utcnow
from authgate.api.oauth2.storage import OAuthStorage

logger = logging.getLogger(__name__)

JWT_BEARER_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"

CLIENT_CERT_HEADERS = ("x-client-cert", "x-ssl-client-cert", "x-forwarded-client-cert")

HMAC_ALGORITHMS = frozenset({"HS256", "HS384", "HS512"})
ASYMMETRIC_ALGORITHMS = frozenset(
    {"RS256", "RS384", "RS512", "PS256", "PS384", "PS512", "ES256", "ES384", "ES512", "EdDSA"}
)

ASSERTION_LEEWAY_SECONDS = 60


def _as_str(value: Any) -> str | None:
    if value is None:
        return None
    value = str(value)
    return value or None


@dataclass(frozen=True)
class ClientCredentials:
    """Everything a request may carry to identify its client."""

    client_id: str | None = None
    client_secret: str | None = None
    client_assertion_type: str | None = None
    client_assertion: str | None = None
    authorization: str | None = None
    client_certificate: str | None = None

    @classmethod
    def from_request(
        cls,
        headers: Mapping[str, str],
        params: Mapping[str, Any],
        trust_certificate_headers: bool = False,
    ) -> ClientCredentials:
        """Collect credentials from a request.

        Certificate headers are only meaningful when a TLS terminator that
        verified the handshake set them. Anyone can send the header, so it
        is ignored unless *trust_certificate_headers* says the peer is such
        a proxy.
        """
        cert = None
        for name in CLIENT_CERT_HEADERS:
            if headers.get(name):
                if trust_certificate_headers:
                    cert = headers[name]
                else:
                    logger.info("Ignoring %s header from an untrusted peer", name)
                break
        return cls(
            client_id=_as_str(params.get("client_id")),
            client_secret=_as_str(params.get("client_secret")),
            client_assertion_type=_as_str(params.get("client_assertion_type")),
            client_assertion=_as_str(params.get("client_assertion")),
            authorization=_as_str(headers.get("authorization")),
            client_certificate=cert,
        )


@dataclass
class ClientAuthResult:
    authenticated: bool
    client_id: str | None = None
    method: ClientAuthMethod = ClientAuthMethod.NONE
    client: Client | None = None
    mtls_thumbprint: str | None = None

    @property
    def is_public(self) -> bool:
        return self.authenticated and self.method == ClientAuthMethod.NONE


@dataclass(frozen=True)
class AuthContext:
    """Server-side parameters the strategies need."""

    audiences: tuple[str, ...]
    leeway: int = ASSERTION_LEEWAY_SECONDS
    now: datetime | None = None


def _failed(client: Client, method: ClientAuthMethod) -> ClientAuthResult:
    return ClientAuthResult(authenticated=False, client_id=client.id, method=method)


def _ok(
    client: Client, method: ClientAuthMethod, thumbprint: str | None = None
) -> ClientAuthResult:
    return ClientAuthResult(
        authenticated=True,
        client_id=client.id,
        method=method,
        client=client,
        mtls_thumbprint=thumbprint,
    )


# ---------------------------------------------------------------------------
# Credential parsing
# ---------------------------------------------------------------------------


def parse_basic_authorization(header: str | None) -> tuple[str, str] | None:
    """Decode ``Basic base64(client_id:client_secret)``; both parts form-urlencoded."""
    if not header:
        return None
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "basic" or not value.strip():
        return None
    try:
        decoded = base64.b64decode(value.strip(), validate=True).decode("utf-8")
    except (ValueError, UnicodeDecodeError):
        return None
    client_id, sep, secret = decoded.partition(":")
    if not sep or not client_id:
        return None
    return unquote_plus(client_id), unquote_plus(secret)


def _extract_pem(value: str) -> str:
    value = value.strip()
    # Envoy style: By=...;Hash=...;Cert="<url-encoded PEM>"
    if "Cert=" in value and not value.startswith("-----BEGIN"):
        for part in value.split(";"):
            key, _, item = part.partition("=")
            if key.strip() == "Cert":
                value = item.strip().strip('"')
                break
    return unquote(value)


def parse_client_certificate(value: str | None) -> x509.Certificate | None:
    """Load the PEM (or bare base64 DER) certificate a proxy forwarded."""
    if not value:
        return None
    pem = _extract_pem(value)
    try:
        if "-----BEGIN" in pem:
            return x509.load_pem_x509_certificate(pem.encode())
        return x509.load_der_x509_certificate(base64.b64decode(pem))
    except ValueError:
        logger.debug("Unparseable client certificate header")
        return None


def certificate_thumbprint(cert: x509.Certificate) -> str:
    """``x5t#S256``: base64url SHA-256 of the DER certificate."""
    return b64url(hashlib.sha256(cert.public_bytes(Encoding.DER)).digest())


def _certificate_is_current(cert: x509.Certificate, now: datetime) -> bool:
    return cert.not_valid_before_utc <= now <= cert.not_valid_after_utc


# ---------------------------------------------------------------------------
# Strategies: each is a pure (credentials, client, context) -> result function
# ---------------------------------------------------------------------------


def authenticate_tls(
    creds: ClientCredentials, client: Client, ctx: AuthContext
) -> ClientAuthResult:
    method = ClientAuthMethod.TLS_CLIENT_AUTH
    registered = client.certificate_thumbprint
    if not registered:
        logger.debug("Client %s has no registered certificate thumbprint", client.id)
        return _failed(client, method)
    cert = parse_client_certificate(creds.client_certificate)
    if cert is None:
        return _failed(client, method)
    if not _certificate_is_current(cert, ctx.now or utcnow()):
        logger.info("Client %s presented an expired or not-yet-valid certificate", client.id)
        return _failed(client, method)
    thumbprint = certificate_thumbprint(cert)
    if not constant_time_equals(thumbprint, registered):
        logger.info("Certificate thumbprint mismatch for client %s", client.id)
        return _failed(client, method)
    return _ok(client, method, thumbprint)


def _assertion_key(client: Client, header: dict[str, Any]) -> Any | None:
    pem = client.metadata.get("public_key_pem")
    if pem:
        return pem
    jwks = client.metadata.get("jwks") or {}
    kid = header.get("kid")
    for jwk in jwks.get("keys", []):
        if kid and jwk.get("kid") != kid:
            continue
        try:
            return jwt.PyJWK(jwk, algorithm=header.get("alg")).key
        except jwt.PyJWTError:
            logger.debug("Unusable JWK registered for client %s", client.id)
    return None


def authenticate_jwt_assertion(
    creds: ClientCredentials, client: Client, ctx: AuthContext
) -> ClientAuthResult:
    assertion = creds.client_assertion or ""
    try:
        header = jwt.get_unverified_header(assertion)
    except jwt.PyJWTError:
        return _failed(client, ClientAuthMethod.PRIVATE_KEY_JWT)

    alg = header.get("alg")
    if alg in HMAC_ALGORITHMS:
        method = ClientAuthMethod.CLIENT_SECRET_JWT
        if not client.secret or is_hashed_secret(client.secret):
            logger.info("client_secret_jwt needs a plaintext secret (client %s)", client.id)
            return _failed(client, method)
        key: Any = client.secret
    elif alg in ASYMMETRIC_ALGORITHMS:
        method = ClientAuthMethod.PRIVATE_KEY_JWT
        key = _assertion_key(client, header)
        if key is None:
            logger.info("No public key registered for client %s", client.id)
            return _failed(client, method)
    else:
        logger.info("Rejected client assertion with alg=%r", alg)
        return _failed(client, ClientAuthMethod.PRIVATE_KEY_JWT)

    try:
        claims = jwt.decode(
            assertion,
            key,
            algorithms=[alg],
            audience=list(ctx.audiences),
            issuer=client.id,
            leeway=ctx.leeway,
            options={"require": ["iss", "sub", "aud", "exp"]},
        )
    except jwt.PyJWTError as exc:
        logger.info("Client assertion rejected for %s: %s", client.id, exc)
        return _failed(client, method)

    if claims.get("sub") != client.id:
        logger.info("Client assertion sub does not match client %s", client.id)
        return _failed(client, method)
    return _ok(client, method)


def authenticate_basic(
    creds: ClientCredentials, client: Client, ctx: AuthContext
) -> ClientAuthResult:
    method = ClientAuthMethod.CLIENT_SECRET_BASIC
    parsed = parse_basic_authorization(creds.authorization)
    if parsed is None or not verify_secret(client.secret, parsed[1]):
        return _failed(client, method)
    return _ok(client, method)


def authenticate_post(
    creds: ClientCredentials, client: Client, ctx: AuthContext
) -> ClientAuthResult:
    method = ClientAuthMethod.CLIENT_SECRET_POST
    if not verify_secret(client.secret, creds.client_secret):
        return _failed(client, method)
    return _ok(client, method)


def authenticate_public(
    creds: ClientCredentials, client: Client, ctx: AuthContext
) -> ClientAuthResult:
    if client.secret:
        # Confidential clients can never fall back to "none"
        return _failed(client, ClientAuthMethod.NONE)
    return _ok(client, ClientAuthMethod.NONE)


# Which client a strategy is talking about, or None when it does not apply.


def _claim_tls(creds: ClientCredentials) -> str | None:
    return creds.client_id if creds.client_certificate else None


def _claim_jwt(creds: ClientCredentials) -> str | None:
    if creds.client_assertion_type != JWT_BEARER_ASSERTION_TYPE or not creds.client_assertion:
        return None
    try:
        claims = jwt.decode(creds.client_assertion, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None
    return _as_str(claims.get("sub")) or _as_str(claims.get("iss"))


def _claim_basic(creds: ClientCredentials) -> str | None:
    parsed = parse_basic_authorization(creds.authorization)
    return parsed[0] if parsed else None


def _claim_post(creds: ClientCredentials) -> str | None:
    return creds.client_id if creds.client_secret else None


def _claim_public(creds: ClientCredentials) -> str | None:
    return creds.client_id


Strategy = Callable[[ClientCredentials, Client, AuthContext], ClientAuthResult]

STRATEGIES: tuple[tuple[ClientAuthMethod, Callable[..., str | None], Strategy], ...] = (
    (ClientAuthMethod.TLS_CLIENT_AUTH, _claim_tls, authenticate_tls),
    (ClientAuthMethod.PRIVATE_KEY_JWT, _claim_jwt, authenticate_jwt_assertion),
    (ClientAuthMethod.CLIENT_SECRET_BASIC, _claim_basic, authenticate_basic),
    (ClientAuthMethod.CLIENT_SECRET_POST, _claim_post, authenticate_post),
    (ClientAuthMethod.NONE, _claim_public, authenticate_public),
)


class ClientAuthenticator:
    """Runs the strategies in precedence order against the client directory."""

    def __init__(
        self,
        storage: OAuthStorage,
        audiences: Sequence[str],
        leeway: int = ASSERTION_LEEWAY_SECONDS,
    ):
        self.storage = storage
        self.audiences = tuple(audiences)
        self.leeway = leeway

    def authenticate(self, creds: ClientCredentials) -> ClientAuthResult:
        """Return the first successful method's result, or an unauthenticated one."""
        ctx = AuthContext(audiences=self.audiences, leeway=self.leeway, now=utcnow())
        for method, claim, strategy in STRATEGIES:
            claimed_id = claim(creds)
            if not claimed_id:
                continue
            if creds.client_id and creds.client_id != claimed_id:
                logger.info("client_id parameter does not match %s credentials", method.value)
                continue
            client = self.storage.get_client(claimed_id)
            if client is None or client.revoked:
                logger.info("Authentication attempted for unknown or revoked client")
                continue
            result = strategy(creds, client, ctx)
            if result.authenticated:
                logger.debug("Client %s authenticated via %s", client.id, result.method.value)
                return result
            logger.info("Client %s failed %s authentication", client.id, result.method.value)
        return ClientAuthResult(authenticated=False, client_id=creds.client_id)

    def require(self, creds: ClientCredentials) -> ClientAuthResult:
        """Like ``authenticate`` but raises a generic AuthenticationError on failure."""
        result = self.authenticate(creds)
        if not result.authenticated:
            raise AuthenticationError()
        return result
