# Credential primitives: hashing, JWT, PKCE, random identifiers.
# Created: 2026-02-20
#
# Everything that touches key material or secret comparison lives here so the
# engines never call hashlib/hmac/jwt directly.

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
import string
import uuid
from typing import Any

import bcrypt
import jwt

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12
SHA256_PREFIX = "sha256:"

# No 0/O, 1/I: easy to read aloud and type on a TV remote
USER_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
USER_CODE_LENGTH = 8

_ALPHANUMERIC = string.ascii_letters + string.digits

PKCE_METHODS = ("S256", "plain")


# ---------------------------------------------------------------------------
# Passwords and secrets
# ---------------------------------------------------------------------------


def hash_password(password: str) -> str:
    """Return a bcrypt hash of *password*."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode()


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        # Malformed hash
        return False


def constant_time_equals(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


def is_hashed_secret(stored: str) -> bool:
    return stored.startswith(("$2a$", "$2b$", "$2y$", SHA256_PREFIX))


def verify_secret(stored: str | None, provided: str | None) -> bool:
    """Check a presented client secret against the stored value.

    The stored value may be plaintext, a bcrypt hash, or ``sha256:<hex>``.
    """
    if not stored or not provided:
        return False
    if stored.startswith(SHA256_PREFIX):
        digest = hashlib.sha256(provided.encode()).hexdigest()
        return constant_time_equals(stored[len(SHA256_PREFIX) :], digest)
    if stored.startswith("$2"):
        return verify_password(provided, stored)
    return constant_time_equals(stored, provided)


# ---------------------------------------------------------------------------
# Random identifiers
# ---------------------------------------------------------------------------


def generate_id() -> str:
    """Record identifier."""
    return str(uuid.uuid4())


def generate_token(nbytes: int = 32) -> str:
    """Opaque, URL-safe bearer value (codes, refresh tokens, device codes)."""
    return secrets.token_urlsafe(nbytes)


def generate_alphanumeric(length: int) -> str:
    return "".join(secrets.choice(_ALPHANUMERIC) for _ in range(length))


def generate_client_secret(length: int = 64) -> str:
    return generate_alphanumeric(length)


def generate_user_code() -> str:
    """Short code the user types on a second device, formatted ``XXXX-XXXX``."""
    raw = "".join(secrets.choice(USER_CODE_ALPHABET) for _ in range(USER_CODE_LENGTH))
    return f"{raw[:4]}-{raw[4:]}"


def normalize_user_code(value: str) -> str:
    """Uppercase, drop separators and whitespace, re-insert the dash."""
    raw = "".join(ch for ch in value.upper() if ch.isalnum())
    if len(raw) == USER_CODE_LENGTH:
        return f"{raw[:4]}-{raw[4:]}"
    return raw


def token_fingerprint(token: str) -> str:
    """SHA-256 hex digest used to key blacklist entries without storing the token."""
    return hashlib.sha256(token.encode()).hexdigest()


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


# ---------------------------------------------------------------------------
# PKCE (RFC 7636)
# ---------------------------------------------------------------------------


def compute_s256_challenge(verifier: str) -> str:
    """BASE64URL(SHA256(code_verifier)) without padding."""
    return b64url(hashlib.sha256(verifier.encode()).digest())


def verify_pkce(verifier: str, challenge: str, method: str | None) -> bool:
    if method in (None, "", "S256"):
        return constant_time_equals(compute_s256_challenge(verifier), challenge)
    if method == "plain":
        return constant_time_equals(verifier, challenge)
    return False


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------


class JwtCodec:
    """Signs and verifies the server's own JWTs with one configured key.

    The key is injected once at construction; nothing here reads settings.
    """

    def __init__(self, secret: str, algorithm: str = "HS256"):
        if not secret:
            raise ValueError("JWT secret must not be empty")
        self._secret = secret
        self.algorithm = algorithm

    def encode(self, claims: dict[str, Any]) -> str:
        return jwt.encode(claims, self._secret, algorithm=self.algorithm)

    def decode(self, token: str, *, verify_exp: bool = True) -> dict[str, Any]:
        """Verify the signature and return the claims.

        ``aud`` is not checked here; access tokens carry the client id as
        audience and callers compare it themselves. Raises ``jwt.PyJWTError``.
        """
        return jwt.decode(
            token,
            self._secret,
            algorithms=[self.algorithm],
            options={"verify_exp": verify_exp, "verify_aud": False},
        )
