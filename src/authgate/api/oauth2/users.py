# End-user directory.
# Created: 2026-02-20
#
# User accounts are owned by the host application. The authorization server
# only needs to look users up, resolve login hints, and ask whether a user
# may use a given client.

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Protocol

from authgate.api.oauth2.credentials import JwtCodec, generate_id, hash_password, verify_password
from authgate.api.oauth2.models import Client, utcnow

logger = logging.getLogger(__name__)


@dataclass
class User:
    id: str
    email: str
    name: str = ""
    password_hash: str | None = None
    # None means the user may use any client
    allowed_client_ids: set[str] | None = None
    active: bool = True
    phone: str | None = None
    extra: dict[str, str] = field(default_factory=dict)


class UserDirectory(Protocol):
    def get(self, user_id: str) -> User | None: ...

    def find_by_login_hint(self, hint: str) -> User | None: ...

    def can_access_client(self, user_id: str, client: Client) -> bool: ...

    def verify_password(self, username: str, password: str) -> User | None: ...


class InMemoryUserDirectory:
    """Dictionary-backed UserDirectory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._users: dict[str, User] = {}

    def add_user(
        self,
        email: str,
        password: str | None = None,
        name: str = "",
        user_id: str | None = None,
        allowed_client_ids: set[str] | None = None,
        phone: str | None = None,
    ) -> User:
        user = User(
            id=user_id or generate_id(),
            email=email,
            name=name,
            password_hash=hash_password(password) if password else None,
            allowed_client_ids=allowed_client_ids,
            phone=phone,
        )
        with self._lock:
            self._users[user.id] = user
        return user

    def get(self, user_id: str) -> User | None:
        with self._lock:
            user = self._users.get(user_id)
        return user if user and user.active else None

    def find_by_login_hint(self, hint: str) -> User | None:
        """Match a hint against user id, email (case-insensitive) or phone."""
        hint = hint.strip()
        if not hint:
            return None
        user = self.get(hint)
        if user is not None:
            return user
        lowered = hint.lower()
        with self._lock:
            for candidate in self._users.values():
                if not candidate.active:
                    continue
                if candidate.email.lower() == lowered:
                    return candidate
                if candidate.phone and candidate.phone == hint:
                    return candidate
        return None

    def can_access_client(self, user_id: str, client: Client) -> bool:
        user = self.get(user_id)
        if user is None or client.revoked:
            return False
        if user.allowed_client_ids is None:
            return True
        return client.id in user.allowed_client_ids

    def verify_password(self, username: str, password: str) -> User | None:
        user = self.find_by_login_hint(username)
        if user is None or not user.password_hash:
            return None
        return user if verify_password(password, user.password_hash) else None

    def deactivate(self, user_id: str) -> None:
        with self._lock:
            if user_id in self._users:
                self._users[user_id].active = False


def issue_session_token(codec: JwtCodec, user_id: str, ttl: int = 3600) -> str:
    """Mint an end-user session bearer token (what the login page hands out)."""
    now = utcnow()
    return codec.encode(
        {
            "sub": user_id,
            "typ": "session",
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=ttl)).timestamp()),
        }
    )
