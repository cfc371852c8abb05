# OAuth2 record storage.
# Created: 2026-02-20
#
# In-process store for clients, scopes, codes, tokens, device, CIBA and
# pushed authorization records. Records go in and come out as deep copies.
# Every state change goes through a method here, and single-use consumption
# is a conditional write performed under the store lock (the equivalent of
# UPDATE ... WHERE status = 'pending').

from __future__ import annotations

import logging
import threading
from copy import deepcopy
from collections.abc import Iterable
from datetime import datetime
from typing import Any, TypeVar

from authgate.api.oauth2.models import (
    AccessToken,
    AuthorizationCode,
    CibaRequest,
    CibaStatus,
    Client,
    DeviceAuthorization,
    DeviceStatus,
    PushedAuthorizationRequest,
    RefreshToken,
    Scope,
    TokenBlacklistEntry,
    advance_ciba_status,
    advance_device_status,
    utcnow,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _copy(record: T | None) -> T | None:
    if record is None:
        return None
    return deepcopy(record)


class OAuthStorage:
    """Thread-safe in-memory OAuth2 storage."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._clients: dict[str, Client] = {}
        self._scopes: dict[str, Scope] = {}
        self._codes: dict[str, AuthorizationCode] = {}
        self._access_tokens: dict[str, AccessToken] = {}
        self._refresh_tokens: dict[str, RefreshToken] = {}
        self._devices: dict[str, DeviceAuthorization] = {}  # keyed by device_code
        self._user_codes: dict[str, str] = {}  # user_code -> device_code
        self._ciba: dict[str, CibaRequest] = {}  # keyed by auth_req_id
        self._blacklist: dict[str, TokenBlacklistEntry] = {}
        self._pushed: dict[str, PushedAuthorizationRequest] = {}  # keyed by request_uri

    # ----- Clients -----

    def save_client(self, client: Client) -> None:
        with self._lock:
            self._clients[client.id] = _copy(client)

    def get_client(self, client_id: str) -> Client | None:
        with self._lock:
            return _copy(self._clients.get(client_id))

    def list_clients(
        self, user_id: str | None = None, include_revoked: bool = False
    ) -> list[Client]:
        with self._lock:
            clients = [
                _copy(c)
                for c in self._clients.values()
                if (include_revoked or not c.revoked) and (user_id is None or c.user_id == user_id)
            ]
        return sorted(clients, key=lambda c: c.created_at)

    def delete_client(self, client_id: str) -> bool:
        with self._lock:
            return self._clients.pop(client_id, None) is not None

    # ----- Scopes -----

    def save_scope(self, scope: Scope) -> None:
        with self._lock:
            self._scopes[scope.id] = _copy(scope)

    def get_scope(self, scope_id: str) -> Scope | None:
        with self._lock:
            return _copy(self._scopes.get(scope_id))

    def get_scope_by_name(self, name: str) -> Scope | None:
        with self._lock:
            for scope in self._scopes.values():
                if scope.name == name:
                    return _copy(scope)
        return None

    def list_scopes(self) -> list[Scope]:
        with self._lock:
            return sorted((_copy(s) for s in self._scopes.values()), key=lambda s: s.name)

    def delete_scope(self, scope_id: str) -> bool:
        with self._lock:
            return self._scopes.pop(scope_id, None) is not None

    # ----- Authorization codes -----

    def save_auth_code(self, code: AuthorizationCode) -> None:
        with self._lock:
            self._codes[code.id] = _copy(code)

    def get_auth_code(self, code_id: str) -> AuthorizationCode | None:
        with self._lock:
            return _copy(self._codes.get(code_id))

    def consume_auth_code(self, code_id: str) -> bool:
        """Revoke the code if it is still live. True only for the caller that revoked it."""
        with self._lock:
            code = self._codes.get(code_id)
            if code is None or code.revoked:
                return False
            code.revoked = True
            return True

    # ----- Access and refresh tokens -----

    def save_access_token(self, token: AccessToken) -> None:
        with self._lock:
            self._access_tokens[token.id] = _copy(token)

    def get_access_token(self, token_id: str) -> AccessToken | None:
        with self._lock:
            return _copy(self._access_tokens.get(token_id))

    def list_access_tokens(
        self, user_id: str | None = None, client_id: str | None = None
    ) -> list[AccessToken]:
        with self._lock:
            tokens = [
                _copy(t)
                for t in self._access_tokens.values()
                if (user_id is None or t.user_id == user_id)
                and (client_id is None or t.client_id == client_id)
            ]
        return sorted(tokens, key=lambda t: t.created_at)

    def revoke_access_token(self, token_id: str) -> bool:
        """Revoke an access token and every refresh token issued with it."""
        with self._lock:
            token = self._access_tokens.get(token_id)
            if token is None or token.revoked:
                return False
            token.revoked = True
            for refresh in self._refresh_tokens.values():
                if refresh.access_token_id == token_id:
                    refresh.revoked = True
            return True

    def revoke_tokens_for_user(self, user_id: str) -> int:
        with self._lock:
            ids = [t.id for t in self._access_tokens.values() if t.user_id == user_id]
            return sum(1 for token_id in ids if self.revoke_access_token(token_id))

    def revoke_tokens_for_client(self, client_id: str) -> int:
        with self._lock:
            ids = [t.id for t in self._access_tokens.values() if t.client_id == client_id]
            return sum(1 for token_id in ids if self.revoke_access_token(token_id))

    def save_refresh_token(self, token: RefreshToken) -> None:
        with self._lock:
            self._refresh_tokens[token.id] = _copy(token)

    def get_refresh_token(self, token_id: str) -> RefreshToken | None:
        with self._lock:
            return _copy(self._refresh_tokens.get(token_id))

    def revoke_refresh_token(self, token_id: str) -> bool:
        """Conditional revoke; only one concurrent rotation can win."""
        with self._lock:
            token = self._refresh_tokens.get(token_id)
            if token is None or token.revoked:
                return False
            token.revoked = True
            return True

    # ----- Blacklist -----

    def add_blacklist_entry(self, entry: TokenBlacklistEntry) -> None:
        with self._lock:
            self._blacklist[entry.token_hash] = _copy(entry)

    def is_blacklisted(self, token_hash: str, now: datetime | None = None) -> bool:
        with self._lock:
            entry = self._blacklist.get(token_hash)
            return entry is not None and (now or utcnow()) < entry.expires_at

    # ----- Device authorizations -----

    def save_device(self, device: DeviceAuthorization) -> None:
        with self._lock:
            self._devices[device.device_code] = _copy(device)
            self._user_codes[device.user_code] = device.device_code

    def get_device_by_device_code(self, device_code: str) -> DeviceAuthorization | None:
        with self._lock:
            return _copy(self._devices.get(device_code))

    def get_device_by_user_code(self, user_code: str) -> DeviceAuthorization | None:
        with self._lock:
            device_code = self._user_codes.get(user_code)
            return _copy(self._devices.get(device_code)) if device_code else None

    def user_code_in_use(self, user_code: str) -> bool:
        with self._lock:
            return user_code in self._user_codes

    def transition_device(
        self,
        device_code: str,
        expected: Iterable[DeviceStatus],
        target: DeviceStatus,
        **changes: Any,
    ) -> DeviceAuthorization | None:
        """Move the record to *target* only if its status is one of *expected*.

        Returns the updated record, or None when another caller got there first.
        """
        with self._lock:
            device = self._devices.get(device_code)
            if device is None or device.status not in set(expected):
                return None
            device.status = advance_device_status(device.status, target)
            for key, value in changes.items():
                setattr(device, key, value)
            return _copy(device)

    def authorize_device_if_pending(
        self, device_code: str, user_id: str, approve: bool = True
    ) -> DeviceAuthorization | None:
        target = DeviceStatus.AUTHORIZED if approve else DeviceStatus.DENIED
        return self.transition_device(
            device_code, (DeviceStatus.PENDING,), target, user_id=user_id
        )

    def revoke_device_code_if_active(
        self, device_code: str, target: DeviceStatus = DeviceStatus.CONSUMED
    ) -> DeviceAuthorization | None:
        """Spend (or expire) a live device code. CONSUMED requires prior approval."""
        expected = (
            (DeviceStatus.AUTHORIZED,)
            if target == DeviceStatus.CONSUMED
            else (DeviceStatus.PENDING, DeviceStatus.AUTHORIZED)
        )
        return self.transition_device(device_code, expected, target)

    def record_device_poll(self, device_code: str, now: datetime) -> datetime | None:
        """Stamp the poll time and return the previous one."""
        with self._lock:
            device = self._devices.get(device_code)
            if device is None:
                return None
            previous = device.last_polled_at
            device.last_polled_at = now
            return previous

    def slow_device_polling(self, device_code: str, increment: int) -> int:
        with self._lock:
            device = self._devices[device_code]
            device.interval += increment
            return device.interval

    # ----- CIBA requests -----

    def save_ciba_request(self, request: CibaRequest) -> None:
        with self._lock:
            self._ciba[request.auth_req_id] = _copy(request)

    def get_ciba_request(self, auth_req_id: str) -> CibaRequest | None:
        with self._lock:
            return _copy(self._ciba.get(auth_req_id))

    def transition_ciba_status(
        self,
        auth_req_id: str,
        expected: CibaStatus,
        target: CibaStatus,
        **changes: Any,
    ) -> CibaRequest | None:
        """Move the request from *expected* to *target*; None if it was no longer *expected*."""
        with self._lock:
            request = self._ciba.get(auth_req_id)
            if request is None or request.status != expected:
                return None
            request.status = advance_ciba_status(request.status, target)
            for key, value in changes.items():
                setattr(request, key, value)
            return _copy(request)

    def consume_ciba_request(self, auth_req_id: str) -> bool:
        """Mark a completed request as redeemed. True only for the first caller."""
        with self._lock:
            request = self._ciba.get(auth_req_id)
            if request is None or request.status != CibaStatus.COMPLETE or request.consumed:
                return False
            request.consumed = True
            return True

    def record_ciba_poll(self, auth_req_id: str, now: datetime) -> datetime | None:
        with self._lock:
            request = self._ciba.get(auth_req_id)
            if request is None:
                return None
            previous = request.last_polled_at
            request.last_polled_at = now
            return previous

    def slow_ciba_polling(self, auth_req_id: str, increment: int) -> int:
        with self._lock:
            request = self._ciba[auth_req_id]
            request.interval = (request.interval or 0) + increment
            return request.interval

    # ----- Pushed authorization requests -----

    def save_pushed_request(self, pushed: PushedAuthorizationRequest) -> None:
        with self._lock:
            self._pushed[pushed.request_uri] = _copy(pushed)

    def get_pushed_request(self, request_uri: str) -> PushedAuthorizationRequest | None:
        with self._lock:
            return _copy(self._pushed.get(request_uri))

    def consume_pushed_request(self, request_uri: str) -> bool:
        """Spend a request_uri. True only for the first caller."""
        with self._lock:
            pushed = self._pushed.get(request_uri)
            if pushed is None or pushed.used:
                return False
            pushed.used = True
            return True

    # ----- Expiry sweep -----

    def delete_expired(self, now: datetime | None = None) -> dict[str, int]:
        """Drop every record past its expiry. Safe to call repeatedly."""
        now = now or utcnow()
        counts: dict[str, int] = {}
        with self._lock:
            expired_codes = [k for k, v in self._codes.items() if v.is_expired(now)]
            for k in expired_codes:
                del self._codes[k]
            counts["authorization_codes"] = len(expired_codes)

            expired_refresh = [k for k, v in self._refresh_tokens.items() if now >= v.expires_at]
            for k in expired_refresh:
                del self._refresh_tokens[k]
            counts["refresh_tokens"] = len(expired_refresh)

            # Keep access tokens that still anchor a live refresh token
            anchored = {r.access_token_id for r in self._refresh_tokens.values()}
            expired_access = [
                k
                for k, v in self._access_tokens.items()
                if v.is_expired(now) and k not in anchored
            ]
            for k in expired_access:
                del self._access_tokens[k]
            counts["access_tokens"] = len(expired_access)

            expired_devices = [k for k, v in self._devices.items() if v.is_expired(now)]
            for k in expired_devices:
                device = self._devices.pop(k)
                self._user_codes.pop(device.user_code, None)
            counts["device_authorizations"] = len(expired_devices)

            expired_ciba = [k for k, v in self._ciba.items() if v.is_expired(now)]
            for k in expired_ciba:
                del self._ciba[k]
            counts["ciba_requests"] = len(expired_ciba)

            expired_pushed = [k for k, v in self._pushed.items() if v.is_expired(now)]
            for k in expired_pushed:
                del self._pushed[k]
            counts["pushed_requests"] = len(expired_pushed)

            expired_blacklist = [k for k, v in self._blacklist.items() if now >= v.expires_at]
            for k in expired_blacklist:
                del self._blacklist[k]
            counts["blacklist_entries"] = len(expired_blacklist)

        return counts

    def expire_ciba_requests(self, now: datetime | None = None) -> int:
        """Flip pending CIBA requests past their expiry to Expired."""
        now = now or utcnow()
        count = 0
        with self._lock:
            for request in self._ciba.values():
                if request.status == CibaStatus.PENDING and request.is_expired(now):
                    request.status = advance_ciba_status(request.status, CibaStatus.EXPIRED)
                    count += 1
        return count
