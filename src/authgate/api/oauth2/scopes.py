# Scope registry.
# Created: 2026-02-20
#
# Scopes are admin-managed named permissions. The wildcard scope "*" implies
# every other scope and can never be deleted. Restricted scopes ("*" and
# "admin" unless configured otherwise) are only granted to clients that list
# them in allowed_scopes.

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from authgate.api.oauth2.credentials import generate_id
from authgate.api.oauth2.errors import ConflictError, InvalidScope, NotFoundError, ValidationError
from authgate.api.oauth2.events import EventSink, emit_event
from authgate.api.oauth2.models import Client, Scope, utcnow
from authgate.api.oauth2.storage import OAuthStorage

logger = logging.getLogger(__name__)

WILDCARD = "*"
ADMIN_SCOPE = "admin"


def has_scope(granted: Iterable[str], required: str) -> bool:
    """True if *granted* contains the wildcard or *required* verbatim."""
    granted = set(granted)
    return WILDCARD in granted or required in granted


def parse_scope(scope: str | Iterable[str] | None) -> list[str]:
    """Split a space-delimited scope string, dropping duplicates but keeping order."""
    if not scope:
        return []
    parts = scope.split() if isinstance(scope, str) else [s for s in scope if s]
    return list(dict.fromkeys(parts))


def format_scope(names: Iterable[str]) -> str:
    return " ".join(names)


class ScopeRegistry:
    """Validates requested scopes against the persisted registry."""

    def __init__(
        self,
        storage: OAuthStorage,
        default_scopes: Sequence[str] = (),
        events: EventSink | None = None,
        restricted_scopes: Iterable[str] = (WILDCARD, ADMIN_SCOPE),
    ):
        self.storage = storage
        self.default_scopes = list(default_scopes)
        self.events = events
        self.restricted_names = frozenset(restricted_scopes)

    def ensure_wildcard(self) -> Scope:
        scope = self.storage.get_scope_by_name(WILDCARD)
        if scope is None:
            scope = Scope(
                id=generate_id(), name=WILDCARD, description="All scopes", restricted=True
            )
            self.storage.save_scope(scope)
        return scope

    def create_scope(
        self,
        name: str,
        description: str | None = None,
        is_default: bool = False,
        restricted: bool = False,
    ) -> Scope:
        name = name.strip()
        self._check_name(name)
        if self.storage.get_scope_by_name(name) is not None:
            raise ConflictError(f"Scope '{name}' already exists")
        scope = Scope(
            id=generate_id(),
            name=name,
            description=description,
            is_default=is_default,
            restricted=restricted,
        )
        self.storage.save_scope(scope)
        emit_event(self.events, "scope_created", f"scope:{name}")
        return scope

    def update_scope(
        self,
        scope_id: str,
        name: str | None = None,
        description: str | None = None,
        is_default: bool | None = None,
        restricted: bool | None = None,
    ) -> Scope:
        scope = self.get_scope(scope_id)
        if name is not None and name.strip() != scope.name:
            name = name.strip()
            if scope.name == WILDCARD:
                raise ValidationError("The wildcard scope cannot be renamed")
            self._check_name(name)
            if self.storage.get_scope_by_name(name) is not None:
                raise ConflictError(f"Scope '{name}' already exists")
            scope.name = name
        if description is not None:
            scope.description = description
        if is_default is not None:
            scope.is_default = is_default
        if restricted is not None:
            scope.restricted = restricted
        scope.updated_at = utcnow()
        self.storage.save_scope(scope)
        return scope

    def delete_scope(self, scope_id: str) -> None:
        scope = self.get_scope(scope_id)
        if scope.name == WILDCARD:
            raise ValidationError("The wildcard scope cannot be deleted")
        self.storage.delete_scope(scope_id)
        emit_event(self.events, "scope_deleted", f"scope:{scope.name}")

    def get_scope(self, scope_id: str) -> Scope:
        scope = self.storage.get_scope(scope_id)
        if scope is None:
            raise NotFoundError("Scope not found")
        return scope

    def get_scope_by_name(self, name: str) -> Scope:
        scope = self.storage.get_scope_by_name(name)
        if scope is None:
            raise NotFoundError("Scope not found")
        return scope

    def list_scopes(self) -> list[Scope]:
        return self.storage.list_scopes()

    def default_scope_set(self) -> list[Scope]:
        """Registry scopes flagged ``is_default``, else the configured default names."""
        flagged = [s for s in self.storage.list_scopes() if s.is_default]
        if flagged:
            return flagged
        resolved = []
        for name in self.default_scopes:
            scope = self.storage.get_scope_by_name(name)
            if scope is None:
                logger.warning("Configured default scope %r is not registered", name)
                continue
            resolved.append(scope)
        return resolved

    def validate_scopes(self, names: Iterable[str] | str | None) -> list[Scope]:
        """Resolve requested names to registered scopes.

        An empty request falls back to the default scopes. Any unknown name
        fails the whole request with InvalidScope.
        """
        requested = parse_scope(names)
        if not requested:
            return self.default_scope_set()
        resolved: list[Scope] = []
        unknown: list[str] = []
        for name in requested:
            scope = self.storage.get_scope_by_name(name)
            if scope is None:
                unknown.append(name)
            else:
                resolved.append(scope)
        if unknown:
            raise InvalidScope(f"Unknown scope(s): {', '.join(unknown)}")
        return resolved

    def validate_scope_names(self, names: Iterable[str] | str | None) -> list[str]:
        return [s.name for s in self.validate_scopes(names)]

    def is_restricted(self, scope: Scope) -> bool:
        return scope.restricted or scope.name in self.restricted_names

    def is_grantable(self, scope: Scope, client: Client) -> bool:
        allowed = client.allowed_scopes
        if self.is_restricted(scope):
            return allowed is not None and scope.name in allowed
        return allowed is None or scope.name in allowed

    def validate_for_client(
        self, names: Iterable[str] | str | None, client: Client
    ) -> list[str]:
        """Scope names *client* may be granted for this request.

        Every grant path goes through here. Defaults the client may not hold
        are dropped; an explicit request for one fails with InvalidScope.
        """
        requested = parse_scope(names)
        if not requested:
            return [s.name for s in self.default_scope_set() if self.is_grantable(s, client)]
        scopes = self.validate_scopes(requested)
        refused = [s.name for s in scopes if not self.is_grantable(s, client)]
        if refused:
            logger.info("Client %s asked for scopes it may not hold: %s", client.id, refused)
            raise InvalidScope(f"Scope(s) not allowed for this client: {' '.join(refused)}")
        return [s.name for s in scopes]

    @staticmethod
    def _check_name(name: str) -> None:
        if not name:
            raise ValidationError("Scope name is required")
        if any(ch.isspace() or ch in '"\\' for ch in name):
            # RFC 6749 §3.3 scope-token charset
            raise ValidationError("Scope names cannot contain spaces or quote characters")
