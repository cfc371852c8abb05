# OAuth provider: wires storage, registries and engines together.
# Created: 2026-02-20

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import timedelta
from typing import Any

from authgate.api.oauth2.ciba import CIBA_GRANT_TYPE, BackchannelAuthRequest, CibaEngine
from authgate.api.oauth2.client_auth import ClientAuthenticator, ClientCredentials
from authgate.api.oauth2.clients import ClientDirectory
from authgate.api.oauth2.credentials import JwtCodec
from authgate.api.oauth2.device import DEVICE_CODE_GRANT_TYPE, DeviceAuthorizationEngine
from authgate.api.oauth2.errors import UnsupportedGrantType, ValidationError
from authgate.api.oauth2.events import AuditEventSink, EventSink
from authgate.api.oauth2.notifications import NotificationChannel, WebhookNotificationChannel
from authgate.api.oauth2.par import PushedAuthorizationEngine
from authgate.api.oauth2.scopes import ADMIN_SCOPE, ScopeRegistry
from authgate.api.oauth2.server import AuthorizationServer, TokenLifetimes
from authgate.api.oauth2.storage import OAuthStorage
from authgate.api.oauth2.sweeper import ExpirySweeper
from authgate.api.oauth2.token_exchange import (
    TOKEN_EXCHANGE_GRANT_TYPE,
    TokenExchangeEngine,
    TokenExchangeRequest,
)
from authgate.api.oauth2.users import InMemoryUserDirectory, UserDirectory
from authgate.config import Settings, get_settings

logger = logging.getLogger(__name__)

GRANT_TYPES = (
    "authorization_code",
    "refresh_token",
    "client_credentials",
    DEVICE_CODE_GRANT_TYPE,
    CIBA_GRANT_TYPE,
    TOKEN_EXCHANGE_GRANT_TYPE,
)


class OAuthProvider:
    """One authorization server instance and everything it depends on."""

    def __init__(
        self,
        settings: Settings | None = None,
        storage: OAuthStorage | None = None,
        users: UserDirectory | None = None,
        events: EventSink | None = None,
        notifier: NotificationChannel | None = None,
    ):
        self.settings = settings or get_settings()
        self.storage = storage or OAuthStorage()
        self.users = users if users is not None else InMemoryUserDirectory()
        self.events = events if events is not None else AuditEventSink()
        self.notifier = notifier or WebhookNotificationChannel(
            timeout=self.settings.notification_timeout,
            user_prompt_url=self.settings.user_prompt_webhook_url,
        )
        s = self.settings

        self.jwt = JwtCodec(s.jwt_secret, s.jwt_algorithm)
        self.session_jwt = JwtCodec(s.user_jwt_secret, "HS256")

        self.scopes = ScopeRegistry(
            self.storage,
            s.default_scopes,
            events=self.events,
            restricted_scopes=s.restricted_scopes,
        )
        self.scopes.ensure_wildcard()
        self.clients = ClientDirectory(
            self.storage,
            secret_length=s.client_secret_length,
            hash_secrets=s.hash_client_secrets,
            events=self.events,
        )
        self._bootstrap_admin_client()
        issuer = s.issuer.rstrip("/")
        self.authenticator = ClientAuthenticator(
            self.storage, audiences=(issuer, f"{issuer}/oauth/token")
        )
        self.server = AuthorizationServer(
            self.storage,
            self.scopes,
            self.authenticator,
            self.jwt,
            lifetimes=TokenLifetimes.from_settings(s),
            issuer=issuer,
            users=self.users,
            events=self.events,
        )
        self.device = DeviceAuthorizationEngine(
            self.server,
            verification_uri=s.device_verification_uri,
            expires_in=timedelta(seconds=s.device_code_ttl),
            interval=s.device_poll_interval,
            users=self.users,
            events=self.events,
        )
        self.ciba = CibaEngine(
            self.server,
            users=self.users,
            notifier=self.notifier,
            default_expiry=s.ciba_default_expiry,
            min_expiry=s.ciba_min_expiry,
            max_expiry=s.ciba_max_expiry,
            poll_interval=s.ciba_poll_interval,
            events=self.events,
        )
        self.par = PushedAuthorizationEngine(
            self.server, expires_in=timedelta(seconds=s.par_ttl), events=self.events
        )
        self.token_exchange = TokenExchangeEngine(self.server)
        self.sweeper = ExpirySweeper(self.storage, interval=s.sweep_interval, events=self.events)

    def _bootstrap_admin_client(self) -> None:
        """Register the configured admin client so the admin API is reachable."""
        s = self.settings
        if not (s.admin_client_id and s.admin_client_secret):
            return
        if self.storage.get_scope_by_name(ADMIN_SCOPE) is None:
            self.scopes.create_scope(ADMIN_SCOPE, description="Admin API", restricted=True)
        if self.storage.get_client(s.admin_client_id) is None:
            self.clients.create_client(
                "Admin console",
                client_id=s.admin_client_id,
                secret=s.admin_client_secret,
                allowed_scopes=[ADMIN_SCOPE],
            )
            logger.info("Registered admin client %s", s.admin_client_id)

    def token(
        self, grant_type: str | None, creds: ClientCredentials, params: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Token endpoint dispatch on ``grant_type``."""
        if not grant_type:
            raise ValidationError("grant_type is required")
        if grant_type == "authorization_code":
            return self.server.exchange_authorization_code(
                creds,
                code=params.get("code"),
                redirect_uri=params.get("redirect_uri"),
                code_verifier=params.get("code_verifier"),
            )
        if grant_type == "refresh_token":
            return self.server.refresh(creds, params.get("refresh_token"), params.get("scope"))
        if grant_type == "client_credentials":
            return self.server.client_credentials(creds, params.get("scope"))
        if grant_type == DEVICE_CODE_GRANT_TYPE:
            return self.device.poll_device_token(creds, params.get("device_code"))
        if grant_type == CIBA_GRANT_TYPE:
            return self.ciba.exchange_ciba_for_tokens(
                creds, grant_type, params.get("auth_req_id")
            )
        if grant_type == TOKEN_EXCHANGE_GRANT_TYPE:
            return self.token_exchange.exchange(creds, TokenExchangeRequest.from_params(params))
        if grant_type == "password":
            # Removed in OAuth 2.1
            raise UnsupportedGrantType("The password grant is not supported")
        raise UnsupportedGrantType(f"Unsupported grant_type: {grant_type}")

    def backchannel_request(self, params: Mapping[str, Any]) -> BackchannelAuthRequest:
        expiry = params.get("requested_expiry")
        if expiry not in (None, ""):
            try:
                expiry = int(expiry)
            except (TypeError, ValueError):
                raise ValidationError("requested_expiry must be an integer") from None
        else:
            expiry = None
        return BackchannelAuthRequest(
            scope=params.get("scope"),
            login_hint=params.get("login_hint"),
            login_hint_token=params.get("login_hint_token"),
            id_token_hint=params.get("id_token_hint"),
            binding_message=params.get("binding_message"),
            user_code=params.get("user_code"),
            requested_expiry=expiry,
            client_notification_token=params.get("client_notification_token"),
            acr_values=params.get("acr_values"),
        )


# Singleton
_provider: OAuthProvider | None = None


def get_oauth_provider() -> OAuthProvider:
    global _provider
    if _provider is None:
        _provider = OAuthProvider()
    return _provider


def reset_oauth_provider() -> None:
    global _provider
    _provider = None
