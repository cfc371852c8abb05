# Tests for the grant/token engine.
# Created: 2026-02-20

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import timedelta

import pytest

from authgate.api.oauth2.client_auth import ClientCredentials
from authgate.api.oauth2.credentials import compute_s256_challenge, token_fingerprint
from authgate.api.oauth2.errors import (
    AccessDenied,
    AuthenticationError,
    InsufficientScope,
    InvalidGrant,
    InvalidScope,
    InvalidToken,
    NotFoundError,
    OAuthError,
    UnauthorizedClient,
    UnsupportedGrantType,
    ValidationError,
)
from authgate.api.oauth2.models import utcnow
from authgate.api.oauth2.provider import OAuthProvider

REDIRECT = "https://app/cb"
C1 = ClientCredentials(client_id="c1", client_secret="s1")


@pytest.fixture
def server(provider):
    provider.scopes.create_scope("read")
    provider.scopes.create_scope("write")
    provider.clients.create_client("App", redirect_uris=[REDIRECT], client_id="c1", secret="s1")
    return provider.server


def _authorize(server, user_id="alice", scope="read", verifier="verifier1", method="S256"):
    challenge = compute_s256_challenge(verifier) if method == "S256" else verifier
    return server.authorize(
        user_id=user_id,
        client_id="c1",
        redirect_uri=REDIRECT,
        scope=scope,
        code_challenge=challenge,
        code_challenge_method=method,
    )


class TestAuthorize:
    def test_issues_code(self, server, alice, events):
        code = _authorize(server)
        stored = server.storage.get_auth_code(code.id)
        assert stored.user_id == "alice"
        assert stored.scopes == ["read"]
        assert stored.code_challenge_method == "S256"
        assert "authorization_code_issued" in events.actions()

    def test_unknown_client(self, server, alice):
        with pytest.raises(AuthenticationError):
            server.authorize(user_id="alice", client_id="nope", redirect_uri=REDIRECT)

    def test_unregistered_redirect(self, server, alice):
        with pytest.raises(ValidationError):
            server.authorize(
                user_id="alice",
                client_id="c1",
                redirect_uri="https://evil/cb",
                code_challenge="x" * 43,
            )

    def test_unknown_scope(self, server, alice):
        with pytest.raises(InvalidScope):
            _authorize(server, scope="read admin")

    def test_bad_challenge_method(self, server, alice):
        with pytest.raises(ValidationError):
            server.authorize(
                user_id="alice",
                client_id="c1",
                redirect_uri=REDIRECT,
                code_challenge="x" * 43,
                code_challenge_method="S512",
            )

    def test_public_client_requires_pkce(self, server, provider, alice):
        provider.clients.create_client(
            "SPA", redirect_uris=[REDIRECT], client_id="spa", confidential=False
        )
        with pytest.raises(ValidationError):
            server.authorize(user_id="alice", client_id="spa", redirect_uri=REDIRECT)

    def test_user_restricted_to_other_clients(self, server, provider):
        provider.users.add_user("bob@example.com", user_id="bob", allowed_client_ids={"other"})
        with pytest.raises(AccessDenied):
            _authorize(server, user_id="bob")


class TestAuthorizationCodeGrant:
    def test_exchange_once(self, server, alice):
        code = _authorize(server)
        body = server.exchange_authorization_code(C1, code.id, REDIRECT, "verifier1")
        assert body["token_type"] == "Bearer"
        assert body["scope"] == "read"
        assert body["refresh_token"]
        assert body["expires_in"] == 3600
        claims = server.decode_token(body["access_token"])
        assert claims["sub"] == "alice"
        assert claims["aud"] == "c1"
        assert claims["scopes"] == ["read"]

        with pytest.raises(InvalidGrant):
            server.exchange_authorization_code(C1, code.id, REDIRECT, "verifier1")

    def test_wrong_verifier_spends_code(self, server, alice):
        code = _authorize(server)
        with pytest.raises(InvalidGrant):
            server.exchange_authorization_code(C1, code.id, REDIRECT, "wrong-verifier")
        with pytest.raises(InvalidGrant):
            server.exchange_authorization_code(C1, code.id, REDIRECT, "verifier1")

    def test_missing_verifier(self, server, alice):
        code = _authorize(server)
        with pytest.raises(InvalidGrant):
            server.exchange_authorization_code(C1, code.id, REDIRECT, None)

    def test_plain_pkce(self, server, alice):
        code = _authorize(server, verifier="plain-verifier-value", method="plain")
        body = server.exchange_authorization_code(C1, code.id, REDIRECT, "plain-verifier-value")
        assert body["access_token"]

    def test_expired_code(self, server, alice):
        code = _authorize(server)
        server.storage.save_auth_code(replace(code, expires_at=utcnow() - timedelta(seconds=1)))
        with pytest.raises(InvalidGrant):
            server.exchange_authorization_code(C1, code.id, REDIRECT, "verifier1")

    def test_redirect_mismatch(self, server, provider, alice):
        provider.clients.update_client("c1", redirect_uris=[REDIRECT, "https://app/other"])
        code = _authorize(server)
        with pytest.raises(InvalidGrant):
            server.exchange_authorization_code(C1, code.id, "https://app/other", "verifier1")

    def test_redirect_required(self, server, alice):
        code = _authorize(server)
        with pytest.raises(ValidationError):
            server.exchange_authorization_code(C1, code.id, None, "verifier1")

    def test_code_bound_to_client(self, server, provider, alice):
        provider.clients.create_client(
            "Other", redirect_uris=[REDIRECT], client_id="c2", secret="s2"
        )
        code = _authorize(server)
        creds = ClientCredentials(client_id="c2", client_secret="s2")
        with pytest.raises(InvalidGrant):
            server.exchange_authorization_code(creds, code.id, REDIRECT, "verifier1")

    def test_bad_client_secret(self, server, alice):
        code = _authorize(server)
        creds = ClientCredentials(client_id="c1", client_secret="nope")
        with pytest.raises(AuthenticationError):
            server.exchange_authorization_code(creds, code.id, REDIRECT, "verifier1")

    def test_unknown_code(self, server):
        with pytest.raises(InvalidGrant):
            server.exchange_authorization_code(C1, "no-such-code", REDIRECT, "verifier1")

    def test_public_client_exchange(self, server, provider, alice):
        provider.clients.create_client(
            "SPA", redirect_uris=[REDIRECT], client_id="spa", confidential=False
        )
        code = server.authorize(
            user_id="alice",
            client_id="spa",
            redirect_uri=REDIRECT,
            scope="read",
            code_challenge=compute_s256_challenge("spa-verifier"),
        )
        body = server.exchange_authorization_code(
            ClientCredentials(client_id="spa"), code.id, REDIRECT, "spa-verifier"
        )
        assert body["access_token"]

    def test_concurrent_redemption_has_one_winner(self, server, alice):
        code = _authorize(server)

        def attempt(_):
            try:
                server.exchange_authorization_code(C1, code.id, REDIRECT, "verifier1")
                return True
            except OAuthError:
                return False

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(attempt, range(16)))
        assert results.count(True) == 1


class TestRefreshGrant:
    @pytest.fixture
    def tokens(self, server, alice):
        code = _authorize(server, scope="read write")
        return server.exchange_authorization_code(C1, code.id, REDIRECT, "verifier1")

    def test_rotation_invalidates_old_pair(self, server, tokens, events):
        body = server.refresh(C1, tokens["refresh_token"])
        assert body["scope"] == "read write"
        assert body["refresh_token"] != tokens["refresh_token"]
        assert "token_refreshed" in events.actions()

        with pytest.raises(InvalidToken):
            server.validate_token_and_scopes(tokens["access_token"])
        with pytest.raises(InvalidGrant):
            server.refresh(C1, tokens["refresh_token"])

        record = server.validate_token_and_scopes(body["access_token"], ["read", "write"])
        assert record.user_id == "alice"

    def test_narrow_scope(self, server, tokens):
        body = server.refresh(C1, tokens["refresh_token"], scope="read")
        assert body["scope"] == "read"

    def test_cannot_widen_scope(self, server, provider, tokens):
        provider.scopes.create_scope("admin")
        with pytest.raises(InvalidScope):
            server.refresh(C1, tokens["refresh_token"], scope="read admin")

    def test_bound_to_client(self, server, provider, tokens):
        provider.clients.create_client("Other", client_id="c2", secret="s2")
        with pytest.raises(InvalidGrant):
            server.refresh(
                ClientCredentials(client_id="c2", client_secret="s2"), tokens["refresh_token"]
            )

    def test_unknown_refresh_token(self, server):
        with pytest.raises(InvalidGrant):
            server.refresh(C1, "bogus")

    def test_refresh_token_required(self, server):
        with pytest.raises(ValidationError):
            server.refresh(C1, None)


class TestClientCredentialsGrant:
    def test_issues_access_token_only(self, server):
        body = server.client_credentials(C1, "read")
        assert "refresh_token" not in body
        assert body["scope"] == "read"
        claims = server.decode_token(body["access_token"])
        assert claims["sub"] == ""
        assert claims["aud"] == "c1"

    def test_public_client_refused(self, server, provider):
        provider.clients.create_client("SPA", client_id="spa", confidential=False)
        with pytest.raises(UnauthorizedClient):
            server.client_credentials(ClientCredentials(client_id="spa"), "read")

    def test_bad_credentials(self, server):
        with pytest.raises(AuthenticationError):
            server.client_credentials(ClientCredentials(client_id="c1", client_secret="x"), None)


class TestRestrictedScopes:
    @pytest.fixture
    def admin_scope(self, provider):
        return provider.scopes.create_scope("admin")

    @pytest.mark.parametrize("scope", ["*", "admin", "read admin"])
    def test_plain_client_cannot_take_restricted_scope(self, server, admin_scope, scope):
        with pytest.raises(InvalidScope):
            server.client_credentials(C1, scope)

    def test_allowed_client_gets_restricted_scope(self, server, provider, admin_scope):
        provider.clients.create_client(
            "Console", client_id="console", secret="k", allowed_scopes=["admin"]
        )
        console = ClientCredentials(client_id="console", client_secret="k")
        assert server.client_credentials(console, "admin")["scope"] == "admin"
        with pytest.raises(InvalidScope):
            server.client_credentials(console, "*")

    def test_allowed_scopes_limit_ordinary_scopes(self, server, provider):
        provider.clients.create_client(
            "Reader", client_id="reader", secret="r", allowed_scopes=["read"]
        )
        reader = ClientCredentials(client_id="reader", client_secret="r")
        assert server.client_credentials(reader, "read")["scope"] == "read"
        with pytest.raises(InvalidScope):
            server.client_credentials(reader, "write")

    def test_flagged_scope_is_restricted(self, server, provider):
        provider.scopes.create_scope("billing", restricted=True)
        with pytest.raises(InvalidScope):
            server.client_credentials(C1, "billing")

    def test_restricted_defaults_are_dropped(self, server, provider):
        provider.scopes.create_scope("audit", is_default=True, restricted=True)
        provider.scopes.update_scope(
            provider.scopes.get_scope_by_name("read").id, is_default=True
        )
        assert server.client_credentials(C1, None)["scope"] == "read"

    def test_authorize_refuses_wildcard(self, server, alice):
        with pytest.raises(InvalidScope):
            _authorize(server, scope="*")

    def test_personal_access_token_refuses_wildcard(self, server, provider):
        provider.clients.create_client("PAT", personal_access_client=True)
        with pytest.raises(InvalidScope):
            server.create_personal_access_token("alice", "cli", scope="*")

    def test_configured_admin_client(self, settings, events, notifier):
        settings.admin_client_id = "root"
        settings.admin_client_secret = "root-secret"
        provider = OAuthProvider(settings=settings, events=events, notifier=notifier)
        root = ClientCredentials(client_id="root", client_secret="root-secret")
        body = provider.server.client_credentials(root, "admin")
        record = provider.server.validate_token_and_scopes(body["access_token"], ["admin"])
        assert record.client_id == "root"
        assert provider.scopes.get_scope_by_name("admin").restricted


class TestTokenValidation:
    def test_missing_scope(self, server):
        token = server.client_credentials(C1, "read")["access_token"]
        with pytest.raises(InsufficientScope):
            server.validate_token_and_scopes(token, ["write"])

    def test_wildcard_satisfies_everything(self, server, provider):
        provider.clients.create_client("Ops", client_id="ops", secret="o1", allowed_scopes=["*"])
        ops = ClientCredentials(client_id="ops", client_secret="o1")
        token = server.client_credentials(ops, "*")["access_token"]
        record = server.validate_token_and_scopes(token, ["read", "write", "admin"])
        assert record.scopes == ["*"]

    def test_garbage_token(self, server):
        with pytest.raises(InvalidToken):
            server.validate_token_and_scopes("not-a-jwt")

    def test_expired_record(self, server):
        token = server.client_credentials(C1, "read")["access_token"]
        record_id = server.decode_token(token)["jti"]
        record = server.storage.get_access_token(record_id)
        server.storage.save_access_token(
            replace(record, expires_at=utcnow() - timedelta(seconds=1))
        )
        with pytest.raises(InvalidToken):
            server.validate_token_and_scopes(token)

    def test_certificate_bound_token(self, server):
        issued = server.issue_tokens(
            client_id="c1", user_id=None, scopes=["read"], cnf_thumbprint="abc123"
        )
        assert server.decode_token(issued.jwt)["cnf"] == {"x5t#S256": "abc123"}


class TestIntrospection:
    def test_active_access_token(self, server):
        token = server.client_credentials(C1, "read")["access_token"]
        result = server.introspect(token)
        assert result["active"] is True
        assert result["scope"] == "read"
        assert result["client_id"] == "c1"
        assert result["aud"] == "c1"
        assert result["exp"] > result["iat"]

    @pytest.mark.parametrize("token", [None, "", "garbage", "a.b.c"])
    def test_inactive_is_minimal(self, server, token):
        assert server.introspect(token) == {"active": False}

    def test_revoked_token_inactive(self, server):
        token = server.client_credentials(C1, "read")["access_token"]
        server.revoke(token)
        assert server.introspect(token) == {"active": False}

    def test_refresh_token(self, server, alice):
        code = _authorize(server)
        tokens = server.exchange_authorization_code(C1, code.id, REDIRECT, "verifier1")
        result = server.introspect(tokens["refresh_token"], "refresh_token")
        assert result["active"] is True
        assert result["token_type"] == "refresh_token"
        assert result["sub"] == "alice"


class TestRevocation:
    def test_revoke_access_token_cascades(self, server, alice, events):
        code = _authorize(server)
        tokens = server.exchange_authorization_code(C1, code.id, REDIRECT, "verifier1")
        assert server.revoke(tokens["access_token"]) is True
        with pytest.raises(InvalidToken):
            server.validate_token_and_scopes(tokens["access_token"])
        with pytest.raises(InvalidGrant):
            server.refresh(C1, tokens["refresh_token"])
        assert "token_revoked" in events.actions()

    def test_revoked_jwt_is_blacklisted(self, server):
        token = server.client_credentials(C1, "read")["access_token"]
        server.revoke(token)
        assert server.storage.is_blacklisted(token_fingerprint(token))

    def test_revoke_refresh_token(self, server, alice):
        code = _authorize(server)
        tokens = server.exchange_authorization_code(C1, code.id, REDIRECT, "verifier1")
        assert server.revoke(tokens["refresh_token"], "refresh_token") is True
        with pytest.raises(InvalidGrant):
            server.refresh(C1, tokens["refresh_token"])

    def test_unknown_token(self, server):
        assert server.revoke("whatever") is False

    def test_second_revoke_reports_nothing(self, server):
        token = server.client_credentials(C1, "read")["access_token"]
        assert server.revoke(token) is True
        assert server.revoke(token) is False


class TestIdToken:
    def test_claims(self, server):
        id_token = server.create_id_token(user_id="alice", client_id="c1", nonce="n-1")
        claims = server.decode_token(id_token)
        assert claims["iss"] == "https://auth.example.test"
        assert claims["aud"] == "c1"
        assert claims["sub"] == "alice"
        assert claims["nonce"] == "n-1"
        assert claims["auth_time"] <= claims["iat"]


class TestPersonalAccessTokens:
    def test_requires_personal_access_client(self, server):
        with pytest.raises(ValidationError):
            server.create_personal_access_token("alice", "laptop")

    def test_create_list_revoke(self, server, provider):
        provider.clients.create_client("PAT", personal_access_client=True)
        issued = server.create_personal_access_token("alice", "laptop", scope="read")
        assert issued.refresh_token is None
        assert issued.access_token.name == "laptop"
        lifetime = issued.access_token.expires_at - issued.access_token.created_at
        assert lifetime == timedelta(days=365)

        listed = server.list_user_tokens("alice")
        assert [t.id for t in listed] == [issued.access_token.id]

        with pytest.raises(NotFoundError):
            server.revoke_user_token("bob", issued.access_token.id)
        server.revoke_user_token("alice", issued.access_token.id)
        assert server.list_user_tokens("alice") == []

    def test_custom_lifetime(self, server, provider):
        provider.clients.create_client("PAT", personal_access_client=True)
        issued = server.create_personal_access_token("alice", "ci", expires_in=60)
        lifetime = issued.access_token.expires_at - issued.access_token.created_at
        assert lifetime == timedelta(seconds=60)

    def test_name_required(self, server, provider):
        provider.clients.create_client("PAT", personal_access_client=True)
        with pytest.raises(ValidationError):
            server.create_personal_access_token("alice", "  ")

    def test_revoke_all(self, server, provider, events):
        provider.clients.create_client("PAT", personal_access_client=True)
        server.create_personal_access_token("alice", "one")
        server.create_personal_access_token("alice", "two")
        server.create_personal_access_token("bob", "three")
        assert server.revoke_all_user_tokens("alice") == 2
        assert server.list_user_tokens("alice") == []
        assert len(server.list_user_tokens("bob")) == 1
        assert "user_tokens_revoked" in events.actions()


class TestTokenDispatch:
    def test_password_grant_rejected(self, provider, server):
        with pytest.raises(UnsupportedGrantType):
            provider.token("password", C1, {"username": "a", "password": "b"})

    def test_unknown_grant(self, provider, server):
        with pytest.raises(UnsupportedGrantType):
            provider.token("urn:example:magic", C1, {})

    def test_missing_grant_type(self, provider, server):
        with pytest.raises(ValidationError):
            provider.token(None, C1, {})

    def test_client_credentials_via_dispatch(self, provider, server):
        body = provider.token("client_credentials", C1, {"scope": "write"})
        assert body["scope"] == "write"
