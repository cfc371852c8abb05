# Tests for the OAuth2 HTTP endpoints: authorize, token, introspect, revoke.
# Created: 2026-02-20

from urllib.parse import parse_qs, urlsplit

import pytest

from authgate.api.oauth2.client_auth import ClientCredentials
from authgate.api.oauth2.credentials import compute_s256_challenge

REDIRECT = "https://app/cb"
C1 = ClientCredentials(client_id="c1", client_secret="s1")


@pytest.fixture
def app_client(provider):
    provider.scopes.create_scope("read")
    provider.scopes.create_scope("write")
    client, _ = provider.clients.create_client(
        "App", redirect_uris=[REDIRECT, "https://app/cb?tenant=1"], client_id="c1", secret="s1"
    )
    return client


def _authorize_params(**overrides):
    params = {
        "response_type": "code",
        "client_id": "c1",
        "redirect_uri": REDIRECT,
        "scope": "read",
        "state": "xyz",
        "code_challenge": compute_s256_challenge("verifier1"),
        "code_challenge_method": "S256",
    }
    params.update(overrides)
    return params


def _query(location):
    parts = urlsplit(location)
    return parts, {k: v[0] for k, v in parse_qs(parts.query).items()}


def _get_code(client, headers, **overrides):
    resp = client.get(
        "/oauth/authorize",
        params=_authorize_params(**overrides),
        headers=headers,
        follow_redirects=False,
    )
    assert resp.status_code == 302
    _, query = _query(resp.headers["location"])
    return query["code"]


class TestAuthorizeEndpoint:
    def test_redirects_with_code_and_state(self, client, app_client, alice_headers):
        resp = client.get(
            "/oauth/authorize",
            params=_authorize_params(),
            headers=alice_headers,
            follow_redirects=False,
        )
        assert resp.status_code == 302
        parts, query = _query(resp.headers["location"])
        assert f"{parts.scheme}://{parts.netloc}{parts.path}" == REDIRECT
        assert query["state"] == "xyz"
        assert query["code"]

    def test_existing_query_string_preserved(self, client, app_client, alice_headers):
        resp = client.get(
            "/oauth/authorize",
            params=_authorize_params(redirect_uri="https://app/cb?tenant=1"),
            headers=alice_headers,
            follow_redirects=False,
        )
        _, query = _query(resp.headers["location"])
        assert query["tenant"] == "1"
        assert query["code"]

    def test_anonymous_user_sent_to_login(self, client, app_client):
        resp = client.get(
            "/oauth/authorize", params=_authorize_params(), follow_redirects=False
        )
        assert resp.status_code == 302
        parts, query = _query(resp.headers["location"])
        assert parts.path == "/login"
        assert "/oauth/authorize" in query["next"]

    def test_access_token_is_not_a_session(self, client, app_client, admin_headers):
        resp = client.get(
            "/oauth/authorize",
            params=_authorize_params(),
            headers=admin_headers,
            follow_redirects=False,
        )
        assert urlsplit(resp.headers["location"]).path == "/login"

    def test_unknown_client_is_not_redirected(self, client, app_client, alice_headers):
        resp = client.get(
            "/oauth/authorize",
            params=_authorize_params(client_id="nope"),
            headers=alice_headers,
            follow_redirects=False,
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"

    def test_unregistered_redirect_is_not_followed(self, client, app_client, alice_headers):
        resp = client.get(
            "/oauth/authorize",
            params=_authorize_params(redirect_uri="https://evil/cb"),
            headers=alice_headers,
            follow_redirects=False,
        )
        assert resp.status_code == 400
        assert "location" not in resp.headers

    def test_unsupported_response_type(self, client, app_client, alice_headers):
        resp = client.get(
            "/oauth/authorize",
            params=_authorize_params(response_type="token"),
            headers=alice_headers,
            follow_redirects=False,
        )
        _, query = _query(resp.headers["location"])
        assert query["error"] == "unsupported_response_type"
        assert query["state"] == "xyz"

    def test_pkce_required(self, client, app_client, alice_headers):
        params = _authorize_params()
        del params["code_challenge"]
        resp = client.get(
            "/oauth/authorize", params=params, headers=alice_headers, follow_redirects=False
        )
        _, query = _query(resp.headers["location"])
        assert query["error"] == "invalid_request"

    def test_unknown_scope_reported_via_redirect(self, client, app_client, alice_headers):
        resp = client.get(
            "/oauth/authorize",
            params=_authorize_params(scope="read payments"),
            headers=alice_headers,
            follow_redirects=False,
        )
        _, query = _query(resp.headers["location"])
        assert query["error"] == "invalid_scope"
        assert "payments" in query["error_description"]


class TestTokenEndpoint:
    def test_code_exchange_then_replay(self, client, app_client, alice_headers):
        code = _get_code(client, alice_headers)
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": REDIRECT,
            "code_verifier": "verifier1",
        }
        resp = client.post("/oauth/token", data=form, auth=("c1", "s1"))
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        body = resp.json()
        assert body["token_type"] == "Bearer"
        assert body["scope"] == "read"
        assert body["access_token"]
        assert body["refresh_token"]

        replay = client.post("/oauth/token", data=form, auth=("c1", "s1"))
        assert replay.status_code == 400
        assert replay.json()["error"] == "invalid_grant"

    def test_wrong_verifier(self, client, app_client, alice_headers):
        code = _get_code(client, alice_headers)
        resp = client.post(
            "/oauth/token",
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": REDIRECT,
                "code_verifier": "not-the-verifier",
            },
            auth=("c1", "s1"),
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_grant"

    def test_bad_client_secret(self, client, app_client):
        resp = client.post(
            "/oauth/token", data={"grant_type": "client_credentials"}, auth=("c1", "wrong")
        )
        assert resp.status_code == 401
        assert resp.json()["error"] == "invalid_client"
        assert resp.headers["www-authenticate"].startswith("Basic")

    def test_client_secret_post(self, client, app_client):
        resp = client.post(
            "/oauth/token",
            data={
                "grant_type": "client_credentials",
                "client_id": "c1",
                "client_secret": "s1",
                "scope": "write",
            },
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["scope"] == "write"
        assert "refresh_token" not in body

    def test_json_body_accepted(self, client, app_client):
        resp = client.post(
            "/oauth/token",
            json={"grant_type": "client_credentials", "client_id": "c1", "client_secret": "s1"},
        )
        assert resp.status_code == 200

    def test_refresh_rotation(self, client, app_client, alice_headers):
        code = _get_code(client, alice_headers, scope="read write")
        first = client.post(
            "/oauth/token",
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": REDIRECT,
                "code_verifier": "verifier1",
            },
            auth=("c1", "s1"),
        ).json()

        resp = client.post(
            "/oauth/token",
            data={
                "grant_type": "refresh_token",
                "refresh_token": first["refresh_token"],
                "scope": "read",
            },
            auth=("c1", "s1"),
        )
        assert resp.status_code == 200
        assert resp.json()["scope"] == "read"

        again = client.post(
            "/oauth/token",
            data={"grant_type": "refresh_token", "refresh_token": first["refresh_token"]},
            auth=("c1", "s1"),
        )
        assert again.json()["error"] == "invalid_grant"

    def test_missing_grant_type(self, client, app_client):
        resp = client.post("/oauth/token", data={}, auth=("c1", "s1"))
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"

    @pytest.mark.parametrize("grant_type", ["password", "implicit"])
    def test_unsupported_grant(self, client, app_client, grant_type):
        resp = client.post("/oauth/token", data={"grant_type": grant_type}, auth=("c1", "s1"))
        assert resp.status_code == 400
        assert resp.json()["error"] == "unsupported_grant_type"


class TestIntrospectAndRevoke:
    @pytest.fixture
    def access_token(self, provider, app_client):
        return provider.server.client_credentials(C1, "read")["access_token"]

    def test_introspect_active(self, client, access_token):
        resp = client.post("/oauth/introspect", data={"token": access_token})
        assert resp.status_code == 200
        body = resp.json()
        assert body["active"] is True
        assert body["client_id"] == "c1"
        assert body["scope"] == "read"

    def test_introspect_garbage(self, client, app_client):
        resp = client.post("/oauth/introspect", data={"token": "garbage"})
        assert resp.json() == {"active": False}

    def test_revoke_then_introspect(self, client, access_token):
        resp = client.post("/oauth/revoke", data={"token": access_token})
        assert resp.status_code == 200
        assert resp.json() == {"revoked": True}
        assert client.post("/oauth/introspect", data={"token": access_token}).json() == {
            "active": False
        }

    def test_revoke_unknown_token_is_ok(self, client, app_client):
        resp = client.post("/oauth/revoke", data={"token": "never-issued"})
        assert resp.status_code == 200

    def test_revoke_requires_token(self, client, app_client):
        resp = client.post("/oauth/revoke", data={})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"
