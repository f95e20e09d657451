"""API-level tests for session bridging and route protection."""

import time
from datetime import datetime, timezone

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from contest_ledger.auth.identity import IdentityResolver, JWTIdentityProvider
from contest_ledger.auth.middleware import RouteProtectionMiddleware, is_protected
from contest_ledger.auth.session import safe_redirect_path
from contest_ledger.deps import get_identity_resolver
from tests.conftest import TEST_AUDIENCE, TEST_SECRET, make_settings, make_token


class TestSession:
    def test_create_session_sets_http_only_cookie(self, client):
        token = make_token("owner-a")

        response = client.post("/auth/session", json={"access_token": token, "expires_in": 3600})

        assert response.status_code == 200, response.text
        assert response.json() == {
            "user": {"id": "owner-a", "email": "owner-a@example.com"},
            "expires_in": 3600,
        }
        cookie = response.headers["set-cookie"]
        assert cookie.startswith(f"sb-access-token={token}")
        assert "HttpOnly" in cookie
        assert "Max-Age=3600" in cookie
        assert "SameSite=lax" in cookie
        assert "Path=/" in cookie

    def test_cookie_never_outlives_token(self, client, clock):
        clock.now = datetime.fromtimestamp(int(time.time()), tz=timezone.utc)
        token = make_token("owner-a", expires_in=600)

        response = client.post("/auth/session", json={"access_token": token, "expires_in": 3600})

        assert 0 < response.json()["expires_in"] <= 600

    def test_invalid_token_sets_no_cookie(self, client):
        response = client.post(
            "/auth/session",
            json={"access_token": make_token("owner-a", secret="wrong"), "expires_in": 3600},
        )

        assert response.status_code == 401
        assert "set-cookie" not in response.headers

    def test_sign_out_clears_cookie(self, client):
        response = client.delete("/auth/session")

        assert response.status_code == 200
        assert response.json() == {"status": "signed_out"}
        cookie = response.headers["set-cookie"]
        assert cookie.startswith("sb-access-token=")
        assert "Max-Age=0" in cookie


@pytest.fixture
def exchange_client(client):
    """Client whose identity provider exchanges any code for a valid token."""
    issued = make_token("owner-a")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"access_token": issued, "expires_in": 3600})

    resolver = IdentityResolver(
        JWTIdentityProvider(
            secret=TEST_SECRET,
            audience=TEST_AUDIENCE,
            token_url="https://auth.example.com/token",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        ),
        cookie_name="sb-access-token",
    )
    client.app.dependency_overrides[get_identity_resolver] = lambda: resolver
    return client


class TestCallback:
    def test_code_exchange_sets_cookie_and_returns(self, exchange_client):
        response = exchange_client.get(
            "/auth/callback",
            params={"code": "abc", "redirectedFrom": "/me/submissions"},
            follow_redirects=False,
        )

        assert response.status_code == 303
        assert response.headers["location"] == "/me/submissions"
        assert "sb-access-token=" in response.headers["set-cookie"]

    @pytest.mark.parametrize("target", ["//evil.example.com", "https://evil.example.com", "/\\evil"])
    def test_open_redirects_fall_back_to_public_page(self, exchange_client, target):
        response = exchange_client.get(
            "/auth/callback",
            params={"code": "abc", "redirectedFrom": target},
            follow_redirects=False,
        )

        assert response.headers["location"] == "/"

    def test_without_code(self, client):
        response = client.get("/auth/callback", follow_redirects=False)

        assert response.status_code == 303
        assert response.headers["location"] == "/"
        assert "set-cookie" not in response.headers


def test_safe_redirect_path():
    assert safe_redirect_path("/gallery?page=2") == "/gallery?page=2"
    assert safe_redirect_path(None) == "/"
    assert safe_redirect_path("gallery", default="/home") == "/home"


class TestRouteProtection:
    def test_unauthenticated_request_is_redirected(self, client):
        response = client.get("/me/submissions", follow_redirects=False)

        assert response.status_code == 307
        assert response.headers["location"] == "/?redirectedFrom=/me/submissions"

    def test_expired_cookie_is_redirected(self, client):
        token = make_token("owner-a", expires_in=-60)

        response = client.get(
            "/notifications",
            headers={"Cookie": f"sb-access-token={token}"},
            follow_redirects=False,
        )

        assert response.status_code == 307
        assert response.headers["location"] == "/?redirectedFrom=/notifications"

    def test_session_cookie_passes(self, client):
        response = client.get(
            "/me/votes",
            headers={"Cookie": f"sb-access-token={make_token('owner-a')}"},
            follow_redirects=False,
        )

        assert response.status_code == 200
        assert response.json() == {"work_ids": []}

    def test_public_paths_are_not_guarded(self, client):
        assert client.get("/gallery", follow_redirects=False).status_code == 200

    def test_prefix_matches_on_segment_boundary(self):
        prefixes = ["/me", "/notifications"]

        assert is_protected("/me", prefixes)
        assert is_protected("/me/votes", prefixes)
        assert not is_protected("/media/a.webp", prefixes)
        assert not is_protected("/meetings", prefixes)

    def test_settings_come_from_the_provider(self):
        settings = make_settings(protected_path_prefixes=["/private"], public_redirect_path="/welcome")
        guarded = FastAPI()
        guarded.add_middleware(RouteProtectionMiddleware, settings_provider=lambda: settings)

        @guarded.get("/private/page")
        def private_page():
            return {"ok": True}

        @guarded.get("/me")
        def me():
            return {"ok": True}

        client = TestClient(guarded)

        response = client.get("/private/page", follow_redirects=False)
        assert response.status_code == 307
        assert response.headers["location"] == "/welcome?redirectedFrom=/private/page"

        assert client.get("/me", follow_redirects=False).status_code == 200

        authed = client.get(
            "/private/page",
            headers={"Authorization": f"Bearer {make_token('owner-a')}"},
            follow_redirects=False,
        )
        assert authed.status_code == 200
