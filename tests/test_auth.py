"""Tests for the Spotify OAuth flow and the token dependency (vinyl/auth.py)."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from vinyl.main import app
from vinyl.spotify_client import SpotifyAPIError


@pytest.fixture(autouse=True)
def _use_tmp_db(monkeypatch, tmp_path):
    """Use a temp database for every test."""
    monkeypatch.setenv("DB_PATH", str(tmp_path / "test.db"))
    monkeypatch.setenv("SPOTIFY_CLIENT_ID", "test_client_id")
    monkeypatch.setenv("SECRET_KEY", "test_secret")
    from vinyl.config import get_settings
    get_settings.cache_clear()


client = TestClient(app)

_TOKENS = {"access_token": "new_access", "refresh_token": "new_refresh", "expires_in": 3600}


# ---------------------------------------------------------------------------
# /login endpoint
# ---------------------------------------------------------------------------

def test_login_redirects_to_spotify():
    with TestClient(app) as c:
        resp = c.get("/login", follow_redirects=False)
    assert resp.status_code == 307
    location = resp.headers["location"]
    assert "accounts.spotify.com/authorize" in location
    params = parse_qs(urlparse(location).query)
    assert params["client_id"] == ["test_client_id"]
    assert params["redirect_uri"] == ["http://localhost:8000/auth/callback"]
    assert params["show_dialog"] == ["true"]
    assert "user-modify-playback-state" in params["scope"][0]
    assert params["state"][0]


def test_login_fails_without_client_id(monkeypatch):
    monkeypatch.setenv("SPOTIFY_CLIENT_ID", "")
    from vinyl.config import get_settings
    get_settings.cache_clear()

    resp = client.get("/login")
    assert resp.status_code == 500
    assert "SPOTIFY_CLIENT_ID" in resp.json()["error"]


# ---------------------------------------------------------------------------
# /auth/callback endpoint
# ---------------------------------------------------------------------------

def test_callback_missing_code_returns_400():
    resp = client.get("/auth/callback")
    assert resp.status_code == 400
    assert resp.json() == {"error": "Code is required", "code": 400}


def test_callback_spotify_error_returns_400():
    resp = client.get("/auth/callback?error=access_denied")
    assert resp.status_code == 400
    assert "access_denied" in resp.json()["error"]


def test_callback_sets_cookies_and_redirects():
    with patch("vinyl.auth.exchange_code", new_callable=AsyncMock, return_value=_TOKENS) as mock_exchange:
        resp = client.get("/auth/callback?code=abc123", follow_redirects=False)

    mock_exchange.assert_awaited_once_with("abc123")
    assert resp.status_code == 303
    assert resp.headers["location"] == "/"
    set_cookie = resp.headers.get_list("set-cookie")
    access = next(c for c in set_cookie if c.startswith("access_token="))
    refresh = next(c for c in set_cookie if c.startswith("refresh_token="))
    assert "new_access" in access
    assert "HttpOnly" in access
    assert "Max-Age=3600" in access
    assert "samesite=lax" in access.lower()
    assert "Max-Age=2592000" in refresh


def test_callback_state_mismatch_returns_400():
    with TestClient(app) as c:
        c.get("/login", follow_redirects=False)
        resp = c.get("/auth/callback?code=abc123&state=forged", follow_redirects=False)
    assert resp.status_code == 400
    assert "state" in resp.json()["error"]


def test_callback_exchange_failure_returns_500():
    with patch(
        "vinyl.auth.exchange_code",
        new_callable=AsyncMock,
        side_effect=SpotifyAPIError(400, "invalid_grant"),
    ):
        resp = client.get("/auth/callback?code=bad", follow_redirects=False)
    assert resp.status_code == 500
    body = resp.json()
    assert body["error"] == "Failed to authenticate with Spotify"
    assert body["details"] == "invalid_grant"


def test_secure_cookies_in_production(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "production")
    from vinyl.config import get_settings
    get_settings.cache_clear()

    with patch("vinyl.auth.exchange_code", new_callable=AsyncMock, return_value=_TOKENS):
        resp = client.get("/auth/callback?code=abc123", follow_redirects=False)
    access = next(c for c in resp.headers.get_list("set-cookie") if c.startswith("access_token="))
    assert "Secure" in access


# ---------------------------------------------------------------------------
# /session and /logout
# ---------------------------------------------------------------------------

def test_session_reports_unauthenticated_without_cookie():
    with TestClient(app) as c:
        assert c.get("/session").json() == {"authenticated": False}


def test_session_reports_authenticated_with_cookie():
    with TestClient(app, cookies={"access_token": "tok"}) as c:
        assert c.get("/session").json() == {"authenticated": True}


def test_logout_clears_cookies():
    with TestClient(app, cookies={"access_token": "tok", "refresh_token": "ref"}) as c:
        resp = c.post("/logout")
    assert resp.status_code == 200
    assert resp.json() == {"success": True}
    cleared = resp.headers.get_list("set-cookie")
    assert any(c.startswith('access_token=""') or c.startswith("access_token=;") for c in cleared)
    assert any(c.startswith('refresh_token=""') or c.startswith("refresh_token=;") for c in cleared)


# ---------------------------------------------------------------------------
# require_token
# ---------------------------------------------------------------------------

def test_protected_route_without_cookie_is_401():
    with TestClient(app) as c:
        resp = c.get("/devices")
    assert resp.status_code == 401
    assert resp.json() == {"error": "Not authenticated", "code": 401}


def test_refresh_cookie_mints_new_access_token():
    with (
        patch("vinyl.auth.refresh_access_token", new_callable=AsyncMock, return_value=_TOKENS) as mock_refresh,
        patch("vinyl.routes_playback.SpotifyClient.devices", new_callable=AsyncMock, return_value=[]),
    ):
        with TestClient(app, cookies={"refresh_token": "old_refresh"}) as c:
            resp = c.get("/devices")

    mock_refresh.assert_awaited_once_with("old_refresh")
    assert resp.status_code == 200
    assert resp.json() == {"devices": []}
    assert any(c.startswith("access_token=new_access") for c in resp.headers.get_list("set-cookie"))


def test_failed_refresh_is_401():
    with patch(
        "vinyl.auth.refresh_access_token",
        new_callable=AsyncMock,
        side_effect=SpotifyAPIError(400, "invalid_grant"),
    ):
        with TestClient(app, cookies={"refresh_token": "stale"}) as c:
            resp = c.get("/devices")
    assert resp.status_code == 401
    assert resp.json()["code"] == 401
