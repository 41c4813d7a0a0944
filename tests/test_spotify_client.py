"""Tests for the Spotify Web API wrapper (vinyl/spotify_client.py)."""

from __future__ import annotations

import json

import httpx
import pytest

from vinyl.spotify_client import SpotifyAPIError, SpotifyClient, error_from_response


@pytest.fixture(autouse=True)
def _setup_env(monkeypatch, tmp_path):
    """Provide env vars so Settings can load."""
    monkeypatch.setenv("DB_PATH", str(tmp_path / "test.db"))
    monkeypatch.setenv("SECRET_KEY", "test_secret")
    from vinyl.config import get_settings
    get_settings.cache_clear()


class MockTransport(httpx.AsyncBaseTransport):
    """Programmable transport returning canned responses per URL path."""

    def __init__(self, routes: dict[str, list[httpx.Response]]):
        # routes: {path: [httpx.Response, ...]}
        self._routes = routes
        self.calls: list[httpx.Request] = []

    async def handle_async_request(self, request: httpx.Request):
        self.calls.append(request)
        responses = self._routes.get(request.url.path)
        if responses:
            return responses.pop(0)
        return httpx.Response(404, json={"error": {"status": 404, "message": "Service not found"}})


class FailingTransport(httpx.AsyncBaseTransport):
    def __init__(self, exc: Exception):
        self._exc = exc

    async def handle_async_request(self, request: httpx.Request):
        raise self._exc


def _client(routes):
    transport = MockTransport(routes)
    return SpotifyClient("tok", transport=transport), transport


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_current_playback_sends_bearer_token():
    sp, transport = _client({"/v1/me/player": [httpx.Response(200, json={"is_playing": True})]})
    assert await sp.current_playback() == {"is_playing": True}
    assert transport.calls[0].headers["Authorization"] == "Bearer tok"


@pytest.mark.asyncio
async def test_current_playback_204_is_none():
    sp, _ = _client({"/v1/me/player": [httpx.Response(204)]})
    assert await sp.current_playback() is None


@pytest.mark.asyncio
async def test_play_builds_context_body_with_offset():
    sp, transport = _client({"/v1/me/player/play": [httpx.Response(204)]})
    await sp.play(
        device_id="dev1",
        context_uri="spotify:playlist:pl1",
        offset_uri="spotify:track:t1",
        position_ms=0,
    )
    request = transport.calls[0]
    assert request.method == "PUT"
    assert request.url.params["device_id"] == "dev1"
    assert json.loads(request.content) == {
        "context_uri": "spotify:playlist:pl1",
        "offset": {"uri": "spotify:track:t1"},
        "position_ms": 0,
    }


@pytest.mark.asyncio
async def test_play_uris_without_device():
    sp, transport = _client({"/v1/me/player/play": [httpx.Response(204)]})
    await sp.play(uris=["spotify:track:t1"])
    request = transport.calls[0]
    assert "device_id" not in request.url.params
    assert json.loads(request.content) == {"uris": ["spotify:track:t1"]}


@pytest.mark.asyncio
async def test_shuffle_and_repeat_params():
    sp, transport = _client(
        {
            "/v1/me/player/shuffle": [httpx.Response(204)],
            "/v1/me/player/repeat": [httpx.Response(204)],
        }
    )
    await sp.set_shuffle(False)
    await sp.set_repeat("off")
    assert transport.calls[0].url.params["state"] == "false"
    assert transport.calls[1].url.params["state"] == "off"


@pytest.mark.asyncio
async def test_devices_and_recently_played_unwrap_lists():
    sp, _ = _client(
        {
            "/v1/me/player/devices": [httpx.Response(200, json={"devices": [{"id": "d1"}]})],
            "/v1/me/player/recently-played": [httpx.Response(200, json={"items": [{"track": {"id": "t0"}}]})],
        }
    )
    assert await sp.devices() == [{"id": "d1"}]
    assert await sp.recently_played() == [{"track": {"id": "t0"}}]


@pytest.mark.asyncio
async def test_playlist_passes_fields():
    sp, transport = _client({"/v1/playlists/pl1": [httpx.Response(200, json={"id": "pl1"})]})
    await sp.playlist("pl1", fields="id,name")
    assert transport.calls[0].url.params["fields"] == "id,name"


@pytest.mark.asyncio
async def test_playlist_tracks_requests_one_page():
    page = {"items": [{"track": {"id": "t101"}}], "next": None}
    sp, transport = _client({"/v1/playlists/pl1/tracks": [httpx.Response(200, json=page)]})
    assert await sp.playlist_tracks("pl1", offset=100) == page
    params = transport.calls[0].url.params
    assert params["offset"] == "100"
    assert params["limit"] == "100"
    assert "fields" not in params


@pytest.mark.asyncio
async def test_library_calls_use_ids_query():
    sp, transport = _client(
        {
            "/v1/me/tracks/contains": [httpx.Response(200, json=[True, False])],
            "/v1/me/tracks": [httpx.Response(200), httpx.Response(200)],
        }
    )
    assert await sp.contains_saved_tracks(["a", "b"]) == [True, False]
    await sp.save_tracks(["a"])
    await sp.remove_saved_tracks(["a"])
    assert transport.calls[0].url.params["ids"] == "a,b"
    assert [c.method for c in transport.calls[1:]] == ["PUT", "DELETE"]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_no_active_device_reason_is_parsed():
    body = {"error": {"status": 404, "message": "Player command failed: No active device found", "reason": "NO_ACTIVE_DEVICE"}}
    sp, _ = _client({"/v1/me/player/next": [httpx.Response(404, json=body)]})
    with pytest.raises(SpotifyAPIError) as exc_info:
        await sp.next_track()
    assert exc_info.value.status_code == 404
    assert exc_info.value.reason == "NO_ACTIVE_DEVICE"
    assert "No active device" in exc_info.value.detail


@pytest.mark.asyncio
async def test_rate_limit_carries_retry_after():
    sp, _ = _client({"/v1/me/player": [httpx.Response(429, headers={"Retry-After": "7"})]})
    with pytest.raises(SpotifyAPIError) as exc_info:
        await sp.current_playback()
    assert exc_info.value.status_code == 429
    assert exc_info.value.retry_after == 7.0


@pytest.mark.asyncio
async def test_timeout_becomes_status_zero():
    sp = SpotifyClient("tok", transport=FailingTransport(httpx.ReadTimeout("slow")))
    with pytest.raises(SpotifyAPIError) as exc_info:
        await sp.me()
    assert exc_info.value.status_code == 0
    assert "Timed out" in exc_info.value.detail


@pytest.mark.asyncio
async def test_connection_error_becomes_status_zero():
    sp = SpotifyClient("tok", transport=FailingTransport(httpx.ConnectError("refused")))
    with pytest.raises(SpotifyAPIError) as exc_info:
        await sp.me()
    assert exc_info.value.status_code == 0


def test_token_endpoint_error_shape():
    resp = httpx.Response(400, json={"error": "invalid_grant", "error_description": "Invalid authorization code"})
    err = error_from_response(resp)
    assert err.status_code == 400
    assert err.detail == "Invalid authorization code"
    assert err.reason is None


def test_plain_text_error_body():
    err = error_from_response(httpx.Response(502, text="Bad Gateway"))
    assert err.status_code == 502
    assert err.detail == "Bad Gateway"
