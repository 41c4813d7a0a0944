"""Thin async wrapper around the Spotify Web API.

One ``SpotifyClient`` per request, bound to the caller's bearer token.
Every non-2xx answer is raised as ``SpotifyAPIError`` with the provider's
status, message, ``reason`` (e.g. ``NO_ACTIVE_DEVICE``), and ``Retry-After``
hint.  Retrying is the caller's business — see ``vinyl.retry``.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

import httpx

from vinyl.config import get_settings

logger = logging.getLogger(__name__)

_SPOTIFY_API = "https://api.spotify.com/v1"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class SpotifyAPIError(Exception):
    """Raised when a Spotify API request fails.

    ``status_code`` is 0 for transport failures (timeouts, connection errors).
    """

    def __init__(
        self,
        status_code: int,
        detail: str,
        *,
        retry_after: float | None = None,
        reason: str | None = None,
    ):
        self.status_code = status_code
        self.detail = detail
        self.retry_after = retry_after
        self.reason = reason
        super().__init__(f"Spotify API error {status_code}: {detail}")


def error_from_response(resp: httpx.Response) -> SpotifyAPIError:
    detail = resp.text or resp.reason_phrase
    reason = None
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict):
            detail = err.get("message") or detail
            reason = err.get("reason")
        elif isinstance(err, str):
            detail = body.get("error_description") or err

    retry_after = None
    if resp.status_code == 429:
        try:
            retry_after = float(resp.headers.get("Retry-After", "1"))
        except ValueError:
            retry_after = 1.0
    return SpotifyAPIError(resp.status_code, detail, retry_after=retry_after, reason=reason)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class SpotifyClient:
    """Spotify Web API calls used by the facade."""

    def __init__(
        self,
        access_token: str,
        *,
        base_url: str = _SPOTIFY_API,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.access_token = access_token
        self.base_url = base_url
        self.timeout = timeout if timeout is not None else get_settings().provider_timeout
        self._transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self.access_token}"}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                resp = await client.request(
                    method,
                    f"{self.base_url}{path}",
                    headers=headers,
                    params=params,
                    json=json_body,
                )
            except httpx.TimeoutException as exc:
                logger.warning("Timeout on %s %s", method, path)
                raise SpotifyAPIError(0, f"Timed out after {self.timeout}s") from exc
            except httpx.HTTPError as exc:
                logger.warning("Transport error on %s %s: %s", method, path, exc)
                raise SpotifyAPIError(0, str(exc)) from exc

        if resp.status_code >= 400:
            raise error_from_response(resp)
        return resp

    @staticmethod
    def _json_or_none(resp: httpx.Response) -> Any:
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    # ── Player ───────────────────────────────────────────────

    async def current_playback(self) -> dict | None:
        """``GET /me/player`` — None when nothing is playing (204)."""
        return self._json_or_none(await self._request("GET", "/me/player"))

    async def devices(self) -> list[dict]:
        resp = await self._request("GET", "/me/player/devices")
        return (self._json_or_none(resp) or {}).get("devices", [])

    async def play(
        self,
        *,
        device_id: str | None = None,
        context_uri: str | None = None,
        uris: list[str] | None = None,
        offset_uri: str | None = None,
        position_ms: int | None = None,
    ) -> None:
        body: dict[str, Any] = {}
        if context_uri:
            body["context_uri"] = context_uri
            if offset_uri:
                body["offset"] = {"uri": offset_uri}
        elif uris:
            body["uris"] = uris
        if position_ms is not None:
            body["position_ms"] = position_ms
        params = {"device_id": device_id} if device_id else None
        await self._request("PUT", "/me/player/play", params=params, json_body=body or None)

    async def pause(self, *, device_id: str | None = None) -> None:
        params = {"device_id": device_id} if device_id else None
        await self._request("PUT", "/me/player/pause", params=params)

    async def next_track(self) -> None:
        await self._request("POST", "/me/player/next")

    async def previous_track(self) -> None:
        await self._request("POST", "/me/player/previous")

    async def set_repeat(self, state: str = "off") -> None:
        await self._request("PUT", "/me/player/repeat", params={"state": state})

    async def set_shuffle(self, state: bool) -> None:
        await self._request("PUT", "/me/player/shuffle", params={"state": "true" if state else "false"})

    async def queue(self) -> dict:
        return self._json_or_none(await self._request("GET", "/me/player/queue")) or {}

    async def recently_played(self, limit: int = 1) -> list[dict]:
        resp = await self._request("GET", "/me/player/recently-played", params={"limit": limit})
        return (self._json_or_none(resp) or {}).get("items", [])

    # ── Playlists / profile ──────────────────────────────────

    async def playlist(self, playlist_id: str, *, fields: str | None = None) -> dict:
        params = {"fields": fields} if fields else None
        resp = await self._request("GET", f"/playlists/{playlist_id}", params=params)
        return resp.json()

    async def playlist_tracks(
        self, playlist_id: str, *, offset: int = 0, limit: int = 100, fields: str | None = None
    ) -> dict:
        """One page of a playlist's items (``items`` plus ``next``)."""
        params: dict = {"offset": offset, "limit": limit}
        if fields:
            params["fields"] = fields
        resp = await self._request("GET", f"/playlists/{playlist_id}/tracks", params=params)
        return resp.json()

    async def me(self) -> dict:
        return (await self._request("GET", "/me")).json()

    # ── Library ──────────────────────────────────────────────

    async def contains_saved_tracks(self, track_ids: Iterable[str]) -> list[bool]:
        resp = await self._request("GET", "/me/tracks/contains", params={"ids": ",".join(track_ids)})
        return resp.json()

    async def save_tracks(self, track_ids: Iterable[str]) -> None:
        await self._request("PUT", "/me/tracks", params={"ids": ",".join(track_ids)})

    async def remove_saved_tracks(self, track_ids: Iterable[str]) -> None:
        await self._request("DELETE", "/me/tracks", params={"ids": ",".join(track_ids)})
