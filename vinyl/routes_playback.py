"""Player routes — one Spotify call (occasionally two) per request.

Each handler gets a token-bound ``SpotifyClient`` through ``get_spotify``,
makes its call, and returns JSON.  Provider failures are translated into the
error envelope by ``vinyl.errors``.  Reads go through ``with_retry``; writes
surface rate limits as-is.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from groove.models import Device, Track
from groove.pacing import MinIntervalGuard
from vinyl.auth import require_token
from vinyl.config import get_settings
from vinyl.errors import InvalidRequest, RateLimited, translate_provider_error
from vinyl.retry import with_retry
from vinyl.spotify_client import SpotifyAPIError, SpotifyClient

logger = logging.getLogger(__name__)

router = APIRouter(tags=["playback"])

# Reduced field set used when the full playlist read is refused.
_PLAYLIST_FALLBACK_FIELDS = (
    "id,name,description,images,"
    "tracks.items(track(id,uri,name,duration_ms,artists(name),album(images))),tracks.next"
)
_PAGE_FALLBACK_FIELDS = "items(track(id,uri,name,duration_ms,artists(name),album(images))),next"
_PAGE_SIZE = 100


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

async def get_spotify(token: str = Depends(require_token)) -> SpotifyClient:
    return SpotifyClient(token)


def get_call_guard(request: Request) -> MinIntervalGuard:
    return request.app.state.call_guard


def _check_spacing(guard: MinIntervalGuard, key: str) -> None:
    if not guard.try_acquire(key):
        wait = guard.retry_after(key)
        logger.debug("Spacing guard rejected %s (%.2fs left)", key, wait)
        raise RateLimited(retry_after=wait or 1.0)


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class PlayRequest(_Body):
    device_id: Optional[str] = Field(default=None, alias="deviceId")
    context_uri: Optional[str] = Field(default=None, alias="contextUri")
    track_uri: Optional[str] = Field(default=None, alias="trackUri")
    position_ms: int = Field(default=0, alias="positionMs", ge=0)


class PlayTrackRequest(_Body):
    track_uri: str = Field(alias="trackUri")
    playlist_uri: Optional[str] = Field(default=None, alias="playlistUri")
    position_ms: int = Field(default=0, alias="positionMs", ge=0)


class ToggleRequest(BaseModel):
    play: bool


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _map_playback(pb: dict | None) -> dict:
    """Map ``GET /me/player`` onto the facade's current-playback shape."""
    body = {
        "track": None,
        "isPlaying": False,
        "device": None,
        "progressMs": 0,
        "contextUri": None,
        "timestamp": int(time.time() * 1000),
    }
    if not pb or not pb.get("item"):
        return body

    device = pb.get("device")
    body.update(
        {
            "track": Track.from_api(pb["item"]).model_dump(by_alias=True),
            "isPlaying": bool(pb.get("is_playing", False)),
            "device": _map_device(device) if device else None,
            "progressMs": int(pb.get("progress_ms") or 0),
            "contextUri": (pb.get("context") or {}).get("uri"),
        }
    )
    return body


def _map_device(device: dict) -> dict:
    return Device(
        id=device.get("id"),
        name=device.get("name", ""),
        type=device.get("type", ""),
        is_active=bool(device.get("is_active", False)),
    ).model_dump(by_alias=True)


async def _all_playlist_items(
    sp: SpotifyClient, playlist_id: str, first_page: dict, *, fields: Optional[str] = None
) -> list[dict]:
    """Items of the embedded first page, then every page behind ``next``."""
    items = list(first_page.get("items") or [])
    has_more = bool(first_page.get("next"))
    while has_more:
        offset = len(items)
        page = await with_retry(
            lambda: sp.playlist_tracks(playlist_id, offset=offset, limit=_PAGE_SIZE, fields=fields)
        )
        page_items = page.get("items") or []
        if not page_items:
            break
        items.extend(page_items)
        has_more = bool(page.get("next"))
    return items


def _map_playlist(data: dict, items: list[dict]) -> dict:
    tracks = [Track.from_api(entry["track"]).model_dump(by_alias=True) for entry in items if entry.get("track")]
    return {
        "id": data.get("id"),
        "name": data.get("name", ""),
        "description": data.get("description", ""),
        "tracks": tracks,
        "images": data.get("images") or [],
    }


# ---------------------------------------------------------------------------
# Current playback / devices / queue
# ---------------------------------------------------------------------------

@router.get("/playback/current")
async def current_playback(
    sp: SpotifyClient = Depends(get_spotify),
    guard: MinIntervalGuard = Depends(get_call_guard),
):
    """What is playing right now, on which device."""
    _check_spacing(guard, "playback/current")
    try:
        pb = await with_retry(sp.current_playback)
    except SpotifyAPIError as exc:
        raise translate_provider_error(exc, "Failed to get current track") from exc
    return _map_playback(pb)


@router.get("/devices")
async def devices(sp: SpotifyClient = Depends(get_spotify)):
    try:
        device_list = await with_retry(sp.devices)
    except SpotifyAPIError as exc:
        raise translate_provider_error(exc, "Failed to fetch devices") from exc
    return {"devices": [_map_device(d) for d in device_list]}


@router.get("/playback/queue")
async def queue(
    sp: SpotifyClient = Depends(get_spotify),
    guard: MinIntervalGuard = Depends(get_call_guard),
):
    """Adjacent-track previews: last played and next up."""
    _check_spacing(guard, "playback/queue")
    try:
        recent = await with_retry(sp.recently_played)
        upcoming = await with_retry(sp.queue)
    except SpotifyAPIError as exc:
        raise translate_provider_error(exc, "Failed to get queue") from exc

    previous = recent[0].get("track") if recent else None
    next_items = upcoming.get("queue") or []
    return {
        "previous": Track.from_api(previous).model_dump(by_alias=True) if previous else None,
        "next": Track.from_api(next_items[0]).model_dump(by_alias=True) if next_items else None,
    }


# ---------------------------------------------------------------------------
# Transport controls
# ---------------------------------------------------------------------------

@router.put("/playback/play")
async def play(body: PlayRequest, sp: SpotifyClient = Depends(get_spotify)):
    """Play a track alone, or a context optionally starting at a track."""
    if not body.track_uri and not body.context_uri:
        raise InvalidRequest("No track URI provided")

    try:
        if body.context_uri:
            await sp.play(
                device_id=body.device_id,
                context_uri=body.context_uri,
                offset_uri=body.track_uri,
                position_ms=body.position_ms,
            )
        else:
            await sp.play(
                device_id=body.device_id,
                uris=[body.track_uri],
                position_ms=body.position_ms,
            )
    except SpotifyAPIError as exc:
        raise translate_provider_error(exc, "Failed to start playback") from exc
    return {"success": True, "message": "Playback started successfully"}


@router.post("/playback/play-track")
async def play_track(body: PlayTrackRequest, sp: SpotifyClient = Depends(get_spotify)):
    """Pause, then start *trackUri* inside *playlistUri* (default: the allowed playlist)."""
    playlist_uri = body.playlist_uri or get_settings().playlist_uri
    try:
        await sp.pause()
        await sp.play(context_uri=playlist_uri, offset_uri=body.track_uri, position_ms=body.position_ms)
    except SpotifyAPIError as exc:
        raise translate_provider_error(exc, "Failed to play track") from exc
    return {"success": True}


@router.put("/playback/pause")
async def pause(sp: SpotifyClient = Depends(get_spotify)):
    try:
        await sp.pause()
    except SpotifyAPIError as exc:
        raise translate_provider_error(exc, "Failed to pause playback") from exc
    return {"success": True}


@router.post("/playback/next")
async def next_track(sp: SpotifyClient = Depends(get_spotify)):
    try:
        await sp.next_track()
    except SpotifyAPIError as exc:
        raise translate_provider_error(exc, "Failed to skip to next track") from exc
    return {"success": True}


@router.post("/playback/previous")
async def previous_track(sp: SpotifyClient = Depends(get_spotify)):
    try:
        await sp.previous_track()
    except SpotifyAPIError as exc:
        raise translate_provider_error(exc, "Failed to go to previous track") from exc
    return {"success": True}


@router.post("/playback/toggle")
async def toggle(body: ToggleRequest, sp: SpotifyClient = Depends(get_spotify)):
    """Play always resumes from the allowed playlist; pause just pauses."""
    try:
        if body.play:
            await sp.play(context_uri=get_settings().playlist_uri)
        else:
            await sp.pause()
    except SpotifyAPIError as exc:
        raise translate_provider_error(exc, "Failed to toggle playback") from exc
    return {"success": True}


# ---------------------------------------------------------------------------
# Playlist / account
# ---------------------------------------------------------------------------

@router.get("/playlist")
async def playlist(
    requested_id: Optional[str] = Query(default=None, alias="id"),
    sp: SpotifyClient = Depends(get_spotify),
):
    """Full playlist payload with every track page; retries with a reduced field set if refused."""
    playlist_id = (requested_id or get_settings().playlist_id).split("?", 1)[0]
    if not playlist_id:
        raise InvalidRequest("Playlist ID is required")

    page_fields = None
    try:
        data = await with_retry(lambda: sp.playlist(playlist_id))
    except SpotifyAPIError as exc:
        if exc.status_code not in (401, 403):
            raise translate_provider_error(exc, "Failed to get playlist") from exc
        logger.info("Full playlist read refused (%d) — retrying with reduced fields", exc.status_code)
        try:
            data = await with_retry(lambda: sp.playlist(playlist_id, fields=_PLAYLIST_FALLBACK_FIELDS))
            page_fields = _PAGE_FALLBACK_FIELDS
        except SpotifyAPIError as fallback_exc:
            raise translate_provider_error(fallback_exc, "Failed to get playlist") from fallback_exc
    try:
        items = await _all_playlist_items(sp, playlist_id, data.get("tracks") or {}, fields=page_fields)
    except SpotifyAPIError as exc:
        raise translate_provider_error(exc, "Failed to get playlist") from exc
    return {"playlist": _map_playlist(data, items)}


@router.post("/playlist/start")
async def start_playlist(sp: SpotifyClient = Depends(get_spotify)):
    """Start the allowed playlist from the top with repeat and shuffle off."""
    try:
        await sp.play(context_uri=get_settings().playlist_uri)
        await sp.set_repeat("off")
        await sp.set_shuffle(False)
    except SpotifyAPIError as exc:
        raise translate_provider_error(exc, "Failed to play playlist") from exc
    return {"success": True}


@router.get("/me")
async def me(sp: SpotifyClient = Depends(get_spotify)):
    """Account details; ``isPremium`` gates transport commands on the client."""
    try:
        data = await with_retry(sp.me)
    except SpotifyAPIError as exc:
        raise translate_provider_error(exc, "Failed to fetch user info") from exc
    return {
        "isPremium": data.get("product") == "premium",
        "user": {
            "id": data.get("id"),
            "name": data.get("display_name"),
            "email": data.get("email"),
            "product": data.get("product"),
        },
    }
