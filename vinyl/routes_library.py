"""Saved-track (library) routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from vinyl.errors import InvalidRequest, translate_provider_error
from vinyl.retry import with_retry
from vinyl.routes_playback import get_spotify
from vinyl.spotify_client import SpotifyAPIError, SpotifyClient

router = APIRouter(prefix="/library", tags=["library"])


class TrackRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    track_id: str = Field(alias="trackId", min_length=1)


@router.get("/contains")
async def contains(ids: str = Query(default=""), sp: SpotifyClient = Depends(get_spotify)):
    """``?ids=a,b`` → ``[true, false]`` in the same order."""
    track_ids = [i for i in ids.split(",") if i]
    if not track_ids:
        raise InvalidRequest("No track IDs provided")
    try:
        return await with_retry(lambda: sp.contains_saved_tracks(track_ids))
    except SpotifyAPIError as exc:
        raise translate_provider_error(exc, "Failed to check saved tracks") from exc


@router.put("/save")
async def save(body: TrackRequest, sp: SpotifyClient = Depends(get_spotify)):
    try:
        await sp.save_tracks([body.track_id])
    except SpotifyAPIError as exc:
        raise translate_provider_error(exc, "Failed to save track") from exc
    return {"success": True}


@router.put("/remove")
async def remove(body: TrackRequest, sp: SpotifyClient = Depends(get_spotify)):
    try:
        await sp.remove_saved_tracks([body.track_id])
    except SpotifyAPIError as exc:
        raise translate_provider_error(exc, "Failed to remove track") from exc
    return {"success": True}
