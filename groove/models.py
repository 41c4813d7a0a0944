"""Pydantic models shared across the application."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Wire(BaseModel):
    """Base for models that cross the HTTP boundary in camelCase."""

    model_config = ConfigDict(populate_by_name=True)


class Track(_Wire):
    """Minimal representation of a Spotify track."""

    id: str
    uri: str = ""  # e.g. "spotify:track:6rqhFgbbKwnb9MLmUQDhG6"
    name: str = ""
    artists: List[str] = Field(default_factory=list)
    album_art: Optional[str] = Field(default=None, alias="albumArt")
    duration_ms: int = Field(default=0, alias="durationMs")

    @classmethod
    def from_api(cls, item: dict) -> "Track":
        """Build from a Spotify track object (``/me/player`` ``item``, playlist entry, …)."""
        images = (item.get("album") or {}).get("images") or []
        return cls(
            id=item.get("id") or "",
            uri=item.get("uri") or "",
            name=item.get("name") or "",
            artists=[a.get("name", "") for a in item.get("artists") or []],
            album_art=images[0]["url"] if images else None,
            duration_ms=int(item.get("duration_ms") or 0),
        )


class Device(_Wire):
    id: Optional[str] = None
    name: str = ""
    type: str = ""
    is_active: bool = Field(default=False, alias="isActive")


class PlaybackSnapshot(_Wire):
    """A point-in-time read of what is playing, where, and in which context.

    Immutable once captured; the next poll supersedes it.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    track_id: Optional[str] = Field(default=None, alias="trackId")
    track_uri: Optional[str] = Field(default=None, alias="trackUri")
    is_playing: bool = Field(default=False, alias="isPlaying")
    device_id: Optional[str] = Field(default=None, alias="deviceId")
    context_uri: Optional[str] = Field(default=None, alias="contextUri")
    progress_ms: int = Field(default=0, alias="progressMs")
    captured_at: datetime = Field(default_factory=utcnow, alias="capturedAt")

    @classmethod
    def from_current(cls, payload: dict, captured_at: Optional[datetime] = None) -> "PlaybackSnapshot":
        """Build from the facade's ``GET /playback/current`` body."""
        track = payload.get("track") or {}
        device = payload.get("device") or {}
        return cls(
            track_id=track.get("id"),
            track_uri=track.get("uri"),
            is_playing=bool(payload.get("isPlaying", False)),
            device_id=device.get("id"),
            context_uri=payload.get("contextUri"),
            progress_ms=int(payload.get("progressMs") or 0),
            captured_at=captured_at or utcnow(),
        )


class Reaction(BaseModel):
    """Tally for one emoji on a note."""

    count: int = 0
    users: List[str] = Field(default_factory=list)


class Note(_Wire):
    """User annotation attached to a track."""

    id: str
    track_id: str = Field(alias="trackId")
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    is_shared: bool = Field(default=True, alias="isShared")
    reactions: Dict[str, Reaction] = Field(default_factory=dict)


class IntentKind(str, Enum):
    SWITCH_CONTEXT = "switch_context"
    OUT_OF_PLAYLIST = "out_of_playlist"


class TransitionIntent(BaseModel):
    """Pending corrective action shown to the user as a transient banner."""

    kind: IntentKind
    message: str
    created_at: datetime = Field(default_factory=utcnow)
    display_seconds: float = 3.0

    def expired(self, now: datetime) -> bool:
        return now >= self.created_at + timedelta(seconds=self.display_seconds)
