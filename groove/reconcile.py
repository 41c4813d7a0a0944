"""Playback reconciliation — pure state machine, no I/O.

The controller in ``vinyl.controller`` owns the timers and HTTP calls; every
change to what the listener sees goes through the transition functions here.
``apply_snapshot`` is the only place a polled snapshot is folded into the
view and the only place a corrective command is decided.

States::

    UNAUTHENTICATED -> AWAITING_DEVICE -> IDLE <-> RECONCILING
                                           |           |
                                           +-> ERROR <-+

There is no terminal state; the loop runs until its owner cancels it.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import FrozenSet, Iterable, Optional, Sequence

from pydantic import BaseModel, Field

from groove.models import (
    Device,
    IntentKind,
    PlaybackSnapshot,
    TransitionIntent,
    utcnow,
)

OUT_OF_PLAYLIST_MESSAGE = "Playback limited to playlist tracks only"
SWITCHING_MESSAGE = "Switching back to the playlist…"
NO_DEVICE_MESSAGE = "Please open Spotify on any device first"
RATE_LIMITED_MESSAGE = "Spotify is busy, please wait a moment"


class LoopState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AWAITING_DEVICE = "awaiting_device"
    IDLE = "idle"
    RECONCILING = "reconciling"
    ERROR = "error"


class Capability(str, Enum):
    UNKNOWN = "unknown"
    STANDARD = "standard"
    PREMIUM = "premium"


class Command(str, Enum):
    NONE = "none"
    FORCE_CONTEXT = "force_context"


class Decision(BaseModel):
    """Outcome of folding one snapshot into the view."""

    changed: bool = False
    command: Command = Command.NONE

    @property
    def refresh_queue(self) -> bool:
        return self.changed


class ViewState(BaseModel):
    """Everything the presentation layer renders for one listener."""

    state: LoopState = LoopState.UNAUTHENTICATED
    capability: Capability = Capability.UNKNOWN
    snapshot: Optional[PlaybackSnapshot] = None
    allowed_track_ids: Optional[FrozenSet[str]] = None
    device: Optional[Device] = None
    intent: Optional[TransitionIntent] = None
    error: Optional[str] = None
    advisory: Optional[str] = None
    transition_display_seconds: float = Field(default=3.0, ge=0)

    @property
    def is_elevated(self) -> bool:
        # Unknown capability counts as standard until /me answers.
        return self.capability is Capability.PREMIUM

    @property
    def needs_device(self) -> bool:
        return self.state is LoopState.AWAITING_DEVICE

    @property
    def show_start_listening(self) -> bool:
        """True when authenticated, nothing is playing, and no track is loaded."""
        if self.state in (LoopState.UNAUTHENTICATED, LoopState.AWAITING_DEVICE):
            return False
        return self.snapshot is not None and self.snapshot.track_id is None and not self.snapshot.is_playing

    @property
    def message(self) -> Optional[str]:
        if self.error:
            return self.error
        if self.intent is not None:
            return self.intent.message
        return self.advisory

    def in_allowed_context(self, track_id: str) -> bool:
        return self.allowed_track_ids is None or track_id in self.allowed_track_ids


# ---------------------------------------------------------------------------
# Session / capability / playlist / device transitions
# ---------------------------------------------------------------------------

def on_session(view: ViewState, authenticated: bool) -> None:
    if not authenticated:
        view.state = LoopState.UNAUTHENTICATED
        view.snapshot = None
        view.device = None
        view.intent = None
        return
    if view.state is LoopState.UNAUTHENTICATED:
        view.state = LoopState.AWAITING_DEVICE


def on_capability(view: ViewState, is_premium: bool) -> None:
    view.capability = Capability.PREMIUM if is_premium else Capability.STANDARD


def on_playlist(view: ViewState, track_ids: Iterable[str]) -> None:
    view.allowed_track_ids = frozenset(t for t in track_ids if t)


def pick_device(devices: Sequence[Device]) -> Optional[Device]:
    """Active device first, otherwise the first one listed."""
    for device in devices:
        if device.is_active:
            return device
    return devices[0] if devices else None


def on_devices(view: ViewState, devices: Sequence[Device]) -> None:
    device = pick_device(devices)
    if device is None:
        return
    view.device = device
    if view.state is LoopState.AWAITING_DEVICE:
        view.state = LoopState.IDLE


# ---------------------------------------------------------------------------
# Snapshot transition
# ---------------------------------------------------------------------------

def _set_intent(view: ViewState, kind: IntentKind, message: str, now: datetime) -> None:
    # A new corrective action supersedes whatever banner is showing.
    view.intent = TransitionIntent(
        kind=kind,
        message=message,
        created_at=now,
        display_seconds=view.transition_display_seconds,
    )


def clear_expired_intent(view: ViewState, now: datetime) -> None:
    if view.intent is not None and view.intent.expired(now):
        view.intent = None


def apply_snapshot(
    view: ViewState,
    snapshot: PlaybackSnapshot,
    *,
    now: Optional[datetime] = None,
) -> Decision:
    """Fold a freshly polled snapshot into *view* and decide what to issue.

    The snapshot is applied only when the track id or the playing flag
    differs from the one held.  Context enforcement runs only when the track
    id changed, so identical snapshots never re-issue a command.
    """
    now = now or snapshot.captured_at or utcnow()
    clear_expired_intent(view, now)

    if view.state is LoopState.UNAUTHENTICATED:
        return Decision()

    if view.state is LoopState.ERROR:
        view.state = LoopState.IDLE
    view.error = None

    previous = view.snapshot
    track_changed = previous is None or previous.track_id != snapshot.track_id
    playing_changed = previous is None or previous.is_playing != snapshot.is_playing
    if not (track_changed or playing_changed):
        return Decision()

    view.snapshot = snapshot
    if snapshot.device_id and (view.device is None or view.device.id != snapshot.device_id):
        view.device = Device(id=snapshot.device_id)
    if view.state is LoopState.AWAITING_DEVICE and view.device is not None:
        view.state = LoopState.IDLE

    if not track_changed or snapshot.track_id is None:
        return Decision(changed=True)

    if view.in_allowed_context(snapshot.track_id):
        view.advisory = None
        if view.intent is not None and view.intent.kind is IntentKind.SWITCH_CONTEXT:
            view.intent = None
        return Decision(changed=True)

    if view.state is LoopState.RECONCILING:
        # Already correcting; wait for the acknowledgement.
        return Decision(changed=True)

    if view.is_elevated:
        view.state = LoopState.RECONCILING
        view.advisory = None
        _set_intent(view, IntentKind.SWITCH_CONTEXT, SWITCHING_MESSAGE, now)
        return Decision(changed=True, command=Command.FORCE_CONTEXT)

    view.advisory = OUT_OF_PLAYLIST_MESSAGE
    _set_intent(view, IntentKind.OUT_OF_PLAYLIST, OUT_OF_PLAYLIST_MESSAGE, now)
    return Decision(changed=True)


# ---------------------------------------------------------------------------
# Command outcome / failures
# ---------------------------------------------------------------------------

def on_command_acknowledged(view: ViewState) -> None:
    if view.state is LoopState.RECONCILING:
        view.state = LoopState.IDLE


def on_failure(view: ViewState, message: str, *, status_code: int = 0) -> None:
    """Record a failed poll or command.  401 drops back to UNAUTHENTICATED."""
    if status_code == 401:
        on_session(view, False)
        view.error = message
        return
    if status_code == 429:
        message = RATE_LIMITED_MESSAGE
    view.error = message
    if view.state in (LoopState.IDLE, LoopState.RECONCILING):
        view.state = LoopState.ERROR
