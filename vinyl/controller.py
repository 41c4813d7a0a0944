"""Reconciliation loop — keeps the listener's view in step with Spotify.

Polls the facade's ``/playback/current``, folds each snapshot through
``groove.reconcile.apply_snapshot``, and issues the corrective command it
decides.  All calls go over HTTP to the facade (``FacadeClient``), so the
loop runs in-process behind the served page (``vinyl.routes_player``) or headless::

    VINYL_ACCESS_TOKEN=... python -m vinyl.controller
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from datetime import datetime
from typing import Any, Awaitable, Callable

import httpx

from groove.models import Device, PlaybackSnapshot, Track, utcnow
from groove.pacing import MinIntervalGuard
from groove.reconcile import (
    NO_DEVICE_MESSAGE,
    Command,
    LoopState,
    ViewState,
    apply_snapshot,
    clear_expired_intent,
    on_capability,
    on_command_acknowledged,
    on_devices,
    on_failure,
    on_playlist,
    on_session,
)
from vinyl.auth import ACCESS_COOKIE, REFRESH_COOKIE
from vinyl.config import get_settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Facade HTTP client
# ---------------------------------------------------------------------------

class FacadeCallError(Exception):
    """Non-2xx answer from the facade (``status_code`` 0 = transport failure)."""

    def __init__(self, status_code: int, error: str):
        self.status_code = status_code
        self.error = error
        super().__init__(f"{status_code}: {error}")


class FacadeClient:
    """Thin async client for the facade routes, holding the session cookies."""

    def __init__(
        self,
        base_url: str,
        *,
        cookies: dict[str, str] | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            cookies=cookies,
            timeout=timeout if timeout is not None else get_settings().provider_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "FacadeClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def set_cookies(self, cookies: dict[str, str]) -> None:
        """Replace the held session cookies, e.g. after the browser refreshed its token."""
        self._client.cookies.clear()
        self._client.cookies.update(cookies)

    async def _call(self, method: str, path: str, *, json: Any = None, params: dict | None = None) -> Any:
        try:
            resp = await self._client.request(method, path, json=json, params=params)
        except httpx.HTTPError as exc:
            raise FacadeCallError(0, str(exc) or exc.__class__.__name__) from exc

        if resp.status_code >= 400:
            try:
                error = resp.json().get("error") or resp.text
            except ValueError:
                error = resp.text
            raise FacadeCallError(resp.status_code, error or f"HTTP {resp.status_code}")
        if not resp.content:
            return None
        return resp.json()

    async def session(self) -> dict:
        return await self._call("GET", "/session")

    async def me(self) -> dict:
        return await self._call("GET", "/me")

    async def playlist(self) -> dict:
        return await self._call("GET", "/playlist")

    async def devices(self) -> dict:
        return await self._call("GET", "/devices")

    async def current_playback(self) -> dict:
        return await self._call("GET", "/playback/current")

    async def queue(self) -> dict:
        return await self._call("GET", "/playback/queue")

    async def start_playlist(self) -> dict:
        return await self._call("POST", "/playlist/start")

    async def pause(self) -> dict:
        return await self._call("PUT", "/playback/pause")

    async def toggle(self, play: bool) -> dict:
        return await self._call("POST", "/playback/toggle", json={"play": play})

    async def next(self) -> dict:
        return await self._call("POST", "/playback/next")

    async def previous(self) -> dict:
        return await self._call("POST", "/playback/previous")


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class ReconcilerSession:
    """Runtime state of one listener's loop."""

    __slots__ = (
        "client",
        "view",
        "guard",
        "poll_interval",
        "poll_task",
        "current_track",
        "previous_track",
        "next_track",
        "now",
        "_last_logged",
    )

    def __init__(
        self,
        client: FacadeClient,
        *,
        poll_interval: float | None = None,
        min_poll_interval: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utcnow,
    ):
        settings = get_settings()
        self.client = client
        self.view = ViewState(transition_display_seconds=settings.transition_display_seconds)
        self.guard = MinIntervalGuard(
            settings.min_poll_interval if min_poll_interval is None else min_poll_interval,
            clock=clock,
        )
        self.poll_interval = settings.poll_interval if poll_interval is None else poll_interval
        self.poll_task: asyncio.Task | None = None
        self.current_track: Track | None = None
        self.previous_track: Track | None = None
        self.next_track: Track | None = None
        self.now = now
        self._last_logged: tuple | None = None

    def to_status_dict(self) -> dict[str, Any]:
        """Serialize what the presentation layer renders."""
        view = self.view
        snapshot = view.snapshot
        return {
            "state": view.state.value,
            "capability": view.capability.value,
            "trackId": snapshot.track_id if snapshot else None,
            "track": self.current_track.model_dump(by_alias=True) if self.current_track else None,
            "isPlaying": snapshot.is_playing if snapshot else False,
            "deviceId": view.device.id if view.device else None,
            "message": view.message,
            "needsDevice": view.needs_device,
            "showStartListening": view.show_start_listening,
            "previous": self.previous_track.model_dump(by_alias=True) if self.previous_track else None,
            "next": self.next_track.model_dump(by_alias=True) if self.next_track else None,
        }


def _record_failure(session: ReconcilerSession, exc: FacadeCallError, what: str) -> None:
    logger.warning("%s failed (%s): %s", what, exc.status_code, exc.error)
    on_failure(session.view, exc.error, status_code=exc.status_code)


async def _command(session: ReconcilerSession, call: Awaitable[Any], what: str) -> bool:
    try:
        await call
    except FacadeCallError as exc:
        _record_failure(session, exc, what)
        return False
    return True


# ---------------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------------

async def discover_devices(session: ReconcilerSession) -> None:
    try:
        data = await session.client.devices()
    except FacadeCallError as exc:
        _record_failure(session, exc, "Device discovery")
        return
    devices = [Device.model_validate(d) for d in (data or {}).get("devices", [])]
    on_devices(session.view, devices)
    if session.view.needs_device:
        logger.info("No Spotify device available yet")


async def bootstrap(session: ReconcilerSession) -> None:
    """Session check, capability, allowed playlist, then device discovery."""
    view = session.view
    try:
        status = await session.client.session()
    except FacadeCallError as exc:
        _record_failure(session, exc, "Session check")
        return
    on_session(view, bool((status or {}).get("authenticated")))
    if view.state is LoopState.UNAUTHENTICATED:
        logger.info("Not authenticated — waiting for login")
        return

    try:
        me = await session.client.me()
        on_capability(view, bool(me.get("isPremium")))
    except FacadeCallError as exc:
        # Capability stays UNKNOWN, which is treated as non-elevated.
        _record_failure(session, exc, "Capability check")
        if view.state is LoopState.UNAUTHENTICATED:
            return

    try:
        data = await session.client.playlist()
        tracks = (data.get("playlist") or {}).get("tracks") or []
        on_playlist(view, [t.get("id") for t in tracks])
        logger.info("Allowed playlist loaded (%d tracks)", len(view.allowed_track_ids or ()))
    except FacadeCallError as exc:
        _record_failure(session, exc, "Playlist load")
        if view.state is LoopState.UNAUTHENTICATED:
            return

    await discover_devices(session)


# ---------------------------------------------------------------------------
# Polling
# ---------------------------------------------------------------------------

async def refresh_queue(session: ReconcilerSession) -> None:
    """Update the adjacent-track previews.  Failures are logged, never surfaced."""
    try:
        data = await session.client.queue()
    except FacadeCallError as exc:
        logger.info("Queue preview unavailable (%s): %s", exc.status_code, exc.error)
        return
    previous = (data or {}).get("previous")
    upcoming = (data or {}).get("next")
    session.previous_track = Track.model_validate(previous) if previous else None
    session.next_track = Track.model_validate(upcoming) if upcoming else None


async def poll_once(session: ReconcilerSession) -> bool:
    """One poll cycle.  Returns False when the min-interval guard skipped it."""
    view = session.view
    clear_expired_intent(view, session.now())
    if view.state is LoopState.UNAUTHENTICATED:
        return False
    if not session.guard.try_acquire("poll"):
        logger.debug("Poll skipped (%.2fs until next allowed)", session.guard.retry_after("poll"))
        return False

    try:
        payload = await session.client.current_playback()
    except FacadeCallError as exc:
        _record_failure(session, exc, "Playback poll")
        return True

    track = (payload or {}).get("track")
    session.current_track = Track.model_validate(track) if track else None
    now = session.now()
    snapshot = PlaybackSnapshot.from_current(payload or {}, captured_at=now)
    decision = apply_snapshot(view, snapshot, now=now)

    if decision.command is Command.FORCE_CONTEXT:
        logger.info("Track %s is outside the playlist — switching back", snapshot.track_id)
        if await _command(session, session.client.toggle(True), "Context switch"):
            on_command_acknowledged(view)
    if decision.refresh_queue:
        await refresh_queue(session)
    return True


def _log_view(session: ReconcilerSession) -> None:
    view = session.view
    seen = (view.state, view.message, view.snapshot.track_id if view.snapshot else None)
    if seen != session._last_logged:
        session._last_logged = seen
        logger.info("View: state=%s track=%s message=%s", seen[0].value, seen[2], seen[1])


async def _poll_loop(session: ReconcilerSession) -> None:
    """Poll every ``poll_interval`` seconds until cancelled."""
    while True:
        try:
            if session.view.state is LoopState.UNAUTHENTICATED:
                await bootstrap(session)
            elif session.view.needs_device:
                await discover_devices(session)
            await poll_once(session)
            _log_view(session)
            await asyncio.sleep(session.poll_interval)
        except asyncio.CancelledError:
            logger.info("Polling cancelled")
            return
        except Exception:
            logger.exception("Poll error")
            # Keep polling; transient errors shouldn't stop the loop.
            await asyncio.sleep(session.poll_interval)


def start_polling(session: ReconcilerSession) -> None:
    if session.poll_task and not session.poll_task.done():
        return
    session.poll_task = asyncio.create_task(_poll_loop(session))


async def stop_polling(session: ReconcilerSession) -> None:
    task = session.poll_task
    if task and not task.done():
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    session.poll_task = None


# ---------------------------------------------------------------------------
# User actions
# ---------------------------------------------------------------------------

async def toggle_playback(session: ReconcilerSession) -> None:
    view = session.view
    if view.device is None:
        view.advisory = NO_DEVICE_MESSAGE
        return
    playing = view.snapshot is not None and view.snapshot.is_playing
    if await _command(session, session.client.toggle(not playing), "Toggle playback"):
        await poll_once(session)


async def skip_next(session: ReconcilerSession) -> None:
    if await _command(session, session.client.next(), "Skip to next"):
        await poll_once(session)


async def skip_previous(session: ReconcilerSession) -> None:
    if await _command(session, session.client.previous(), "Skip to previous"):
        await poll_once(session)


async def start_listening(session: ReconcilerSession) -> None:
    """Start the allowed playlist from the top (the idle affordance)."""
    if await _command(session, session.client.start_playlist(), "Start playlist"):
        await poll_once(session)


# ---------------------------------------------------------------------------
# Headless entry point
# ---------------------------------------------------------------------------

async def _run() -> None:
    settings = get_settings()
    cookies = {
        name: value
        for name, value in (
            (ACCESS_COOKIE, os.environ.get("VINYL_ACCESS_TOKEN")),
            (REFRESH_COOKIE, os.environ.get("VINYL_REFRESH_TOKEN")),
        )
        if value
    }
    async with FacadeClient(settings.base_url, cookies=cookies) as client:
        session = ReconcilerSession(client)
        await bootstrap(session)
        start_polling(session)
        try:
            await session.poll_task
        finally:
            await stop_polling(session)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        pass
