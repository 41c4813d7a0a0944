"""Player routes for the served page, backed by one reconciliation loop per browser.

The page never calls ``/playback/*`` itself.  It reads ``/player/status`` and
posts user actions to ``/player/*``.  Each listener gets a ``ReconcilerSession``
whose ``FacadeClient`` calls this same app over ``httpx.ASGITransport``, so
every snapshot goes through ``apply_snapshot`` and out-of-playlist playback is
corrected whether or not the browser tab is polling.
"""

from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Depends, FastAPI, Request

from groove.reconcile import clear_expired_intent
from vinyl.auth import ACCESS_COOKIE, REFRESH_COOKIE, get_listener_id, require_token
from vinyl.controller import (
    FacadeClient,
    ReconcilerSession,
    bootstrap,
    poll_once,
    skip_next,
    skip_previous,
    start_listening,
    start_polling,
    stop_polling,
    toggle_playback,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/player", tags=["player"])

# Host name for in-process facade calls; never resolved.
INTERNAL_BASE_URL = "http://vinyl.internal"


class LoopRegistry:
    """Running loops keyed by listener id."""

    def __init__(self, app: FastAPI):
        self._app = app
        self._sessions: dict[str, ReconcilerSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, listener_id: str) -> ReconcilerSession | None:
        return self._sessions.get(listener_id)

    async def ensure(self, listener_id: str, cookies: dict[str, str]) -> ReconcilerSession:
        """Return the listener's loop, starting it (bootstrap, first poll) on first use."""
        session = self._sessions.get(listener_id)
        if session is not None:
            session.client.set_cookies(cookies)
            return session

        client = FacadeClient(
            INTERNAL_BASE_URL,
            cookies=cookies,
            transport=httpx.ASGITransport(app=self._app),
        )
        session = ReconcilerSession(client)
        self._sessions[listener_id] = session
        logger.info("Starting reconciliation loop for listener %s", listener_id)
        await bootstrap(session)
        await poll_once(session)
        start_polling(session)
        return session

    async def stop(self, listener_id: str) -> None:
        session = self._sessions.pop(listener_id, None)
        if session is None:
            return
        await stop_polling(session)
        await session.client.aclose()
        logger.info("Stopped reconciliation loop for listener %s", listener_id)

    async def stop_all(self) -> None:
        for listener_id in list(self._sessions):
            await self.stop(listener_id)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_loops(request: Request) -> LoopRegistry:
    return request.app.state.loops


async def get_loop(
    request: Request,
    token: str = Depends(require_token),
    listener_id: str = Depends(get_listener_id),
    loops: LoopRegistry = Depends(get_loops),
) -> ReconcilerSession:
    cookies = {ACCESS_COOKIE: token}
    refresh = request.cookies.get(REFRESH_COOKIE)
    if refresh:
        cookies[REFRESH_COOKIE] = refresh
    return await loops.ensure(listener_id, cookies)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.get("/status")
async def status(session: ReconcilerSession = Depends(get_loop)):
    """What the page renders; the loop itself polls on its own cadence."""
    clear_expired_intent(session.view, session.now())
    return session.to_status_dict()


@router.post("/toggle")
async def toggle(session: ReconcilerSession = Depends(get_loop)):
    await toggle_playback(session)
    return session.to_status_dict()


@router.post("/next")
async def next_track(session: ReconcilerSession = Depends(get_loop)):
    await skip_next(session)
    return session.to_status_dict()


@router.post("/previous")
async def previous_track(session: ReconcilerSession = Depends(get_loop)):
    await skip_previous(session)
    return session.to_status_dict()


@router.post("/start")
async def start(session: ReconcilerSession = Depends(get_loop)):
    """The idle "start listening" affordance."""
    await start_listening(session)
    return session.to_status_dict()
