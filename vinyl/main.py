"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates
from starlette.middleware.sessions import SessionMiddleware

from groove.pacing import MinIntervalGuard
from vinyl.auth import ACCESS_COOKIE, REFRESH_COOKIE
from vinyl.config import get_settings
from vinyl.db import close_db, init_db
from vinyl.errors import install_error_handlers
from vinyl.notes import NoteStore
from vinyl.routes_player import LoopRegistry

logger = logging.getLogger(__name__)

_TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
templates = Jinja2Templates(directory=str(_TEMPLATES_DIR))


def _new_call_guard() -> MinIntervalGuard:
    return MinIntervalGuard(get_settings().min_call_spacing_ms / 1000)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle hook."""
    settings = get_settings()
    db = await init_db()
    app.state.note_store = NoteStore(db)
    app.state.loops = LoopRegistry(app)
    app.state.call_guard = _new_call_guard()
    logger.info("DB ready at %s", settings.db_abs_path)
    if not settings.playlist_id:
        logger.warning("ALLOWED_PLAYLIST_ID not set — context enforcement is disabled")
    yield
    await app.state.loops.stop_all()
    await close_db()
    logger.info("DB closed")


app = FastAPI(
    title="vinyl-notes",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.call_guard = _new_call_guard()
app.state.loops = LoopRegistry(app)

# Signed session cookie: OAuth state plus the anonymous listener id.
app.add_middleware(SessionMiddleware, secret_key=get_settings().secret_key, same_site="lax")

install_error_handlers(app)

# Routers
from vinyl.auth import router as auth_router  # noqa: E402
from vinyl.routes_library import router as library_router  # noqa: E402
from vinyl.routes_notes import router as notes_router  # noqa: E402
from vinyl.routes_playback import router as playback_router  # noqa: E402
from vinyl.routes_player import router as player_router  # noqa: E402

app.include_router(auth_router)
app.include_router(playback_router)
app.include_router(library_router)
app.include_router(notes_router)
app.include_router(player_router)


@app.get("/", response_class=HTMLResponse)
async def index(request: Request):
    """Connect prompt for new visitors, the player shell once a token cookie exists."""
    authenticated = bool(request.cookies.get(ACCESS_COOKIE) or request.cookies.get(REFRESH_COOKIE))
    return templates.TemplateResponse(
        request,
        "index.html",
        {
            "authenticated": authenticated,
            "playlist_id": get_settings().playlist_id,
            "poll_interval_ms": int(get_settings().poll_interval * 1000),
        },
    )


@app.get("/health")
async def health():
    """Simple health-check endpoint."""
    return JSONResponse({"status": "ok", "version": app.version})
