"""Spotify OAuth 2.0 authorization-code flow with cookie-held tokens.

Flow:
  1. GET /login          → redirect to Spotify /authorize (random ``state`` in session)
  2. GET /auth/callback  → exchange code for tokens via /api/token
  3. Tokens stored as httpOnly cookies ``access_token`` / ``refresh_token``
  4. Handlers read the token through the ``require_token`` dependency,
     which refreshes transparently when only the refresh cookie is left
"""

from __future__ import annotations

import logging
import secrets
import uuid
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Request, Response
from fastapi.responses import RedirectResponse

from vinyl.config import Settings, get_settings
from vinyl.errors import FacadeError, InvalidRequest, ProviderError, Unauthenticated
from vinyl.spotify_client import SpotifyAPIError, error_from_response

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"
REFRESH_MAX_AGE = 30 * 24 * 60 * 60  # 30 days

_SCOPES = " ".join(
    [
        "user-read-playback-state",
        "user-modify-playback-state",
        "user-read-currently-playing",
        "user-read-recently-played",
        "streaming",
        "app-remote-control",
        "playlist-read-private",
        "playlist-read-collaborative",
        "user-library-read",
        "user-library-modify",
        "user-read-email",
        "user-read-private",
    ]
)

_SPOTIFY_AUTH_URL = "https://accounts.spotify.com/authorize"
_SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------

def set_token_cookies(
    response: Response,
    settings: Settings,
    access_token: str,
    expires_in: int,
    refresh_token: str | None = None,
) -> None:
    response.set_cookie(
        ACCESS_COOKIE,
        access_token,
        max_age=expires_in,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        domain=settings.cookie_domain,
    )
    if refresh_token:
        response.set_cookie(
            REFRESH_COOKIE,
            refresh_token,
            max_age=REFRESH_MAX_AGE,
            httponly=True,
            secure=settings.is_production,
            samesite="lax",
            domain=settings.cookie_domain,
        )


def clear_token_cookies(response: Response, settings: Settings) -> None:
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(name, domain=settings.cookie_domain)


# ---------------------------------------------------------------------------
# Token endpoint
# ---------------------------------------------------------------------------

async def _token_request(data: dict[str, str]) -> dict:
    settings = get_settings()
    auth = None
    if settings.spotify_client_secret:
        auth = (settings.spotify_client_id, settings.spotify_client_secret)
    else:
        data = {**data, "client_id": settings.spotify_client_id}

    try:
        async with httpx.AsyncClient(timeout=settings.provider_timeout) as client:
            resp = await client.post(_SPOTIFY_TOKEN_URL, data=data, auth=auth)
    except httpx.HTTPError as exc:
        raise SpotifyAPIError(0, str(exc)) from exc

    if resp.status_code != 200:
        raise error_from_response(resp)
    return resp.json()


async def exchange_code(code: str) -> dict:
    """Trade an authorization code for ``{access_token, refresh_token, expires_in}``."""
    return await _token_request(
        {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": get_settings().redirect_uri,
        }
    )


async def refresh_access_token(refresh_token: str) -> dict:
    return await _token_request({"grant_type": "refresh_token", "refresh_token": refresh_token})


# ---------------------------------------------------------------------------
# Dependencies (used by other modules)
# ---------------------------------------------------------------------------

async def require_token(request: Request, response: Response) -> str:
    """Return the caller's access token, refreshing from the refresh cookie if needed.

    Raises ``Unauthenticated`` when neither cookie can produce a token.
    """
    token = request.cookies.get(ACCESS_COOKIE)
    if token:
        return token

    refresh = request.cookies.get(REFRESH_COOKIE)
    if not refresh:
        raise Unauthenticated()

    try:
        data = await refresh_access_token(refresh)
    except SpotifyAPIError as exc:
        logger.warning("Token refresh failed (%s): %s", exc.status_code, exc.detail)
        raise Unauthenticated("Session expired — please log in again") from exc

    settings = get_settings()
    set_token_cookies(
        response,
        settings,
        data["access_token"],
        int(data.get("expires_in", 3600)),
        data.get("refresh_token"),
    )
    logger.info("Refreshed access token")
    return data["access_token"]


def get_listener_id(request: Request) -> str:
    """Stable anonymous id for this browser, kept in the signed session."""
    listener_id = request.session.get("listener_id")
    if not listener_id:
        listener_id = uuid.uuid4().hex[:12]
        request.session["listener_id"] = listener_id
    return listener_id


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.get("/login")
async def login(request: Request):
    """Start the Spotify login flow."""
    settings = get_settings()

    if not settings.spotify_client_id:
        raise FacadeError("SPOTIFY_CLIENT_ID not set")

    state = secrets.token_urlsafe(16)
    request.session["oauth_state"] = state

    params = {
        "client_id": settings.spotify_client_id,
        "response_type": "code",
        "redirect_uri": settings.redirect_uri,
        "scope": _SCOPES,
        "state": state,
        "show_dialog": "true",
    }
    return RedirectResponse(f"{_SPOTIFY_AUTH_URL}?{urlencode(params)}")


@router.get("/auth/callback")
async def callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
):
    """Handle Spotify's redirect after the user authorizes."""
    if error:
        raise InvalidRequest(f"Spotify auth error: {error}")
    if not code:
        raise InvalidRequest("Code is required")

    expected_state = request.session.pop("oauth_state", None)
    if expected_state and state != expected_state:
        raise InvalidRequest("OAuth state mismatch — restart login")

    try:
        token_data = await exchange_code(code)
    except SpotifyAPIError as exc:
        logger.error("Code exchange failed (%s): %s", exc.status_code, exc.detail)
        raise ProviderError("Failed to authenticate with Spotify", details=exc.detail) from exc

    access_token = token_data["access_token"]
    refresh_token = token_data.get("refresh_token")
    logger.info(
        "Obtained tokens (access length %d, refresh %s)",
        len(access_token),
        "yes" if refresh_token else "no",
    )

    response = RedirectResponse("/", status_code=303)
    set_token_cookies(
        response,
        get_settings(),
        access_token,
        int(token_data.get("expires_in", 3600)),
        refresh_token,
    )
    return response


@router.get("/session")
async def session_status(request: Request):
    """Whether this browser holds a usable session token."""
    authenticated = bool(request.cookies.get(ACCESS_COOKIE) or request.cookies.get(REFRESH_COOKIE))
    return {"authenticated": authenticated}


@router.post("/logout")
async def logout(request: Request, response: Response):
    """Drop the token cookies; the signed session keeps only the listener id."""
    request.session.pop("oauth_state", None)
    loops = getattr(request.app.state, "loops", None)
    listener_id = request.session.get("listener_id")
    if loops is not None and listener_id:
        await loops.stop(listener_id)
    clear_token_cookies(response, get_settings())
    return {"success": True}
