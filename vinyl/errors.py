"""Error taxonomy for the facade and the uniform JSON error envelope.

Every handler failure ends up as::

    {"error": "<message>", "code": <status>, "details": ...}

with the HTTP status mirroring ``code``.  Provider exceptions are translated
here and never reach the transport layer unhandled.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from vinyl.spotify_client import SpotifyAPIError

logger = logging.getLogger(__name__)


class FacadeError(Exception):
    """Base for every error rendered through the envelope."""

    status_code = 500

    def __init__(self, message: str, *, status_code: int | None = None, details: Any = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details
        super().__init__(message)

    def to_envelope(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message, "code": self.status_code}
        if self.details is not None:
            body["details"] = self.details
        return body


class Unauthenticated(FacadeError):
    status_code = 401

    def __init__(self, message: str = "Not authenticated", **kwargs):
        super().__init__(message, **kwargs)


class NoActiveDevice(FacadeError):
    status_code = 404

    def __init__(
        self,
        message: str = "No active device — open Spotify on any device and press play",
        **kwargs,
    ):
        super().__init__(message, **kwargs)


class RateLimited(FacadeError):
    status_code = 429

    def __init__(self, message: str = "Too many requests — please wait", *, retry_after: float = 1.0, **kwargs):
        self.retry_after = retry_after
        super().__init__(message, **kwargs)


class ProviderError(FacadeError):
    status_code = 500


class StoreError(FacadeError):
    status_code = 500


class InvalidRequest(FacadeError):
    status_code = 400


class NotFound(FacadeError):
    status_code = 404


def translate_provider_error(exc: SpotifyAPIError, message: str) -> FacadeError:
    """Map a Spotify failure onto the taxonomy, keeping its status when known."""
    if exc.status_code == 401:
        return Unauthenticated(details=exc.detail)
    if exc.status_code == 429:
        return RateLimited(retry_after=exc.retry_after or 1.0, details=exc.detail)
    if exc.reason == "NO_ACTIVE_DEVICE" or (exc.status_code == 404 and "device" in exc.detail.lower()):
        return NoActiveDevice(details=exc.detail)
    status = exc.status_code if 400 <= exc.status_code < 600 else 500
    return ProviderError(message, status_code=status, details=exc.detail)


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

async def _facade_error_handler(request: Request, exc: FacadeError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.details)
    headers = None
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(max(1, round(exc.retry_after)))}
    return JSONResponse(exc.to_envelope(), status_code=exc.status_code, headers=headers)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    missing = [".".join(str(p) for p in err.get("loc", ()) if p != "body") for err in exc.errors()]
    error = InvalidRequest("Invalid request", details=missing)
    return JSONResponse(error.to_envelope(), status_code=error.status_code)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FacadeError, _facade_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
