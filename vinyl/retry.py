"""Retry wrapper for idempotent Spotify Web API reads.

- 429 → sleep for the provider's ``Retry-After`` hint (default 1s, capped at 10s)
- 5xx / transport failure → exponential backoff, ``2 ** attempt`` seconds
- anything else (400, 401, 403, 404, …) → raised immediately
- the last error propagates once ``max_retries`` attempts are used up
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from vinyl.spotify_client import SpotifyAPIError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRIES = 3
DEFAULT_RETRY_AFTER = 1.0
# Upper bound on a single Retry-After wait.
MAX_RETRY_AFTER = 10.0


def is_retryable(exc: SpotifyAPIError) -> bool:
    """Rate limits, server errors, and transport failures (status 0)."""
    return exc.status_code == 429 or exc.status_code == 0 or exc.status_code >= 500


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int = MAX_RETRIES,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    max_retry_after: float = MAX_RETRY_AFTER,
) -> T:
    """Run *operation* up to *max_retries* times, absorbing transient failures."""
    if max_retries < 1:
        raise ValueError("max_retries must be >= 1")

    for attempt in range(max_retries):
        try:
            return await operation()
        except SpotifyAPIError as exc:
            if not is_retryable(exc):
                raise
            if attempt == max_retries - 1:
                logger.warning("Giving up after %d attempts: %s", max_retries, exc)
                raise

            if exc.status_code == 429:
                delay = exc.retry_after if exc.retry_after is not None else DEFAULT_RETRY_AFTER
                delay = min(delay, max_retry_after)
                logger.warning("Rate limited — retrying in %.1fs (attempt %d)", delay, attempt + 1)
            else:
                delay = float(2 ** attempt)
                logger.warning(
                    "Spotify error %d — backing off %.1fs (attempt %d)",
                    exc.status_code,
                    delay,
                    attempt + 1,
                )
            await sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover
