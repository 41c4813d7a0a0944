"""Tests for provider error translation (vinyl/errors.py)."""

import pytest

from vinyl.errors import (
    NoActiveDevice,
    ProviderError,
    RateLimited,
    Unauthenticated,
    translate_provider_error,
)
from vinyl.spotify_client import SpotifyAPIError


def test_401_is_unauthenticated():
    err = translate_provider_error(SpotifyAPIError(401, "expired"), "Failed")
    assert isinstance(err, Unauthenticated)
    assert err.to_envelope() == {"error": "Not authenticated", "code": 401, "details": "expired"}


def test_429_keeps_retry_after():
    err = translate_provider_error(SpotifyAPIError(429, "slow", retry_after=3.0), "Failed")
    assert isinstance(err, RateLimited)
    assert err.retry_after == 3.0


@pytest.mark.parametrize(
    "exc",
    [
        SpotifyAPIError(404, "Player command failed", reason="NO_ACTIVE_DEVICE"),
        SpotifyAPIError(404, "Device not found"),
    ],
)
def test_missing_device_is_no_active_device(exc):
    err = translate_provider_error(exc, "Failed")
    assert isinstance(err, NoActiveDevice)
    assert err.status_code == 404


def test_other_errors_keep_status_and_message():
    err = translate_provider_error(SpotifyAPIError(403, "Premium required"), "Failed to start playback")
    assert isinstance(err, ProviderError)
    assert err.to_envelope() == {"error": "Failed to start playback", "code": 403, "details": "Premium required"}


def test_transport_failure_is_500():
    err = translate_provider_error(SpotifyAPIError(0, "timed out"), "Failed")
    assert err.status_code == 500


def test_envelope_omits_empty_details():
    assert ProviderError("boom").to_envelope() == {"error": "boom", "code": 500}
