"""Application settings loaded from .env via pydantic-settings."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Facade and reconciliation-loop settings, read from the environment or ``.env``."""

    # Spotify
    spotify_client_id: str = ""
    spotify_client_secret: str = ""

    # App
    base_url: str = "http://localhost:8000"
    secret_key: str = "change-me"
    environment: str = "development"
    cookie_domain: Optional[str] = None

    # Database
    db_path: str = "./data/vinyl_notes.db"

    # Playback
    allowed_playlist_id: str = ""
    min_call_spacing_ms: int = 500
    provider_timeout: float = 10.0

    # Reconciliation loop
    poll_interval: float = 10.0
    min_poll_interval: float = 1.0
    transition_display_seconds: float = 3.0

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def db_abs_path(self) -> Path:
        """Absolute notes DB path; the parent directory is created on first use."""
        p = Path(self.db_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        return p.resolve()

    @property
    def redirect_uri(self) -> str:
        return f"{self.base_url.rstrip('/')}/auth/callback"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def playlist_id(self) -> str:
        """Allowed playlist id without a share-link ``?si=`` suffix."""
        return self.allowed_playlist_id.split("?", 1)[0].strip()

    @property
    def playlist_uri(self) -> str:
        return f"spotify:playlist:{self.playlist_id}"


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings; tests call ``get_settings.cache_clear()`` after changing env."""
    return Settings()
