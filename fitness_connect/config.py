"""Application configuration loaded from environment variables."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- Logging ---
    log_level: str = "INFO"

    # --- Withings OAuth application ---
    withings_client_id: str | None = None
    withings_client_secret: str | None = None
    withings_redirect_uri: str | None = None  # falls back to providers.yaml

    # --- Strava OAuth application ---
    strava_client_id: str | None = None
    strava_client_secret: str | None = None
    strava_redirect_uri: str | None = None

    # --- Local state ---
    credentials_dir: Path = Path("~/.config/fitness-connect").expanduser()
    withings_config_file: Path | None = None  # overrides <credentials_dir>/withings.json
    strava_config_file: Path | None = None  # overrides <credentials_dir>/strava.json
    marker_file: Path | None = None  # defaults to <credentials_dir>/sync_markers.json

    # --- HTTP ---
    http_timeout_seconds: float = 20.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    def client_settings(self, provider_id: str) -> tuple[str | None, str | None, str | None]:
        """Return (client_id, client_secret, redirect_uri) for a provider."""
        return (
            getattr(self, f"{provider_id}_client_id", None),
            getattr(self, f"{provider_id}_client_secret", None),
            getattr(self, f"{provider_id}_redirect_uri", None),
        )

    def credential_overrides(self) -> dict[str, Path]:
        overrides: dict[str, Path] = {}
        if self.withings_config_file:
            overrides["withings"] = self.withings_config_file.expanduser()
        if self.strava_config_file:
            overrides["strava"] = self.strava_config_file.expanduser()
        return overrides

    def resolved_marker_file(self) -> Path:
        if self.marker_file:
            return self.marker_file.expanduser()
        return self.credentials_dir.expanduser() / "sync_markers.json"


@lru_cache
def get_settings() -> Settings:
    return Settings()
