"""Configuration management for discosync."""

from __future__ import annotations

import os
import tomllib
from pathlib import Path

from pydantic import BaseModel, Field, SecretStr


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

_BASE_DIR_NAME = ".discosync"
_CONFIG_FILE = "config.toml"
_DB_FILE = "discosync.db"
_LOG_DIR = "logs"


def get_base_dir() -> Path:
    """Return the base directory for all discosync runtime files (~/.discosync/)."""
    return Path.home() / _BASE_DIR_NAME


# ---------------------------------------------------------------------------
# Config models
# ---------------------------------------------------------------------------


class GeneralConfig(BaseModel):
    """Process-wide settings."""

    log_level: str = Field(default="info", description="Logging level")


class SyncConfig(BaseModel):
    """Settings that control the playlist rollover and scheduling."""

    playlist_capacity: int = Field(default=8000, gt=0, description="Maximum tracks per managed playlist")
    playlist_prefix: str = Field(default="Discover House", description="Name prefix for created playlists")
    playlist_public: bool = Field(default=False, description="Create new playlists as public")
    interval_minutes: int = Field(default=360, gt=0, description="Minutes between scheduled sync runs")
    cleanup_every: int = Field(
        default=4,
        ge=0,
        description="Run a deduplication cleanup every N scheduled cycles (0 disables)",
    )


class SpotifyConfig(BaseModel):
    """Spotify API credentials."""

    client_id: str = Field(default="", description="Spotify Developer App client ID")
    client_secret: SecretStr = Field(default=SecretStr(""), description="Spotify Developer App client secret")
    refresh_token: SecretStr = Field(default=SecretStr(""), description="Spotify OAuth refresh token")


class AppConfig(BaseModel):
    """Top-level application configuration."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    spotify: SpotifyConfig = Field(default_factory=SpotifyConfig)

    # -- derived paths (not stored in TOML) --------------------------------

    @property
    def base_dir(self) -> Path:
        return get_base_dir()

    @property
    def db_path(self) -> Path:
        return self.base_dir / _DB_FILE

    @property
    def log_dir(self) -> Path:
        return self.base_dir / _LOG_DIR

    def is_spotify_configured(self) -> bool:
        """Return True if Spotify credentials are fully set."""
        return bool(
            self.spotify.client_id
            and self.spotify.client_secret.get_secret_value()
            and self.spotify.refresh_token.get_secret_value()
        )


# ---------------------------------------------------------------------------
# Filesystem helpers
# ---------------------------------------------------------------------------


def ensure_dirs() -> None:
    """Create the base directory and log directory if they don't already exist."""
    base = get_base_dir()
    base.mkdir(mode=0o700, parents=True, exist_ok=True)
    (base / _LOG_DIR).mkdir(mode=0o700, parents=True, exist_ok=True)


def config_exists() -> bool:
    """Return True if a config file is present on disk."""
    return (get_base_dir() / _CONFIG_FILE).is_file()


# ---------------------------------------------------------------------------
# Load / save
# ---------------------------------------------------------------------------


def load_config() -> AppConfig:
    """Load configuration from TOML, falling back to defaults if the file is missing."""
    path = get_base_dir() / _CONFIG_FILE
    if not path.is_file():
        return AppConfig()

    with open(path, "rb") as f:
        raw = tomllib.load(f)

    return AppConfig.model_validate(raw)


def _format_toml_value(value: object) -> str:
    """Format a single Python value as a TOML literal."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, SecretStr):
        value = value.get_secret_value()
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    msg = f"Unsupported TOML value type: {type(value)}"
    raise TypeError(msg)


def _dump_toml(config: AppConfig) -> str:
    """Serialize an AppConfig to a minimal TOML string (tables of scalars only)."""
    lines: list[str] = []
    sections = [
        ("general", config.general),
        ("sync", config.sync),
        ("spotify", config.spotify),
    ]
    for section_name, section_model in sections:
        lines.append(f"[{section_name}]")
        for key, value in section_model.model_dump(mode="python").items():
            lines.append(f"{key} = {_format_toml_value(value)}")
        lines.append("")
    return "\n".join(lines)


def save_config(config: AppConfig) -> None:
    """Save configuration to TOML and restrict file permissions to owner-only."""
    ensure_dirs()
    path = get_base_dir() / _CONFIG_FILE
    path.write_text(_dump_toml(config), encoding="utf-8")
    os.chmod(path, 0o600)
