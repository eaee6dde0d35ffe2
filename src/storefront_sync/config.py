"""Application configuration: loads .env, then overrides from settings.json."""

import json
import os
from pathlib import Path

from dotenv import load_dotenv

# Find the project root (where .env lives)
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# Runtime settings file for in-app configuration
_SETTINGS_FILE = _PROJECT_ROOT / "data" / "settings.json"


def _load_settings() -> dict:
    """Load saved runtime settings from JSON file."""
    if _SETTINGS_FILE.exists():
        try:
            return json.loads(_SETTINGS_FILE.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            pass
    return {}


def _save_settings(settings: dict):
    """Persist runtime settings to JSON file."""
    _SETTINGS_FILE.parent.mkdir(parents=True, exist_ok=True)
    _SETTINGS_FILE.write_text(
        json.dumps(settings, indent=2), encoding="utf-8"
    )


def _optional_float(value) -> float | None:
    if value in (None, ""):
        return None
    return float(value)


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


# Load saved settings once at import time
_runtime = _load_settings()


class Config:
    """Central configuration: .env defaults, settings.json overrides."""

    # Paths
    PROJECT_ROOT: Path = _PROJECT_ROOT
    DATABASE_PATH: Path = Path(
        os.getenv("DATABASE_PATH", str(_PROJECT_ROOT / "data" / "storefront.db"))
    )
    SESSION_FILE: Path = Path(
        os.getenv("SESSION_FILE", str(_PROJECT_ROOT / "data" / "session.json"))
    )

    # Remote catalog service (settings.json overrides .env)
    API_BASE_URL: str = _runtime.get(
        "api_base_url",
        os.getenv("API_BASE_URL", "http://localhost:3000/"),
    )
    # None leaves the transport default in place
    API_TIMEOUT: float | None = _optional_float(_runtime.get(
        "api_timeout",
        os.getenv("API_TIMEOUT"),
    ))

    # Sync scheduling
    SYNC_INTERVAL_MINUTES: int = int(_runtime.get(
        "sync_interval_minutes",
        os.getenv("SYNC_INTERVAL_MINUTES", "60"),
    ))
    SYNC_ON_START: bool = _as_bool(_runtime.get(
        "sync_on_start",
        os.getenv("SYNC_ON_START", "true"),
    ))
    WORKER_THREADS: int = int(os.getenv("WORKER_THREADS", "4"))

    # Credential given to accounts derived from remote merchants
    PLACEHOLDER_PASSWORD: str = os.getenv(
        "PLACEHOLDER_PASSWORD", "changeme-merchant"
    )

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def update_sync_settings(cls, base_url: str, interval_minutes: int,
                             timeout: float | None = None):
        """Update remote/sync settings at runtime and persist to disk."""
        cls.API_BASE_URL = base_url
        cls.SYNC_INTERVAL_MINUTES = interval_minutes
        cls.API_TIMEOUT = timeout

        settings = _load_settings()
        settings["api_base_url"] = base_url
        settings["sync_interval_minutes"] = interval_minutes
        settings["api_timeout"] = timeout
        _save_settings(settings)

    @classmethod
    def update_sync_on_start(cls, enabled: bool):
        """Toggle the startup sync and persist."""
        cls.SYNC_ON_START = enabled
        settings = _load_settings()
        settings["sync_on_start"] = enabled
        _save_settings(settings)

    @classmethod
    def get_sync_interval_ms(cls) -> int:
        """Periodic sync interval in milliseconds (minimum 1 minute)."""
        return max(cls.SYNC_INTERVAL_MINUTES, 1) * 60 * 1000
