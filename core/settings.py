"""Centralized application configuration."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional
from urllib.parse import urlparse
import os
import sys


def get_default_data_dir(
    app_name: str,
    *,
    platform: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """Return an OS-specific user data directory for ``app_name``."""

    platform_id = (platform or sys.platform).lower()
    environ = dict(env or os.environ)
    home_dir = Path(home or Path.home())
    sanitized = app_name.strip() or "app"
    sanitized = sanitized.replace("/", "-").replace("\\", "-")

    if platform_id.startswith("win"):
        base = Path(environ.get("APPDATA") or home_dir / "AppData" / "Roaming")
    elif platform_id == "darwin":
        base = Path(environ.get("APPDATA") or home_dir / "Library" / "Application Support")
    else:
        base = Path(environ.get("XDG_DATA_HOME") or home_dir / ".local" / "share")

    return (base.expanduser() / sanitized)


def _env(env: Mapping[str, str], *names: str, default: str = "") -> str:
    for name in names:
        value = env.get(name)
        if value:
            return value.strip()
    return default


APP_NAME = "TripLog"


DATA_DIR = get_default_data_dir(APP_NAME)
STORAGE_DIR = DATA_DIR / "storage"
LOGS_DIR = DATA_DIR / "logs"

for _dir in (DATA_DIR, STORAGE_DIR, LOGS_DIR):
    _dir.mkdir(parents=True, exist_ok=True)


DB_PATH = DATA_DIR / "triplog.db"
TOKEN_PATH = STORAGE_DIR / "session.json"
SYNC_LOG_PATH = LOGS_DIR / "sync.log"


@dataclass(frozen=True)
class BackendSettings:
    url: str = ""
    anon_key: str = ""
    photos_bucket: str = "trip-photos"
    signed_url_ttl_sec: int = 60 * 60 * 24 * 365

    @property
    def configured(self) -> bool:
        return bool(self.url and self.anon_key)

    @property
    def host(self) -> Optional[str]:
        if not self.url:
            return None
        return urlparse(self.url).hostname

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "BackendSettings":
        environ = dict(env if env is not None else os.environ)
        return cls(
            url=_env(environ, "TRIPLOG_SUPABASE_URL", "SUPABASE_URL"),
            anon_key=_env(environ, "TRIPLOG_SUPABASE_ANON_KEY", "SUPABASE_ANON_KEY"),
            photos_bucket=_env(environ, "TRIPLOG_PHOTOS_BUCKET", default="trip-photos"),
        )


BACKEND = BackendSettings.from_env()


@dataclass(frozen=True)
class SyncSettings:
    foreground_timeout_sec: float = 8.0
    max_attempts: int = 10
    connectivity_probe_interval_sec: int = 15
    log_max_bytes: int = 1_000_000
    log_backups: int = 3

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "SyncSettings":
        environ = dict(env if env is not None else os.environ)
        defaults = cls()
        timeout = _env(environ, "TRIPLOG_SYNC_TIMEOUT_SEC")
        attempts = _env(environ, "TRIPLOG_SYNC_MAX_ATTEMPTS")
        return cls(
            foreground_timeout_sec=float(timeout) if timeout else defaults.foreground_timeout_sec,
            max_attempts=int(attempts) if attempts else defaults.max_attempts,
        )


SYNC = SyncSettings.from_env()


@dataclass(frozen=True)
class ThemeColors:
    safe_surface_bg: str = "#F1F5F9"
    text_subtle: str = "#6B7280"
    syncing_bg: str = "#DBEAFE"
    background_sync_bg: str = "#FEF3C7"
    offline_bg: str = "#FEE2E2"
    pending_chip: str = "#FDE68A"
    error_chip: str = "#FCA5A5"


@dataclass(frozen=True)
class UISettings:
    app_title: str = APP_NAME
    theme_mode: str = "system"
    color_scheme_seed: str = "#0F766E"
    window_min_width: int = 900
    window_min_height: int = 600
    sync_log_lines: int = 100
    theme: ThemeColors = field(default_factory=ThemeColors)


UI = UISettings()


__all__ = [
    "APP_NAME",
    "DATA_DIR",
    "STORAGE_DIR",
    "LOGS_DIR",
    "DB_PATH",
    "TOKEN_PATH",
    "SYNC_LOG_PATH",
    "BACKEND",
    "SYNC",
    "UI",
    "BackendSettings",
    "SyncSettings",
    "get_default_data_dir",
]
