"""Application configuration management."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from doitapp.models import AppConfig

log = logging.getLogger(__name__)

_CONFIG_DIR = Path.home() / ".config" / "doitapp"
_DB_DIR = Path.home() / ".local" / "share" / "doitapp"

_CONFIG_FILE = _CONFIG_DIR / "config.json"
_NOTIFIED_FILE = _CONFIG_DIR / "notified_tasks.json"


def load_config() -> AppConfig:
    """Load config from disk, returning defaults if none exists."""
    if _CONFIG_FILE.exists():
        try:
            data = json.loads(_CONFIG_FILE.read_text())
            return AppConfig(**data)
        except (json.JSONDecodeError, TypeError, ValidationError) as exc:
            log.warning("Ignoring invalid config %s: %s", _CONFIG_FILE, exc)
    return AppConfig()


def save_config(config: AppConfig) -> Path:
    """Write config to disk. Returns the config file path."""
    _CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    _CONFIG_FILE.write_text(config.model_dump_json(indent=2))
    return _CONFIG_FILE


def get_db_path() -> Path:
    """Resolve the database path from config (or default)."""
    config = load_config()
    if config.db_path is not None:
        p = Path(config.db_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        return p
    _DB_DIR.mkdir(parents=True, exist_ok=True)
    return _DB_DIR / "doitapp.db"


def set_db_path(path: str) -> AppConfig:
    """Set a custom database path and save config."""
    resolved = Path(path).expanduser().resolve()
    if resolved.is_dir():
        resolved = resolved / "doitapp.db"
    resolved.parent.mkdir(parents=True, exist_ok=True)
    config = load_config()
    config.db_path = str(resolved)
    save_config(config)
    return config


def reset_db_path() -> AppConfig:
    """Reset to the default local database path."""
    config = load_config()
    config.db_path = None
    save_config(config)
    return config


def set_user(user_id: Optional[str]) -> AppConfig:
    """Remember the signed-in user (``None`` signs out)."""
    config = load_config()
    config.user_id = user_id
    save_config(config)
    return config


def set_reminders(
    enabled: Optional[bool] = None, minutes: Optional[int] = None
) -> AppConfig:
    """Update reminder settings; arguments left as ``None`` are kept."""
    config = load_config()
    update: dict[str, object] = {}
    if enabled is not None:
        update["notifications_enabled"] = enabled
    if minutes is not None:
        update["reminder_minutes"] = minutes
    config = AppConfig(**{**config.model_dump(), **update})
    save_config(config)
    return config


def get_notified_path() -> Path:
    """Side-table of tasks that were already reminded about."""
    return _NOTIFIED_FILE
