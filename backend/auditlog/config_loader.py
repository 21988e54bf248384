# backend/auditlog/config_loader.py
from __future__ import annotations

import json
import logging
from pathlib import Path
from collections.abc import Mapping
from typing import Any, Optional

from zoneinfo import ZoneInfo  # Python 3.9+

log = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parents[2]
CONFIG_DIR = REPO_ROOT / "config"
CONFIG_PATH = CONFIG_DIR / "appconfig.json"

_TEXT_SEARCH_CONFIG_KEY = "text_search_config"
_TEXT_SEARCH_CONFIG_DEFAULT = "english"

_DEFAULT_PAGE_SIZE_KEY = "default_page_size"
_DEFAULT_PAGE_SIZE = 10

MIN_PAGE_SIZE = 1
MAX_PAGE_SIZE = 1000


def _read_json_file(path: Path) -> dict:
    """Read JSON from disk, returning an empty mapping on failure."""
    if not path.exists():
        log.debug("No configuration file at %s; using defaults", path)
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except Exception:
        log.warning("Could not read %s; falling back to defaults", path, exc_info=True)
        return {}
    if not isinstance(data, dict):
        log.warning("%s does not hold a JSON object; falling back to defaults", path)
        return {}
    return data


def load_app_config() -> dict:
    """Return the raw JSON configuration for the application."""
    return _read_json_file(CONFIG_PATH)


def get_text_search_config(cfg: Optional[Mapping[str, Any]] = None) -> str:
    """Name of the Postgres text search configuration handed to to_tsquery()."""
    if cfg is None:
        cfg = load_app_config()
    raw = cfg.get(_TEXT_SEARCH_CONFIG_KEY) if isinstance(cfg, Mapping) else None
    if isinstance(raw, str) and raw.strip().isidentifier():
        return raw.strip()
    if raw is not None:
        log.warning("Ignoring invalid %s=%r", _TEXT_SEARCH_CONFIG_KEY, raw)
    return _TEXT_SEARCH_CONFIG_DEFAULT


def get_default_page_size(cfg: Optional[Mapping[str, Any]] = None) -> int:
    """Default ``size`` for listings, clamped into the accepted page size range."""
    if cfg is None:
        cfg = load_app_config()
    candidate = cfg.get(_DEFAULT_PAGE_SIZE_KEY) if isinstance(cfg, Mapping) else None
    try:
        value = int(candidate)
    except (TypeError, ValueError):
        return _DEFAULT_PAGE_SIZE
    return max(MIN_PAGE_SIZE, min(MAX_PAGE_SIZE, value))


def get_timezone(cfg: Optional[Mapping[str, Any]] = None) -> ZoneInfo:
    """Return the configured timezone, defaulting to UTC on any error."""
    if cfg is None:
        cfg = load_app_config()
    name = "UTC"
    if isinstance(cfg, Mapping):
        raw = cfg.get("timezone")
        if isinstance(raw, str) and raw.strip():
            name = raw.strip()
    try:
        return ZoneInfo(name)
    except Exception:
        log.warning("Unknown timezone %r; falling back to UTC", name, exc_info=True)
        return ZoneInfo("UTC")


def initialize_app_config(app: Any) -> None:
    """Populate a Flask app instance with values derived from appconfig.json."""
    cfg = load_app_config()
    if isinstance(cfg, Mapping):
        app.config.update(cfg)
    app.config["TEXT_SEARCH_CONFIG"] = get_text_search_config(cfg)
    app.config["DEFAULT_PAGE_SIZE"] = get_default_page_size(cfg)
    app.config["TZ"] = get_timezone(cfg)
