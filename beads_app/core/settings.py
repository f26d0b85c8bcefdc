"""Load runtime settings from YAML (with fallbacks) and environment overrides."""

from __future__ import annotations

import logging
import os
from dataclasses import fields
from pathlib import Path
from typing import Any

import pytz
import yaml

from .config import SETTINGS_FILENAME, AppSettings

logger = logging.getLogger(__name__)

_CACHE: AppSettings | None = None

_TRUE_STRINGS = {"1", "true", "yes", "on"}


def _coerce(value: Any, default: Any) -> Any:
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in _TRUE_STRINGS
        return bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return None if value is None else str(value)


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Ignoring unreadable settings file %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring settings file %s: top level is not a mapping", path)
        return {}
    return data


def _env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if os.environ.get("BD_BIN"):
        overrides["bd_bin"] = os.environ["BD_BIN"]
    if os.environ.get("BEADS_APP_TIMEZONE"):
        overrides["timezone"] = os.environ["BEADS_APP_TIMEZONE"]
    if os.environ.get("BEADS_APP_STRICT"):
        overrides["strict"] = os.environ["BEADS_APP_STRICT"]
    return overrides


def load_settings(base_path: str | Path | None = None, *, reload: bool = False) -> AppSettings:
    """Settings from ``beads_app.yaml`` under ``base_path`` (default: cwd).

    Unknown keys and values that fail to convert are ignored with a warning;
    the ``BD_BIN``, ``BEADS_APP_TIMEZONE`` and ``BEADS_APP_STRICT``
    environment variables win over the file.
    """
    global _CACHE
    if _CACHE is not None and not reload:
        return _CACHE
    base = Path(base_path or Path.cwd())
    data = _read_yaml(base / SETTINGS_FILENAME)
    data.update(_env_overrides())

    defaults = AppSettings()
    values: dict[str, Any] = {}
    known = {f.name for f in fields(AppSettings)}
    for key, value in data.items():
        if key not in known:
            logger.warning("Unknown setting %r ignored", key)
            continue
        try:
            values[key] = _coerce(value, getattr(defaults, key))
        except (TypeError, ValueError):
            logger.warning("Invalid value %r for setting %s; using default", value, key)

    settings = AppSettings(**values)
    if settings.timezone not in pytz.all_timezones_set:
        logger.warning("Unknown timezone %r; falling back to %s", settings.timezone, defaults.timezone)
        settings.timezone = defaults.timezone
    _CACHE = settings
    return _CACHE
