"""Configuration helpers for Baton projects.

This module locates and validates ``.baton.json`` with Pydantic models and
resolves the caller identity once, at the command boundary.

Example:
    >>> from baton.config import utc_now
    >>> utc_now().endswith("Z")
    True
"""

from __future__ import annotations

import datetime as dt
import json
from collections.abc import Mapping
from pathlib import Path

from pydantic import ValidationError

from . import log
from .models import BatonConfig

CONFIG_FILENAME = ".baton.json"
DEFAULT_WORKSPACE_DIR = Path("ws") / "default"
AGENT_ENV_VARS = ("AGENT", "BOTBUS_AGENT")


class ConfigError(RuntimeError):
    """Raised when project configuration is missing or invalid."""


def utc_now() -> str:
    """Return the current UTC timestamp in ISO-8601 format.

    Returns:
        UTC timestamp like ``2026-01-18T12:34:56Z``.

    Example:
        >>> timestamp = utc_now()
        >>> timestamp.endswith("Z")
        True
    """
    now = dt.datetime.now(tz=dt.timezone.utc).replace(microsecond=0)
    return now.isoformat().replace("+00:00", "Z")


def find_config(project_root: Path) -> Path:
    """Locate ``.baton.json`` in the project root or its default workspace.

    Raises:
        ConfigError: When neither location holds a config file.
    """
    candidates = (
        project_root / CONFIG_FILENAME,
        project_root / DEFAULT_WORKSPACE_DIR / CONFIG_FILENAME,
    )
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    raise ConfigError(
        f"no {CONFIG_FILENAME} found in {project_root} or {project_root / DEFAULT_WORKSPACE_DIR}"
    )


def parse_config(payload: object, *, source: str) -> BatonConfig:
    try:
        return BatonConfig.model_validate(payload)
    except ValidationError as exc:
        raise ConfigError(f"invalid {source}: {exc}") from exc


def load_config(path: Path) -> BatonConfig:
    """Load and validate a config file."""
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"reading {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"invalid {path}: {exc}") from exc
    log.trace(f"loaded config from {path}")
    return parse_config(payload, source=str(path))


def resolve_agent(
    flag: str | None, config: BatonConfig, env: Mapping[str, str]
) -> str:
    """Resolve the agent name: flag, then environment, then config default.

    Example:
        >>> cfg = BatonConfig.model_validate({"project": {"name": "myapp"}})
        >>> resolve_agent(None, cfg, {"BOTBUS_AGENT": "amber-reef"})
        'amber-reef'
        >>> resolve_agent(None, cfg, {})
        'myapp-dev'
    """
    if flag:
        return flag
    for name in AGENT_ENV_VARS:
        value = env.get(name, "").strip()
        if value:
            return value
    return config.project.resolved_agent()


def resolve_project(flag: str | None, config: BatonConfig) -> str:
    if flag:
        return flag
    return config.project.name
