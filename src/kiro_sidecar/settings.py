"""
Persistent supervisor settings.

Saved launch defaults live in ``<home>/config.yaml`` so the CLI and the
control server agree on port, keys and region without repeating them on
every call. Explicit start parameters always win over saved settings.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from . import SIDECAR_HOME
from .health import DEFAULT_HEALTH_HEADER, DEFAULT_HEALTH_PATH, DEFAULT_HEALTH_TIMEOUT
from .models import (
    DEFAULT_ADMIN_KEY,
    DEFAULT_API_KEY,
    DEFAULT_KIRO_VERSION,
    DEFAULT_PORT,
    DEFAULT_REGION,
    StartParams,
)
from .paths import default_runtime_data_dir

logger = logging.getLogger("kiro_sidecar.settings")

SETTINGS_FILE = "config.yaml"
DEFAULT_CONTROL_PORT = 7781


class SupervisorSettings(BaseModel):
    """Everything configurable about the supervisor and its gateway."""

    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    api_key: str = DEFAULT_API_KEY
    admin_key: str = DEFAULT_ADMIN_KEY
    region: str = DEFAULT_REGION
    kiro_version: str = DEFAULT_KIRO_VERSION
    proxy_url: Optional[str] = None
    project_path: Optional[str] = None
    data_dir: Optional[Path] = None
    resource_root: Optional[Path] = None
    accounts_file: Optional[Path] = None

    control_port: int = Field(default=DEFAULT_CONTROL_PORT, ge=1, le=65535)

    health_path: str = DEFAULT_HEALTH_PATH
    health_header: str = DEFAULT_HEALTH_HEADER
    health_timeout: float = DEFAULT_HEALTH_TIMEOUT

    stop_timeout: float = 5.0
    lock_timeout: float = 10.0


def home_path(home: Optional[Path] = None) -> Path:
    return (home or Path(SIDECAR_HOME)).expanduser()


def load_settings(home: Optional[Path] = None) -> SupervisorSettings:
    """Load settings from ``config.yaml``, or defaults if absent or broken."""
    config_file = home_path(home) / SETTINGS_FILE
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
            return SupervisorSettings(**data)
        except (yaml.YAMLError, ValueError, TypeError) as exc:
            logger.warning("Failed to load settings, using defaults: %s", exc)
    return SupervisorSettings()


def save_settings(settings: SupervisorSettings, home: Optional[Path] = None) -> Path:
    """Write settings to ``config.yaml``, omitting unset optionals."""
    config_file = home_path(home) / SETTINGS_FILE
    config_file.parent.mkdir(parents=True, exist_ok=True)
    data = settings.model_dump(mode="json", exclude_none=True)
    config_file.write_text(yaml.safe_dump(data, default_flow_style=False, sort_keys=True))
    return config_file

def _pick(*values: Optional[str]) -> Optional[str]:
    """First non-blank value, stripped."""
    for value in values:
        if value is not None and value.strip():
            return value.strip()
    return None


@dataclass(frozen=True)
class LaunchPlan:
    """Start parameters merged over settings. Immutable for one start."""

    project_path: Optional[str]
    port: int
    api_key: str
    admin_key: str
    data_dir: Path
    region: str
    kiro_version: str
    proxy_url: Optional[str]


def merge_launch(params: Optional[StartParams], settings: SupervisorSettings) -> LaunchPlan:
    """Explicit parameter > saved setting > built-in default.

    Blank strings count as unset.
    """
    params = params or StartParams()
    data_dir = _pick(params.data_dir)
    return LaunchPlan(
        project_path=_pick(params.project_path, settings.project_path),
        port=params.port or settings.port,
        api_key=_pick(params.api_key, settings.api_key, DEFAULT_API_KEY),
        admin_key=_pick(params.admin_key, settings.admin_key, DEFAULT_ADMIN_KEY),
        data_dir=(
            Path(data_dir).expanduser()
            if data_dir
            else (settings.data_dir or default_runtime_data_dir()).expanduser()
        ),
        region=_pick(params.region, settings.region, DEFAULT_REGION),
        kiro_version=_pick(params.kiro_version, settings.kiro_version, DEFAULT_KIRO_VERSION),
        proxy_url=_pick(params.proxy_url, settings.proxy_url),
    )
