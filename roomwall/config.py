"""
Workspace configuration and YAML profile loading.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Dict, Optional, Union

import yaml

LOG = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).resolve().parent / "configs"
PROFILES_PATH = CONFIG_DIR / "profiles.yaml"


@dataclass
class WorkspaceConfig:
    """Settings for one workspace process."""

    profile: str = "default"
    discovery_url: str = "http://127.0.0.1:8787/api/rooms"
    status_url: str = "http://127.0.0.1:8787/api/status"
    default_limit: int = 12
    debounce_seconds: float = 0.1
    viewport_width: float = 1280
    viewport_height: float = 720
    toolbar_offset: int = 50
    request_timeout: float = 10.0
    storage_path: Optional[str] = None

    def to_dict(self) -> dict:
        return {item.name: getattr(self, item.name) for item in fields(self)}


def read_profiles(path: Union[str, Path, None] = None) -> Dict[str, dict]:
    target = Path(path) if path is not None else PROFILES_PATH
    try:
        with target.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except FileNotFoundError:
        LOG.info("Profiles file %s not found; using defaults", target)
        return {}
    if not isinstance(data, dict):
        LOG.warning("Profiles file %s is not a mapping; ignoring it", target)
        return {}
    return {str(name): value for name, value in data.items() if isinstance(value, dict)}


def load_config(profile: str = "default", path: Union[str, Path, None] = None) -> WorkspaceConfig:
    """
    Build a :class:`WorkspaceConfig` from the named profile.

    Missing files or profiles fall back to defaults; unknown keys are logged
    and skipped.
    """

    profiles = read_profiles(path)
    values = profiles.get(profile)
    if values is None:
        if profiles:
            LOG.warning("Profile '%s' not found; using defaults", profile)
        return WorkspaceConfig(profile=profile)

    known = {item.name for item in fields(WorkspaceConfig)}
    accepted = {}
    for key, value in values.items():
        if key not in known or key == "profile":
            LOG.warning("Ignoring unknown config key '%s' in profile '%s'", key, profile)
            continue
        accepted[key] = value
    return WorkspaceConfig(profile=profile, **accepted)
