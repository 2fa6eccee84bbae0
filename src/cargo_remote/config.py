"""Configuration files for the remote build flow.

Two optional YAML files are consulted, the project file taking precedence
over the user file:

* ``<workspace root>/.cargo-remote.yaml``
* ``$XDG_CONFIG_HOME/cargo-remote/cargo-remote.yaml`` (``~/.config`` fallback)
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigError

__all__ = [
    "PROJECT_CONFIG_NAME",
    "USER_CONFIG_NAME",
    "RemoteConfig",
    "load_config_file",
    "load_remote_config",
    "user_config_path",
]

LOGGER = logging.getLogger(__name__)

PROJECT_CONFIG_NAME = ".cargo-remote.yaml"
USER_CONFIG_NAME = "cargo-remote.yaml"


class RemoteConfig(BaseModel):
    """Settings shared by every remote build of a project."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    remote: Optional[str] = None
    build_path_root: str = "~/remote-builds"
    patches_dir: str = ".."
    env_profile: str = "/etc/profile"
    rustup_default: str = "stable"
    build_env: str = "RUST_BACKTRACE=1"
    transfer_hidden: bool = False
    copy_lock: bool = True
    rsync_excludes: List[str] = Field(default_factory=lambda: ["target"])
    cargo_timeout: float = Field(default=120.0, gt=0)

    def build_path(self, project_name: str) -> str:
        """Return the remote directory the project is built in."""
        return f"{self.build_path_root.rstrip('/')}/{project_name}/"


def user_config_path() -> Path:
    """Return the per-user configuration file location."""
    base = os.environ.get("XDG_CONFIG_HOME")
    root = Path(base) if base else Path.home() / ".config"
    return root / "cargo-remote" / USER_CONFIG_NAME


def load_config_file(config_path: Path) -> Dict[str, Any] | None:
    """Read one configuration file.

    Missing files are silently skipped.  Unreadable or malformed files are
    logged and skipped so a broken user file does not block builds.
    """

    if not config_path.exists():
        return None
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as error:
        LOGGER.warning("Can't parse config file '%s' (error: %s)", config_path, error)
        return None
    if not isinstance(data, dict):
        LOGGER.warning("Can't parse config file '%s' (error: top level must be a mapping)", config_path)
        return None
    return data


def load_remote_config(
    project_dir: Path,
    *,
    user_config: Path | None = None,
) -> RemoteConfig:
    """Merge the user and project configuration files into a :class:`RemoteConfig`."""

    merged: Dict[str, Any] = {}
    sources = [user_config or user_config_path(), project_dir / PROJECT_CONFIG_NAME]
    for source in sources:
        data = load_config_file(source)
        if data is None:
            continue
        LOGGER.debug("Loaded configuration from %s", source)
        merged.update(data)

    try:
        return RemoteConfig.model_validate(merged)
    except ValidationError as error:
        raise ConfigError(f"Invalid configuration: {error}") from error
