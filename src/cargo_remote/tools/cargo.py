"""Thin wrappers around the ``cargo`` subcommands the remote flow relies on."""

from __future__ import annotations

import json
import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

from ..errors import WorkspaceLocatorError

__all__ = [
    "DEFAULT_CARGO_TIMEOUT",
    "CargoError",
    "ProjectMetadata",
    "cargo_executable",
    "load_project_metadata",
    "locate_workspace_folder",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_CARGO_TIMEOUT = 120.0
MANIFEST_NAME = "Cargo.toml"


class CargoError(WorkspaceLocatorError):
    """Raised when a cargo command fails or returns unusable output."""


@dataclass(frozen=True, slots=True)
class ProjectMetadata:
    """Subset of ``cargo metadata`` the remote build needs."""

    workspace_root: Path
    name: str

    @property
    def manifest_path(self) -> Path:
        return self.workspace_root / MANIFEST_NAME


def cargo_executable() -> str:
    """Return the cargo binary, honouring the ``CARGO`` environment variable."""
    return os.environ.get("CARGO") or "cargo"


def _run_cargo(
    args: Sequence[str],
    *,
    cargo: str | None = None,
    timeout: float | None = DEFAULT_CARGO_TIMEOUT,
) -> str:
    command = [cargo or cargo_executable(), *args]
    try:
        process = subprocess.run(
            command,
            capture_output=True,
            text=False,
            check=False,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as error:
        raise CargoError(f"cargo {' '.join(args)} timed out after {timeout}s") from error
    except OSError as error:
        raise CargoError(f"Unable to run {command[0]}: {error}") from error
    stdout = process.stdout.decode("utf-8", errors="replace") if process.stdout else ""
    stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
    if process.returncode != 0:
        message = stderr.strip() or stdout.strip() or f"exit status {process.returncode}"
        raise CargoError(
            f"cargo {' '.join(args)} failed: {message}",
            details={"returncode": process.returncode},
        )
    return stdout


def _parse_json(payload: str, *, command: str) -> dict[str, Any]:
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as error:
        raise CargoError(f"cargo {command} returned invalid JSON: {error}") from error
    if not isinstance(data, dict):
        raise CargoError(f"cargo {command} returned a non-object payload")
    return data


def locate_workspace_folder(
    crate_path: Path,
    *,
    cargo: str | None = None,
    timeout: float | None = DEFAULT_CARGO_TIMEOUT,
) -> Path:
    """Return the root directory of the cargo workspace that contains ``crate_path``."""

    LOGGER.debug("Checking workspace root of path %s", crate_path)
    manifest_path = Path(crate_path) / MANIFEST_NAME
    stdout = _run_cargo(
        [
            "locate-project",
            "--workspace",
            "--message-format",
            "json",
            "--manifest-path",
            str(manifest_path),
        ],
        cargo=cargo,
        timeout=timeout,
    )
    payload = _parse_json(stdout, command="locate-project")
    root = payload.get("root")
    if not isinstance(root, str) or not root:
        raise CargoError("cargo locate-project reported no root")
    # The reported root is the workspace manifest itself.
    return Path(root).parent


def load_project_metadata(
    manifest_path: Path,
    *,
    cargo: str | None = None,
    timeout: float | None = DEFAULT_CARGO_TIMEOUT,
) -> ProjectMetadata:
    """Run ``cargo metadata`` for ``manifest_path`` and pick the project name.

    The name is taken from the package whose manifest is the workspace root
    manifest.  Virtual workspaces fall back to the workspace directory name.
    """

    stdout = _run_cargo(
        [
            "metadata",
            "--no-deps",
            "--format-version",
            "1",
            "--manifest-path",
            str(manifest_path),
        ],
        cargo=cargo,
        timeout=timeout,
    )
    payload = _parse_json(stdout, command="metadata")
    workspace_root_value = payload.get("workspace_root")
    if not isinstance(workspace_root_value, str) or not workspace_root_value:
        raise CargoError("cargo metadata reported no workspace_root")
    workspace_root = Path(workspace_root_value)
    root_manifest = workspace_root / MANIFEST_NAME
    LOGGER.debug("Project dir: %s", workspace_root)

    for package in payload.get("packages") or []:
        if not isinstance(package, dict):
            continue
        package_manifest = package.get("manifest_path")
        package_name = package.get("name")
        if isinstance(package_manifest, str) and Path(package_manifest) == root_manifest and package_name:
            return ProjectMetadata(workspace_root=workspace_root, name=str(package_name))

    LOGGER.debug(
        "No package metadata for %s; naming the remote directory like the local one.",
        root_manifest,
    )
    return ProjectMetadata(workspace_root=workspace_root, name=workspace_root.name)
