"""Exception hierarchy shared by the manifest engine and the remote build flow."""

from __future__ import annotations

from pathlib import PurePath
from typing import Any, Mapping


class CargoRemoteError(RuntimeError):
    """Base class for every error raised by ``cargo_remote``."""

    exit_code: int = 1

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class ManifestParseError(CargoRemoteError):
    """Raised when manifest text is not valid TOML or has an unusable shape."""

    def __init__(
        self,
        message: str,
        *,
        line: int | None = None,
        column: int | None = None,
    ) -> None:
        super().__init__(message, details={"line": line, "column": column})
        self.line = line
        self.column = column


class WorkspaceLocatorError(CargoRemoteError):
    """Raised by workspace locators that cannot find an enclosing workspace."""


class WorkspaceResolutionError(CargoRemoteError):
    """Raised when an override path cannot be mapped onto a workspace."""

    exit_code = 2

    def __init__(self, message: str, *, path: PurePath) -> None:
        super().__init__(message, details={"path": str(path)})
        self.path = path


class PathConstructionError(CargoRemoteError):
    """Raised when a path believed to live under a workspace root does not."""

    exit_code = 2


class DuplicateWorkspaceError(CargoRemoteError):
    """Raised when a workspace root is registered twice."""

    exit_code = 2


class ConfigError(CargoRemoteError):
    """Raised when a configuration file fails validation."""


class RemoteBuildError(CargoRemoteError):
    """Raised by the remote build flow; carries the process exit code."""

    def __init__(self, message: str, *, exit_code: int) -> None:
        super().__init__(message, details={"exit_code": exit_code})
        self.exit_code = exit_code


__all__ = [
    "CargoRemoteError",
    "ConfigError",
    "DuplicateWorkspaceError",
    "ManifestParseError",
    "PathConstructionError",
    "RemoteBuildError",
    "WorkspaceLocatorError",
    "WorkspaceResolutionError",
]
