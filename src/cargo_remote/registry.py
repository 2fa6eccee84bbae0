"""Registry of local workspaces discovered while rewriting patch paths."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path, PurePath, PurePosixPath
from typing import Iterable, Iterator

from .errors import DuplicateWorkspaceError

__all__ = ["Workspace", "WorkspaceRegistry", "is_within"]

LOGGER = logging.getLogger(__name__)

_DIGEST_LENGTH = 8


@dataclass(frozen=True, slots=True)
class Workspace:
    """Local project tree that is transferred to the build server as a unit."""

    name: str
    local_root: Path
    remote_root: PurePosixPath

    def to_dict(self) -> dict[str, str]:
        """Return a plain ``dict`` representation suitable for JSON output."""
        return {
            "name": self.name,
            "local_root": self.local_root.as_posix(),
            "remote_root": self.remote_root.as_posix(),
        }


def is_within(path: PurePath, root: PurePath) -> bool:
    """Return ``True`` when ``root`` is ``path`` or one of its ancestors.

    Comparison is per path component, so ``/a/bx`` is not within ``/a/b``.
    """
    if path == root:
        return True
    return root in path.parents


class WorkspaceRegistry:
    """Workspaces keyed by local root, kept in discovery order."""

    def __init__(self, *, reserved_names: Iterable[str] = ()) -> None:
        self._workspaces: dict[Path, Workspace] = {}
        self._remote_names: set[str] = {name for name in reserved_names if name}

    def __len__(self) -> int:
        return len(self._workspaces)

    def __iter__(self) -> Iterator[Workspace]:
        return iter(self._workspaces.values())

    def __contains__(self, local_root: object) -> bool:
        return local_root in self._workspaces

    @property
    def workspaces(self) -> list[Workspace]:
        return list(self._workspaces.values())

    def find_containing(self, path: PurePath) -> Workspace | None:
        """Return the most specific workspace whose root contains ``path``."""

        best: Workspace | None = None
        for workspace in self._workspaces.values():
            if not is_within(path, workspace.local_root):
                continue
            if best is None or len(workspace.local_root.parts) > len(best.local_root.parts):
                best = workspace
        return best

    def remote_name_for(self, name: str, local_root: PurePath) -> str:
        """Return a remote directory name for ``local_root`` that is not yet taken."""

        if name not in self._remote_names:
            return name
        digest = hashlib.sha256(local_root.as_posix().encode("utf-8")).hexdigest()
        candidate = f"{name}-{digest[:_DIGEST_LENGTH]}"
        LOGGER.warning(
            "Workspace name '%s' is already used on the remote side; copying %s as '%s'.",
            name,
            local_root,
            candidate,
        )
        return candidate

    def register(self, name: str, local_root: Path, remote_root: PurePosixPath) -> Workspace:
        """Record a new workspace and return it."""

        if local_root in self._workspaces:
            raise DuplicateWorkspaceError(f"Workspace already registered: {local_root}")
        for existing in self._workspaces.values():
            if is_within(existing.local_root, local_root):
                LOGGER.warning(
                    "Workspace %s contains the already registered workspace %s.",
                    local_root,
                    existing.local_root,
                )
        workspace = Workspace(name=name, local_root=local_root, remote_root=remote_root)
        self._workspaces[local_root] = workspace
        self._remote_names.add(remote_root.name)
        return workspace
