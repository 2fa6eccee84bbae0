"""Rewrite local ``[patch]`` paths so a manifest builds on a remote machine.

Adjustments are only needed when patches point at local directories:

1. Parse the manifest and collect every crate override in the ``[patch]`` table.
2. Skip overrides without a ``path`` (git or registry overrides).
3. Map each path onto the workspace that contains it, asking the locator only
   for paths outside every workspace found so far.
   Paths inside the project being built stay relative to the build directory.
4. Point the override at ``<remote_base>/<workspace>/<relative path>``.

The returned workspaces are what the transfer layer has to copy, in the order
they were first referenced by the manifest.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path, PurePath, PurePosixPath
from typing import Callable, Iterable, NamedTuple

from .errors import PathConstructionError, WorkspaceResolutionError
from .manifest import ManifestDocument, OverrideEntry, parse_manifest
from .registry import Workspace, WorkspaceRegistry, is_within

__all__ = [
    "DEFAULT_REMOTE_BASE",
    "PatchRewrite",
    "WorkspaceLocator",
    "resolve_and_rewrite",
    "rewrite_patches",
]

LOGGER = logging.getLogger(__name__)

# Patched workspaces land next to the remote build directory.
DEFAULT_REMOTE_BASE = PurePosixPath("..")

WorkspaceLocator = Callable[[Path], Path]


class PatchRewrite(NamedTuple):
    """Rewritten manifest plus the workspaces it now refers to."""

    document: ManifestDocument
    workspaces: list[Workspace]

    def render(self) -> str:
        return self.document.render()


@dataclass(frozen=True, slots=True)
class _PendingRewrite:
    entry: OverrideEntry
    new_path: PurePosixPath


def resolve_and_rewrite(
    manifest_text: str,
    locate_workspace: WorkspaceLocator,
    *,
    remote_base: PurePosixPath | str = DEFAULT_REMOTE_BASE,
    base_dir: Path | None = None,
    reserved_names: Iterable[str] = (),
    project_root: Path | None = None,
) -> PatchRewrite | None:
    """Parse ``manifest_text`` and relocate its local patch paths.

    Returns ``None`` when the manifest has no ``[patch]`` table.  Any failure
    aborts the whole rewrite; no partially rewritten manifest is returned.
    """

    document = parse_manifest(manifest_text)
    workspaces = rewrite_patches(
        document,
        locate_workspace,
        remote_base=remote_base,
        base_dir=base_dir,
        reserved_names=reserved_names,
        project_root=project_root,
    )
    if workspaces is None:
        return None
    return PatchRewrite(document, workspaces)


def rewrite_patches(
    document: ManifestDocument,
    locate_workspace: WorkspaceLocator,
    *,
    remote_base: PurePosixPath | str = DEFAULT_REMOTE_BASE,
    base_dir: Path | None = None,
    reserved_names: Iterable[str] = (),
    project_root: Path | None = None,
) -> list[Workspace] | None:
    """Rewrite ``document`` in place and return the discovered workspaces.

    The document is only mutated once every override has been resolved.
    Overrides inside ``project_root`` are uploaded with the project sources, so
    they become paths relative to the build directory and no workspace is
    registered for them.
    """

    if document.override_table() is None:
        LOGGER.debug("No patches in project.")
        return None

    base = PurePosixPath(remote_base)
    registry = WorkspaceRegistry(reserved_names=reserved_names)
    pending: list[_PendingRewrite] = []

    for entry in list(document.iter_overrides()):
        if entry.path is None:
            LOGGER.debug("Ignoring patched crate '%s', no path given.", entry.crate)
            continue
        local_path = _local_path(entry.path, base_dir)
        if project_root is not None and is_within(local_path, project_root):
            new_path = PurePosixPath(*local_path.relative_to(project_root).parts)
            LOGGER.info("Point '%s' to '%s' inside the project", entry.crate, new_path)
            pending.append(_PendingRewrite(entry=entry, new_path=new_path))
            continue
        workspace = registry.find_containing(local_path)
        if workspace is None:
            workspace = _discover_workspace(registry, local_path, locate_workspace, base)
        new_path = _remote_path(workspace, local_path)
        LOGGER.info("Point '%s' to '%s'", entry.crate, new_path)
        pending.append(_PendingRewrite(entry=entry, new_path=new_path))

    for rewrite in pending:
        document.set_override_path(rewrite.entry.group, rewrite.entry.crate, rewrite.new_path.as_posix())

    LOGGER.info("patches: %s", [workspace.name for workspace in registry])
    return registry.workspaces


def _local_path(raw: str, base_dir: Path | None) -> Path:
    path = Path(raw)
    if base_dir is not None and not path.is_absolute():
        path = base_dir / path
    if path.is_absolute():
        # Lexical: the override may point at a directory that is not checked out yet.
        path = Path(os.path.normpath(path))
    return path


def _discover_workspace(
    registry: WorkspaceRegistry,
    path: Path,
    locate_workspace: WorkspaceLocator,
    remote_base: PurePosixPath,
) -> Workspace:
    try:
        located = locate_workspace(path)
    except Exception as error:
        raise WorkspaceResolutionError(
            f"Can not determine workspace path for {path}: {error}",
            path=path,
        ) from error
    if located is None:
        raise WorkspaceResolutionError(f"Can not determine workspace path for {path}", path=path)

    local_root = Path(located)
    name = local_root.name
    if not name:
        raise WorkspaceResolutionError(
            f"Workspace root {local_root} for {path} has no usable name",
            path=path,
        )
    if local_root in registry:
        # Locator disagrees with the containment check; the root cannot contain ``path``.
        raise PathConstructionError(f"{path} is not located inside workspace {local_root}")

    remote_root = remote_base / registry.remote_name_for(name, local_root)
    LOGGER.info("Found project '%s', will copy to '%s'", local_root, remote_root)
    return registry.register(name, local_root, remote_root)


def _remote_path(workspace: Workspace, path: PurePath) -> PurePosixPath:
    try:
        relative = path.relative_to(workspace.local_root)
    except ValueError as error:
        raise PathConstructionError(
            f"{path} is not located inside workspace {workspace.local_root}"
        ) from error
    return workspace.remote_root.joinpath(*relative.parts)
