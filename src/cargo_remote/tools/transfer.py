"""``rsync`` and ``ssh`` command construction for the remote build flow.

Command builders are pure functions so the argument vectors can be inspected
without a build server.  Execution goes through a :class:`CommandRunner`.
"""

from __future__ import annotations

import logging
import posixpath
import shlex
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Protocol, Sequence

from ..errors import CargoRemoteError
from ..registry import Workspace

__all__ = [
    "PROGRESS_FLAG",
    "CommandRunner",
    "SubprocessRunner",
    "TransferError",
    "build_command",
    "copy_back_command",
    "copy_patches_to_remote",
    "manifest_upload_command",
    "remote_location",
    "run_step",
    "source_upload_command",
    "workspace_upload_command",
]

LOGGER = logging.getLogger(__name__)

PROGRESS_FLAG = "--info=progress2"
DEFAULT_EXCLUDES: tuple[str, ...] = ("target",)


class TransferError(CargoRemoteError):
    """Raised when an ``rsync`` or ``ssh`` step cannot be run or fails."""

    def __init__(self, message: str, *, step: str, returncode: int | None = None) -> None:
        super().__init__(message, details={"step": step, "returncode": returncode})
        self.step = step
        self.returncode = returncode


class CommandRunner(Protocol):
    """Runs an argument vector and returns its exit status."""

    def __call__(self, args: Sequence[str], *, step: str) -> int: ...


@dataclass(slots=True)
class SubprocessRunner:
    """Runs commands with the terminal attached so progress stays visible."""

    def __call__(self, args: Sequence[str], *, step: str) -> int:
        LOGGER.debug("Running %s: %s", step, shlex.join(args))
        try:
            process = subprocess.run(list(args), check=False)
        except OSError as error:
            raise TransferError(f"Failed to run {args[0]} for {step} (error: {error})", step=step) from error
        return process.returncode


def remote_location(build_path: str, remote_root: str) -> str:
    """Join a workspace's remote root onto the remote build path."""
    return posixpath.normpath(posixpath.join(build_path, remote_root))


def _rsync_base(excludes: Iterable[str], *, transfer_hidden: bool) -> List[str]:
    args = ["rsync", "-a", "-q", "--delete", "--compress", PROGRESS_FLAG]
    for pattern in excludes:
        args.extend(["--exclude", pattern])
    if not transfer_hidden:
        args.extend(["--exclude", ".*"])
    return args


def source_upload_command(
    project_dir: Path,
    build_server: str,
    build_path: str,
    *,
    build_path_root: str,
    excludes: Iterable[str] = DEFAULT_EXCLUDES,
    transfer_hidden: bool = False,
) -> List[str]:
    """Return the rsync command that uploads the project sources."""
    args = _rsync_base(excludes, transfer_hidden=transfer_hidden)
    args.extend(
        [
            "--rsync-path",
            f"mkdir -p {build_path_root} && rsync",
            f"{project_dir.as_posix()}/",
            f"{build_server}:{build_path}",
        ]
    )
    return args


def workspace_upload_command(
    workspace: Workspace,
    build_server: str,
    build_path: str,
    *,
    excludes: Iterable[str] = DEFAULT_EXCLUDES,
    transfer_hidden: bool = False,
) -> List[str]:
    """Return the rsync command that uploads one patched workspace."""
    destination = remote_location(build_path, workspace.remote_root.as_posix())
    args = _rsync_base(excludes, transfer_hidden=transfer_hidden)
    args.extend(
        [
            "--rsync-path",
            f"mkdir -p {posixpath.dirname(destination)} && rsync",
            f"{workspace.local_root.as_posix()}/",
            f"{build_server}:{destination}",
        ]
    )
    return args


def manifest_upload_command(local_manifest: Path, build_server: str, build_path: str) -> List[str]:
    """Return the rsync command that replaces the remote ``Cargo.toml``."""
    return [
        "rsync",
        "-vz",
        PROGRESS_FLAG,
        local_manifest.as_posix(),
        f"{build_server}:{posixpath.join(build_path, 'Cargo.toml')}",
    ]


def build_command(
    build_server: str,
    build_path: str,
    *,
    env_profile: str,
    rustup_default: str,
    build_env: str,
    command: str,
    options: Sequence[str] = (),
) -> List[str]:
    """Return the ssh command that runs cargo on the build server."""
    remote_script = (
        f"source {env_profile}; rustup default {rustup_default}; cd {build_path}; "
        f"{build_env} cargo {command} {' '.join(options)}"
    ).rstrip()
    return ["ssh", "-t", build_server, remote_script]


def copy_back_command(build_server: str, remote_path: str, local_path: Path) -> List[str]:
    """Return the rsync command that fetches ``remote_path`` from the build server."""
    return [
        "rsync",
        "-a",
        "-q",
        "--delete",
        "--compress",
        PROGRESS_FLAG,
        f"{build_server}:{remote_path}",
        local_path.as_posix(),
    ]


def run_step(runner: CommandRunner, args: Sequence[str], *, step: str) -> None:
    """Run ``args`` through ``runner`` and raise on a non-zero exit status."""
    returncode = runner(args, step=step)
    if returncode != 0:
        raise TransferError(f"{step} failed with exit status {returncode}", step=step, returncode=returncode)


def copy_patches_to_remote(
    runner: CommandRunner,
    build_server: str,
    build_path: str,
    manifest_text: str,
    workspaces: Sequence[Workspace],
    *,
    excludes: Iterable[str] = DEFAULT_EXCLUDES,
    transfer_hidden: bool = False,
) -> None:
    """Upload every patched workspace, then the rewritten manifest."""

    LOGGER.info(
        "Found patches in project. Copying %d (%s) projects.",
        len(workspaces),
        [workspace.name for workspace in workspaces],
    )
    exclude_patterns = tuple(excludes)
    for workspace in workspaces:
        args = workspace_upload_command(
            workspace,
            build_server,
            build_path,
            excludes=exclude_patterns,
            transfer_hidden=transfer_hidden,
        )
        LOGGER.info("Copying %s from %s to %s.", workspace.name, args[-2], args[-1])
        run_step(runner, args, step=f"upload of {workspace.name}")

    with tempfile.TemporaryDirectory(prefix="cargo-remote-") as scratch:
        manifest_file = Path(scratch) / "Cargo.toml"
        manifest_file.write_text(manifest_text, encoding="utf-8")
        args = manifest_upload_command(manifest_file, build_server, build_path)
        LOGGER.debug("Copying Cargo.toml from %s to %s.", args[-2], args[-1])
        run_step(runner, args, step="upload of Cargo.toml")
