"""CLI entry point; cargo runs it as ``cargo remote <command>``."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import List, Optional

import typer

from .errors import CargoRemoteError
from .orchestrator import RemoteBuildOptions, RemoteBuildOrchestrator
from .patches import DEFAULT_REMOTE_BASE, resolve_and_rewrite
from .tools.cargo import locate_workspace_folder

APP_HELP = "Build cargo projects on a remote machine, patched dependencies included."
LOG_ENV_VAR = "CARGO_REMOTE_LOG"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

app = typer.Typer(help=APP_HELP, no_args_is_help=True)


def _configure_logging(verbose: int) -> None:
    """Initialise logging from ``--verbose`` or the ``CARGO_REMOTE_LOG`` variable."""
    level = logging.WARNING
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    env_level = os.environ.get(LOG_ENV_VAR, "").strip().upper()
    if env_level and not verbose:
        resolved = logging.getLevelName(env_level)
        if isinstance(resolved, int):
            level = resolved
    logging.basicConfig(format=LOG_FORMAT, level=level)
    logging.getLogger("cargo_remote").setLevel(level)


def _fail(error: CargoRemoteError) -> typer.Exit:
    logging.getLogger(__name__).debug("Aborting", exc_info=error)
    typer.echo(f"Error: {error}", err=True)
    return typer.Exit(code=error.exit_code)


@app.command(
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)
def remote(
    command: str = typer.Argument(..., help="cargo command that will be executed remotely"),
    options: Optional[List[str]] = typer.Argument(
        None,
        help="cargo options and flags that will be applied remotely",
    ),
    remote_host: Optional[str] = typer.Option(
        None,
        "--remote",
        "-r",
        help="Remote ssh build server.",
    ),
    build_env: Optional[str] = typer.Option(
        None,
        "--build-env",
        "-b",
        help="Set remote environment variables. RUST_BACKTRACE, CC, LIB, etc.",
    ),
    rustup_default: Optional[str] = typer.Option(
        None,
        "--rustup-default",
        "-d",
        help="Rustup default (stable|beta|nightly).",
    ),
    env_profile: Optional[str] = typer.Option(
        None,
        "--env",
        "-e",
        help="Environment profile sourced before building (default /etc/profile).",
    ),
    copy_back: bool = typer.Option(
        False,
        "--copy-back",
        "-c",
        help="Transfer the target folder back to the local machine.",
    ),
    copy_back_file: Optional[str] = typer.Option(
        None,
        "--copy-back-file",
        help="Transfer only this path below target/ back (implies --copy-back).",
    ),
    no_copy_lock: bool = typer.Option(
        False,
        "--no-copy-lock",
        help="Don't transfer the Cargo.lock file back to the local machine.",
    ),
    manifest_path: Path = typer.Option(
        Path("Cargo.toml"),
        "--manifest-path",
        help="Path to the manifest to execute.",
    ),
    transfer_hidden: bool = typer.Option(
        False,
        "--transfer-hidden",
        "-H",
        help="Transfer hidden files and directories to the build server.",
    ),
    ignore_patches: bool = typer.Option(
        False,
        "--ignore-patches",
        help="Upload the manifest as is, without relocating [patch] paths.",
    ),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="Increase log output."),
) -> None:
    """Upload the project, run a cargo command on the build server, copy results back."""
    _configure_logging(verbose)
    build_options = RemoteBuildOptions(
        command=command,
        options=list(options or []),
        manifest_path=manifest_path,
        remote=remote_host,
        build_env=build_env,
        rustup_default=rustup_default,
        env_profile=env_profile,
        transfer_hidden=True if transfer_hidden else None,
        copy_lock=False if no_copy_lock else None,
        copy_back=copy_back or copy_back_file is not None,
        copy_back_file=copy_back_file,
        ignore_patches=ignore_patches,
    )
    try:
        result = RemoteBuildOrchestrator().run(build_options)
    except CargoRemoteError as error:
        raise _fail(error) from error
    if not result.ok:
        raise typer.Exit(code=result.exit_code)


@app.command()
def patches(
    manifest_path: Path = typer.Option(
        Path("Cargo.toml"),
        "--manifest-path",
        help="Manifest whose [patch] section is rewritten.",
    ),
    patches_dir: str = typer.Option(
        DEFAULT_REMOTE_BASE.as_posix(),
        "--patches-dir",
        help="Remote directory, relative to the build directory, that receives patched workspaces.",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON."),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="Increase log output."),
) -> None:
    """Show the rewritten manifest and the workspaces a remote build would copy."""
    _configure_logging(verbose)
    try:
        manifest_text = manifest_path.read_text(encoding="utf-8")
    except OSError as error:
        typer.echo(f"Error: unable to read {manifest_path}: {error}", err=True)
        raise typer.Exit(code=1) from error

    try:
        rewrite = resolve_and_rewrite(
            manifest_text,
            locate_workspace_folder,
            remote_base=patches_dir,
            base_dir=manifest_path.absolute().parent,
            project_root=manifest_path.absolute().parent,
        )
    except CargoRemoteError as error:
        raise _fail(error) from error

    if rewrite is None:
        if as_json:
            typer.echo(json.dumps({"manifest": None, "workspaces": []}, indent=2))
        else:
            typer.echo("No patches in project.")
        return

    if as_json:
        payload = {
            "manifest": rewrite.render(),
            "workspaces": [workspace.to_dict() for workspace in rewrite.workspaces],
        }
        typer.echo(json.dumps(payload, indent=2))
        return

    typer.echo(f"Workspaces ({len(rewrite.workspaces)}):")
    for workspace in rewrite.workspaces:
        typer.echo(f"- {workspace.name}: {workspace.local_root.as_posix()} -> {workspace.remote_root.as_posix()}")
    typer.echo("")
    typer.echo(rewrite.render(), nl=False)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
