"""Remote build flow: upload sources and patches, build over ssh, copy results back."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .config import RemoteConfig, load_remote_config
from .errors import CargoRemoteError, RemoteBuildError
from .patches import PatchRewrite, WorkspaceLocator, resolve_and_rewrite
from .tools.cargo import (
    CargoError,
    ProjectMetadata,
    load_project_metadata,
    locate_workspace_folder,
)
from .tools.transfer import (
    CommandRunner,
    SubprocessRunner,
    TransferError,
    build_command,
    copy_back_command,
    copy_patches_to_remote,
    run_step,
    source_upload_command,
)

__all__ = [
    "EXIT_BUILD_FAILED_TO_START",
    "EXIT_COPY_BACK",
    "EXIT_COPY_LOCK",
    "EXIT_METADATA",
    "EXIT_NO_REMOTE",
    "EXIT_PATCHES",
    "EXIT_UPLOAD",
    "RemoteBuildOptions",
    "RemoteBuildOrchestrator",
    "RemoteBuildResult",
]

LOGGER = logging.getLogger(__name__)

EXIT_METADATA = 1
EXIT_PATCHES = 2
EXIT_NO_REMOTE = 3
EXIT_UPLOAD = 4
EXIT_BUILD_FAILED_TO_START = 5
EXIT_COPY_BACK = 6
EXIT_COPY_LOCK = 7

MetadataLoader = Callable[..., ProjectMetadata]


@dataclass(slots=True)
class RemoteBuildOptions:
    """Per-invocation settings; ``None`` defers to the configuration files."""

    command: str
    options: List[str] = field(default_factory=list)
    manifest_path: Path = Path("Cargo.toml")
    remote: Optional[str] = None
    build_env: Optional[str] = None
    rustup_default: Optional[str] = None
    env_profile: Optional[str] = None
    transfer_hidden: Optional[bool] = None
    copy_lock: Optional[bool] = None
    copy_back: bool = False
    copy_back_file: Optional[str] = None
    ignore_patches: bool = False

    def config_overrides(self) -> Dict[str, Any]:
        """Return the options that take precedence over configuration files."""
        candidates = {
            "remote": self.remote,
            "build_env": self.build_env,
            "rustup_default": self.rustup_default,
            "env_profile": self.env_profile,
            "transfer_hidden": self.transfer_hidden,
            "copy_lock": self.copy_lock,
        }
        return {key: value for key, value in candidates.items() if value is not None}


@dataclass(slots=True)
class RemoteBuildResult:
    """What happened during a remote build."""

    project: ProjectMetadata
    build_server: str
    build_path: str
    exit_code: int
    patches: PatchRewrite | None = None
    copied_back: bool = False
    copied_lock: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class RemoteBuildOrchestrator:
    """Runs one ``cargo`` command on the build server for a local project."""

    def __init__(
        self,
        *,
        runner: CommandRunner | None = None,
        metadata_loader: MetadataLoader = load_project_metadata,
        locator: WorkspaceLocator | None = None,
        user_config: Path | None = None,
    ) -> None:
        self._runner = runner or SubprocessRunner()
        self._metadata_loader = metadata_loader
        self._locator = locator
        self._user_config = user_config

    def load_project(self, manifest_path: Path) -> ProjectMetadata:
        try:
            project = self._metadata_loader(manifest_path)
        except CargoError as error:
            LOGGER.error("Cargo Metadata failed: %s", error)
            raise RemoteBuildError(f"Cargo metadata failed: {error}", exit_code=EXIT_METADATA) from error
        LOGGER.info("Manifest path: %s", project.manifest_path)
        return project

    def load_config(self, project: ProjectMetadata, options: RemoteBuildOptions) -> RemoteConfig:
        config = load_remote_config(project.workspace_root, user_config=self._user_config)
        overrides = options.config_overrides()
        if overrides:
            config = config.model_copy(update=overrides)
        return config

    def prepare_patches(self, project: ProjectMetadata, config: RemoteConfig) -> PatchRewrite | None:
        """Rewrite the project's ``[patch]`` paths for the build server."""

        manifest_path = project.manifest_path
        try:
            manifest_text = manifest_path.read_text(encoding="utf-8")
        except OSError as error:
            raise RemoteBuildError(
                f"Unable to read {manifest_path}: {error}", exit_code=EXIT_PATCHES
            ) from error

        locator = self._locator or self._cargo_locator(config)
        try:
            return resolve_and_rewrite(
                manifest_text,
                locator,
                remote_base=config.patches_dir,
                base_dir=project.workspace_root,
                reserved_names=[project.name],
                project_root=project.workspace_root,
            )
        except CargoRemoteError as error:
            raise RemoteBuildError(
                f"Unable to relocate patches: {error}", exit_code=EXIT_PATCHES
            ) from error

    def run(self, options: RemoteBuildOptions) -> RemoteBuildResult:
        project = self.load_project(options.manifest_path)
        config = self.load_config(project, options)
        build_path = config.build_path(project.name)
        LOGGER.debug("Project name: %s", project.name)

        patches = None if options.ignore_patches else self.prepare_patches(project, config)

        build_server = config.remote
        if not build_server:
            raise RemoteBuildError(
                "No remote build server was defined (use config file or --remote flag)",
                exit_code=EXIT_NO_REMOTE,
            )

        LOGGER.debug("Transferring sources to build server.")
        upload = source_upload_command(
            project.workspace_root,
            build_server,
            build_path,
            build_path_root=config.build_path_root,
            excludes=config.rsync_excludes,
            transfer_hidden=config.transfer_hidden,
        )
        self._step(upload, step="source upload", exit_code=EXIT_UPLOAD)

        if patches is not None:
            try:
                copy_patches_to_remote(
                    self._runner,
                    build_server,
                    build_path,
                    patches.render(),
                    patches.workspaces,
                    excludes=config.rsync_excludes,
                    transfer_hidden=config.transfer_hidden,
                )
            except TransferError as error:
                raise RemoteBuildError(
                    f"Failed to transfer project to build server (error: {error})",
                    exit_code=EXIT_UPLOAD,
                ) from error

        LOGGER.debug("Build ENV: %s", config.build_env)
        LOGGER.debug("Environment profile: %s", config.env_profile)
        LOGGER.debug("Build path: %s", build_path)
        remote_build = build_command(
            build_server,
            build_path,
            env_profile=config.env_profile,
            rustup_default=config.rustup_default,
            build_env=config.build_env,
            command=options.command,
            options=options.options,
        )
        LOGGER.debug("Starting build process.")
        try:
            build_status = self._runner(remote_build, step="remote build")
        except TransferError as error:
            raise RemoteBuildError(
                f"Failed to run cargo command remotely (error: {error})",
                exit_code=EXIT_BUILD_FAILED_TO_START,
            ) from error

        result = RemoteBuildResult(
            project=project,
            build_server=build_server,
            build_path=build_path,
            exit_code=build_status,
            patches=patches,
        )

        if options.copy_back:
            LOGGER.debug("Transferring artifacts back to client.")
            file_name = options.copy_back_file or ""
            fetch = copy_back_command(
                build_server,
                f"{build_path}target/{file_name}",
                project.workspace_root / "target" / file_name,
            )
            self._step(fetch, step="artifact copy-back", exit_code=EXIT_COPY_BACK)
            result.copied_back = True

        if config.copy_lock:
            LOGGER.debug("Transferring Cargo.lock file back to client.")
            fetch = copy_back_command(
                build_server,
                f"{build_path}Cargo.lock",
                project.workspace_root / "Cargo.lock",
            )
            self._step(fetch, step="Cargo.lock copy-back", exit_code=EXIT_COPY_LOCK)
            result.copied_lock = True

        return result

    def _cargo_locator(self, config: RemoteConfig) -> WorkspaceLocator:
        def locate(path: Path) -> Path:
            return locate_workspace_folder(path, timeout=config.cargo_timeout)

        return locate

    def _step(self, args: List[str], *, step: str, exit_code: int) -> None:
        try:
            run_step(self._runner, args, step=step)
        except TransferError as error:
            LOGGER.error("%s failed: %s", step, error)
            raise RemoteBuildError(f"{step} failed (error: {error})", exit_code=exit_code) from error
