"""External tool integrations used by the remote build flow."""

from .cargo import CargoError, ProjectMetadata, load_project_metadata, locate_workspace_folder
from .transfer import (
    CommandRunner,
    SubprocessRunner,
    TransferError,
    build_command,
    copy_back_command,
    copy_patches_to_remote,
    manifest_upload_command,
    source_upload_command,
    workspace_upload_command,
)

__all__ = [
    "CargoError",
    "CommandRunner",
    "ProjectMetadata",
    "SubprocessRunner",
    "TransferError",
    "build_command",
    "copy_back_command",
    "copy_patches_to_remote",
    "load_project_metadata",
    "locate_workspace_folder",
    "manifest_upload_command",
    "source_upload_command",
    "workspace_upload_command",
]
