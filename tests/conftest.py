from __future__ import annotations

import sys
import textwrap
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from cargo_remote.errors import WorkspaceLocatorError  # noqa: E402
from cargo_remote.registry import is_within  # noqa: E402


@dataclass(slots=True)
class FakeLocator:
    """Workspace locator backed by a fixed list of roots; records every call."""

    roots: Sequence[Path]
    calls: list[Path] = field(default_factory=list)

    def __call__(self, path: Path) -> Path:
        self.calls.append(Path(path))
        for root in self.roots:
            if is_within(Path(path), root):
                return root
        raise WorkspaceLocatorError(f"Invalid Path: {path}")


@dataclass(slots=True)
class RecordingRunner:
    """Command runner that records argument vectors instead of executing them."""

    returncodes: dict[str, int] = field(default_factory=dict)
    commands: list[tuple[str, list[str]]] = field(default_factory=list)

    def __call__(self, args: Sequence[str], *, step: str) -> int:
        self.commands.append((step, list(args)))
        return self.returncodes.get(step, 0)

    @property
    def steps(self) -> list[str]:
        return [step for step, _ in self.commands]

    def command_for(self, step: str) -> list[str]:
        for recorded_step, args in self.commands:
            if recorded_step == step:
                return args
        raise AssertionError(f"step {step!r} was not run; ran {self.steps}")


@pytest.fixture()
def locator_factory():
    """Build :class:`FakeLocator` instances from root paths."""

    def factory(*roots: str | Path) -> FakeLocator:
        return FakeLocator(roots=[Path(root) for root in roots])

    return factory


@pytest.fixture()
def runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture()
def patched_project(tmp_path: Path) -> Path:
    """Create a project whose manifest patches crates from two sibling workspaces."""

    project = tmp_path / "app"
    project.mkdir()
    for workspace, crate in (("lib-a", "crates/alpha"), ("lib-b", "beta")):
        crate_dir = tmp_path / workspace / crate
        crate_dir.mkdir(parents=True)
    manifest = textwrap.dedent(
        f"""
        [package]
        name = "app"
        version = "0.1.0"

        [dependencies]
        alpha = "1"
        beta = "1"

        # local checkouts
        [patch.crates-io]
        alpha = {{ path = "{(tmp_path / 'lib-a' / 'crates' / 'alpha').as_posix()}" }}
        beta = {{ path = "../lib-b/beta" }}
        """
    ).lstrip()
    (project / "Cargo.toml").write_text(manifest, encoding="utf-8")
    return project
