from __future__ import annotations

import textwrap
from pathlib import Path, PurePosixPath

import pytest

from cargo_remote.errors import (
    ManifestParseError,
    PathConstructionError,
    WorkspaceLocatorError,
    WorkspaceResolutionError,
)
from cargo_remote.patches import resolve_and_rewrite


def _dedent(text: str) -> str:
    return textwrap.dedent(text).lstrip("\n")


def test_manifest_without_patches_returns_none(locator_factory) -> None:
    manifest = _dedent(
        """
        [package]
        name = "demo"

        [dependencies]
        serde = { path = "/root/ws/serde" }
        """
    )
    locator = locator_factory("/root/ws")

    assert resolve_and_rewrite(manifest, locator) is None
    assert locator.calls == []


def test_single_entry_points_at_sibling_of_build_dir(locator_factory) -> None:
    manifest = _dedent(
        """
        [patch.crates-io]
        crate-a = { path = "/root/ws/crate-a" }
        """
    )
    locator = locator_factory("/root/ws")

    result = resolve_and_rewrite(manifest, locator)

    assert result is not None
    assert result.render() == _dedent(
        """
        [patch.crates-io]
        crate-a = { path = "../ws/crate-a" }
        """
    )
    assert len(result.workspaces) == 1
    workspace = result.workspaces[0]
    assert workspace.name == "ws"
    assert workspace.local_root == Path("/root/ws")
    assert workspace.remote_root == PurePosixPath("../ws")


def test_rewrite_matches_legacy_patches_layout(locator_factory) -> None:
    manifest = _dedent(
        """
        "hello" = 'toml!'
        [patch.a]
        a-crate = { path = "/some/prefix/a/src/a-crate" }
        a-other-crate = { path = "/some/prefix/a/src/subfolder/a-other-crate" }
        git-patched-crate = { git = "https://some-url/test/test" }
        [patch.b]
        b-crate = { path = "/some/prefix/b/src/b-crate" }
        b-other-crate = { path = "/some/prefix/b/src/subfolder/b-other-crate" }
        git-patched-crate = { git = "https://some-url/test/test" }
        """
    )
    expected = _dedent(
        """
        "hello" = 'toml!'
        [patch.a]
        a-crate = { path = "../patches/a/src/a-crate" }
        a-other-crate = { path = "../patches/a/src/subfolder/a-other-crate" }
        git-patched-crate = { git = "https://some-url/test/test" }
        [patch.b]
        b-crate = { path = "../patches/b/src/b-crate" }
        b-other-crate = { path = "../patches/b/src/subfolder/b-other-crate" }
        git-patched-crate = { git = "https://some-url/test/test" }
        """
    )
    locator = locator_factory("/some/prefix/a", "/some/prefix/b")

    result = resolve_and_rewrite(manifest, locator, remote_base="../patches")

    assert result is not None
    assert result.render() == expected
    assert [workspace.name for workspace in result.workspaces] == ["a", "b"]
    assert locator.calls == [
        Path("/some/prefix/a/src/a-crate"),
        Path("/some/prefix/b/src/b-crate"),
    ]


def test_paths_in_one_workspace_share_a_single_record(locator_factory) -> None:
    manifest = _dedent(
        """
        [patch.crates-io]
        a = { path = "/root/ws/a" }
        b = { path = "/root/ws/sub/b" }
        """
    )
    locator = locator_factory("/root/ws")

    document, workspaces = resolve_and_rewrite(manifest, locator)

    assert len(workspaces) == 1
    assert len(locator.calls) == 1
    assert 'b = { path = "../ws/sub/b" }' in document.render()


def test_disjoint_workspaces_keep_first_reference_order(locator_factory) -> None:
    manifest = _dedent(
        """
        [patch.crates-io]
        late = { path = "/root/ws2/late" }

        [patch."https://github.com/org/repo"]
        early = { path = "/root/ws1/early" }
        again = { path = "/root/ws2/again" }
        """
    )
    locator = locator_factory("/root/ws1", "/root/ws2")

    result = resolve_and_rewrite(manifest, locator)

    assert result is not None
    assert [workspace.local_root for workspace in result.workspaces] == [
        Path("/root/ws2"),
        Path("/root/ws1"),
    ]


def test_prefix_match_is_per_component(locator_factory) -> None:
    manifest = _dedent(
        """
        [patch.crates-io]
        b = { path = "/a/b/crate" }
        bx = { path = "/a/bx/crate" }
        """
    )
    locator = locator_factory("/a/b", "/a/bx")

    result = resolve_and_rewrite(manifest, locator)

    assert result is not None
    assert [workspace.name for workspace in result.workspaces] == ["b", "bx"]
    assert 'bx = { path = "../bx/crate" }' in result.render()


def test_entries_without_path_are_untouched(locator_factory) -> None:
    manifest = _dedent(
        """
        [patch.crates-io]
        serde = { git = "https://github.com/serde-rs/serde",   branch = "master" }
        local = { path = "/root/ws/local", version = "0.2" }
        """
    )
    locator = locator_factory("/root/ws")

    result = resolve_and_rewrite(manifest, locator)

    assert result is not None
    lines = result.render().splitlines()
    assert lines[1] == manifest.splitlines()[1]
    assert lines[2] == 'local = { path = "../ws/local", version = "0.2" }'


def test_formatting_outside_paths_is_preserved(locator_factory) -> None:
    manifest = _dedent(
        """
        # Top level comment
        [package]
        name    = "demo"   # aligned
        version = "0.1.0"

        [patch.crates-io]
        # keep me
        zeta  = { path = "/root/ws/zeta" }   # trailing
        alpha = { path = "/root/ws/alpha" }

        [profile.release]
        lto = true
        """
    )
    expected = manifest.replace('"/root/ws/zeta"', '"../ws/zeta"').replace(
        '"/root/ws/alpha"', '"../ws/alpha"'
    )
    locator = locator_factory("/root/ws")

    result = resolve_and_rewrite(manifest, locator)

    assert result is not None
    assert result.render() == expected


def test_standard_table_entries_are_rewritten(locator_factory) -> None:
    manifest = _dedent(
        """
        [patch.crates-io.tokio]
        path = "/root/ws/tokio"  # fork
        features = ["full"]
        """
    )
    locator = locator_factory("/root/ws")

    result = resolve_and_rewrite(manifest, locator)

    assert result is not None
    assert result.render() == _dedent(
        """
        [patch.crates-io.tokio]
        path = "../ws/tokio"  # fork
        features = ["full"]
        """
    )


def test_literal_strings_stay_literal(locator_factory) -> None:
    manifest = "[patch.crates-io]\nfoo = { path = '/root/ws/foo' }\n"
    locator = locator_factory("/root/ws")

    result = resolve_and_rewrite(manifest, locator)

    assert result is not None
    assert result.render() == "[patch.crates-io]\nfoo = { path = '../ws/foo' }\n"


def test_locator_failure_aborts_without_document(locator_factory) -> None:
    manifest = _dedent(
        """
        [patch.crates-io]
        known = { path = "/root/ws/known" }
        stray = { path = "/elsewhere/stray" }
        """
    )
    locator = locator_factory("/root/ws")

    with pytest.raises(WorkspaceResolutionError) as excinfo:
        resolve_and_rewrite(manifest, locator)

    assert excinfo.value.path == Path("/elsewhere/stray")
    assert "/elsewhere/stray" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, WorkspaceLocatorError)


def test_os_errors_from_locator_become_resolution_errors() -> None:
    def locator(path: Path) -> Path:
        raise FileNotFoundError("cargo")

    with pytest.raises(WorkspaceResolutionError):
        resolve_and_rewrite('[patch.x]\na = { path = "/w/a" }\n', locator)


def test_rewriting_a_rewritten_manifest_fails(locator_factory) -> None:
    manifest = '[patch.crates-io]\ncrate-a = { path = "/root/ws/crate-a" }\n'
    locator = locator_factory("/root/ws")
    first = resolve_and_rewrite(manifest, locator)
    assert first is not None

    with pytest.raises(WorkspaceResolutionError):
        resolve_and_rewrite(first.render(), locator)


def test_root_without_name_is_rejected() -> None:
    with pytest.raises(WorkspaceResolutionError, match="no usable name"):
        resolve_and_rewrite('[patch.x]\na = { path = "/a" }\n', lambda path: Path("/"))


def test_locator_returning_none_is_rejected() -> None:
    with pytest.raises(WorkspaceResolutionError):
        resolve_and_rewrite('[patch.x]\na = { path = "/w/a" }\n', lambda path: None)


def test_locator_returning_unrelated_root_is_a_construction_error() -> None:
    with pytest.raises(PathConstructionError):
        resolve_and_rewrite('[patch.x]\na = { path = "/w/a" }\n', lambda path: Path("/other"))


def test_invalid_manifest_raises_parse_error(locator_factory) -> None:
    locator = locator_factory("/root/ws")

    with pytest.raises(ManifestParseError) as excinfo:
        resolve_and_rewrite("[patch.crates-io\na = 1\n", locator)

    assert excinfo.value.line is not None
    assert locator.calls == []


def test_non_string_path_is_a_parse_error(locator_factory) -> None:
    with pytest.raises(ManifestParseError, match="patch.crates-io.a.path"):
        resolve_and_rewrite("[patch.crates-io]\na = { path = 3 }\n", locator_factory("/root"))


def test_workspaces_with_the_same_name_get_distinct_remote_roots(locator_factory) -> None:
    manifest = _dedent(
        """
        [patch.crates-io]
        one = { path = "/home/a/lib/one" }
        two = { path = "/home/b/lib/two" }
        """
    )
    locator = locator_factory("/home/a/lib", "/home/b/lib")

    result = resolve_and_rewrite(manifest, locator)

    assert result is not None
    first, second = result.workspaces
    assert first.name == second.name == "lib"
    assert first.remote_root == PurePosixPath("../lib")
    assert second.remote_root != first.remote_root
    assert second.remote_root.name.startswith("lib-")
    assert f'two = {{ path = "{second.remote_root.as_posix()}/two" }}' in result.render()


def test_reserved_names_are_not_reused(locator_factory) -> None:
    manifest = '[patch.crates-io]\nx = { path = "/src/app/x" }\n'

    result = resolve_and_rewrite(manifest, locator_factory("/src/app"), reserved_names=["app"])

    assert result is not None
    assert result.workspaces[0].name == "app"
    assert result.workspaces[0].remote_root != PurePosixPath("../app")


def test_relative_paths_resolve_against_base_dir(locator_factory) -> None:
    manifest = '[patch.crates-io]\nx = { path = "../libs/x" }\n'
    locator = locator_factory("/work/libs")

    result = resolve_and_rewrite(manifest, locator, base_dir=Path("/work/app"))

    assert result is not None
    assert locator.calls == [Path("/work/libs/x")]
    assert result.render() == '[patch.crates-io]\nx = { path = "../libs/x" }\n'


def test_nested_workspace_prefers_most_specific_root() -> None:
    roots = {Path("/w/inner/a"): Path("/w/inner"), Path("/w/b"): Path("/w")}

    def locator(path: Path) -> Path:
        return roots[path]

    manifest = _dedent(
        """
        [patch.crates-io]
        a = { path = "/w/inner/a" }
        b = { path = "/w/b" }
        c = { path = "/w/inner/c" }
        """
    )

    result = resolve_and_rewrite(manifest, locator)

    assert result is not None
    assert [workspace.local_root for workspace in result.workspaces] == [Path("/w/inner"), Path("/w")]
    assert 'c = { path = "../inner/c" }' in result.render()


def test_empty_patch_table_yields_no_workspaces(locator_factory) -> None:
    result = resolve_and_rewrite("[patch]\n", locator_factory("/root"))

    assert result is not None
    assert result.workspaces == []
    assert result.render() == "[patch]\n"


def test_absolute_paths_are_normalised_before_lookup(locator_factory) -> None:
    manifest = _dedent(
        """
        [patch.crates-io]
        a = { path = "/root/ws/a" }
        b = { path = "/root/ws/../ws2/b" }
        """
    )
    locator = locator_factory("/root/ws", "/root/ws2")

    result = resolve_and_rewrite(manifest, locator)

    assert result is not None
    assert [workspace.local_root for workspace in result.workspaces] == [Path("/root/ws"), Path("/root/ws2")]
    assert locator.calls == [Path("/root/ws/a"), Path("/root/ws2/b")]
    assert 'b = { path = "../ws2/b" }' in result.render()


def test_unexpected_locator_errors_become_resolution_errors() -> None:
    def locator(path: Path) -> Path:
        raise RuntimeError("boom")

    with pytest.raises(WorkspaceResolutionError, match="boom") as excinfo:
        resolve_and_rewrite('[patch.x]\na = { path = "/w/a" }\n', locator)

    assert excinfo.value.path == Path("/w/a")
    assert isinstance(excinfo.value.__cause__, RuntimeError)


def test_paths_inside_the_project_stay_in_the_build_directory(locator_factory) -> None:
    manifest = _dedent(
        """
        [patch.crates-io]
        local = { path = "vendor/local" }
        same = { path = "." }
        other = { path = "../libs/other" }
        """
    )
    locator = locator_factory("/work/libs")

    result = resolve_and_rewrite(
        manifest,
        locator,
        base_dir=Path("/work/app"),
        reserved_names=["app"],
        project_root=Path("/work/app"),
    )

    assert result is not None
    assert locator.calls == [Path("/work/libs/other")]
    assert [workspace.local_root for workspace in result.workspaces] == [Path("/work/libs")]
    assert result.render() == _dedent(
        """
        [patch.crates-io]
        local = { path = "vendor/local" }
        same = { path = "." }
        other = { path = "../libs/other" }
        """
    )
