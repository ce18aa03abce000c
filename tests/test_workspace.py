"""Tests for ripple_release.workspace."""

from __future__ import annotations

from pathlib import Path

import pytest
from conftest import WriteManifest

from ripple_release.config import PackageFilter
from ripple_release.errors import WorkspaceError
from ripple_release.models import Package
from ripple_release.workspace import (
    apply_filter,
    discover_packages,
    expand_globs,
    member_globs,
    read_npm_globs,
    read_pnpm_globs,
)


class TestMemberGlobs:
    """Tests for member_globs() and its readers."""

    def test_pnpm_workspace(self, pnpm_workspace: Path) -> None:
        assert read_pnpm_globs(pnpm_workspace) == ["packages/*"]
        assert member_globs(pnpm_workspace) == ["packages/*"]

    def test_invalid_pnpm_yaml(self, tmp_path: Path) -> None:
        (tmp_path / "pnpm-workspace.yaml").write_text("packages: [unclosed\n")

        with pytest.raises(WorkspaceError, match="Invalid YAML"):
            read_pnpm_globs(tmp_path)

    def test_npm_workspaces_array(
        self, tmp_path: Path, write_manifest: WriteManifest
    ) -> None:
        write_manifest("", name="root", workspaces=["libs/*"])

        assert read_npm_globs(tmp_path) == ["libs/*"]

    def test_yarn_workspaces_object(
        self, tmp_path: Path, write_manifest: WriteManifest
    ) -> None:
        write_manifest("", name="root", workspaces={"packages": ["libs/*"]})

        assert read_npm_globs(tmp_path) == ["libs/*"]

    def test_pnpm_preferred_over_npm(
        self, pnpm_workspace: Path, write_manifest: WriteManifest
    ) -> None:
        write_manifest("", name="root", workspaces=["libs/*"])

        assert member_globs(pnpm_workspace) == ["packages/*"]

    def test_config_fallback(self, tmp_path: Path) -> None:
        assert member_globs(tmp_path, ["modules/*"]) == ["modules/*"]

    def test_nothing_declared(self, tmp_path: Path) -> None:
        with pytest.raises(WorkspaceError) as excinfo:
            member_globs(tmp_path)

        assert excinfo.value.hint is not None


class TestExpandGlobs:
    """Tests for expand_globs()."""

    def test_negation_and_manifest_requirement(
        self, tmp_path: Path, write_manifest: WriteManifest
    ) -> None:
        write_manifest("packages/a", name="a")
        write_manifest("packages/b", name="b")
        write_manifest("packages/internal", name="internal")
        (tmp_path / "packages" / "no-manifest").mkdir()

        dirs = expand_globs(tmp_path, ["./packages/*/", "!packages/internal"])

        assert dirs == [tmp_path / "packages/a", tmp_path / "packages/b"]

    def test_node_modules_skipped(
        self, tmp_path: Path, write_manifest: WriteManifest
    ) -> None:
        write_manifest("packages/a", name="a")
        write_manifest("packages/a/node_modules/dep", name="dep")

        dirs = expand_globs(tmp_path, ["packages/**"])

        assert dirs == [tmp_path / "packages/a"]


class TestApplyFilter:
    """Tests for apply_filter()."""

    @pytest.fixture
    def packages(self) -> list[Package]:
        return [
            Package(name="a", version="1.0.0", path="a"),
            Package(name="b", version="1.0.0", path="b", private=True),
            Package(name="c", version="1.0.0", path="c"),
        ]

    def test_include(self, packages: list[Package]) -> None:
        selected = apply_filter(packages, PackageFilter(include=["a", "b"]))

        assert [p.name for p in selected] == ["a", "b"]

    def test_include_unknown_raises(self, packages: list[Package]) -> None:
        with pytest.raises(WorkspaceError, match="nope"):
            apply_filter(packages, PackageFilter(include=["nope"]))

    def test_exclude_and_private(self, packages: list[Package]) -> None:
        selected = apply_filter(
            packages, PackageFilter(exclude=["c"], exclude_private=True)
        )

        assert [p.name for p in selected] == ["a"]


class TestDiscoverPackages:
    """Tests for discover_packages()."""

    def test_reads_packages_and_workspace_dependencies(
        self, pnpm_workspace: Path
    ) -> None:
        packages = {p.name: p for p in discover_packages(pnpm_workspace)}

        assert sorted(packages) == ["app", "core", "utils"]
        assert packages["utils"].dependencies == {"core"}
        assert packages["utils"].path == "packages/utils"
        assert packages["app"].private
        assert packages["app"].dependencies == {"utils"}
        assert packages["app"].dev_dependencies == {"core"}

    def test_filtered_packages_still_count_as_workspace(
        self, pnpm_workspace: Path
    ) -> None:
        packages = discover_packages(
            pnpm_workspace, filter_=PackageFilter(exclude=["core"])
        )

        utils = next(p for p in packages if p.name == "utils")
        assert utils.dependencies == {"core"}

    def test_defaults_for_missing_name_and_version(
        self, tmp_path: Path, write_manifest: WriteManifest
    ) -> None:
        write_manifest("libs/tool")

        packages = discover_packages(tmp_path, fallback_globs=["libs/*"])

        assert [(p.name, p.version) for p in packages] == [("tool", "0.0.0")]

    def test_duplicate_names_rejected(
        self, tmp_path: Path, write_manifest: WriteManifest
    ) -> None:
        write_manifest("libs/one", name="same")
        write_manifest("libs/two", name="same")

        with pytest.raises(WorkspaceError, match="Duplicate"):
            discover_packages(tmp_path, fallback_globs=["libs/*"])

    def test_no_matching_directories(self, tmp_path: Path) -> None:
        with pytest.raises(WorkspaceError, match="No packages"):
            discover_packages(tmp_path, fallback_globs=["libs/*"])
