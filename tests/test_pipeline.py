"""Tests for ripple_release.pipeline."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from conftest import make_commit

from ripple_release.config import ReleaseConfig, load_config
from ripple_release.errors import (
    AttributionError,
    PublishError,
    ReleaseError,
    VCSError,
)
from ripple_release.github import PullRequest
from ripple_release.models import BumpKind, PackageAttribution, VersionOverride
from ripple_release.pipeline import (
    VERIFY_CONTEXT,
    Collaborators,
    find_drift,
    run_plan,
    run_prepare,
    run_publish,
    run_verify,
)

CORE_FIX = {
    "core": PackageAttribution(
        package="core", local_commits=[make_commit("fix: null check")]
    )
}


@pytest.fixture
def config(pnpm_workspace: Path) -> ReleaseConfig:
    return load_config(pnpm_workspace, env={})


@pytest.fixture
def tools() -> Collaborators:
    """Collaborators with a clean repository checked out on main."""
    git = MagicMock()
    git.is_clean.return_value = True
    git.default_branch.return_value = "main"
    git.current_branch.return_value = "main"
    git.branch_exists.return_value = False
    git.commit_all.return_value = True
    github = MagicMock()
    github.repository.return_value = "acme/repo"
    github.upsert_pull_request.return_value = (
        PullRequest(number=1, url="https://github.com/acme/repo/pull/1"),
        True,
    )
    store = MagicMock()
    store.load.return_value = {}
    return Collaborators(git=git, github=github, registry=MagicMock(), store=store)


def _manifest(root: Path, directory: str) -> dict:
    return json.loads((root / directory / "package.json").read_text())


class TestRunPlan:
    """Tests for run_plan()."""

    @patch("ripple_release.pipeline.attribute_commits", return_value=CORE_FIX)
    def test_plan_includes_cascade(
        self,
        mock_attribute: MagicMock,
        config: ReleaseConfig,
        tools: Collaborators,
    ) -> None:
        plan = run_plan(config, tools)

        assert plan.new_versions == {"core": "1.0.1", "utils": "1.1.1", "app": "2.0.1"}
        assert [r.has_direct_changes for r in plan.releases] == [True, False, False]

    @patch("ripple_release.pipeline.attribute_commits", return_value=CORE_FIX)
    def test_stale_override_ignored(
        self,
        mock_attribute: MagicMock,
        config: ReleaseConfig,
        tools: Collaborators,
    ) -> None:
        """An override the manifests already reached does not pin the version."""
        tools.store.load.return_value = {
            "core": VersionOverride(version="1.0.0", bump=BumpKind.MINOR)
        }

        plan = run_plan(config, tools)

        assert plan.new_versions["core"] == "1.0.1"

    @patch("ripple_release.pipeline.attribute_commits", return_value=CORE_FIX)
    def test_excluded_package_directories_passed_to_attribution(
        self,
        mock_attribute: MagicMock,
        pnpm_workspace: Path,
        tools: Collaborators,
    ) -> None:
        """Every package directory bounds global commits, selected or not."""
        config = load_config(pnpm_workspace, env={}, packages={"exclude": ["app"]})

        plan = run_plan(config, tools)

        selected = [pkg.name for pkg in mock_attribute.call_args.args[0]]
        assert selected == ["core", "utils"]
        assert mock_attribute.call_args.kwargs["package_dirs"] == [
            "packages/app",
            "packages/core",
            "packages/utils",
        ]
        assert "app" not in plan.new_versions


class TestRunPrepare:
    """Tests for run_prepare()."""

    @patch("ripple_release.pipeline.attribute_commits", return_value=CORE_FIX)
    def test_writes_release_branch_and_opens_pr(
        self,
        mock_attribute: MagicMock,
        config: ReleaseConfig,
        tools: Collaborators,
    ) -> None:
        result = run_prepare(config, tools)

        assert result is not None
        assert result.created
        root = config.root
        assert _manifest(root, "packages/core")["version"] == "1.0.1"
        utils = _manifest(root, "packages/utils")
        assert utils["version"] == "1.1.1"
        assert utils["dependencies"]["core"] == "workspace:^1.0.1"
        assert _manifest(root, "packages/app")["dependencies"]["utils"] == "^1.1.1"
        changelog = (root / "packages/core/CHANGELOG.md").read_text()
        assert "null check" in changelog
        assert "core@1.0.0...core@1.0.1" in changelog

        tools.git.create_branch.assert_called_once_with("release/next", "main")
        tools.git.rebase.assert_called_once_with("main")
        tools.git.push.assert_called_once_with("release/next", force_with_lease=True)
        tools.git.checkout.assert_called_with("main")
        tools.store.save.assert_called_once_with({})
        kwargs = tools.github.upsert_pull_request.call_args.kwargs
        assert kwargs["head"] == "release/next"
        assert kwargs["base"] == "main"
        assert "| `utils` | 1.1.0 → 1.1.1 | dependency update |" in kwargs["body"]

    @patch("ripple_release.pipeline.attribute_commits", return_value={})
    def test_nothing_to_release(
        self,
        mock_attribute: MagicMock,
        config: ReleaseConfig,
        tools: Collaborators,
    ) -> None:
        assert run_prepare(config, tools) is None

        assert _manifest(config.root, "packages/core")["version"] == "1.0.0"
        tools.git.checkout.assert_called_with("main")
        tools.github.upsert_pull_request.assert_not_called()
        tools.store.save.assert_not_called()

    def test_dirty_tree_refused(
        self, config: ReleaseConfig, tools: Collaborators
    ) -> None:
        tools.git.is_clean.return_value = False

        with pytest.raises(ReleaseError, match="not clean"):
            run_prepare(config, tools)

    @patch("ripple_release.pipeline.attribute_commits", return_value=CORE_FIX)
    def test_must_start_on_default_branch(
        self,
        mock_attribute: MagicMock,
        config: ReleaseConfig,
        tools: Collaborators,
    ) -> None:
        tools.git.current_branch.return_value = "feature/x"

        with pytest.raises(ReleaseError) as excinfo:
            run_prepare(config, tools)

        assert "main" in (excinfo.value.hint or "")


class TestRunVerify:
    """Tests for run_verify() and find_drift()."""

    SHA = "c" * 40

    def _branch_files(self, utils_version: str) -> dict[str, str]:
        manifests = {
            "packages/core": {"name": "core", "version": "1.0.1"},
            "packages/utils": {
                "name": "utils",
                "version": utils_version,
                "dependencies": {"core": "workspace:^1.0.1"},
            },
            "packages/app": {
                "name": "app",
                "version": "2.0.1",
                "dependencies": {"utils": "^1.1.1"},
            },
        }
        return {
            f"{path}/package.json": json.dumps(data) for path, data in manifests.items()
        }

    def _with_pr(self, tools: Collaborators, files: dict[str, str]) -> None:
        tools.github.find_pull_request.return_value = PullRequest(
            number=3, head_sha=self.SHA, url="https://github.com/acme/repo/pull/3"
        )
        tools.git.read_file.side_effect = lambda path, ref: files.get(path)

    @patch("ripple_release.pipeline.attribute_commits", return_value=CORE_FIX)
    def test_in_sync(
        self,
        mock_attribute: MagicMock,
        config: ReleaseConfig,
        tools: Collaborators,
    ) -> None:
        self._with_pr(tools, self._branch_files("1.1.1"))

        result = run_verify(config, tools)

        assert result.ok
        tools.github.set_commit_status.assert_called_once()
        call = tools.github.set_commit_status.call_args
        assert call.args == (self.SHA,)
        assert call.kwargs["state"] == "success"
        assert call.kwargs["context"] == VERIFY_CONTEXT
        tools.git.switch_to.assert_not_called()

    @patch("ripple_release.pipeline.attribute_commits", return_value=CORE_FIX)
    def test_drift_fails_status(
        self,
        mock_attribute: MagicMock,
        config: ReleaseConfig,
        tools: Collaborators,
    ) -> None:
        self._with_pr(tools, self._branch_files("1.1.0"))

        result = run_verify(config, tools)

        assert result.problems == ["utils: expected 1.1.1, PR has 1.1.0"]
        assert tools.github.set_commit_status.call_args.kwargs["state"] == "failure"

    @patch("ripple_release.pipeline.attribute_commits")
    def test_plan_computed_on_default_branch(
        self,
        mock_attribute: MagicMock,
        config: ReleaseConfig,
        tools: Collaborators,
    ) -> None:
        """Started on the release branch, verify plans on main and switches back."""
        tools.git.current_branch.return_value = "release/next"
        self._with_pr(tools, self._branch_files("1.1.1"))
        branches_at_attribution: list[str] = []

        def attribute(*args: object, **kwargs: object) -> dict:
            branches_at_attribution.extend(
                c.args[0] for c in tools.git.switch_to.call_args_list
            )
            return CORE_FIX

        mock_attribute.side_effect = attribute

        result = run_verify(config, tools)

        assert result.ok
        assert branches_at_attribution == ["main"]
        switches = [c.args[0] for c in tools.git.switch_to.call_args_list]
        assert switches == ["main", "release/next"]

    @patch("ripple_release.pipeline.attribute_commits")
    def test_branch_restored_when_planning_fails(
        self,
        mock_attribute: MagicMock,
        config: ReleaseConfig,
        tools: Collaborators,
    ) -> None:
        tools.git.current_branch.return_value = "release/next"
        self._with_pr(tools, self._branch_files("1.1.1"))
        mock_attribute.side_effect = AttributionError("core", "boom")

        with pytest.raises(AttributionError):
            run_verify(config, tools)

        tools.git.switch_to.assert_called_with("release/next")
        tools.github.set_commit_status.assert_not_called()

    @patch("ripple_release.pipeline.attribute_commits", return_value=CORE_FIX)
    def test_version_raised_by_hand_accepted(
        self,
        mock_attribute: MagicMock,
        config: ReleaseConfig,
        tools: Collaborators,
    ) -> None:
        """A PR version above the planned one is not drift."""
        self._with_pr(tools, self._branch_files("1.2.0"))

        result = run_verify(config, tools)

        assert result.ok
        assert tools.github.set_commit_status.call_args.kwargs["state"] == "success"

    def test_no_pull_request(self, config: ReleaseConfig, tools: Collaborators) -> None:
        tools.github.find_pull_request.return_value = None

        result = run_verify(config, tools)

        assert result.ok
        assert result.pull_request is None
        tools.github.set_commit_status.assert_not_called()

    @patch("ripple_release.pipeline.attribute_commits", return_value=CORE_FIX)
    def test_overrides_read_from_pr_head(
        self,
        mock_attribute: MagicMock,
        config: ReleaseConfig,
        tools: Collaborators,
    ) -> None:
        files = self._branch_files("1.1.1")
        files[config.overrides_path] = json.dumps(
            {"core": {"version": "2.0.0", "type": "major"}}
        )
        self._with_pr(tools, files)

        result = run_verify(config, tools)

        assert "core: expected 2.0.0, PR has 1.0.1" in result.problems

    def test_find_drift_reports_ranges(self) -> None:
        git = MagicMock()
        git.read_file.return_value = json.dumps(
            {"name": "ui", "version": "1.0.1", "dependencies": {"core": "~1.0.0"}}
        )
        plan = MagicMock()
        plan.new_versions = {"core": "1.1.0", "ui": "1.0.1"}
        release = MagicMock()
        release.package.name = "ui"
        release.package.path = "ui"
        release.new_version = "1.0.1"
        plan.releases = [release]

        problems = find_drift(git, self.SHA, plan)

        assert problems == ["ui: range '~1.0.0' on core excludes 1.1.0"]


class TestRunPublish:
    """Tests for run_publish()."""

    def test_publishes_missing_versions_in_order(
        self, config: ReleaseConfig, tools: Collaborators
    ) -> None:
        tools.registry.version_exists.side_effect = lambda name, v: name == "core"

        result = run_publish(config, tools)

        assert result.skipped == ["core"]
        assert result.published == ["utils"]
        tools.registry.publish.assert_called_once_with("utils", "1.1.0")
        tools.git.create_and_push_tag.assert_called_once_with("utils@1.1.0")

    def test_private_packages_never_published(
        self, config: ReleaseConfig, tools: Collaborators
    ) -> None:
        tools.registry.version_exists.return_value = False

        result = run_publish(config, tools)

        assert result.published == ["core", "utils"]

    def test_prunes_satisfied_overrides(
        self, config: ReleaseConfig, tools: Collaborators
    ) -> None:
        tools.registry.version_exists.return_value = True
        pending = VersionOverride(version="3.0.0", bump=BumpKind.MAJOR)
        tools.store.load.return_value = {
            "utils": VersionOverride(version="1.1.0", bump=BumpKind.MINOR),
            "core": pending,
        }

        run_publish(config, tools)

        tools.store.save.assert_called_once_with({"core": pending})

    def test_tag_failure_is_not_fatal(
        self, config: ReleaseConfig, tools: Collaborators
    ) -> None:
        tools.registry.version_exists.return_value = False
        tools.git.create_and_push_tag.side_effect = VCSError("push", "rejected")

        result = run_publish(config, tools)

        assert result.published == ["core", "utils"]

    def test_publish_failure_aborts(
        self, config: ReleaseConfig, tools: Collaborators
    ) -> None:
        tools.registry.version_exists.return_value = False
        tools.registry.publish.side_effect = PublishError("publish", "core: E403")

        with pytest.raises(PublishError):
            run_publish(config, tools)

        tools.git.create_and_push_tag.assert_not_called()
