"""Release workflows: plan → prepare → verify → publish.

This module wires the versioning engine to its collaborators:

1. plan: discover packages, attribute commits, compute the release plan
2. prepare: apply the plan on the release branch (manifests, changelogs,
   overrides), push it and open or update the release PR
3. verify: recompute the plan on the default branch and check the release
   PR still matches it
4. publish: publish every package version missing from the registry in
   dependency order, tag it, and prune satisfied overrides

The engine itself (attribution, calculate, graph) never touches git or the
network directly; everything goes through the Git, GitHub and Registry
adapters passed in here.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field

from .attribution import attribute_commits
from .calculate import VersionPrompt, plan_release
from .changelog import update_changelog
from .config import ReleaseConfig
from .errors import CodeHostError, ReleaseError, VCSError, WorkspaceError
from .github import GitHub, PullRequest, pull_request_body
from .graph import build_graph, topological_order
from .manifests import MANIFEST, apply_releases, parse_manifest, unsatisfied_ranges
from .models import Package, PackageAttribution, ReleasePlan, VersionOverride
from .overrides import OverrideStore, drop_stale, parse_overrides, prune_overrides
from .registry import Registry
from .shell import item, step, verbose, warn
from .vcs import Git, format_tag
from .versions import compare_versions, is_valid_version
from .workspace import apply_filter, discover_packages

RELEASE_COMMIT_MESSAGE = "chore: update release versions"
VERIFY_CONTEXT = "ripple-release/verify"


class Collaborators:
    """Adapters the workflows talk to. Tests swap in fakes."""

    def __init__(
        self, git: Git, github: GitHub, registry: Registry, store: OverrideStore
    ) -> None:
        self.git = git
        self.github = github
        self.registry = registry
        self.store = store

    @classmethod
    def from_config(cls, config: ReleaseConfig) -> Collaborators:
        return cls(
            git=Git(config.root, dry_run=config.dry_run),
            github=GitHub(dry_run=config.dry_run),
            registry=Registry(config.npm, root=config.root, dry_run=config.dry_run),
            store=OverrideStore(config.overrides_file, dry_run=config.dry_run),
        )


class PrepareResult(BaseModel):
    plan: ReleasePlan
    pull_request: PullRequest | None = None
    created: bool = False


class VerifyResult(BaseModel):
    """Outcome of comparing the release PR against a fresh plan.

    Attributes:
        pull_request: The release PR, or None when there is none.
        problems: One line per mismatch; empty means in sync.
    """

    pull_request: PullRequest | None = None
    problems: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.problems


class PublishResult(BaseModel):
    published: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)


def load_workspace(config: ReleaseConfig) -> tuple[list[Package], list[str]]:
    """Discover the selected packages and the directory of every package.

    Returns:
        The packages selected by the config, and the directories of all
        workspace packages including filtered-out ones.
    """
    discovered = discover_packages(
        config.root, fallback_globs=config.workspace.members
    )
    packages = apply_filter(discovered, config.packages)
    if not packages:
        raise WorkspaceError("No packages selected for release")
    return packages, [pkg.path for pkg in discovered]


def load_packages(config: ReleaseConfig) -> list[Package]:
    """Discover the workspace packages selected by the config."""
    return load_workspace(config)[0]


def collect_attributions(
    config: ReleaseConfig, git: Git
) -> tuple[list[Package], dict[str, PackageAttribution]]:
    """Discover the selected packages and attribute commits to them."""
    packages, package_dirs = load_workspace(config)
    attributions = attribute_commits(
        packages,
        git,
        config.global_commit_mode,
        config.concurrency,
        package_dirs=package_dirs,
    )
    return packages, attributions


def compute_plan(
    config: ReleaseConfig,
    packages: list[Package],
    attributions: dict[str, PackageAttribution],
    overrides: Mapping[str, VersionOverride],
    prompt: VersionPrompt | None = None,
) -> ReleasePlan:
    """Run the engine, dropping overrides the manifests have already reached."""
    step("Calculating versions")
    current = {pkg.name: pkg.version for pkg in packages}
    plan = plan_release(packages, attributions, drop_stale(overrides, current), prompt)
    if not plan.has_direct_changes:
        verbose("No package has changes requiring a release")
    return plan


def print_plan(plan: ReleasePlan, packages: list[Package]) -> None:
    """Print planned versions and the order they will be published in."""
    step("Release plan")
    if not plan.releases:
        print("  Nothing to release.")
        return

    for release in plan.releases:
        reason = "" if release.has_direct_changes else " (dependency update)"
        item(
            f"{release.package.name}: {release.current_version} → "
            f"{release.new_version} [{release.bump.value}]{reason}"
        )
    for name in sorted(plan.excluded):
        item(f"{name}: kept as-is")

    graph = build_graph(packages)
    order = topological_order(graph, seed=plan.new_versions)
    print("\n  Publish order:")
    for entry in order:
        if entry.package.name in plan.new_versions:
            item(f"  {entry.level}: {entry.package.name}")


def run_plan(config: ReleaseConfig, tools: Collaborators | None = None) -> ReleasePlan:
    """Compute and print the release plan without writing anything."""
    tools = tools or Collaborators.from_config(config)
    packages, attributions = collect_attributions(config, tools.git)
    plan = compute_plan(config, packages, attributions, tools.store.load())
    print_plan(plan, packages)
    return plan


def _require_clean(config: ReleaseConfig, git: Git) -> None:
    if config.safeguards and not git.is_clean():
        raise ReleaseError(
            "Working directory is not clean",
            hint="Commit or stash your changes before releasing.",
        )


def _default_branch(config: ReleaseConfig, git: Git) -> str:
    default = config.branch.default or git.default_branch()
    if default == config.branch.release:
        raise ReleaseError(
            f"Release branch {config.branch.release!r} is the default branch",
            hint="Set [branch] release in ripple-release.toml to another branch.",
        )
    return default


def prepare_release_branch(git: Git, release: str, default: str) -> None:
    """Check out the release branch and bring it up to date with default."""
    step(f"Preparing branch {release}")
    current = git.current_branch()
    if current != default:
        raise ReleaseError(
            f"Current branch is {current!r}",
            hint=f"Switch to {default!r} before preparing a release.",
        )
    if git.branch_exists(release):
        git.checkout(release)
    else:
        git.create_branch(release, default)
    git.rebase(default)


def _repository(config: ReleaseConfig, github: GitHub) -> str | None:
    if config.repository:
        return config.repository
    try:
        return github.repository()
    except CodeHostError as exc:
        warn(f"Changelog links disabled: {exc.message}")
        return None


def run_prepare(
    config: ReleaseConfig,
    tools: Collaborators | None = None,
    prompt: VersionPrompt | None = None,
) -> PrepareResult | None:
    """Apply the release plan on the release branch and sync the PR.

    Versions are computed from the default branch; manifests, changelogs
    and the overrides file are then written on the release branch, which
    is committed, pushed and proposed as a pull request.

    Args:
        config: Workspace configuration.
        tools: Adapters, built from config when omitted.
        prompt: Interactive chooser; None applies suggestions as-is.

    Returns:
        The plan and the release PR, or None when nothing needs releasing.
    """
    tools = tools or Collaborators.from_config(config)
    git = tools.git
    _require_clean(config, git)
    default = _default_branch(config, git)

    packages, attributions = collect_attributions(config, git)

    prepare_release_branch(git, config.branch.release, default)

    existing = tools.store.load()
    plan = compute_plan(config, packages, attributions, existing, prompt)
    print_plan(plan, packages)

    if not plan.releases:
        warn("No packages have changes requiring a release")
        git.checkout(default)
        return None

    tools.store.save(plan.overrides)

    step(f"Updating {len(plan.releases)} package manifest(s)")
    apply_releases(config.root, plan.releases, dry_run=config.dry_run)

    if config.changelog.enabled:
        step("Updating changelogs")
        repository = _repository(config, tools.github)
        for release in plan.releases:
            attribution = attributions.get(release.package.name)
            update_changelog(
                config.root,
                release,
                attribution.commits if attribution else [],
                repository=repository,
                dry_run=config.dry_run,
            )

    step("Pushing release branch")
    if not git.commit_all(RELEASE_COMMIT_MESSAGE):
        item("No file changes to commit")
    git.push(config.branch.release, force_with_lease=True)

    step("Syncing pull request")
    pr, created = tools.github.upsert_pull_request(
        head=config.branch.release,
        base=default,
        title=config.pull_request.title,
        body=pull_request_body(plan.releases, config.pull_request.body),
    )
    if pr is not None:
        item(f"Pull request {'created' if created else 'updated'}: {pr.url}")

    git.checkout(default)
    return PrepareResult(plan=plan, pull_request=pr, created=created)


def find_drift(git: Git, sha: str, plan: ReleasePlan) -> list[str]:
    """Compare manifests at ``sha`` with the plan.

    Every planned package must carry at least its planned version; a PR
    raised further by hand is accepted. Every range on a planned package
    must accept the version that package carries in the PR.
    """
    problems: list[str] = []
    manifests: dict[str, dict[str, Any]] = {}
    targets = dict(plan.new_versions)
    for release in plan.releases:
        name = release.package.name
        path = f"{release.package.path}/{MANIFEST}"
        text = git.read_file(path, sha)
        if text is None:
            warn(f"{name}: {path} not found on the release branch, skipping")
            continue
        manifests[name] = manifest = parse_manifest(text, path)
        actual = manifest.get("version")
        if (
            isinstance(actual, str)
            and is_valid_version(actual)
            and compare_versions(actual, release.new_version) >= 0
        ):
            targets[name] = actual
        else:
            problems.append(f"{name}: expected {release.new_version}, PR has {actual}")

    for name, manifest in manifests.items():
        for dep, range_, version in unsatisfied_ranges(manifest, targets):
            problems.append(f"{name}: range {range_!r} on {dep} excludes {version}")
    return problems


def run_verify(
    config: ReleaseConfig, tools: Collaborators | None = None
) -> VerifyResult:
    """Check that the open release PR matches a freshly computed plan.

    The plan is computed on the default branch, which is checked out for the
    duration of the check when the run starts elsewhere (typically on the
    release branch in CI). Overrides and manifests are read at the PR head.
    Sets the commit status ``ripple-release/verify`` on the PR head.
    """
    tools = tools or Collaborators.from_config(config)
    git = tools.git
    _require_clean(config, git)
    default = _default_branch(config, git)

    step("Verifying release pull request")
    pr = tools.github.find_pull_request(config.branch.release)
    if pr is None:
        warn(f"No open pull request for {config.branch.release}, nothing to verify")
        return VerifyResult()
    item(f"Found #{pr.number} at {pr.head_sha[:7]}")

    original = git.current_branch()
    if original != default:
        git.switch_to(default)
    try:
        packages, attributions = collect_attributions(config, git)
        overrides = parse_overrides(
            git.read_file(config.overrides_path, pr.head_sha)
        )
        plan = compute_plan(config, packages, attributions, overrides)
        problems = find_drift(git, pr.head_sha, plan)
    finally:
        if original != default:
            git.switch_to(original)

    result = VerifyResult(pull_request=pr, problems=problems)
    for problem in result.problems:
        item(f"✗ {problem}")

    if result.ok:
        tools.github.set_commit_status(
            pr.head_sha,
            state="success",
            description="Release PR is up to date.",
            context=VERIFY_CONTEXT,
            target_url=pr.url or None,
        )
        item("Release PR is in sync")
    else:
        tools.github.set_commit_status(
            pr.head_sha,
            state="failure",
            description="Release PR is out of sync. Re-run ripple-release prepare.",
            context=VERIFY_CONTEXT,
            target_url=pr.url or None,
        )
    return result


def run_publish(
    config: ReleaseConfig, tools: Collaborators | None = None
) -> PublishResult:
    """Publish every public package whose version is not on the registry.

    Packages are published dependencies first. A failed publish aborts the
    run; a failed tag after a successful publish is only a warning.
    """
    tools = tools or Collaborators.from_config(config)
    packages = load_packages(config)
    public = {pkg.name for pkg in packages if not pkg.private}
    if not public:
        warn("No public packages to publish")
        return PublishResult()

    order = topological_order(build_graph(packages), seed=public)
    result = PublishResult()
    for entry in order:
        pkg = entry.package
        if pkg.name not in public:
            continue
        step(f"{pkg.name}@{pkg.version} (level {entry.level})")
        if tools.registry.version_exists(pkg.name, pkg.version):
            item("Already on the registry, skipping")
            result.skipped.append(pkg.name)
            continue

        tools.registry.publish(pkg.name, pkg.version)
        item(f"Published {pkg.name}@{pkg.version}")
        result.published.append(pkg.name)

        tag = format_tag(pkg.name, pkg.version)
        try:
            tools.git.create_and_push_tag(tag)
            item(f"Tagged {tag}")
        except VCSError as exc:
            warn(f"Published {pkg.name} but could not tag {tag}: {exc.message}")

    overrides = tools.store.load()
    if overrides:
        released = {
            pkg.name: pkg.version
            for pkg in packages
            if pkg.name in result.published or pkg.name in result.skipped
        }
        remaining = prune_overrides(overrides, released)
        if remaining != overrides:
            step("Pruning version overrides")
            tools.store.save(remaining)

    step("Summary")
    item(f"Published: {', '.join(result.published) or 'none'}")
    item(f"Already published: {', '.join(result.skipped) or 'none'}")
    return result
