"""Bump calculation and cascade propagation.

Turns attributed commits (plus persisted overrides and, optionally, human
choices) into a release plan:

1. Direct updates: each package's own commits decide its bump, unless an
   override or a human choice pins the version.
2. Cascade updates: every package that transitively depends on a directly
   updated package gets a patch bump so it picks up the new dependency.

The calculation is a pure function of its inputs. Prompting is delegated
to a VersionPrompt callable so the engine stays testable without a TTY.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Mapping, Sequence
from typing import Protocol

from pydantic import BaseModel

from .commits import determine_highest_bump
from .errors import VersionError
from .graph import build_graph, topological_order
from .models import (
    BumpKind,
    CommitRecord,
    DependencyGraph,
    Package,
    PackageAttribution,
    PackageRelease,
    ReleasePlan,
    VersionOverride,
)
from .shell import verbose
from .versions import bump_kind_between, bump_version, is_valid_version


class VersionChoice(BaseModel):
    """A version picked by a human for one package.

    Attributes:
        version: The chosen version. The current version means "as-is".
        apply_to_all: Reuse the bump of this choice for every remaining
                      package instead of prompting again.
    """

    version: str
    apply_to_all: bool = False


class VersionPrompt(Protocol):
    """Asks a human to confirm or change a package's next version.

    Returns None to leave the package out of this release.
    """

    def __call__(
        self,
        package: Package,
        suggested: str,
        commits: Sequence[CommitRecord],
        *,
        override: VersionOverride | None,
        remaining: int,
    ) -> VersionChoice | None: ...


def _release(
    pkg: Package, new_version: str, bump: BumpKind, direct: bool
) -> PackageRelease:
    return PackageRelease(
        package=pkg,
        current_version=pkg.version,
        new_version=new_version,
        bump=bump,
        has_direct_changes=direct,
    )


def _bump(pkg: Package, bump: BumpKind) -> str:
    try:
        return bump_version(pkg.version, bump)
    except VersionError as exc:
        raise VersionError(f"{pkg.name}: {exc.message}") from exc


def _checked_override(name: str, override: VersionOverride) -> str:
    if not is_valid_version(override.version):
        raise VersionError(
            f"Invalid override version for {name}: {override.version!r}",
            hint="Fix or delete the entry in the overrides file.",
        )
    return override.version


def calculate_direct_updates(
    packages: Sequence[Package],
    attributions: Mapping[str, PackageAttribution],
    overrides: Mapping[str, VersionOverride],
    prompt: VersionPrompt | None = None,
) -> ReleasePlan:
    """Decide the version of every package from its own commits.

    Without a prompt, an override's version wins outright and its recorded
    bump is kept for display. An override that pins the current version
    keeps the package out of the release.

    With a prompt, every package that has commits or an override is shown
    to the human. Picking a version other than the automatic suggestion
    records an override; picking the suggestion clears it. Choosing
    "apply to all" turns the choice's bump into a session value that is
    applied to the remaining packages without prompting.

    Returns:
        A ReleasePlan holding only direct updates, the resulting override
        mapping and the packages kept as-is.

    Raises:
        VersionError: If a package version or override is not valid semver.
    """
    plan = ReleasePlan(overrides=dict(overrides))
    sticky: BumpKind | None = None

    # Packages worth asking about: they have commits or an override
    candidates = [
        pkg.name
        for pkg in packages
        if pkg.name in overrides
        or (pkg.name in attributions and attributions[pkg.name].commits)
    ]

    for pkg in packages:
        attribution = attributions.get(pkg.name, PackageAttribution(package=pkg.name))
        commits = attribution.commits
        determined = determine_highest_bump(commits)
        override = plan.overrides.get(pkg.name)
        automatic = _bump(pkg, determined)

        if prompt is None:
            if override is not None:
                version = _checked_override(pkg.name, override)
                if version == pkg.version:
                    verbose(f"{pkg.name}: kept as-is by override")
                    plan.excluded.add(pkg.name)
                    continue
                plan.releases.append(_release(pkg, version, override.bump, True))
            elif determined is not BumpKind.NONE:
                plan.releases.append(_release(pkg, automatic, determined, True))
            continue

        if pkg.name not in candidates:
            continue

        if sticky is not None:
            chosen = _bump(pkg, sticky)
        else:
            suggested = (
                _checked_override(pkg.name, override) if override else automatic
            )
            remaining = len(candidates) - candidates.index(pkg.name)
            answer = prompt(
                pkg, suggested, commits, override=override, remaining=remaining
            )
            if answer is None:
                continue
            chosen = answer.version
            if not is_valid_version(chosen):
                raise VersionError(f"Invalid version for {pkg.name}: {chosen!r}")
            if answer.apply_to_all:
                sticky = bump_kind_between(pkg.version, chosen)

        if chosen == pkg.version:
            plan.excluded.add(pkg.name)
            if determined is not BumpKind.NONE:
                plan.overrides[pkg.name] = VersionOverride(
                    version=pkg.version, bump=BumpKind.NONE
                )
            else:
                plan.overrides.pop(pkg.name, None)
            continue

        bump = bump_kind_between(pkg.version, chosen)
        if chosen != automatic:
            plan.overrides[pkg.name] = VersionOverride(version=chosen, bump=bump)
        else:
            plan.overrides.pop(pkg.name, None)
        plan.releases.append(_release(pkg, chosen, bump, True))

    return plan


def create_dependent_updates(
    graph: DependencyGraph,
    direct_updates: Sequence[PackageRelease],
    excluded: Iterable[str] = (),
) -> list[PackageRelease]:
    """Add patch bumps for packages affected only through dependencies.

    Walks dependents outward from every directly updated package with an
    explicit work-list. Each package is assigned at most once: direct
    updates are never overwritten and excluded packages stop the cascade.

    Returns:
        Direct updates followed by cascade updates in traversal order.
    """
    updates = list(direct_updates)
    assigned = {u.package.name for u in direct_updates}
    blocked = set(excluded)

    queue = deque(sorted(assigned - blocked))
    visited = set(queue)
    while queue:
        name = queue.popleft()
        for dependent in sorted(graph.dependents.get(name, ())):
            if dependent in visited or dependent in blocked:
                continue
            visited.add(dependent)
            queue.append(dependent)
            if dependent in assigned:
                continue
            pkg = graph.packages[dependent]
            verbose(f"{dependent}: patch bump (depends on {name})")
            new_version = _bump(pkg, BumpKind.PATCH)
            updates.append(_release(pkg, new_version, BumpKind.PATCH, False))
            assigned.add(dependent)

    return updates


def plan_release(
    packages: Sequence[Package],
    attributions: Mapping[str, PackageAttribution],
    overrides: Mapping[str, VersionOverride] | None = None,
    prompt: VersionPrompt | None = None,
) -> ReleasePlan:
    """Compute the complete release plan for a workspace.

    Args:
        packages: All workspace packages.
        attributions: Map of package name → attributed commits.
        overrides: Persisted human overrides.
        prompt: Optional interactive chooser.

    Returns:
        ReleasePlan with direct and cascade updates.

    Raises:
        DependencyCycleError: If updated packages sit on a dependency cycle.
    """
    plan = calculate_direct_updates(packages, attributions, overrides or {}, prompt)
    graph = build_graph(packages)
    # Fails on a cycle among the packages the cascade would walk
    topological_order(graph, seed=[r.package.name for r in plan.releases])
    plan.releases = create_dependent_updates(graph, plan.releases, plan.excluded)
    return plan
