"""Data models for ripple-release.

These Pydantic models represent the core data structures passed between
the versioning engine and the collaborators that apply its results.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class BumpKind(str, Enum):
    """Severity of a version increment, ordered none < patch < minor < major."""

    NONE = "none"
    PATCH = "patch"
    MINOR = "minor"
    MAJOR = "major"

    @property
    def rank(self) -> int:
        return _BUMP_RANKS[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, BumpKind):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, BumpKind):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, BumpKind):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, BumpKind):
            return NotImplemented
        return self.rank >= other.rank


_BUMP_RANKS = {
    BumpKind.NONE: 0,
    BumpKind.PATCH: 1,
    BumpKind.MINOR: 2,
    BumpKind.MAJOR: 3,
}


class Package(BaseModel):
    """A single publishable package in the workspace.

    Built once per run from the workspace manifests and never mutated.

    Attributes:
        name: Package name from package.json (unique in the workspace).
        version: Current version string from package.json.
        path: Relative path from workspace root to the package directory.
        private: True when package.json sets "private": true.
        dependencies: Names of in-workspace runtime (and peer) dependencies.
        dev_dependencies: Names of in-workspace dev dependencies.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    path: str
    private: bool = False
    dependencies: frozenset[str] = Field(default_factory=frozenset)
    dev_dependencies: frozenset[str] = Field(default_factory=frozenset)

    @property
    def all_dependencies(self) -> frozenset[str]:
        return self.dependencies | self.dev_dependencies


class CommitRecord(BaseModel):
    """A parsed commit as seen by the versioning engine.

    Attributes:
        hash: Full commit SHA.
        short_hash: Abbreviated SHA, used for display.
        type: Conventional commit type ("feat", "fix", ...), empty when the
              message is not conventional.
        scope: Optional conventional commit scope.
        description: Header text after the "type(scope):" prefix, or the
                     whole subject line for non-conventional commits.
        is_breaking: "!" marker or a BREAKING CHANGE footer was present.
        is_conventional: The header matched the conventional commit format.
        timestamp: Committer time as a Unix timestamp.
        changed_files: Paths touched by the commit, attached lazily from the
                       batched file listing. None means "not fetched".
    """

    model_config = ConfigDict(frozen=True)

    hash: str
    short_hash: str
    type: str = ""
    scope: str | None = None
    description: str = ""
    is_breaking: bool = False
    is_conventional: bool = False
    timestamp: int = 0
    changed_files: tuple[str, ...] | None = None


class DependencyGraph(BaseModel):
    """Packages plus the reverse ("dependents") adjacency between them.

    Attributes:
        packages: Map of package name → Package.
        dependents: Map of package name → names of packages that depend on it.
    """

    packages: dict[str, Package]
    dependents: dict[str, set[str]]

    @model_validator(mode="after")
    def _check_edges(self) -> DependencyGraph:
        for name, dependents in self.dependents.items():
            unknown = ({name} | dependents) - set(self.packages)
            if unknown:
                raise ValueError(
                    f"dependents map references unknown packages: {sorted(unknown)}"
                )
        return self


class PackageOrder(BaseModel):
    """A package with its level in the topological order."""

    package: Package
    level: int


class PackageAttribution(BaseModel):
    """Commits attributed to one package since its last release.

    Attributes:
        package: Name of the package.
        last_tag: Most recent release tag, or None for an unreleased package.
        local_commits: Commits touching the package directory.
        global_commits: Commits outside every package directory that landed
                        after the package's own last release.
    """

    package: str
    last_tag: str | None = None
    local_commits: list[CommitRecord] = Field(default_factory=list)
    global_commits: list[CommitRecord] = Field(default_factory=list)

    @property
    def commits(self) -> list[CommitRecord]:
        """Local commits first, then global commits."""
        return [*self.local_commits, *self.global_commits]


class PackageRelease(BaseModel):
    """A planned version change for a package.

    Attributes:
        package: The package being released.
        current_version: Version before the release.
        new_version: Version after the release.
        bump: Severity of the change (display only for overrides).
        has_direct_changes: True when caused by the package's own commits or
                            an override, False when caused only by cascade.
    """

    package: Package
    current_version: str
    new_version: str
    bump: BumpKind
    has_direct_changes: bool


class VersionOverride(BaseModel):
    """A human-chosen version persisted across runs.

    Serialized as {"version": "...", "type": "minor"}.
    """

    model_config = ConfigDict(populate_by_name=True)

    version: str
    bump: BumpKind = Field(alias="type")


class ReleasePlan(BaseModel):
    """The complete result of one engine run.

    Attributes:
        releases: Direct updates first, then cascade updates.
        overrides: Override mapping after this run's human decisions.
        excluded: Packages deliberately kept at their current version.
    """

    releases: list[PackageRelease] = Field(default_factory=list)
    overrides: dict[str, VersionOverride] = Field(default_factory=dict)
    excluded: set[str] = Field(default_factory=set)

    def get(self, name: str) -> PackageRelease | None:
        for release in self.releases:
            if release.package.name == name:
                return release
        return None

    @property
    def new_versions(self) -> dict[str, str]:
        """Map of package name → planned version for every release."""
        return {r.package.name: r.new_version for r in self.releases}

    @property
    def has_direct_changes(self) -> bool:
        return any(r.has_direct_changes for r in self.releases)
