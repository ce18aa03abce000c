"""Commit attribution: which commits count towards which package.

Each package gets two lists of commits since its own last release:

* local commits, which touch files inside the package directory;
* global commits, which touch no package directory at all (root config,
  lockfiles, CI) and landed strictly after that package's last release.

The global cutoff is per package. A shared cutoff would attribute a root
change made between two package releases to both of them, so the package
released after the change would count it twice.

File lists for the whole commit range are fetched with a single batched
VCS call and partitioned in memory, never one call per commit.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Protocol, TypeVar

from .errors import AttributionError, ReleaseError
from .models import CommitRecord, Package, PackageAttribution
from .shell import step, verbose

T = TypeVar("T")

# Files whose changes affect dependency resolution of every package
DEPENDENCY_FILES = frozenset(
    {
        "package.json",
        "pnpm-lock.yaml",
        "pnpm-workspace.yaml",
        "yarn.lock",
        "package-lock.json",
    }
)


class GlobalCommitMode(str, Enum):
    """Which commits outside package directories count towards releases."""

    NONE = "none"
    ALL = "all"
    DEPENDENCIES = "dependencies"


class CommitSource(Protocol):
    """The subset of VCS operations attribution needs (see vcs.Git)."""

    def most_recent_tag(self, name: str) -> str | None: ...

    def tag_timestamp(self, tag: str) -> int: ...

    def commits(
        self,
        from_ref: str | None = None,
        to_ref: str = "HEAD",
        folder: str | None = None,
    ) -> list[CommitRecord]: ...

    def changed_files(
        self, from_ref: str | None = None, to_ref: str = "HEAD"
    ) -> dict[str, tuple[str, ...]]: ...


def normalize_path(path: str) -> str:
    """Strip a leading "./" and trailing "/" from a repository path."""
    path = path[2:] if path.startswith("./") else path
    return path.rstrip("/")


def in_directory(path: str, directory: str) -> bool:
    """Check whether a file path lies inside a directory (or is it)."""
    path, directory = normalize_path(path), normalize_path(directory)
    if directory in ("", "."):
        return True
    return path == directory or path.startswith(f"{directory}/")


def is_global_commit(files: Sequence[str], package_paths: Iterable[str]) -> bool:
    """A commit is global when none of its files is inside a package.

    A commit whose file list is unknown or empty is never global.
    """
    if not files:
        return False
    paths = list(package_paths)
    return not any(in_directory(f, p) for f in files for p in paths)


def is_dependency_file(path: str) -> bool:
    """Root or per-package manifest/lockfile, e.g. "packages/a/package.json"."""
    return normalize_path(path).rsplit("/", 1)[-1] in DEPENDENCY_FILES


def _for_each_package(
    packages: Sequence[Package],
    fn: Callable[[Package], T],
    concurrency: int,
) -> dict[str, T]:
    """Run ``fn`` for every package on a bounded pool.

    Any failure aborts the whole run with an error naming the package.
    """
    results: dict[str, T] = {}
    with ThreadPoolExecutor(max_workers=max(1, concurrency)) as pool:
        futures = {pkg.name: pool.submit(fn, pkg) for pkg in packages}
        for name, future in futures.items():
            try:
                results[name] = future.result()
            except AttributionError:
                raise
            except ReleaseError as exc:
                raise AttributionError(name, exc.message) from exc
    return results


def find_last_tags(
    packages: Sequence[Package], source: CommitSource, concurrency: int = 10
) -> dict[str, str | None]:
    """Find the most recent release tag ("name@X.Y.Z") for each package."""
    return _for_each_package(
        packages, lambda pkg: source.most_recent_tag(pkg.name), concurrency
    )


def global_commits_per_package(
    packages: Sequence[Package],
    last_tags: dict[str, str | None],
    source: CommitSource,
    mode: GlobalCommitMode,
    package_dirs: Iterable[str] | None = None,
) -> dict[str, list[CommitRecord]]:
    """Attribute commits outside all package directories to each package.

    Args:
        packages: Packages to attribute commits to.
        last_tags: Map of package name → last release tag (or None).
        source: VCS collaborator.
        mode: NONE skips global attribution, DEPENDENCIES keeps only commits
              that touch a manifest or lockfile.
        package_dirs: Directories of every workspace package, including
              those filtered out of the release. Defaults to the paths of
              ``packages``.

    Returns:
        Map of package name → global commits, newest first.
    """
    result: dict[str, list[CommitRecord]] = {pkg.name: [] for pkg in packages}
    if mode is GlobalCommitMode.NONE or not packages:
        verbose("Global commit attribution disabled")
        return result

    cutoffs: dict[str, int] = {}
    for pkg in packages:
        tag = last_tags.get(pkg.name)
        try:
            cutoffs[pkg.name] = source.tag_timestamp(tag) if tag else 0
        except ReleaseError as exc:
            raise AttributionError(pkg.name, exc.message) from exc

    # The union range starts at the oldest release, or at the beginning of
    # history when any package has never been released
    tagged = [name for name, tag in last_tags.items() if tag and name in cutoffs]
    if len(tagged) < len(packages):
        start = None
    else:
        start = last_tags[min(tagged, key=lambda name: cutoffs[name])]

    verbose(f"Fetching commits and file lists since {start or 'the first commit'}")
    files_by_commit = source.changed_files(from_ref=start)
    all_commits = [
        commit.model_copy(update={"changed_files": files_by_commit.get(commit.hash)})
        for commit in source.commits(from_ref=start)
    ]

    package_paths = (
        list(package_dirs) if package_dirs is not None else [p.path for p in packages]
    )
    candidates = [
        commit
        for commit in all_commits
        if is_global_commit(commit.changed_files or (), package_paths)
    ]
    if mode is GlobalCommitMode.DEPENDENCIES:
        candidates = [
            commit
            for commit in candidates
            if any(is_dependency_file(f) for f in commit.changed_files or ())
        ]

    for pkg in packages:
        cutoff = cutoffs[pkg.name]
        result[pkg.name] = [c for c in candidates if c.timestamp > cutoff]
        verbose(f"{pkg.name}: {len(result[pkg.name])} global commits after {cutoff}")

    return result


def attribute_commits(
    packages: Sequence[Package],
    source: CommitSource,
    mode: GlobalCommitMode = GlobalCommitMode.DEPENDENCIES,
    concurrency: int = 10,
    package_dirs: Iterable[str] | None = None,
) -> dict[str, PackageAttribution]:
    """Compute local and global commits for every package.

    Per-package lookups run on a bounded pool; the cross-package file list
    is fetched once and shared. A commit touching any directory in
    ``package_dirs`` (all of ``packages`` when omitted) is never global.

    Returns:
        Map of package name → PackageAttribution.

    Raises:
        AttributionError: If attribution fails for any package.
    """
    step("Attributing commits to packages")

    last_tags = find_last_tags(packages, source, concurrency)
    local = _for_each_package(
        packages,
        lambda pkg: source.commits(from_ref=last_tags[pkg.name], folder=pkg.path),
        concurrency,
    )
    global_ = global_commits_per_package(
        packages, last_tags, source, mode, package_dirs
    )

    attributions: dict[str, PackageAttribution] = {}
    for pkg in packages:
        attributions[pkg.name] = PackageAttribution(
            package=pkg.name,
            last_tag=last_tags[pkg.name],
            local_commits=local[pkg.name],
            global_commits=global_[pkg.name],
        )
        print(
            f"  {pkg.name}: {len(local[pkg.name])} local, "
            f"{len(global_[pkg.name])} global since "
            f"{last_tags[pkg.name] or '<first commit>'}"
        )
    return attributions
