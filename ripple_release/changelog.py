"""Per-package CHANGELOG.md maintenance.

Each release adds a section at the top of the package's changelog:

    ## [1.3.0](https://github.com/o/r/compare/core@1.2.0...core@1.3.0) (2024-05-01)

    ### Features

    - **api:** add endpoint ([abc1234](https://github.com/o/r/commit/abc1234...))

Rerunning a release for the same version replaces its section instead of
adding a second one, so an updated release PR never duplicates entries.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from datetime import date as Date
from pathlib import Path

from .models import CommitRecord, PackageRelease
from .shell import item, verbose
from .vcs import format_tag

CHANGELOG = "CHANGELOG.md"

# Section title per commit type, in display order
GROUPS = {
    "feat": "Features",
    "fix": "Bug Fixes",
    "perf": "Performance",
}
OTHER_GROUP = "Other Changes"

SECTION_RE = re.compile(r"^## \[?(?P<version>[^\]\s()]+)\]?")


def _unique(commits: Iterable[CommitRecord]) -> list[CommitRecord]:
    seen: set[str] = set()
    result = []
    for commit in commits:
        if commit.hash not in seen:
            seen.add(commit.hash)
            result.append(commit)
    return result


def format_commit(commit: CommitRecord, repository: str | None = None) -> str:
    """One bullet line for a commit."""
    scope = f"**{commit.scope}:** " if commit.scope else ""
    breaking = "**BREAKING** " if commit.is_breaking else ""
    ref = commit.short_hash
    if repository:
        url = f"https://github.com/{repository}/commit/{commit.hash}"
        ref = f"[{commit.short_hash}]({url})"
    return f"- {breaking}{scope}{commit.description} ({ref})"


def group_commits(commits: Sequence[CommitRecord]) -> dict[str, list[CommitRecord]]:
    """Group commits under their section title, known types first.

    Conventional commits of other types and non-conventional commits land
    in "Other Changes". Empty groups are omitted.
    """
    groups: dict[str, list[CommitRecord]] = {title: [] for title in GROUPS.values()}
    groups[OTHER_GROUP] = []
    for commit in commits:
        groups[GROUPS.get(commit.type, OTHER_GROUP)].append(commit)
    return {title: items for title, items in groups.items() if items}


def render_entry(
    package: str,
    version: str,
    commits: Sequence[CommitRecord],
    *,
    previous_version: str | None = None,
    repository: str | None = None,
    date: Date | None = None,
) -> str:
    """Render the changelog section for one release."""
    day = (date or Date.today()).isoformat()
    if repository and previous_version:
        compare = (
            f"https://github.com/{repository}/compare/"
            f"{format_tag(package, previous_version)}...{format_tag(package, version)}"
        )
        heading = f"## [{version}]({compare}) ({day})"
    else:
        heading = f"## {version} ({day})"

    lines = [heading]
    grouped = group_commits(_unique(commits))
    if not grouped:
        lines += ["", "- Dependency updates only."]
    for title, group in grouped.items():
        lines += ["", f"### {title}", ""]
        lines += [format_commit(c, repository) for c in group]
    return "\n".join(lines) + "\n"


def _section_bounds(lines: list[str], version: str) -> tuple[int, int] | None:
    start = None
    for i, line in enumerate(lines):
        match = SECTION_RE.match(line)
        if not match:
            continue
        if start is not None:
            return start, i
        if match["version"] == version:
            start = i
    return (start, len(lines)) if start is not None else None


def insert_entry(existing: str | None, package: str, version: str, entry: str) -> str:
    """Place a rendered entry into changelog text.

    Creates the file content with a ``# package`` title when there is none,
    replaces an existing section for the same version, and otherwise puts
    the entry above the newest section.
    """
    if not existing or not existing.strip():
        return f"# {package}\n\n{entry}"

    lines = existing.splitlines()
    entry_lines = entry.rstrip("\n").splitlines()

    bounds = _section_bounds(lines, version)
    if bounds is not None:
        start, end = bounds
        tail = lines[end:]
        lines = lines[:start] + entry_lines + ([""] if tail else []) + tail
        return "\n".join(lines).rstrip("\n") + "\n"

    first = next((i for i, line in enumerate(lines) if SECTION_RE.match(line)), None)
    if first is None:
        head = "\n".join(lines).rstrip("\n")
        return f"{head}\n\n{entry}"
    head = "\n".join(lines[:first]).rstrip("\n")
    rest = "\n".join(lines[first:]).rstrip("\n")
    return f"{head}\n\n{entry}\n{rest}\n"


def update_changelog(
    root: Path,
    release: PackageRelease,
    commits: Sequence[CommitRecord],
    *,
    repository: str | None = None,
    date: Date | None = None,
    dry_run: bool = False,
) -> Path:
    """Write the release's section into the package's CHANGELOG.md.

    Returns:
        Path of the changelog (written, or that would be in dry-run).
    """
    path = root / release.package.path / CHANGELOG
    previous = release.current_version if release.current_version != "0.0.0" else None
    entry = render_entry(
        release.package.name,
        release.new_version,
        commits,
        previous_version=previous,
        repository=repository,
        date=date,
    )
    existing = path.read_text() if path.exists() else None
    content = insert_entry(existing, release.package.name, release.new_version, entry)

    if dry_run:
        item(f"[dry-run] Would update {path.relative_to(root)}")
        return path
    path.write_text(content)
    verbose(f"Updated {path.relative_to(root)}")
    return path
