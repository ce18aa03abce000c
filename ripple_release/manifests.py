"""package.json reading and rewriting.

A release rewrites each updated package's manifest: its own "version"
field, plus every in-workspace dependency range that points at another
updated package. JSON key order is preserved and files are written back
with two-space indentation and a trailing newline, the way npm and pnpm
write them.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from .errors import WorkspaceError
from .models import PackageRelease
from .shell import item, verbose
from .versions import next_range, satisfies

MANIFEST = "package.json"

# Sections that declare dependency ranges, in the order npm writes them
DEPENDENCY_FIELDS = ("dependencies", "devDependencies", "peerDependencies")


def parse_manifest(text: str, source: str = MANIFEST) -> dict[str, Any]:
    """Parse package.json content.

    Raises:
        WorkspaceError: If the content is not a JSON object.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise WorkspaceError(f"Invalid JSON in {source}: {exc}") from exc
    if not isinstance(data, dict):
        raise WorkspaceError(f"{source} must contain a JSON object")
    return data


def load_manifest(path: Path) -> dict[str, Any]:
    """Load a package.json file into a dict (key order preserved)."""
    try:
        text = path.read_text()
    except OSError as exc:
        raise WorkspaceError(f"Cannot read {path}: {exc}") from exc
    return parse_manifest(text, str(path))


def dump_manifest(data: Mapping[str, Any]) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def save_manifest(path: Path, data: Mapping[str, Any]) -> None:
    path.write_text(dump_manifest(data))


def dependency_ranges(manifest: Mapping[str, Any]) -> dict[str, dict[str, str]]:
    """Collect the declared ranges of every dependency section.

    Returns:
        Map of section name → {dependency name → range}. Missing or
        malformed sections are returned empty.
    """
    sections: dict[str, dict[str, str]] = {}
    for field in DEPENDENCY_FIELDS:
        value = manifest.get(field)
        sections[field] = (
            {k: v for k, v in value.items() if isinstance(v, str)}
            if isinstance(value, dict)
            else {}
        )
    return sections


def workspace_dependencies(
    manifest: Mapping[str, Any], known: Iterable[str]
) -> tuple[frozenset[str], frozenset[str]]:
    """Split a manifest's in-workspace dependencies into runtime and dev.

    Peer dependencies count as runtime dependencies. Names that are not
    workspace packages are ignored.

    Returns:
        Tuple of (runtime dependency names, dev dependency names).
    """
    names = set(known)
    sections = dependency_ranges(manifest)
    runtime = set(sections["dependencies"]) | set(sections["peerDependencies"])
    runtime &= names
    dev = set(sections["devDependencies"]) & names
    return frozenset(runtime), frozenset(dev)


def rewrite_manifest(
    manifest: Mapping[str, Any],
    package: str,
    new_version: str | None,
    target_versions: Mapping[str, str],
) -> dict[str, Any]:
    """Return a copy of a manifest with its version and ranges updated.

    Args:
        manifest: Parsed package.json.
        package: Name of the package (for error messages).
        new_version: New "version" value, or None to keep it.
        target_versions: Map of updated package name → new version. Only
                         ranges on these names are rewritten.

    Raises:
        RangeRewriteError: If a complex range excludes a new version.
    """
    updated = dict(manifest)
    if new_version is not None:
        updated["version"] = new_version

    for field, ranges in dependency_ranges(manifest).items():
        if not ranges:
            continue
        section = dict(manifest[field])
        for dep, old_range in ranges.items():
            if dep not in target_versions:
                continue
            new_range = next_range(
                old_range, target_versions[dep], package=package, dependency=dep
            )
            if new_range != old_range:
                verbose(f"{package}: {field}.{dep} {old_range} → {new_range}")
            section[dep] = new_range
        updated[field] = section
    return updated


def unsatisfied_ranges(
    manifest: Mapping[str, Any], target_versions: Mapping[str, str]
) -> list[tuple[str, str, str]]:
    """Find ranges on updated packages that exclude the new version.

    Returns:
        List of (dependency, range, new version) tuples.
    """
    problems: list[tuple[str, str, str]] = []
    for ranges in dependency_ranges(manifest).values():
        for dep, range_ in ranges.items():
            version = target_versions.get(dep)
            if version is not None and not satisfies(version, range_):
                problems.append((dep, range_, version))
    return problems


def apply_releases(
    root: Path, releases: Iterable[PackageRelease], *, dry_run: bool = False
) -> list[Path]:
    """Rewrite the manifest of every released package.

    Every new manifest is computed before any file is written, so a range
    that cannot be rewritten leaves the working tree untouched.

    Returns:
        Paths of the manifests written (or that would be, in dry-run).
    """
    releases = list(releases)
    targets = {r.package.name: r.new_version for r in releases}

    pending: list[tuple[Path, dict[str, Any]]] = []
    for release in releases:
        path = root / release.package.path / MANIFEST
        manifest = load_manifest(path)
        pending.append(
            (
                path,
                rewrite_manifest(
                    manifest, release.package.name, release.new_version, targets
                ),
            )
        )

    for (path, manifest), release in zip(pending, releases):
        label = (
            f"{release.package.name}: "
            f"{release.current_version} → {release.new_version}"
        )
        if dry_run:
            item(f"[dry-run] {label}")
            continue
        save_manifest(path, manifest)
        item(label)
    return [path for path, _ in pending]
