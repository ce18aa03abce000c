"""Workspace package discovery.

Member globs are read from, in order of preference:

1. ``pnpm-workspace.yaml`` (``packages:`` list)
2. the root ``package.json`` ``workspaces`` field (array, or an object
   with a ``packages`` array as used by Yarn)
3. ``[workspace].members`` in ripple-release.toml

A pattern starting with ``!`` excludes matching directories. Every
matched directory that holds a package.json becomes a Package.
"""

from __future__ import annotations

import glob
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import yaml

from .config import PackageFilter
from .errors import WorkspaceError
from .manifests import MANIFEST, load_manifest, workspace_dependencies
from .models import Package
from .shell import item, step, verbose

PNPM_WORKSPACE = "pnpm-workspace.yaml"
DEFAULT_VERSION = "0.0.0"


def read_pnpm_globs(root: Path) -> list[str] | None:
    """Read member globs from pnpm-workspace.yaml, or None if absent."""
    path = root / PNPM_WORKSPACE
    if not path.exists():
        return None
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:
        raise WorkspaceError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise WorkspaceError(f"{path} must contain a mapping")
    return [str(p) for p in data.get("packages") or []]


def read_npm_globs(root: Path) -> list[str] | None:
    """Read member globs from the root package.json "workspaces" field."""
    path = root / MANIFEST
    if not path.exists():
        return None
    workspaces: Any = load_manifest(path).get("workspaces")
    if isinstance(workspaces, dict):
        workspaces = workspaces.get("packages")
    if not isinstance(workspaces, list):
        return None
    return [str(p) for p in workspaces]


def member_globs(root: Path, fallback: Sequence[str] = ()) -> list[str]:
    """Resolve the workspace member patterns.

    Raises:
        WorkspaceError: If no source declares any members.
    """
    readers = ((PNPM_WORKSPACE, read_pnpm_globs), (MANIFEST, read_npm_globs))
    for source, reader in readers:
        globs = reader(root)
        if globs:
            verbose(f"Workspace members from {source}: {', '.join(globs)}")
            return globs
    if fallback:
        verbose(f"Workspace members from config: {', '.join(fallback)}")
        return list(fallback)
    raise WorkspaceError(
        "No workspace members found",
        hint=(
            f"Declare members in {PNPM_WORKSPACE}, in the root {MANIFEST} "
            '"workspaces" field, or under [workspace] members in '
            "ripple-release.toml."
        ),
    )


def expand_globs(root: Path, patterns: Sequence[str]) -> list[Path]:
    """Expand member patterns into package directories.

    Negated patterns are applied after all positive ones, as pnpm does.
    Only directories holding a package.json are returned, sorted.
    """
    included: set[Path] = set()
    excluded: set[Path] = set()
    for pattern in patterns:
        negated = pattern.startswith("!")
        pattern = pattern[1:] if negated else pattern
        pattern = pattern.strip().rstrip("/")
        if pattern.startswith("./"):
            pattern = pattern[2:]
        matches = {
            Path(match)
            for match in glob.glob(str(root / pattern), recursive=True)
            if Path(match).is_dir()
        }
        (excluded if negated else included).update(matches)

    return sorted(
        d
        for d in included - excluded
        if (d / MANIFEST).is_file() and "node_modules" not in d.parts
    )


def read_package(root: Path, directory: Path) -> tuple[Package, dict[str, Any]]:
    """Build a Package (without dependencies) and return its raw manifest."""
    manifest = load_manifest(directory / MANIFEST)
    name = manifest.get("name") or directory.name
    package = Package(
        name=name,
        version=manifest.get("version") or DEFAULT_VERSION,
        path=directory.relative_to(root).as_posix(),
        private=bool(manifest.get("private", False)),
    )
    return package, manifest


def apply_filter(packages: list[Package], filter_: PackageFilter) -> list[Package]:
    """Keep the packages selected by include/exclude/exclude-private.

    Raises:
        WorkspaceError: If an included name is not a workspace package.
    """
    names = {pkg.name for pkg in packages}
    missing = sorted(set(filter_.include) - names)
    if missing:
        raise WorkspaceError(
            f"Included packages not found in workspace: {', '.join(missing)}"
        )

    selected = []
    for pkg in packages:
        if filter_.include and pkg.name not in filter_.include:
            continue
        if pkg.name in filter_.exclude:
            verbose(f"{pkg.name}: excluded")
            continue
        if filter_.exclude_private and pkg.private:
            verbose(f"{pkg.name}: excluded (private)")
            continue
        selected.append(pkg)
    return selected


def discover_packages(
    root: Path,
    *,
    fallback_globs: Sequence[str] = (),
    filter_: PackageFilter | None = None,
) -> list[Package]:
    """Scan the workspace and return its packages, sorted by name.

    Dependencies are resolved against every discovered package before the
    filter is applied, so a filtered-out package still counts as
    in-workspace for the others.

    Raises:
        WorkspaceError: If no packages are found, a manifest cannot be read,
            or two packages share a name.
    """
    step("Discovering workspace packages")

    directories = expand_globs(root, member_globs(root, fallback_globs))
    if not directories:
        raise WorkspaceError("No packages found matching workspace members")

    # First pass: names and versions
    raw: dict[str, tuple[Package, dict[str, Any]]] = {}
    for directory in directories:
        package, manifest = read_package(root, directory)
        if package.name in raw:
            raise WorkspaceError(
                f"Duplicate package name {package.name!r} in "
                f"{raw[package.name][0].path} and {package.path}"
            )
        raw[package.name] = (package, manifest)

    # Second pass: keep only dependencies on other workspace packages
    packages: list[Package] = []
    for name in sorted(raw):
        package, manifest = raw[name]
        deps, dev_deps = workspace_dependencies(manifest, set(raw) - {name})
        packages.append(
            package.model_copy(
                update={"dependencies": deps, "dev_dependencies": dev_deps}
            )
        )

    if filter_ is not None:
        packages = apply_filter(packages, filter_)

    for pkg in packages:
        deps = sorted(pkg.all_dependencies)
        suffix = f" → [{', '.join(deps)}]" if deps else ""
        private = " (private)" if pkg.private else ""
        item(f"{pkg.name} {pkg.version} ({pkg.path}){private}{suffix}")

    return packages
