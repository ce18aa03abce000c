"""Persisted version overrides.

Humans can pin a package to a version other than the suggested one. The
choice is stored in a small JSON file so the next run (and CI) reproduces
it:

    {"logger": {"version": "4.0.0", "type": "minor"}}

Overrides are pruned once the pinned version has actually been released.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from pathlib import Path

from pydantic import ValidationError

from .models import BumpKind, VersionOverride
from .shell import item, verbose, warn
from .versions import compare_versions, is_valid_version

DEFAULT_OVERRIDES_PATH = ".github/ripple-release.overrides.json"


def parse_overrides(text: str | None) -> dict[str, VersionOverride]:
    """Parse override JSON, returning {} when it is missing or malformed."""
    if not text:
        return {}
    try:
        raw = json.loads(text)
        if not isinstance(raw, dict):
            raise ValueError("expected a JSON object")
        return {
            name: VersionOverride.model_validate(value) for name, value in raw.items()
        }
    except (ValueError, ValidationError) as exc:
        warn(f"Ignoring malformed overrides file: {exc}")
        return {}


def dump_overrides(overrides: Mapping[str, VersionOverride]) -> str:
    """Serialize overrides as sorted, two-space indented JSON."""
    data = {
        name: overrides[name].model_dump(mode="json", by_alias=True)
        for name in sorted(overrides)
    }
    return json.dumps(data, indent=2) + "\n"


class OverrideStore:
    """Reads and writes the overrides file of one workspace.

    Attributes:
        path: Location of the JSON file.
        dry_run: When True, nothing is written or deleted.
    """

    def __init__(self, path: Path, *, dry_run: bool = False) -> None:
        self.path = path
        self.dry_run = dry_run

    def load(self) -> dict[str, VersionOverride]:
        if not self.path.exists():
            verbose(f"No overrides file at {self.path}")
            return {}
        overrides = parse_overrides(self.path.read_text())
        verbose(f"Loaded {len(overrides)} override(s) from {self.path}")
        return overrides

    def save(self, overrides: Mapping[str, VersionOverride]) -> bool:
        """Persist the mapping, deleting the file when it is empty.

        Returns:
            True if the file on disk changed (or would change in dry-run).
        """
        if not overrides:
            return self.remove()

        content = dump_overrides(overrides)
        if self.path.exists() and self.path.read_text() == content:
            verbose("Overrides unchanged, skipping write")
            return False
        if self.dry_run:
            item(f"[dry-run] Would write {len(overrides)} override(s)")
            return True

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(content)
        item(f"Wrote {len(overrides)} override(s) to {self.path}")
        return True

    def merge(
        self, name: str, override: VersionOverride
    ) -> dict[str, VersionOverride]:
        """Record one human choice on top of what is on disk and persist it."""
        overrides = self.load()
        overrides[name] = override
        self.save(overrides)
        return overrides

    def remove(self) -> bool:
        if not self.path.exists():
            return False
        if self.dry_run:
            item(f"[dry-run] Would remove {self.path}")
            return True
        self.path.unlink()
        item(f"Removed {self.path}")
        return True


def prune_overrides(
    overrides: Mapping[str, VersionOverride],
    released: Mapping[str, str],
) -> dict[str, VersionOverride]:
    """Drop overrides satisfied by a released version.

    Args:
        overrides: Current override mapping.
        released: Map of package name → version now on the registry.

    Returns:
        The overrides whose pinned version has not been reached yet.

    Example:
        {"a": 2.0.0 (minor)} with released {"a": "2.0.0"} → {}
    """
    remaining: dict[str, VersionOverride] = {}
    for name, override in overrides.items():
        version = released.get(name)
        if (
            version is not None
            and is_valid_version(override.version)
            and compare_versions(version, override.version) >= 0
        ):
            verbose(f"{name}: override {override.version} satisfied by {version}")
            continue
        remaining[name] = override
    return remaining


def drop_stale(
    overrides: Mapping[str, VersionOverride],
    current: Mapping[str, str],
) -> dict[str, VersionOverride]:
    """Drop overrides already reached by the version in the manifests.

    An override left behind by a release that skipped pruning would pin a
    package to the version it already has. "As-is" overrides (bump "none"
    at the current version) are kept since that pin is intentional.
    """
    remaining: dict[str, VersionOverride] = {}
    for name, override in overrides.items():
        version = current.get(name)
        if version is None or not is_valid_version(override.version):
            remaining[name] = override
            continue
        order = compare_versions(version, override.version)
        if order > 0 or (order == 0 and override.bump is not BumpKind.NONE):
            verbose(f"{name}: dropping stale override {override.version}")
            continue
        remaining[name] = override
    return remaining
