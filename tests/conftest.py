"""Shared test fixtures."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from ripple_release.commits import parse_commit
from ripple_release.models import CommitRecord, Package

WriteManifest = Callable[..., Path]


def make_commit(
    message: str,
    hash: str = "a" * 40,
    timestamp: int = 0,
    files: tuple[str, ...] | None = None,
) -> CommitRecord:
    """Build a parsed commit, optionally with its file list attached."""
    commit = parse_commit(hash, message, timestamp)
    if files is not None:
        commit = commit.model_copy(update={"changed_files": files})
    return commit


class FakeCommitSource:
    """In-memory stand-in for vcs.Git used by attribution tests.

    Attributes:
        tags: Map of package name → last release tag.
        timestamps: Map of tag → commit timestamp.
        history: Every commit, newest first, with changed_files set.
    """

    def __init__(
        self,
        tags: dict[str, str] | None = None,
        timestamps: dict[str, int] | None = None,
        history: list[CommitRecord] | None = None,
    ) -> None:
        self.tags = tags or {}
        self.timestamps = timestamps or {}
        self.history = history or []
        self.changed_files_calls = 0

    def most_recent_tag(self, name: str) -> str | None:
        return self.tags.get(name)

    def tag_timestamp(self, tag: str) -> int:
        return self.timestamps[tag]

    def _since(self, from_ref: str | None) -> list[CommitRecord]:
        cutoff = self.timestamps[from_ref] if from_ref else -1
        return [c for c in self.history if c.timestamp > cutoff]

    def commits(
        self,
        from_ref: str | None = None,
        to_ref: str = "HEAD",
        folder: str | None = None,
    ) -> list[CommitRecord]:
        commits = self._since(from_ref)
        if folder:
            commits = [
                c
                for c in commits
                if any(f.startswith(f"{folder}/") for f in c.changed_files or ())
            ]
        return [c.model_copy(update={"changed_files": None}) for c in commits]

    def changed_files(
        self, from_ref: str | None = None, to_ref: str = "HEAD"
    ) -> dict[str, tuple[str, ...]]:
        self.changed_files_calls += 1
        return {c.hash: c.changed_files or () for c in self._since(from_ref)}


@pytest.fixture
def sample_packages() -> list[Package]:
    """core ← utils ← app, plus an unrelated logger."""
    return [
        Package(
            name="app",
            version="2.0.0",
            path="packages/app",
            dependencies=frozenset({"utils"}),
        ),
        Package(name="core", version="1.0.0", path="packages/core"),
        Package(name="logger", version="0.3.0", path="packages/logger"),
        Package(
            name="utils",
            version="1.1.0",
            path="packages/utils",
            dependencies=frozenset({"core"}),
        ),
    ]


@pytest.fixture
def write_manifest(tmp_path: Path) -> WriteManifest:
    """Write packages/<dir>/package.json under tmp_path and return its path."""

    def write(directory: str, **fields: Any) -> Path:
        path = tmp_path / directory / "package.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(fields, indent=2) + "\n")
        return path

    return write


@pytest.fixture
def pnpm_workspace(tmp_path: Path, write_manifest: WriteManifest) -> Path:
    """A pnpm workspace with core, utils (→ core) and a private app (→ utils)."""
    (tmp_path / "pnpm-workspace.yaml").write_text("packages:\n  - 'packages/*'\n")
    write_manifest("", name="root", private=True)
    write_manifest("packages/core", name="core", version="1.0.0")
    write_manifest(
        "packages/utils",
        name="utils",
        version="1.1.0",
        dependencies={"core": "workspace:^1.0.0", "left-pad": "^1.3.0"},
    )
    write_manifest(
        "packages/app",
        name="app",
        version="2.0.0",
        private=True,
        dependencies={"utils": "^1.1.0"},
        devDependencies={"core": "workspace:*"},
    )
    return tmp_path
