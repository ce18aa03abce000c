"""Conventional commit parsing and bump classification.

A commit header like ``feat(ui)!: drop IE support`` is split into type,
scope, breaking marker and description. Classification maps each commit
to the version bump it requires:

    breaking (``!`` or BREAKING CHANGE footer)  →  major
    feat                                        →  minor
    fix, perf                                   →  patch
    anything else, or non-conventional          →  none
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from .models import BumpKind, CommitRecord

HEADER_RE = re.compile(
    r"^(?P<type>[a-zA-Z]+)"
    r"(?:\((?P<scope>[^()]*)\))?"
    r"(?P<breaking>!)?: (?P<description>.+)$"
)
BREAKING_FOOTER_RE = re.compile(r"^BREAKING[ -]CHANGE: ", re.MULTILINE)


def parse_commit(
    hash: str, message: str, timestamp: int = 0, short_hash: str | None = None
) -> CommitRecord:
    """Parse a raw commit message into a CommitRecord.

    Only the first line is matched against the conventional header; the
    body is scanned for a BREAKING CHANGE footer.

    Examples:
        "feat(api): add endpoint" → type="feat", scope="api"
        "fix!: stop crashing" → type="fix", is_breaking=True
        "Update README" → is_conventional=False
    """
    header, _, body = message.strip().partition("\n")
    header = header.strip()
    match = HEADER_RE.match(header)
    short = short_hash or hash[:7]

    if not match:
        return CommitRecord(
            hash=hash,
            short_hash=short,
            description=header,
            timestamp=timestamp,
        )

    return CommitRecord(
        hash=hash,
        short_hash=short,
        type=match["type"].lower(),
        scope=match["scope"] or None,
        description=match["description"].strip(),
        is_breaking=bool(match["breaking"]) or bool(BREAKING_FOOTER_RE.search(body)),
        is_conventional=True,
        timestamp=timestamp,
    )


def classify_commit(commit: CommitRecord) -> BumpKind:
    """Map a single commit to the bump it requires."""
    if commit.is_breaking:
        return BumpKind.MAJOR
    if not commit.is_conventional or not commit.type:
        return BumpKind.NONE
    if commit.type == "feat":
        return BumpKind.MINOR
    if commit.type in ("fix", "perf"):
        return BumpKind.PATCH
    # Known non-release types and unknown types alike
    return BumpKind.NONE


def determine_highest_bump(commits: Iterable[CommitRecord]) -> BumpKind:
    """Reduce a set of commits to the most severe bump.

    Stops at the first breaking commit since nothing outranks major.
    An empty set yields BumpKind.NONE.
    """
    highest = BumpKind.NONE
    for commit in commits:
        bump = classify_commit(commit)
        if bump is BumpKind.MAJOR:
            return bump
        if bump > highest:
            highest = bump
    return highest
