"""Interactive version selection on the terminal."""

from __future__ import annotations

from collections.abc import Sequence

import click

from .calculate import VersionChoice
from .commits import classify_commit
from .models import BumpKind, CommitRecord, Package, VersionOverride
from .versions import bump_version, is_valid_version

CHOICES = ("suggested", "major", "minor", "patch", "as-is", "skip", "custom")
# Choices whose bump can be reused for the remaining packages
REUSABLE = {"major": BumpKind.MAJOR, "minor": BumpKind.MINOR, "patch": BumpKind.PATCH}


def _summarize(commits: Sequence[CommitRecord], limit: int = 10) -> None:
    for commit in commits[:limit]:
        bump = classify_commit(commit)
        marker = f" [{bump.value}]" if bump is not BumpKind.NONE else ""
        click.echo(f"    {commit.short_hash} {commit.description}{marker}")
    if len(commits) > limit:
        click.echo(f"    … and {len(commits) - limit} more")


def _custom_version(default: str) -> str:
    while True:
        value = click.prompt("  New version", default=default).strip()
        if is_valid_version(value):
            return value
        click.echo(f"  {value!r} is not a valid semver version")


class TerminalPrompt:
    """Asks for each package's version with click prompts.

    Satisfies calculate.VersionPrompt.
    """

    def __call__(
        self,
        package: Package,
        suggested: str,
        commits: Sequence[CommitRecord],
        *,
        override: VersionOverride | None,
        remaining: int,
    ) -> VersionChoice | None:
        click.echo()
        click.echo(f"{package.name} {package.version} → {suggested}")
        if override is not None:
            click.echo(f"  (pinned by override: {override.version})")
        _summarize(commits)

        default = "skip" if suggested == package.version else "suggested"
        answer = click.prompt(
            "  Version", type=click.Choice(CHOICES), default=default, show_choices=True
        )

        if answer == "skip":
            return None
        if answer == "suggested":
            return VersionChoice(version=suggested)
        if answer == "as-is":
            return VersionChoice(version=package.version)
        if answer == "custom":
            return VersionChoice(version=_custom_version(suggested))

        version = bump_version(package.version, REUSABLE[answer])
        apply_to_all = remaining > 1 and click.confirm(
            f"  Apply a {answer} bump to the {remaining - 1} remaining package(s)?",
            default=False,
        )
        return VersionChoice(version=version, apply_to_all=apply_to_all)
