"""CLI entry point for ripple-release."""

from __future__ import annotations

import os
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

import click

from .attribution import GlobalCommitMode
from .config import ReleaseConfig, load_config
from .errors import ReleaseError
from .pipeline import run_plan, run_prepare, run_publish, run_verify
from .prompts import TerminalPrompt
from .shell import set_verbose

T = TypeVar("T")


def _fail(exc: ReleaseError) -> click.ClickException:
    message = exc.message
    if exc.hint:
        message += f"\nHint: {exc.hint}"
    return click.ClickException(message)


def _call(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a workflow, turning ReleaseError into a clean CLI failure."""
    try:
        return fn(*args, **kwargs)
    except ReleaseError as exc:
        raise _fail(exc) from exc


def _config(ctx: click.Context, **overrides: Any) -> ReleaseConfig:
    options = ctx.obj
    nested: dict[str, Any] = {}
    for section, values in overrides.items():
        values = {k: v for k, v in values.items() if v is not None}
        if values:
            nested[section] = values
    return _call(
        load_config,
        options["root"],
        config_path=options["config_path"],
        dry_run=options["dry_run"] or None,
        global_commit_mode=options["global_commit_mode"],
        **nested,
    )


def _interactive() -> bool:
    return sys.stdin.isatty() and not os.environ.get("CI")


@click.group()
@click.version_option(package_name="ripple-release")
@click.option(
    "-C",
    "--root",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Workspace root (defaults to the current directory).",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Config file (defaults to ripple-release.toml in the root).",
)
@click.option(
    "--global-commits",
    "global_commit_mode",
    type=click.Choice([mode.value for mode in GlobalCommitMode]),
    default=None,
    help="Which commits outside package directories count towards releases.",
)
@click.option("--dry-run", is_flag=True, help="Print changes instead of making them.")
@click.option("-v", "--verbose", is_flag=True, help="Show diagnostic output.")
@click.pass_context
def cli(
    ctx: click.Context,
    root: Path | None,
    config_path: Path | None,
    global_commit_mode: str | None,
    dry_run: bool,
    verbose: bool,
) -> None:
    """Version and publish the packages of a pnpm/npm workspace.

    Versions follow conventional commits; packages that depend on a
    released package get a patch release too.
    """
    set_verbose(verbose)
    ctx.obj = {
        "root": root,
        "config_path": config_path,
        "global_commit_mode": global_commit_mode,
        "dry_run": dry_run,
    }


@cli.command()
@click.pass_context
def plan(ctx: click.Context) -> None:
    """Show the next versions and publish order without changing anything."""
    config = _config(ctx)
    _call(run_plan, config)


@cli.command()
@click.option(
    "-y", "--yes", is_flag=True, help="Accept suggested versions without prompting."
)
@click.option(
    "--release-branch", default=None, help="Branch the release PR is opened from."
)
@click.pass_context
def prepare(ctx: click.Context, yes: bool, release_branch: str | None) -> None:
    """Write the next versions to a release branch and open a pull request."""
    config = _config(ctx, branch={"release": release_branch})
    prompt = None if yes or not _interactive() else TerminalPrompt()
    result = _call(run_prepare, config, prompt=prompt)
    if result is None:
        click.echo("\nNothing to release.")
    elif result.pull_request is not None:
        click.echo(f"\n✓ Release PR: {result.pull_request.url}")


@cli.command()
@click.option("--release-branch", default=None, help="Branch of the release PR.")
@click.pass_context
def verify(ctx: click.Context, release_branch: str | None) -> None:
    """Check that the release PR matches the current default branch."""
    config = _config(ctx, branch={"release": release_branch})
    result = _call(run_verify, config)
    if not result.ok:
        raise click.ClickException(
            f"Release PR is out of sync ({len(result.problems)} problem(s)). "
            "Re-run `ripple-release prepare`."
        )


@cli.command()
@click.option("--otp", default=None, help="One-time password for npm 2FA.")
@click.option("--tag", default=None, help="dist-tag to publish under.")
@click.option(
    "--provenance/--no-provenance", default=None, help="Publish with provenance."
)
@click.pass_context
def publish(
    ctx: click.Context, otp: str | None, tag: str | None, provenance: bool | None
) -> None:
    """Publish package versions missing from the registry, then tag them."""
    config = _config(ctx, npm={"otp": otp, "tag": tag, "provenance": provenance})
    result = _call(run_publish, config)
    click.echo(f"\n✓ Published {len(result.published)} package(s)")
