"""Shell and terminal output utilities.

Provides thin wrappers around subprocess calls for git, gh and pnpm, plus
the output helpers used to report progress during a release.
"""

from __future__ import annotations

import os
import subprocess
import sys
from collections.abc import Mapping
from pathlib import Path

from .errors import CommandError

_verbose = False


def set_verbose(enabled: bool) -> None:
    """Turn verbose() output on or off for the rest of the process."""
    global _verbose
    _verbose = enabled


def run(
    *args: str,
    cwd: Path | str | None = None,
    env: Mapping[str, str] | None = None,
    check: bool = True,
) -> subprocess.CompletedProcess[str]:
    """Run a command and capture its output.

    Args:
        *args: Command and arguments (e.g., "pnpm", "publish").
        cwd: Working directory, defaults to the current directory.
        env: Extra environment variables layered over os.environ.
        check: If True (default), raise CommandError on non-zero exit.

    Returns:
        CompletedProcess with text stdout/stderr.
    """
    full_env = {**os.environ, **env} if env else None
    result = subprocess.run(
        list(args), cwd=cwd, env=full_env, capture_output=True, text=True
    )
    if check and result.returncode != 0:
        raise CommandError(args, result.returncode, result.stderr or result.stdout)
    return result


def git(*args: str, cwd: Path | str | None = None, check: bool = True) -> str:
    """Run a git command and return stripped stdout.

    Args:
        *args: Arguments to pass to git (e.g., "status", "--porcelain").
        cwd: Repository directory, defaults to the current directory.
        check: If True (default), raise on non-zero exit. Set to False
               for commands that may legitimately fail (e.g., tag lookup).
    """
    return run("git", *args, cwd=cwd, check=check).stdout.strip()


def gh(*args: str, cwd: Path | str | None = None, check: bool = True) -> str:
    """Run a GitHub CLI command and return stripped stdout."""
    return run("gh", *args, cwd=cwd, check=check).stdout.strip()


def step(msg: str) -> None:
    """Print a visually distinct step header.

    Used to separate major phases of a release in terminal output.
    """
    print(f"\n{'─' * 60}\n{msg}\n{'─' * 60}")


def item(msg: str) -> None:
    """Print an indented progress line."""
    print(f"  {msg}")


def verbose(msg: str) -> None:
    """Print a diagnostic line, only when verbose mode is enabled."""
    if _verbose:
        print(f"  · {msg}")


def warn(msg: str) -> None:
    """Print a warning to stderr."""
    print(f"WARNING: {msg}", file=sys.stderr)
