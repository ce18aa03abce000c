"""Git operations used by the release workflows.

Every call goes through shell.git so tests can patch a single function.
Mutating operations are skipped (and logged) in dry-run mode.
"""

from __future__ import annotations

from pathlib import Path

from .commits import parse_commit
from .errors import CommandError, VCSError
from .models import CommitRecord
from .shell import git, item, verbose
from .versions import is_valid_version

# ASCII unit/record separators keep commit bodies intact when splitting
FIELD_SEP = "\x1f"
RECORD_SEP = "\x1e"
LOG_FORMAT = f"%H{FIELD_SEP}%h{FIELD_SEP}%ct{FIELD_SEP}%B{RECORD_SEP}"


def format_tag(name: str, version: str) -> str:
    """Release tag for a package version, e.g. "@scope/core@1.2.0"."""
    return f"{name}@{version}"


def _ref_range(from_ref: str | None, to_ref: str) -> str:
    return f"{from_ref}..{to_ref}" if from_ref else to_ref


class Git:
    """Git repository rooted at the workspace.

    Attributes:
        root: Repository root directory.
        dry_run: When True, commands that change the repository or the
                 remote are printed instead of executed.
    """

    def __init__(self, root: Path | str = ".", *, dry_run: bool = False) -> None:
        self.root = Path(root)
        self.dry_run = dry_run

    def _run(self, operation: str, *args: str, check: bool = True) -> str:
        try:
            return git(*args, cwd=self.root, check=check)
        except CommandError as exc:
            raise VCSError(operation, exc.stderr or str(exc)) from exc

    def _run_if_not_dry(self, operation: str, *args: str) -> str:
        if self.dry_run:
            item(f"[dry-run] git {' '.join(args)}")
            return ""
        return self._run(operation, *args)

    # Tags

    def package_tags(self, name: str) -> list[str]:
        """Release tags for a package, highest version first."""
        out = self._run(
            "tag", "tag", "--list", f"{name}@*", "--sort=-v:refname", check=False
        )
        prefix = f"{name}@"
        return [
            tag
            for tag in out.splitlines()
            if tag.startswith(prefix) and is_valid_version(tag[len(prefix):])
        ]

    def most_recent_tag(self, name: str) -> str | None:
        """Most recent release tag for a package, or None if never released."""
        tags = self.package_tags(name)
        return tags[0] if tags else None

    def tag_timestamp(self, tag: str) -> int:
        """Commit timestamp of the commit a tag points at."""
        out = self._run("log", "log", "-1", "--format=%ct", tag)
        return int(out) if out else 0

    def create_and_push_tag(self, tag: str) -> None:
        self._run_if_not_dry("tag", "tag", tag)
        self._run_if_not_dry("push", "push", "origin", tag)

    # History

    def commits(
        self,
        from_ref: str | None = None,
        to_ref: str = "HEAD",
        folder: str | None = None,
    ) -> list[CommitRecord]:
        """List commits in ``(from_ref, to_ref]``, newest first.

        Args:
            from_ref: Exclusive lower bound; None means the start of history.
            to_ref: Inclusive upper bound.
            folder: Restrict to commits touching this directory.
        """
        args = ["log", f"--format={LOG_FORMAT}", _ref_range(from_ref, to_ref)]
        if folder:
            args += ["--", folder]
        out = self._run("log", *args)

        commits: list[CommitRecord] = []
        for record in out.split(RECORD_SEP):
            record = record.strip("\n")
            if not record:
                continue
            full, short, timestamp, message = record.split(FIELD_SEP, 3)
            commits.append(
                parse_commit(full, message, int(timestamp or 0), short_hash=short)
            )
        return commits

    def changed_files(
        self, from_ref: str | None = None, to_ref: str = "HEAD"
    ) -> dict[str, tuple[str, ...]]:
        """Map every commit in ``(from_ref, to_ref]`` to the files it touched.

        One git call regardless of the number of commits.
        """
        out = self._run(
            "log",
            "log",
            "--name-only",
            f"--format={RECORD_SEP}%H",
            _ref_range(from_ref, to_ref),
        )
        files: dict[str, tuple[str, ...]] = {}
        for record in out.split(RECORD_SEP):
            lines = [line.strip() for line in record.splitlines() if line.strip()]
            if lines:
                files[lines[0]] = tuple(lines[1:])
        verbose(f"Fetched file lists for {len(files)} commits in one call")
        return files

    def read_file(self, path: str, ref: str) -> str | None:
        """Read a file at an arbitrary ref without checking it out."""
        result = git("show", f"{ref}:{path}", cwd=self.root, check=False)
        return result or None

    # Working tree and branches

    def is_clean(self) -> bool:
        return self._run("status", "status", "--porcelain") == ""

    def current_branch(self) -> str:
        return self._run("rev-parse", "rev-parse", "--abbrev-ref", "HEAD")

    def default_branch(self) -> str:
        """Default branch from origin/HEAD, falling back to "main"."""
        ref = self._run(
            "symbolic-ref", "symbolic-ref", "refs/remotes/origin/HEAD", check=False
        )
        prefix = "refs/remotes/origin/"
        return ref[len(prefix):] if ref.startswith(prefix) else "main"

    def branch_exists(self, branch: str) -> bool:
        try:
            git("rev-parse", "--verify", branch, cwd=self.root)
        except CommandError:
            return False
        return True

    def head_sha(self, ref: str = "HEAD") -> str:
        return self._run("rev-parse", "rev-parse", ref)

    def create_branch(self, branch: str, base: str) -> None:
        item(f"Creating branch {branch} from {base}")
        self._run_if_not_dry("checkout", "checkout", "-b", branch, base)

    def checkout(self, branch: str) -> None:
        item(f"Switching to branch {branch}")
        self._run_if_not_dry("checkout", "checkout", branch)

    def switch_to(self, branch: str) -> None:
        """Check out ``branch`` to read it, also in dry-run mode."""
        item(f"Switching to branch {branch}")
        self._run("checkout", "checkout", branch)

    def rebase(self, onto: str) -> None:
        item(f"Rebasing onto {onto}")
        self._run_if_not_dry("rebase", "rebase", onto)

    def commit_all(self, message: str) -> bool:
        """Stage everything and commit. Returns False when nothing changed."""
        self._run_if_not_dry("add", "add", "--all")
        if self.dry_run or self.is_clean():
            return False
        item(f"Committing: {message}")
        self._run("commit", "commit", "-m", message)
        return True

    def push(self, branch: str, *, force_with_lease: bool = False) -> None:
        args = ["push", "origin", branch]
        if force_with_lease:
            args.append("--force-with-lease")
        item(f"Pushing branch {branch}")
        self._run_if_not_dry("push", *args)
