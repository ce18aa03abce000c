"""GitHub pull requests and commit statuses through the gh CLI.

gh picks up GH_TOKEN or GITHUB_TOKEN from the environment, so the same
code runs locally and in Actions. ``{owner}/{repo}`` placeholders in
``gh api`` paths are filled in by gh from the current repository.
"""

from __future__ import annotations

import json
from collections.abc import Iterable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import CodeHostError, CommandError
from .models import PackageRelease
from .shell import gh, item

PR_FIELDS = "number,title,url,headRefName,headRefOid,baseRefName"
STATUS_STATES = ("error", "failure", "pending", "success")


class PullRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    number: int
    title: str = ""
    url: str = ""
    head_ref: str = Field(default="", alias="headRefName")
    head_sha: str = Field(default="", alias="headRefOid")
    base_ref: str = Field(default="", alias="baseRefName")


def pull_request_body(
    releases: Iterable[PackageRelease], intro: str | None = None
) -> str:
    """Render the release PR description.

    Example:
        | Package | Version | Reason |
        | --- | --- | --- |
        | `core` | 1.0.0 → 1.0.1 | patch |
        | `ui` | 1.0.0 → 1.0.1 | dependency update |
    """
    lines = [
        intro.strip() if intro else "This PR was opened by ripple-release.",
        "",
        "| Package | Version | Reason |",
        "| --- | --- | --- |",
    ]
    for r in releases:
        reason = r.bump.value if r.has_direct_changes else "dependency update"
        version = f"{r.current_version} → {r.new_version}"
        lines.append(f"| `{r.package.name}` | {version} | {reason} |")
    lines += ["", "Merging this PR and running `ripple-release publish` ships it."]
    return "\n".join(lines) + "\n"


class GitHub:
    """Pull request and commit status client.

    Attributes:
        dry_run: When True, mutating calls are printed instead of executed.
    """

    def __init__(self, *, dry_run: bool = False) -> None:
        self.dry_run = dry_run

    def _gh(self, operation: str, *args: str) -> str:
        try:
            return gh(*args)
        except CommandError as exc:
            raise CodeHostError(operation, exc.stderr or exc.message) from exc

    def repository(self) -> str:
        """Current repository as "owner/name"."""
        return self._gh(
            "repo view",
            "repo",
            "view",
            "--json",
            "nameWithOwner",
            "-q",
            ".nameWithOwner",
        )

    def find_pull_request(self, head: str) -> PullRequest | None:
        """Find the open pull request whose head branch is ``head``."""
        out = self._gh(
            "pr list",
            "pr",
            "list",
            "--head",
            head,
            "--state",
            "open",
            "--json",
            PR_FIELDS,
            "--limit",
            "1",
        )
        try:
            found = json.loads(out or "[]")
            return PullRequest.model_validate(found[0]) if found else None
        except (ValueError, IndexError, ValidationError) as exc:
            raise CodeHostError("pr list", f"unexpected output: {exc}") from exc

    def upsert_pull_request(
        self, *, head: str, base: str, title: str, body: str
    ) -> tuple[PullRequest | None, bool]:
        """Create the release PR, or update the open one.

        Returns:
            Tuple of (pull request, created). The pull request is None only
            in dry-run mode when none exists yet.
        """
        existing = self.find_pull_request(head)
        if existing is not None:
            if self.dry_run:
                item(f"[dry-run] Would update PR #{existing.number}")
                return existing, False
            self._gh(
                "pr edit",
                "pr",
                "edit",
                str(existing.number),
                "--title",
                existing.title or title,
                "--body",
                body,
            )
            return existing, False

        if self.dry_run:
            item(f"[dry-run] Would open PR {head} → {base}: {title}")
            return None, True
        self._gh(
            "pr create",
            "pr",
            "create",
            "--head",
            head,
            "--base",
            base,
            "--title",
            title,
            "--body",
            body,
        )
        created = self.find_pull_request(head)
        if created is None:
            raise CodeHostError("pr create", f"no open pull request found for {head}")
        return created, True

    def set_commit_status(
        self,
        sha: str,
        *,
        state: str,
        description: str,
        context: str,
        target_url: str | None = None,
    ) -> None:
        """Set a commit status on ``sha``.

        Raises:
            ValueError: If ``state`` is not a GitHub status state.
        """
        if state not in STATUS_STATES:
            raise ValueError(f"invalid commit status state: {state!r}")
        if self.dry_run:
            item(f"[dry-run] Would set {context} = {state} on {sha[:7]}")
            return
        args = [
            "api",
            "--method",
            "POST",
            f"repos/{{owner}}/{{repo}}/statuses/{sha}",
            "-f",
            f"state={state}",
            "-f",
            f"context={context}",
            "-f",
            f"description={description[:140]}",
        ]
        if target_url:
            args += ["-f", f"target_url={target_url}"]
        self._gh("commit status", *args)
