"""npm registry access: metadata lookups and publishing.

Metadata is read over HTTP with httpx. Publishing goes through
``pnpm publish`` so workspace: and catalog: ranges are resolved the same
way the package manager resolves them locally.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict, Field

from .config import DEFAULT_REGISTRY, NpmSettings
from .errors import CommandError, PublishError, RegistryError
from .shell import item, run, verbose, warn
from .versions import parse_version

MAX_PUBLISH_ATTEMPTS = 4
# Delay before attempts 2, 3 and 4
PUBLISH_BACKOFF = (3.0, 8.0, 15.0)

CONFLICT_MARKERS = (
    "EPUBLISHCONFLICT",
    "E409",
    "409 Conflict",
    "Failed to save packument",
)

PUBLISH_HINTS = {
    "E403": "Authentication failed. Check the npm token or OIDC trust setup.",
    "EOTP": "A one-time password is required. Pass --otp or set NPM_CONFIG_OTP.",
    "EPUBLISHCONFLICT": "The version may have been published moments ago.",
}


class PackageMetadata(BaseModel):
    """The parts of a registry packument we use."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    dist_tags: dict[str, str] = Field(default_factory=dict, alias="dist-tags")
    versions: dict[str, Any] = Field(default_factory=dict)


def encode_name(name: str) -> str:
    """URL-encode a package name, keeping the leading "@" of scopes.

    Example:
        "@scope/core" → "@scope%2Fcore"
    """
    if name.startswith("@"):
        return "@" + quote(name[1:], safe="")
    return quote(name, safe="")


def classify_publish_error(output: str) -> str | None:
    """Map pnpm/npm error output to an npm error code."""
    if "E403" in output or "access token expired or revoked" in output.lower():
        return "E403"
    if "EOTP" in output:
        return "EOTP"
    if any(marker in output for marker in CONFLICT_MARKERS):
        return "EPUBLISHCONFLICT"
    return None


def dist_tag_for(version: str, explicit: str | None = None) -> str | None:
    """Pick the dist-tag for a version.

    An explicit tag wins. Prereleases go to "alpha" or "beta" when their
    first identifier says so, otherwise to "next". Stable versions get
    None, which leaves npm's default ("latest").

    Examples:
        "2.0.0-beta.1" → "beta"
        "2.0.0-rc.1" → "next"
        "2.0.0" → None
    """
    if explicit:
        return explicit
    prerelease = parse_version(version).prerelease
    if not prerelease:
        return None
    identifier = prerelease.split(".")[0]
    return identifier if identifier in ("alpha", "beta") else "next"


class Registry:
    """Client for one npm registry.

    Attributes:
        settings: npm settings (registry URL, access, otp, provenance, tag).
        root: Workspace root, where pnpm is run.
        dry_run: When True, publishing is printed instead of executed.
    """

    def __init__(
        self,
        settings: NpmSettings | None = None,
        *,
        root: Path | str = ".",
        dry_run: bool = False,
        timeout: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or NpmSettings()
        self.root = Path(root)
        self.dry_run = dry_run
        self.timeout = timeout
        self._sleep = sleep

    @property
    def base_url(self) -> str:
        return (self.settings.registry or DEFAULT_REGISTRY).rstrip("/")

    def metadata(self, name: str) -> PackageMetadata | None:
        """Fetch a package's metadata.

        Returns:
            The metadata, or None when the registry has never seen the
            package (HTTP 404).

        Raises:
            RegistryError: On network failures or any other HTTP error.
        """
        url = f"{self.base_url}/{encode_name(name)}"
        verbose(f"GET {url}")
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.get(url, headers={"Accept": "application/json"})
        except httpx.HTTPError as exc:
            raise RegistryError("metadata", f"{name}: {exc}", code="ENETWORK") from exc

        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise RegistryError(
                "metadata", f"{name}: HTTP {resp.status_code} {resp.reason_phrase}"
            )
        try:
            return PackageMetadata.model_validate(resp.json())
        except ValueError as exc:
            raise RegistryError("metadata", f"{name}: invalid response: {exc}") from exc

    def version_exists(self, name: str, version: str) -> bool:
        metadata = self.metadata(name)
        return metadata is not None and version in metadata.versions

    def _publish_args(self, name: str, version: str) -> list[str]:
        args = [
            "pnpm",
            "--filter",
            name,
            "publish",
            "--access",
            self.settings.access,
            "--no-git-checks",
        ]
        if self.settings.otp:
            args += ["--otp", self.settings.otp]
        tag = dist_tag_for(version, self.settings.tag)
        if tag:
            args += ["--tag", tag]
        return args

    def publish(self, name: str, version: str) -> None:
        """Publish one package version.

        Publish conflicts are retried with backoff since they are usually a
        propagation race on the registry side. Authentication and OTP
        failures are raised at once.

        Raises:
            PublishError: With an npm error code and a hint when known.
        """
        args = self._publish_args(name, version)
        env = {"NPM_CONFIG_REGISTRY": self.base_url}
        if self.settings.provenance:
            env["NPM_CONFIG_PROVENANCE"] = "true"

        if self.dry_run:
            item(f"[dry-run] {' '.join(args)}")
            return

        for attempt in range(1, MAX_PUBLISH_ATTEMPTS + 1):
            try:
                result = run(*args, cwd=self.root, env=env)
            except CommandError as exc:
                code = classify_publish_error(exc.stderr or exc.message)
                if code == "EPUBLISHCONFLICT" and attempt < MAX_PUBLISH_ATTEMPTS:
                    delay = PUBLISH_BACKOFF[attempt - 1]
                    warn(
                        f"Publish conflict for {name}@{version} "
                        f"(attempt {attempt}/{MAX_PUBLISH_ATTEMPTS}), "
                        f"retrying in {delay:.0f}s"
                    )
                    self._sleep(delay)
                    continue
                raise PublishError(
                    "publish",
                    f"{name}@{version}: {exc.stderr or exc.message}",
                    code=code,
                    hint=PUBLISH_HINTS.get(code or ""),
                ) from exc
            if result.stdout.strip():
                verbose(result.stdout.strip())
            return
