"""Configuration loading.

Settings live in an optional ``ripple-release.toml`` at the workspace root.
The file is parsed with tomlkit and validated into a ReleaseConfig; CLI
flags and a few npm-style environment variables are layered on top.

Example:
    global_commit_mode = "dependencies"
    concurrency = 10

    [branch]
    release = "release/next"

    [npm]
    access = "public"
    provenance = true
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import tomlkit
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from tomlkit.exceptions import TOMLKitError

from .attribution import GlobalCommitMode
from .errors import ConfigError
from .overrides import DEFAULT_OVERRIDES_PATH

CONFIG_FILE = "ripple-release.toml"
DEFAULT_REGISTRY = "https://registry.npmjs.org"
DEFAULT_PR_TITLE = "chore: release packages"


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class WorkspaceSettings(_Section):
    """Fallback member globs when neither pnpm nor npm declare a workspace."""

    members: list[str] = Field(default_factory=list)


class PackageFilter(_Section):
    """Which discovered packages take part in a release.

    Attributes:
        include: Only these names; a name that does not exist is an error.
        exclude: Names to leave out.
        exclude_private: Leave out packages marked "private": true.
    """

    include: list[str] = Field(default_factory=list)
    exclude: list[str] = Field(default_factory=list)
    exclude_private: bool = False


class BranchSettings(_Section):
    release: str = "release/next"
    default: str | None = None


class NpmSettings(_Section):
    access: str = "public"
    otp: str | None = None
    provenance: bool = False
    tag: str | None = None
    registry: str = DEFAULT_REGISTRY


class ChangelogSettings(_Section):
    enabled: bool = True


class PullRequestSettings(_Section):
    title: str = DEFAULT_PR_TITLE
    body: str | None = None


class ReleaseConfig(_Section):
    """Validated settings for one workspace.

    Attributes:
        root: Workspace root (not read from the file).
        repository: "owner/name" on GitHub, used for changelog links.
                    Resolved through gh when omitted.
        global_commit_mode: Which commits outside package directories count.
        overrides_path: Overrides file, relative to the root.
        concurrency: Worker limit for per-package VCS lookups.
        dry_run: Print mutating commands instead of running them.
        safeguards: Refuse to prepare or verify with a dirty working tree.
    """

    root: Path = Field(default_factory=Path.cwd, exclude=True)
    repository: str | None = None
    global_commit_mode: GlobalCommitMode = GlobalCommitMode.DEPENDENCIES
    overrides_path: str = DEFAULT_OVERRIDES_PATH
    concurrency: int = Field(default=10, ge=1)
    dry_run: bool = False
    safeguards: bool = True
    workspace: WorkspaceSettings = Field(default_factory=WorkspaceSettings)
    packages: PackageFilter = Field(default_factory=PackageFilter)
    branch: BranchSettings = Field(default_factory=BranchSettings)
    npm: NpmSettings = Field(default_factory=NpmSettings)
    changelog: ChangelogSettings = Field(default_factory=ChangelogSettings)
    pull_request: PullRequestSettings = Field(default_factory=PullRequestSettings)

    @model_validator(mode="after")
    def _check_branches(self) -> ReleaseConfig:
        if self.branch.default == self.branch.release:
            raise ValueError(
                f"release branch and default branch are both {self.branch.release!r}"
            )
        return self

    @property
    def overrides_file(self) -> Path:
        return self.root / self.overrides_path


def load_config_document(path: Path) -> dict[str, Any]:
    """Parse a TOML config file into plain Python values.

    Raises:
        ConfigError: If the file cannot be read or is not valid TOML.
    """
    try:
        doc = tomlkit.parse(path.read_text())
    except (OSError, TOMLKitError) as exc:
        raise ConfigError(f"Cannot read {path}: {exc}") from exc
    return doc.unwrap()


def _env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    npm: dict[str, Any] = {}
    if env.get("NPM_CONFIG_REGISTRY"):
        npm["registry"] = env["NPM_CONFIG_REGISTRY"].rstrip("/")
    if env.get("NPM_CONFIG_TAG"):
        npm["tag"] = env["NPM_CONFIG_TAG"]
    if env.get("NPM_CONFIG_OTP"):
        npm["otp"] = env["NPM_CONFIG_OTP"]
    return {"npm": npm} if npm else {}


def _merge(base: dict[str, Any], extra: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in extra.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(
    root: Path | None = None,
    *,
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
    **cli_overrides: Any,
) -> ReleaseConfig:
    """Load the workspace configuration.

    Precedence, lowest first: defaults, the TOML file, environment
    variables (NPM_CONFIG_REGISTRY, NPM_CONFIG_TAG, NPM_CONFIG_OTP), then
    keyword arguments from the CLI. Keyword values of None are ignored.

    Args:
        root: Workspace root, defaults to the current directory.
        config_path: Explicit config file. Must exist when given.
        env: Environment mapping, defaults to os.environ.
        **cli_overrides: Top-level or nested (dict) settings.

    Raises:
        ConfigError: If the file is malformed or a value is invalid.
    """
    root = (root or Path.cwd()).resolve()
    path = config_path or root / CONFIG_FILE

    data: dict[str, Any] = {}
    if path.exists():
        data = load_config_document(path)
    elif config_path is not None:
        raise ConfigError(f"Config file not found: {config_path}")

    data = _merge(data, _env_overrides(os.environ if env is None else env))
    data = _merge(data, {k: v for k, v in cli_overrides.items() if v is not None})

    try:
        return ReleaseConfig.model_validate({**data, "root": root})
    except ValidationError as exc:
        raise ConfigError(
            f"Invalid configuration in {path.name}:\n{exc}",
            hint=f"Check the settings in {path}.",
        ) from exc
