"""Exception hierarchy for ripple-release.

Every failure the engine or its collaborators can raise derives from
ReleaseError, so the CLI has a single place to turn them into a clean
non-zero exit. A hint, when present, tells the operator what to do next.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence


class ReleaseError(Exception):
    """Base class for all ripple-release failures."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint


class ConfigError(ReleaseError):
    """The configuration file or CLI options are invalid."""


class WorkspaceError(ReleaseError):
    """Workspace packages could not be discovered or read."""


class CommandError(ReleaseError):
    """An external command exited with a non-zero status."""

    def __init__(
        self,
        args: Sequence[str],
        returncode: int,
        stderr: str = "",
        *,
        hint: str | None = None,
    ) -> None:
        self.argv = list(args)
        self.returncode = returncode
        self.stderr = stderr.strip()
        message = f"`{' '.join(self.argv)}` exited with status {returncode}"
        if self.stderr:
            message += f": {self.stderr}"
        super().__init__(message, hint=hint)


class VCSError(ReleaseError):
    """A git operation failed."""

    def __init__(self, operation: str, detail: str) -> None:
        super().__init__(f"git {operation} failed: {detail}")
        self.operation = operation


class CodeHostError(ReleaseError):
    """A pull request or commit status operation failed."""

    def __init__(self, operation: str, detail: str) -> None:
        super().__init__(f"GitHub {operation} failed: {detail}")
        self.operation = operation


class RegistryError(ReleaseError):
    """A package registry request failed.

    Attributes:
        code: npm-style error code when one could be determined
              (e.g. "E403", "EOTP", "EPUBLISHCONFLICT").
    """

    def __init__(
        self,
        operation: str,
        detail: str,
        *,
        code: str | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(f"registry {operation} failed: {detail}", hint=hint)
        self.operation = operation
        self.code = code


class PublishError(RegistryError):
    """Publishing a package version failed."""


class VersionError(ReleaseError):
    """A version string is not valid semver."""


class RangeRewriteError(VersionError):
    """A dependency range cannot be rewritten to include a new version."""

    def __init__(self, package: str, dependency: str, range_: str, version: str):
        super().__init__(
            f"{package}: range {range_!r} for {dependency} does not include "
            f"{version} and is too complex to rewrite automatically",
            hint=f"Update the {dependency} range in {package}/package.json by hand.",
        )
        self.package = package
        self.dependency = dependency
        self.range = range_
        self.version = version


class DependencyCycleError(ReleaseError):
    """The workspace dependency graph contains a cycle.

    Attributes:
        packages: Exactly the packages that could not be ordered.
    """

    def __init__(self, packages: Iterable[str]) -> None:
        self.packages = frozenset(packages)
        super().__init__(
            "Dependency cycle detected involving: "
            + ", ".join(sorted(self.packages))
        )


class AttributionError(ReleaseError):
    """Commit attribution or bump calculation failed for a package."""

    def __init__(self, package: str, detail: str) -> None:
        super().__init__(f"{package}: {detail}")
        self.package = package
