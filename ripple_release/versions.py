"""Version parsing, bumping and range utilities.

Versions are strict semver strings handled through semver.Version.
Dependency ranges follow npm syntax (^, ~, x-ranges, comparator chains,
hyphen ranges and || unions); they are evaluated by expanding each range
into plain comparators and matching them with semver.Version.match.
"""

from __future__ import annotations

import re

import semver

from .errors import RangeRewriteError, VersionError
from .models import BumpKind

WORKSPACE_PROTOCOL = "workspace:"

# Ranges that mean "whatever version is in the workspace / registry"
PASSTHROUGH_RANGES = frozenset({"", "*", "^", "~", "latest"})

SIMPLE_RANGE_RE = re.compile(
    r"^(?P<prefix>[\^~]?)"
    r"(?P<version>\d+\.\d+\.\d+(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?)$"
)
PARTIAL_RE = re.compile(
    r"^v?(?P<major>\d+|[xX*])"
    r"(?:\.(?P<minor>\d+|[xX*]))?"
    r"(?:\.(?P<patch>\d+|[xX*]))?"
    r"(?:-(?P<prerelease>[0-9A-Za-z.-]+))?"
    r"(?:\+[0-9A-Za-z.-]+)?$"
)
# Longest first so "<=" is not read as "<"
OPERATORS = ("<=", ">=", "~>", "<", ">", "=", "^", "~")
HYPHEN_RE = re.compile(r"^\s*(?P<low>\S+)\s+-\s+(?P<high>\S+)\s*$")
OPERATOR_SPACE_RE = re.compile(r"(<=|>=|<|>|=|\^|~>?)\s+")


def is_valid_version(version: str) -> bool:
    """Check that a string is a complete semver version."""
    return semver.Version.is_valid(version)


def parse_version(version: str) -> semver.Version:
    """Parse a version string into a semver.Version.

    Raises:
        VersionError: If the string is not valid semver.
    """
    try:
        return semver.Version.parse(version)
    except (ValueError, TypeError) as exc:
        raise VersionError(f"Invalid semver version: {version!r}") from exc


def bump_version(version: str, bump: BumpKind) -> str:
    """Increment the component matching ``bump`` and zero the lower ones.

    Prerelease and build metadata are dropped by any real bump.

    Examples:
        "1.2.3", MAJOR → "2.0.0"
        "1.2.3", MINOR → "1.3.0"
        "1.2.3", PATCH → "1.2.4"
        "1.2.3", NONE → "1.2.3"
    """
    if bump is BumpKind.NONE:
        return version
    v = parse_version(version)
    if bump is BumpKind.MAJOR:
        return str(v.bump_major())
    if bump is BumpKind.MINOR:
        return str(v.bump_minor())
    return str(v.bump_patch())


def bump_kind_between(old: str, new: str) -> BumpKind:
    """Classify the change from ``old`` to ``new``.

    Used to record the bump of a version picked by hand. Anything that is
    not an increase of major, minor or patch is BumpKind.NONE.
    """
    before, after = parse_version(old), parse_version(new)
    if after.major > before.major:
        return BumpKind.MAJOR
    if after.major == before.major and after.minor > before.minor:
        return BumpKind.MINOR
    if (after.major, after.minor) == (before.major, before.minor) and (
        after.patch > before.patch
    ):
        return BumpKind.PATCH
    return BumpKind.NONE


def compare_versions(a: str, b: str) -> int:
    """Return -1, 0 or 1 as ``a`` is lower, equal or higher than ``b``."""
    return parse_version(a).compare(b)


def _partial(text: str) -> tuple[int | None, int | None, int | None, str | None]:
    match = PARTIAL_RE.match(text)
    if not match:
        raise VersionError(f"Invalid version in range: {text!r}")

    def part(name: str) -> int | None:
        value = match[name]
        if value is None or value in ("x", "X", "*"):
            return None
        return int(value)

    major, minor, patch = part("major"), part("minor"), part("patch")
    # "1.x.3" is treated as "1.x"
    if major is None:
        minor = patch = None
    elif minor is None:
        patch = None
    return major, minor, patch, match["prerelease"]


def _version(major: int, minor: int, patch: int, pre: str | None = None) -> str:
    return f"{major}.{minor}.{patch}" + (f"-{pre}" if pre else "")


def _expand(op: str, text: str) -> list[str]:
    """Expand one npm comparator into plain ``<op><version>`` comparators."""
    if text in ("", "*", "x", "X"):
        return []
    major, minor, patch, pre = _partial(text)
    if major is None:
        return []

    if op == "^":
        low = _version(major, minor or 0, patch or 0, pre)
        if major > 0 or minor is None:
            high = _version(major + 1, 0, 0)
        elif minor > 0 or patch is None:
            high = _version(0, minor + 1, 0)
        else:
            high = _version(0, 0, patch + 1)
        return [f">={low}", f"<{high}"]

    if op in ("~", "~>"):
        low = _version(major, minor or 0, patch or 0, pre)
        if minor is None:
            high = _version(major + 1, 0, 0)
        else:
            high = _version(major, minor + 1, 0)
        return [f">={low}", f"<{high}"]

    if minor is None or patch is None:
        # Partial version: widen to the range it covers
        low = _version(major, minor or 0, 0)
        high = (
            _version(major + 1, 0, 0)
            if minor is None
            else _version(major, minor + 1, 0)
        )
        if op in ("", "="):
            return [f">={low}", f"<{high}"]
        if op == ">":
            return [f">={high}"]
        if op == ">=":
            return [f">={low}"]
        if op == "<":
            return [f"<{low}"]
        return [f"<{high}"]

    full = _version(major, minor, patch, pre)
    if op in ("", "="):
        return [f"=={full}"]
    return [f"{op}{full}"]


def _is_protocol(range_: str) -> bool:
    # catalog:, link:, file:, npm: aliases and git URLs are not semver ranges
    return ":" in range_


def _split_operator(token: str) -> tuple[str, str]:
    for op in OPERATORS:
        if token.startswith(op):
            return op, token[len(op):]
    return "", token


def _comparator_set(text: str) -> list[str]:
    hyphen = HYPHEN_RE.match(text)
    if hyphen:
        # Partial upper bounds widen: "1.0.0 - 2" accepts all of 2.x
        return _expand(">=", hyphen["low"]) + _expand("<=", hyphen["high"])

    comparators: list[str] = []
    for token in OPERATOR_SPACE_RE.sub(r"\1", text).split():
        comparators.extend(_expand(*_split_operator(token)))
    return comparators


def _allows_prerelease(version: semver.Version, comparators: list[str]) -> bool:
    """Check npm's prerelease rule for one comparator set.

    A prerelease only satisfies a set holding a prerelease comparator of the
    same major.minor.patch, so "^1.0.0" rejects "1.0.1-beta.0" while
    "^1.0.1-beta.0" accepts "1.0.1-beta.3".
    """
    for comparator in comparators:
        bound = semver.Version.parse(comparator.lstrip("<>="))
        if bound.prerelease and bound.to_tuple()[:3] == version.to_tuple()[:3]:
            return True
    return False


def satisfies(version: str, range_: str) -> bool:
    """Check whether ``version`` falls inside an npm-style range.

    Examples:
        satisfies("1.4.0", "^1.2.0") → True
        satisfies("2.0.0", ">=1.0.0 <2.0.0") → False
        satisfies("3.1.0", "^1.0.0 || ^3.0.0") → True
        satisfies("1.0.1-beta.0", "^1.0.0") → False
    """
    v = parse_version(version)
    raw = range_.strip()
    if raw.startswith(WORKSPACE_PROTOCOL):
        raw = raw[len(WORKSPACE_PROTOCOL):]
    if raw in PASSTHROUGH_RANGES or _is_protocol(raw):
        return True

    for alternative in raw.split("||"):
        comparators = _comparator_set(alternative.strip())
        if v.prerelease and not _allows_prerelease(v, comparators):
            continue
        if all(v.match(c) for c in comparators):
            return True
    return False


def next_range(
    old_range: str,
    new_version: str,
    *,
    package: str = "",
    dependency: str = "",
) -> str:
    """Rewrite a dependency range so it points at ``new_version``.

    The prefix style of simple ranges is preserved; ``workspace:`` ranges
    keep their protocol and ``*``-style passthrough ranges are returned
    untouched. Complex ranges are left alone as long as they still accept
    the new version.

    Examples:
        next_range("^1.0.0", "1.0.1") → "^1.0.1"
        next_range("~2.3.0", "2.4.0") → "~2.4.0"
        next_range("workspace:*", "3.0.0") → "workspace:*"
        next_range(">=1.0.0 <2.0.0", "1.5.0") → ">=1.0.0 <2.0.0"

    Raises:
        RangeRewriteError: If a complex range does not accept the new version.
    """
    protocol = WORKSPACE_PROTOCOL if old_range.startswith(WORKSPACE_PROTOCOL) else ""
    raw = old_range[len(protocol):]

    if raw.strip() in PASSTHROUGH_RANGES or _is_protocol(raw):
        return old_range

    simple = SIMPLE_RANGE_RE.match(raw.strip())
    if simple:
        return f"{protocol}{simple['prefix']}{new_version}"

    if satisfies(new_version, raw):
        return old_range
    raise RangeRewriteError(package, dependency, old_range, new_version)
