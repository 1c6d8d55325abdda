"""Semantic-version helpers for ``v``-prefixed module versions."""

from __future__ import annotations

import semver


def parse(version: str) -> semver.Version:
    """Parse ``v1.2.3``-style versions; ``v1`` and ``v1.2`` are accepted.

    Raises:
        ValueError: if *version* is not a valid semantic version.
    """
    if not version.startswith("v"):
        raise ValueError(f"{version!r} is not a valid module version: missing 'v' prefix")
    # Build metadata never takes part in ordering
    core = version[1:].split("+", 1)[0]
    return semver.Version.parse(core, optional_minor_and_patch=True)


def is_valid(version: str) -> bool:
    try:
        parse(version)
    except ValueError:
        return False
    return True


def compare(a: str, b: str) -> int:
    """Return -1, 0 or 1 as *a* sorts before, equal to, or after *b*."""
    return parse(a).compare(parse(b))


def in_range(version: str, low: str, high: str) -> bool:
    """Report whether ``low <= version <= high`` (both ends inclusive)."""
    v = parse(version)
    return v.compare(parse(low)) >= 0 and v.compare(parse(high)) <= 0
