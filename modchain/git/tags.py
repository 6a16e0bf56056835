"""Version tag helpers."""

from __future__ import annotations

import re
from typing import Optional

_VERSION_RE = re.compile(r"^(?P<prefix>v?)(?P<major>\d+)\.(?P<minor>\d+)\.(?P<patch>\d+)")

INITIAL_VERSION = "v0.0.1"


def increment_version(tag: Optional[str]) -> str:
    """Return the next patch version after ``tag``.

    ``v1.4.2`` becomes ``v1.4.3``; pre-release or build suffixes are dropped.
    An empty or unparsable tag starts the series at ``v0.0.1``.
    """
    if not tag:
        return INITIAL_VERSION
    match = _VERSION_RE.match(tag.strip())
    if match is None:
        return INITIAL_VERSION
    patch = int(match.group("patch")) + 1
    return f"{match.group('prefix')}{match.group('major')}.{match.group('minor')}.{patch}"


def is_version_tag(tag: str) -> bool:
    return _VERSION_RE.match(tag.strip()) is not None


__all__ = ["INITIAL_VERSION", "increment_version", "is_version_tag"]
