"""Core data models shared across modchain components."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Optional


class ActionKind(str, Enum):
    """Actions the pipeline knows how to drive over a sorted chain."""

    SYNC = "sync"
    PULL = "pull"
    REPLACE = "replace"
    RESET = "reset"
    TEST = "test"
    SECRET = "secret"
    LIST = "list"


class Verbosity(IntEnum):
    """Output verbosity, ordered from quietest to loudest."""

    NAMES_ONLY = -1
    SILENT = 0
    ERROR = 1
    NORMAL = 2
    DEBUG = 3

    @classmethod
    def parse(cls, value: str) -> "Verbosity":
        """Parse a CLI token; unknown values fall back to NORMAL."""
        return _VERBOSITY_ALIASES.get(value.strip().lower(), cls.NORMAL)

    @property
    def suppresses_output(self) -> bool:
        return self <= Verbosity.SILENT


_VERBOSITY_ALIASES = {
    "name_only": Verbosity.NAMES_ONLY,
    "name-only": Verbosity.NAMES_ONLY,
    "names-only": Verbosity.NAMES_ONLY,
    "o": Verbosity.NAMES_ONLY,
    "-1": Verbosity.NAMES_ONLY,
    "silent": Verbosity.SILENT,
    "s": Verbosity.SILENT,
    "0": Verbosity.SILENT,
    "error": Verbosity.ERROR,
    "e": Verbosity.ERROR,
    "1": Verbosity.ERROR,
    "normal": Verbosity.NORMAL,
    "n": Verbosity.NORMAL,
    "2": Verbosity.NORMAL,
    "debug": Verbosity.DEBUG,
    "d": Verbosity.DEBUG,
    "3": Verbosity.DEBUG,
}


class FilterMode(str, Enum):
    """How a non-matching repository may still be pulled in by a filter."""

    DIRECT = "direct"
    RECURSIVE = "recursive"


@dataclass(frozen=True)
class DependencyFilter:
    """A `module` or `module@version` token selecting repositories."""

    module: str
    version: Optional[str] = None

    @classmethod
    def parse(cls, token: str) -> "DependencyFilter":
        module, _, version = token.strip().partition("@")
        return cls(module=module.strip(), version=version.strip() or None)

    def matches(self, identity: str) -> bool:
        """True when ``identity`` is the module or ends with it at a path boundary."""
        if not self.module:
            return False
        return identity == self.module or identity.endswith("/" + self.module)

    def __str__(self) -> str:
        if self.version:
            return f"{self.module}@{self.version}"
        return self.module


@dataclass
class RepoStatus:
    """Per-run status flags for a single repository."""

    updated: bool = False
    tagged: bool = False
    committed: bool = False
    pr_opened: bool = False
    branch_created: bool = False
    test_failed: bool = False

    @property
    def changed(self) -> bool:
        return self.updated or self.tagged or self.committed or self.pr_opened


__all__ = [
    "ActionKind",
    "DependencyFilter",
    "FilterMode",
    "RepoStatus",
    "Verbosity",
]
