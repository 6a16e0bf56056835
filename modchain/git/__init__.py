"""Version-control and module manifest helpers."""

from .manifest import ModuleManifest
from .repo import CommandError, RepoHandle
from .tags import increment_version

__all__ = ["CommandError", "ModuleManifest", "RepoHandle", "increment_version"]
