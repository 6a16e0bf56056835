"""Go module manifest maintenance for a single repository."""

from __future__ import annotations

from pathlib import Path
from typing import Sequence, Set, Tuple

from .repo import LOCK_FILE, MANIFEST_FILE, CommandError, RepoHandle

REPLACE_HEADER = "// Replace Local Deps"


class ModuleManifest:
    """Regenerates and edits ``go.mod``/``go.sum`` through the ``go`` tool."""

    def __init__(self, repo: RepoHandle) -> None:
        self.repo = repo

    def clear(self) -> Tuple[bool, bool]:
        """Delete the manifest and lock file, returning which of them existed."""
        had_manifest = _unlink(self.repo.manifest_path)
        had_lock = _unlink(self.repo.lock_path)
        return had_manifest, had_lock

    def init(self) -> None:
        self.repo.run("go", "mod", "init", self.repo.identity)

    def pin(self, module: str, version: str) -> None:
        self.repo.run("go", "get", f"{module}@{version}")

    def tidy(self) -> None:
        self.repo.run("go", "mod", "tidy")

    def append(self, text: str) -> bool:
        try:
            with self.repo.manifest_path.open("a", encoding="utf-8") as handle:
                handle.write(text + "\n")
        except OSError as exc:
            self.repo.error(f"Unable to write to mod file {self.repo.manifest_path}: {exc}")
            return False
        self.repo.debug(f"Appended {text.strip()!r} to mod file")
        return True

    def replace_local(self, dependencies: Sequence[RepoHandle]) -> bool:
        """Point each dependency at its local checkout and re-resolve the lock file."""
        lines = []
        for dependency in dependencies:
            self.repo.info(f"Replacing {dependency.identity}...")
            lines.append(f"replace {dependency.identity} => {dependency.absolute_path.as_posix()}")
        if not lines:
            return False
        if not self.append(f"\n\n{REPLACE_HEADER}\n\n" + "\n".join(lines)):
            return False
        _unlink(self.repo.lock_path)
        try:
            self.tidy()
        except CommandError as exc:
            self.repo.error(f"Mod tidy failed after replacements: {exc}")
        return True

    def revert(self, ref: str = "") -> None:
        """Restore manifest and lock file from ``ref`` (index when empty)."""
        args = ["git", "checkout"]
        if ref:
            args.append(ref)
        args.extend(["--", MANIFEST_FILE, LOCK_FILE])
        self.repo.run(*args)

    def modules(self) -> Set[str]:
        """Module paths recorded in the lock file."""
        found: Set[str] = set()
        for line in self.repo.read_lock().splitlines():
            parts = line.split()
            if len(parts) >= 2 and parts[1].startswith("v"):
                found.add(parts[0])
        return found


def _unlink(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


__all__ = ["ModuleManifest", "REPLACE_HEADER"]
