"""Repository handle: scoped git subprocesses, module identity and manifest probes."""

from __future__ import annotations

import os
import re
import subprocess
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from ..logging import get_logger
from ..models import DependencyFilter, RepoStatus

METADATA_DIR = ".git"
MANIFEST_FILE = "go.mod"
LOCK_FILE = "go.sum"
STASH_MESSAGE = "modchain auto-stash"
# Git pathspec for the module files; also matches a tracked file that was deleted.
MODULE_FILES_PATHSPEC = "go.*"
DEFAULT_WORKSPACE_MARKER = "go/src"
PLUGIN_SUFFIX = "-plugin"

Runner = Callable[..., "subprocess.CompletedProcess[str]"]


class CommandError(RuntimeError):
    """Raised when a subprocess exits non-zero or cannot be started."""

    def __init__(self, command: Sequence[str], returncode: int, output: str = "") -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.output = (output or "").strip()
        detail = self.output or f"exit {returncode}"
        super().__init__(f"Error running command `{' '.join(self.command)}` - {detail}")


class RepoHandle:
    """Wraps one repository path and runs version-control commands inside it.

    Handles are meant to be unique per path (see ``RepoRegistry``) so that the
    status flags and resolved version seen by the pipeline, the dependency
    lists and the cleanup phase are always the same object.
    """

    def __init__(
        self,
        path: Path | str,
        *,
        runner: Runner | None = None,
        workspace_marker: str = DEFAULT_WORKSPACE_MARKER,
        remote: str = "origin",
        timeout: Optional[float] = None,
    ) -> None:
        self.path = Path(path)
        self.version: Optional[str] = None
        self.status = RepoStatus()
        self.workspace_marker = workspace_marker
        self.remote = remote
        self.timeout = timeout
        self._runner = runner or self._default_runner
        self._identity: Optional[str] = None
        self._logger = get_logger("repo")

    def __repr__(self) -> str:
        return f"RepoHandle({str(self.path)!r})"

    # ------------------------------------------------------------------
    # Identity

    @property
    def absolute_path(self) -> Path:
        return self.path.expanduser().resolve()

    @property
    def identity(self) -> str:
        """Canonical module path, e.g. ``github.com/org/name``."""
        if self._identity is None:
            self._identity = self._resolve_identity()
        return self._identity

    @property
    def is_plugin(self) -> bool:
        return self.path.as_posix().rstrip("/").endswith(PLUGIN_SUFFIX)

    def is_repository(self) -> bool:
        return (self.path / METADATA_DIR).exists()

    def _resolve_identity(self) -> str:
        raw = self.path.as_posix()
        parts = self.absolute_path.as_posix().split(self.workspace_marker)
        if len(parts) != 2 or not parts[1].strip("/"):
            self._logger.warning(
                "%s :: unable to derive module identity below '%s'; using raw path",
                raw,
                self.workspace_marker,
            )
            return raw
        return parts[1].strip("/")

    # ------------------------------------------------------------------
    # Output scoped to this repository

    def info(self, message: str) -> None:
        self._logger.info("%s :: %s", self.identity, message)

    def error(self, message: str) -> None:
        self._logger.error("%s :ERROR: %s", self.identity, message)

    def debug(self, message: str) -> None:
        self._logger.debug("%s :DEBUG: %s", self.identity, message)

    # ------------------------------------------------------------------
    # Subprocess execution

    def run(self, *args: str) -> None:
        """Run a command inside the repository, raising ``CommandError`` on failure."""
        self._execute(args)

    def capture(self, *args: str) -> str:
        """Run a command and return its stripped standard output."""
        return (self._execute(args).stdout or "").strip()

    def succeeds(self, *args: str) -> bool:
        try:
            self._execute(args)
        except CommandError as exc:
            self.debug(str(exc))
            return False
        return True

    def _execute(self, args: Sequence[str]) -> "subprocess.CompletedProcess[str]":
        command = list(args)
        self.debug(" ".join(command))
        try:
            completed = self._runner(command, cwd=self.path, timeout=self.timeout)
        except FileNotFoundError as exc:
            raise CommandError(command, 127, f"{command[0]}: executable not found") from exc
        except subprocess.TimeoutExpired as exc:
            raise CommandError(command, -1, f"timed out after {exc.timeout}s") from exc
        if completed.returncode != 0:
            raise CommandError(command, completed.returncode, completed.stderr or completed.stdout or "")
        return completed

    @staticmethod
    def _default_runner(
        args: Iterable[str],
        *,
        cwd: Path,
        timeout: Optional[float] = None,
    ) -> "subprocess.CompletedProcess[str]":
        return subprocess.run(
            list(args),
            cwd=str(cwd),
            check=False,
            text=True,
            capture_output=True,
            timeout=timeout,
        )

    # ------------------------------------------------------------------
    # Version control

    def checkout(self, branch: str) -> None:
        self.run("git", "checkout", branch)

    def checkout_or_create(self, branch: str) -> Tuple[bool, bool]:
        """Switch to ``branch``, creating it when missing.

        Returns ``(switched, created)``. An empty branch name is a no-op.
        """
        if not branch:
            return False, False
        try:
            if self.current_branch() == branch:
                return False, False
        except CommandError:
            pass
        try:
            self.checkout(branch)
        except CommandError:
            self.run("git", "checkout", "-b", branch)
            self.status.branch_created = True
            return True, True
        return True, False

    def current_branch(self) -> str:
        return self.capture("git", "branch", "--show-current")

    def fetch(self) -> None:
        self.succeeds("git", "fetch")
        self.run("git", "fetch", self.remote, "--prune", "--prune-tags", "--tags")

    def merge(self, other_branch: str) -> None:
        self.run("git", "merge", other_branch)

    def pull(self) -> None:
        self.run("git", "pull")

    def push(self, branch: str | None = None) -> None:
        self.run("git", "push", "-u", self.remote, branch or "HEAD")

    def add(self, *paths: str) -> None:
        self.run("git", "add", *(paths or (".",)))

    def commit(self, message: str) -> None:
        self.run("git", "commit", "-m", message)

    def reset(self, *args: str) -> None:
        self.run("git", "reset", *args)

    def delete_branch(self, branch: str) -> bool:
        """Delete ``branch`` locally, then on the remote. Returns local success."""
        if not self.succeeds("git", "branch", "-D", branch):
            return False
        self.succeeds("git", "push", self.remote, "--delete", branch)
        self.status.branch_created = False
        return True

    def has_changes(self) -> bool:
        """True when the working tree has uncommitted or untracked changes."""
        return bool(self.capture("git", "status", "--porcelain"))

    def has_tracked_changes(self) -> bool:
        """True when tracked files differ from HEAD; untracked files are ignored."""
        return bool(self.capture("git", "status", "--porcelain", "--untracked-files=no"))

    def stash(self) -> bool:
        """Stash tracked local changes under a recognisable message.

        Untracked files are left in place, as ``git stash push`` does, so a tree
        with only untracked files is treated as clean.
        """
        if not self.has_tracked_changes():
            return False
        self.run("git", "stash", "push", "-m", STASH_MESSAGE)
        return True

    def stash_pop(self) -> bool:
        """Restore a stash created by ``stash`` and report leftover local changes.

        Manifest and lock files are moved aside while popping so that
        regenerated module files never conflict with stashed edits. Popping
        when no modchain stash is on top of the stack is a no-op.
        """
        moved = self._move_aside((MANIFEST_FILE, LOCK_FILE))
        try:
            if self._has_own_stash():
                try:
                    self.run("git", "stash", "pop")
                except CommandError as exc:
                    self.error(f"Failed to restore stashed changes: {exc}")
            else:
                self.debug("No modchain stash to restore")
        finally:
            self._move_back(moved)
        return self.has_changes()

    def _has_own_stash(self) -> bool:
        try:
            entries = self.capture("git", "stash", "list", "--format=%s")
        except CommandError:
            return False
        if not entries:
            return False
        return STASH_MESSAGE in entries.splitlines()[0]

    def _move_aside(self, names: Sequence[str]) -> List[Tuple[Path, Path]]:
        moved: List[Tuple[Path, Path]] = []
        for name in names:
            source = self.path / name
            if source.exists():
                backup = self.path / f"{name}.bak"
                os.replace(source, backup)
                moved.append((backup, source))
        return moved

    @staticmethod
    def _move_back(moved: Sequence[Tuple[Path, Path]]) -> None:
        for backup, original in moved:
            os.replace(backup, original)

    # ------------------------------------------------------------------
    # Tags

    def latest_tag(self) -> Optional[str]:
        """Highest version tag in the repository, or None when untagged."""
        try:
            output = self.capture("git", "tag", "--list", "--sort=-v:refname")
        except CommandError as exc:
            self.debug(str(exc))
            return None
        for line in output.splitlines():
            if line.strip():
                return line.strip()
        return None

    def head_revision(self) -> str:
        return self.capture("git", "rev-parse", "HEAD")

    def tag_is_stale(self, tag: str) -> bool:
        """True when ``tag`` does not point at HEAD."""
        return self.capture("git", "rev-list", "-n", "1", tag) != self.head_revision()

    def create_tag(self, tag: str) -> None:
        self.run("git", "tag", tag)
        self.run("git", "push", self.remote, tag)

    # ------------------------------------------------------------------
    # Manifest probes

    @property
    def manifest_path(self) -> Path:
        return self.path / MANIFEST_FILE

    @property
    def lock_path(self) -> Path:
        return self.path / LOCK_FILE

    def has_manifest(self) -> bool:
        return self.manifest_path.is_file()

    def read_manifest(self) -> str:
        return _read_text(self.manifest_path)

    def read_lock(self) -> str:
        return _read_text(self.lock_path)

    def directly_imports(self, other: "RepoHandle") -> bool:
        """True when this manifest requires ``other``'s module."""
        return _declares(self.read_manifest(), other.identity)

    def depends_on(self, other: "RepoHandle") -> bool:
        """True when ``other``'s module appears anywhere in the resolved lock file."""
        return _declares(self.read_lock(), other.identity)

    def imports_any(self, filters: Sequence[DependencyFilter]) -> bool:
        content = self.read_manifest()
        return any(_declares(content, item.module, suffix=True) for item in filters)

    def depends_on_any(self, filters: Sequence[DependencyFilter]) -> bool:
        content = self.read_lock()
        return any(_declares(content, item.module, suffix=True) for item in filters)

    def matches_any(self, filters: Sequence[DependencyFilter]) -> bool:
        """True when a filter names this module; a pinned filter version is adopted."""
        for item in filters:
            if item.matches(self.identity):
                if item.version:
                    self.version = item.version
                return True
        return False


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (FileNotFoundError, IsADirectoryError):
        return ""


def _declares(content: str, module: str, *, suffix: bool = False) -> bool:
    if not module or not content:
        return False
    boundary = r"(?:^|[\s/])" if suffix else r"(?:^|\s)"
    pattern = boundary + re.escape(module) + r" v"
    return re.search(pattern, content, re.MULTILINE) is not None


__all__ = [
    "CommandError",
    "LOCK_FILE",
    "MANIFEST_FILE",
    "MODULE_FILES_PATHSPEC",
    "RepoHandle",
    "Runner",
    "STASH_MESSAGE",
]
