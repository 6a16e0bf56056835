"""Throwaway Go workspace with simulated git and go tooling."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple

from .runner import Outcome, fail

GO_VERSION = "1.21"


@dataclass
class RepoState:
    """What the fake ``git`` knows about one repository."""

    tags: List[str] = field(default_factory=list)
    tag_commits: Dict[str, str] = field(default_factory=dict)
    head: str = "c1"
    branch: str = "master"
    branches: Set[str] = field(default_factory=lambda: {"master"})
    dirty: bool = False
    untracked: bool = False
    stashes: List[str] = field(default_factory=list)
    commits: List[str] = field(default_factory=list)
    commit_output: Optional[str] = None


class GoWorkspace:
    """Writes repositories under ``<tmp>/go/src/<owner_path>`` and answers their commands.

    Every repository gets a ``.git`` directory, a ``go.mod`` listing its
    direct requirements and a ``go.sum`` listing the full resolved set.
    """

    def __init__(self, tmp_path: Path, owner_path: str = "github.com/acme") -> None:
        self.owner_path = owner_path
        self.root = tmp_path / "go" / "src" / owner_path
        self.root.mkdir(parents=True)
        self.states: Dict[str, RepoState] = {}

    def module(self, name: str) -> str:
        return f"{self.owner_path}/{name}"

    def path(self, name: str) -> Path:
        return self.root / name

    def add(
        self,
        name: str,
        *,
        requires: Mapping[str, str] | None = None,
        resolved: Mapping[str, str] | None = None,
        tags: Sequence[str] = ("v0.1.0",),
        manifest: bool = True,
        dirty: bool = False,
    ) -> Path:
        """Create repository ``name``; module names in mappings are short names."""
        repo = self.path(name)
        (repo / ".git").mkdir(parents=True)
        requires = dict(requires or {})
        resolved = dict(resolved or {})
        resolved = {**requires, **resolved}
        if manifest:
            lines = [f"module {self.module(name)}", "", f"go {GO_VERSION}"]
            if requires:
                lines.extend(["", "require ("])
                lines.extend(f"\t{self.module(dep)} {version}" for dep, version in requires.items())
                lines.append(")")
            (repo / "go.mod").write_text("\n".join(lines) + "\n", encoding="utf-8")
            if resolved:
                sums = "".join(_sum_lines(self.module(dep), version) for dep, version in resolved.items())
                (repo / "go.sum").write_text(sums, encoding="utf-8")
        state = RepoState(dirty=dirty)
        for tag in tags:
            state.tags.insert(0, tag)
            state.tag_commits[tag] = "c0"
        self.states[name] = state
        return repo

    # ------------------------------------------------------------------
    # Simulated tooling

    def handle(self, command: Tuple[str, ...], cwd: Path) -> Outcome:
        state = self.states.get(cwd.name)
        if state is None:
            return fail("not a git repository", 128)
        if command[0] == "go":
            return self._go(command[1:], cwd)
        if command[0] == "git":
            return self._git(command[1:], state)
        return None

    def _git(self, args: Tuple[str, ...], state: RepoState) -> Outcome:
        head = args[0]
        if args[:2] == ("status", "--porcelain"):
            lines = [" M main.go"] if state.dirty else []
            if state.untracked and "--untracked-files=no" not in args:
                lines.append("?? notes.txt")
            return "\n".join(lines)
        if head == "stash":
            return self._stash(args[1:], state)
        if head == "tag" and len(args) > 1 and args[1] == "--list":
            return "\n".join(state.tags)
        if head == "tag":
            state.tags.insert(0, args[1])
            state.tag_commits[args[1]] = state.head
            return None
        if head == "rev-list":
            tag = args[-1]
            if tag not in state.tag_commits:
                return fail(f"fatal: ambiguous argument '{tag}'", 128)
            return state.tag_commits[tag]
        if args == ("rev-parse", "HEAD"):
            return state.head
        if args == ("branch", "--show-current"):
            return state.branch
        if head == "checkout" and args[1] == "-b":
            state.branches.add(args[2])
            state.branch = args[2]
            return None
        if head == "checkout" and "--" not in args:
            if args[1] not in state.branches:
                return fail(f"error: pathspec '{args[1]}' did not match any file(s) known to git")
            state.branch = args[1]
            return None
        if head == "branch" and args[1] == "-D":
            state.branches.discard(args[2])
            return None
        if head == "commit":
            if state.commit_output is not None:
                return fail(state.commit_output, stdout=True)
            state.commits.append(args[-1])
            state.head = f"c{len(state.commits) + 1}"
            return None
        return None

    @staticmethod
    def _stash(args: Tuple[str, ...], state: RepoState) -> Outcome:
        if args and args[0] == "push":
            state.stashes.insert(0, args[-1])
            state.dirty = False
            return None
        if args and args[0] == "list":
            return "\n".join(state.stashes)
        if args and args[0] == "pop":
            if not state.stashes:
                return fail("No stash entries found.")
            state.stashes.pop(0)
            state.dirty = True
            return None
        return None

    def _go(self, args: Tuple[str, ...], cwd: Path) -> Outcome:
        manifest = cwd / "go.mod"
        lock = cwd / "go.sum"
        if args[:2] == ("mod", "init"):
            if manifest.exists():
                return fail("go: go.mod already exists")
            manifest.write_text(f"module {args[2]}\n\ngo {GO_VERSION}\n", encoding="utf-8")
            return None
        if args[0] == "get":
            module, _, version = args[1].partition("@")
            with manifest.open("a", encoding="utf-8") as handle:
                handle.write(f"\nrequire {module} {version}\n")
            with lock.open("a", encoding="utf-8") as handle:
                handle.write(_sum_lines(module, version))
            return None
        return None


def _sum_lines(module: str, version: str) -> str:
    return f"{module} {version} h1:abc=\n{module} {version}/go.mod h1:def=\n"


__all__ = ["GoWorkspace", "RepoState"]
