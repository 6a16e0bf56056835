"""Dependency ordering of repositories."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence

from .git.repo import RepoHandle
from .logging import get_logger
from .models import DependencyFilter, FilterMode

HandleFactory = Callable[[Path], RepoHandle]


class RepoRegistry:
    """Hands out exactly one ``RepoHandle`` per resolved repository path."""

    def __init__(self, factory: HandleFactory | None = None) -> None:
        self._factory = factory or RepoHandle
        self._handles: Dict[Path, RepoHandle] = {}

    def get(self, path: Path | str) -> RepoHandle:
        raw = Path(path)
        key = raw.expanduser().resolve()
        handle = self._handles.get(key)
        if handle is None:
            handle = self._factory(raw)
            self._handles[key] = handle
        return handle

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, (str, Path)):
            return False
        return Path(path).expanduser().resolve() in self._handles

    def __iter__(self) -> Iterator[RepoHandle]:
        return iter(list(self._handles.values()))

    def __len__(self) -> int:
        return len(self._handles)


class DependencyGraph:
    """Ordered chain in which every repository precedes the repositories that depend on it.

    Insertion is a linear scan, so building a chain of n repositories costs
    O(n^2) lock-file lookups. That is fine for fleets of tens to a few hundred
    repositories.
    """

    def __init__(self) -> None:
        self._chain: List[RepoHandle] = []
        self._logger = get_logger("graph")

    def insert(self, repo: RepoHandle) -> bool:
        """Place ``repo`` before the first repository depending on it.

        Returns False when the path is already in the chain.
        """
        for index, existing in enumerate(self._chain):
            if existing.path == repo.path:
                return False
            if existing.depends_on(repo):
                self._chain.insert(index, repo)
                return True
        self._chain.append(repo)
        return True

    @classmethod
    def build(
        cls,
        paths: Iterable[Path | str],
        registry: RepoRegistry,
        filters: Sequence[DependencyFilter] = (),
        mode: FilterMode = FilterMode.RECURSIVE,
    ) -> "DependencyGraph":
        """Build a chain from candidate paths, keeping repositories selected by ``filters``."""
        graph = cls()
        for raw in paths:
            text = str(raw).strip()
            if not text:
                continue
            repo = registry.get(text)
            if not repo.is_repository():
                graph._logger.debug("Skipping %s: not a repository", text)
                continue
            if graph._selected(repo, filters, mode):
                graph.insert(repo)
        return graph

    @staticmethod
    def _selected(repo: RepoHandle, filters: Sequence[DependencyFilter], mode: FilterMode) -> bool:
        if not filters:
            return True
        if repo.matches_any(filters):
            return True
        if mode is FilterMode.DIRECT:
            return repo.imports_any(filters)
        return repo.depends_on_any(filters)

    def before(self, repo: RepoHandle) -> List[RepoHandle]:
        """Repositories ordered ahead of ``repo`` (the whole chain if absent)."""
        preceding: List[RepoHandle] = []
        for existing in self._chain:
            if existing.path == repo.path:
                break
            preceding.append(existing)
        return preceding

    def index_of(self, repo: RepoHandle) -> Optional[int]:
        for index, existing in enumerate(self._chain):
            if existing.path == repo.path:
                return index
        return None

    @property
    def identities(self) -> List[str]:
        return [repo.identity for repo in self._chain]

    def __iter__(self) -> Iterator[RepoHandle]:
        return iter(list(self._chain))

    def __len__(self) -> int:
        return len(self._chain)

    def __getitem__(self, index: int) -> RepoHandle:
        return self._chain[index]

    def __contains__(self, repo: object) -> bool:
        return isinstance(repo, RepoHandle) and self.index_of(repo) is not None


__all__ = ["DependencyGraph", "HandleFactory", "RepoRegistry"]
