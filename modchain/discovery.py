"""Candidate repository discovery."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Sequence

from .logging import get_logger

_logger = get_logger("discovery")


def list_candidates(directories: Sequence[Path | str]) -> List[Path]:
    """Return the top-level entries of each search directory.

    Entries are not validated here; the graph builder skips anything that is
    not a repository. With no directories the current directory is searched.
    """
    targets: Iterable[Path | str] = directories or (Path("."),)
    candidates: List[Path] = []
    for directory in targets:
        root = Path(directory).expanduser()
        try:
            entries = sorted(root.iterdir(), key=lambda entry: entry.name)
        except (FileNotFoundError, NotADirectoryError, PermissionError) as exc:
            _logger.error("Unable to list %s: %s", root, exc)
            continue
        candidates.extend(entry for entry in entries if entry.is_dir())
    _logger.debug("Discovered %d candidate path(s)", len(candidates))
    return candidates


__all__ = ["list_candidates"]
