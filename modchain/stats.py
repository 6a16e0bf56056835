"""Run statistics collected by the pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from .models import ActionKind


@dataclass
class ActionStats:
    """Counters and per-repository report lines for one run."""

    dep_count: int = 0
    updated: List[str] = field(default_factory=list)
    tagged: List[str] = field(default_factory=list)
    committed: List[str] = field(default_factory=list)
    pull_requests: List[str] = field(default_factory=list)
    created_branches: List[str] = field(default_factory=list)
    test_failures: List[str] = field(default_factory=list)
    pin_failures: List[str] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)

    def record_update(self, label: str) -> None:
        self.updated.append(label)

    def record_tag(self, label: str, version: str) -> None:
        self.tagged.append(f"{label} {version}")

    def record_commit(self, label: str) -> None:
        self.committed.append(label)

    def record_pull_request(self, url: str) -> None:
        self.pull_requests.append(url)

    def record_branch(self, label: str, branch: str) -> None:
        self.created_branches.append(f"{label}#{branch}")

    def record_test_failure(self, label: str) -> None:
        self.test_failures.append(label)

    def record_pin_failure(self, label: str, module: str, version: str) -> None:
        self.pin_failures.append(f"{label}: {module}@{version}")

    def record_failure(self, label: str, reason: str) -> None:
        self.failures.append(f"{label}: {reason}")

    def format(self, action: ActionKind, branch: str = "") -> str:
        """Return the human-readable end-of-run report."""
        if action is ActionKind.LIST:
            return ""
        branch_label = branch or "current"
        if action is ActionKind.PULL:
            return self._section(
                f"Pulled latest version of {branch_label} in", self.updated
            )
        if action is ActionKind.REPLACE:
            return self._section("Replaced local dependencies in", self.updated)
        if action is ActionKind.SECRET:
            return self._section("Added secret to", self.updated)
        if action is ActionKind.TEST:
            if not self.test_failures:
                return f"All {self.dep_count} lib(s) built and tested successfully!"
            return self._section("Tests failed in", self.test_failures)

        parts: List[str] = []
        if self.updated:
            parts.append(self._section("Updated mod files in", self.updated))
        else:
            parts.append(f"All {self.dep_count} lib dependencies already up to date!")
        if self.tagged:
            parts.append(self._section("Updated tag in", self.tagged))
        else:
            parts.append(f"All {self.dep_count} lib tags already up to date!")
        if self.committed:
            parts.append(self._section(f"Deployed local changes to <{branch_label}> in", self.committed))
        if self.pull_requests:
            parts.append(self._section("Opened pull requests for", self.pull_requests))
        if self.created_branches:
            parts.append(self._section("Created branches in", self.created_branches))
        if self.pin_failures:
            parts.append(self._section("Failed to pin dependencies in", self.pin_failures))
        if self.failures:
            parts.append(self._section("Failures in", self.failures))
        return "\n".join(parts)

    def _section(self, heading: str, entries: List[str]) -> str:
        lines = [f"{heading} {len(entries)}/{self.dep_count} lib(s):"]
        lines.extend(f"{index}) {entry}" for index, entry in enumerate(entries, start=1))
        return "\n".join(lines)


__all__ = ["ActionStats"]
