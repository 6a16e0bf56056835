"""Run orchestration: background pipeline, completion gate and stash cleanup."""

from __future__ import annotations

import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Sequence

from .cancellation import CancellationToken
from .config import ActionOptions, ModchainConfig
from .discovery import list_candidates
from .git.repo import CommandError, RepoHandle, Runner
from .graph import DependencyGraph, RepoRegistry
from .hosting.client import HostingClient
from .hosting.credentials import CredentialError, CredentialStore
from .logging import get_logger
from .models import ActionKind
from .pipeline import ActionPipeline, ManifestFactory
from .stats import ActionStats

# Interval at which the foreground re-checks the completion gate so that
# KeyboardInterrupt is delivered promptly.
GATE_POLL_INTERVAL = 0.2

Discover = Callable[[Sequence[Path]], List[Path]]
Confirm = Callable[[ActionOptions, DependencyGraph], bool]


@dataclass
class RunResult:
    """Outcome of one orchestrated run."""

    stats: ActionStats = field(default_factory=ActionStats)
    chain: DependencyGraph = field(default_factory=DependencyGraph)
    errors: List[str] = field(default_factory=list)
    dirty: List[str] = field(default_factory=list)
    changed: List[str] = field(default_factory=list)
    interrupted: bool = False
    declined: bool = False

    @property
    def ok(self) -> bool:
        return not self.errors and not self.interrupted


class Orchestrator:
    """Coordinates discovery, the action pipeline and the cleanup phase."""

    def __init__(
        self,
        options: ActionOptions,
        *,
        config: ModchainConfig,
        registry: RepoRegistry | None = None,
        credentials: CredentialStore | None = None,
        client: HostingClient | None = None,
        discover: Discover | None = None,
        token: CancellationToken | None = None,
        confirm: Confirm | None = None,
        runner: Runner | None = None,
        manifest_factory: ManifestFactory | None = None,
    ) -> None:
        self.options = options
        self.config = config
        self.token = token or CancellationToken()
        if registry is None:
            registry = RepoRegistry(
                lambda path: RepoHandle(
                    path,
                    runner=runner,
                    workspace_marker=config.workspace_marker,
                    remote=config.remote,
                    timeout=config.command_timeout,
                )
            )
        self.registry = registry
        self.credentials = credentials or CredentialStore(Path.home() / config.credentials_file)
        if client is None and options.needs_credentials:
            client = HostingClient(self.credentials, timeout=config.http_timeout)
        self.client = client
        self.confirm = confirm
        self._discover = discover or list_candidates
        self._manifest_factory = manifest_factory
        self.logger = get_logger("orchestrator")

    def run(self) -> RunResult:
        """Execute the configured action and always restore stashed changes.

        Credential checks, ordering and the confirmation prompt run in the
        foreground so an interrupt at a prompt never strands the worker.
        """
        result = RunResult()
        candidates = self._discover(list(self.options.target_directories))
        self.logger.debug("Discovered %d candidate(s)", len(candidates))

        done = threading.Event()
        worker: threading.Thread | None = None
        try:
            chain = self._prepare(candidates, result)
            if chain is not None:
                worker = threading.Thread(
                    target=self._work,
                    args=(chain, result, done),
                    name="modchain-pipeline",
                    daemon=True,
                )
                worker.start()
                while not done.wait(GATE_POLL_INTERVAL):
                    pass
        except KeyboardInterrupt:
            self.logger.warning("Interrupt received; finishing the current step before cleanup...")
            result.interrupted = True
        finally:
            self.token.cancel()
            if worker is not None:
                self._close(worker, candidates, result)
            self._cleanup(candidates, result)
        return result

    def _prepare(self, candidates: Sequence[Path], result: RunResult) -> DependencyGraph | None:
        """Order the candidates and confirm the run. Returns None when nothing should run."""
        if self.options.needs_credentials:
            try:
                self.credentials.require()
            except CredentialError as exc:
                self.logger.error("%s", exc)
                result.errors.append(str(exc))
                return None

        chain = DependencyGraph.build(
            candidates,
            self.registry,
            self.options.filters,
            self.options.filter_mode,
        )
        result.chain = chain
        if not len(chain):
            self.logger.info("No repositories matched; nothing to %s", self.options.action.value)
            return None
        self.logger.info("Found %d repositories to %s", len(chain), self.options.action.value)

        if self.options.action is ActionKind.SYNC and self.confirm is not None:
            if not self.confirm(self.options, chain):
                self.logger.info("Sync declined; no repositories were changed")
                result.declined = True
                return None
        return chain

    def _work(self, chain: DependencyGraph, result: RunResult, done: threading.Event) -> None:
        try:
            pipeline = ActionPipeline(
                self.options,
                chain,
                config=self.config,
                token=self.token,
                stats=result.stats,
                client=self.client,
                manifest_factory=self._manifest_factory,
            )
            pipeline.run()
            result.changed = pipeline.changed_identities()
            if self.token.cancelled:
                result.interrupted = True
        except CredentialError as exc:
            self.logger.error("%s", exc)
            result.errors.append(str(exc))
        except Exception as exc:  # the gate must open even on unexpected failures
            self.logger.exception("Pipeline failed: %s", exc)
            result.errors.append(f"pipeline failed: {exc}")
        finally:
            done.set()

    def _close(self, worker: threading.Thread, candidates: Sequence[Path], result: RunResult) -> None:
        if not worker.is_alive():
            return
        worker.join(self.config.shutdown_timeout)
        if worker.is_alive():
            places = ", ".join(str(path) for path in candidates) or "."
            message = f"failed to close! Check for local changes and stashes in {places}"
            self.logger.error(message)
            result.errors.append(message)

    def _cleanup(self, candidates: Sequence[Path], result: RunResult) -> None:
        repos = [self.registry.get(path) for path in candidates]
        repos = [repo for repo in repos if repo.is_repository()]
        if not repos:
            return

        workers = self.config.max_workers or os.cpu_count() or 1
        self.logger.debug("Restoring stashes in %d repositories (%d workers)", len(repos), workers)
        dirty: List[str] = []
        with ThreadPoolExecutor(
            max_workers=min(workers, len(repos)),
            thread_name_prefix="modchain-cleanup",
        ) as pool:
            futures = {pool.submit(repo.stash_pop): repo for repo in repos}
            for future in as_completed(futures):
                repo = futures[future]
                try:
                    has_changes = future.result()
                except (CommandError, OSError) as exc:
                    message = f"{repo.identity}: stash restore failed: {exc}"
                    repo.error(f"Stash restore failed: {exc}")
                    result.errors.append(message)
                    continue
                if has_changes:
                    dirty.append(repo.identity)
        for identity in sorted(dirty):
            self.logger.info("%s :: has local changes", identity)
        result.dirty = sorted(dirty)


def reviewed_chain(options: ActionOptions, chain: DependencyGraph) -> str:
    """Text shown before asking whether a sync should proceed."""
    lines = [options.describe(), "", "Order:"]
    lines.extend(f"  {index}) {identity}" for index, identity in enumerate(chain.identities, start=1))
    return "\n".join(lines)


__all__ = ["Confirm", "Orchestrator", "RunResult", "reviewed_chain"]
