"""Per-repository action state machine driven over a sorted chain."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .cancellation import CancellationToken
from .config import ActionOptions, ModchainConfig
from .git.manifest import ModuleManifest
from .git.repo import LOCK_FILE, MANIFEST_FILE, MODULE_FILES_PATHSPEC, CommandError, RepoHandle
from .git.tags import increment_version
from .graph import DependencyGraph
from .hosting.client import HostingClient, HostingError
from .logging import get_logger
from .models import ActionKind
from .stats import ActionStats

COMMIT_PREFIX = "modchain: "
DEFAULT_COMMIT_TITLE = "Update Mod Files"
BUILD_ARTIFACT = "test-out.o"

NO_COMMITS_PREFIX = "No commits between"
PR_EXISTS_PREFIX = "A pull request already exists"
NOTHING_TO_COMMIT_MARKERS = ("nothing to commit", "nothing added to commit", "no changes added to commit")

ManifestFactory = Callable[[RepoHandle], ModuleManifest]


class SyncState(str, Enum):
    """Milestones of a single repository's ``sync`` run."""

    DISCOVERED = "discovered"
    STASHED = "stashed"
    BRANCH_READY = "branch-ready"
    PULLED = "pulled"
    DEPS_COLLECTED = "deps-collected"
    MANIFEST_REGENERATED = "manifest-regenerated"
    COMMITTED = "committed"
    PR_ATTEMPTED = "pr-attempted"
    BRANCH_PRUNED = "branch-pruned"
    TAGGED = "tagged"
    DONE = "done"


@dataclass
class RepoRun:
    """Mutable state of one repository while the pipeline works on it."""

    repo: RepoHandle
    dependencies: List[RepoHandle] = field(default_factory=list)
    state: SyncState = SyncState.DISCOVERED
    branch_created: bool = False
    tracked: bool = True


class ActionPipeline:
    """Runs the selected action over each repository of the chain, in order.

    Repositories are processed strictly one after another: later repositories
    pin the versions resolved for earlier ones. The cancellation token is
    checked before every repository and between the steps of ``sync``.
    """

    def __init__(
        self,
        options: ActionOptions,
        chain: DependencyGraph,
        *,
        config: ModchainConfig,
        token: CancellationToken,
        stats: ActionStats | None = None,
        client: HostingClient | None = None,
        manifest_factory: ManifestFactory | None = None,
    ) -> None:
        self.options = options
        self.chain = chain
        self.config = config
        self.token = token
        self.stats = stats or ActionStats()
        self.client = client
        self._manifest_factory = manifest_factory or ModuleManifest
        self._logger = get_logger("pipeline")
        self._handlers: Dict[ActionKind, Callable[[RepoHandle], None]] = {
            ActionKind.SYNC: self._sync,
            ActionKind.PULL: self._pull,
            ActionKind.REPLACE: self._replace,
            ActionKind.RESET: self._reset,
            ActionKind.TEST: self._test,
            ActionKind.SECRET: self._secret,
            ActionKind.LIST: self._list,
        }

    # ------------------------------------------------------------------
    # Entry points

    def run(self) -> ActionStats:
        """Process the chain and return the collected statistics."""
        total = len(self.chain)
        self.stats.dep_count = total
        handler = self._handlers[self.options.action]
        for index, repo in enumerate(self.chain, start=1):
            if self.token.cancelled:
                self._logger.info("Cancelled; stopping before %s", repo.identity)
                break
            self._logger.info("( %d / %d ) %s", index, total, repo.path)
            try:
                handler(repo)
            except CommandError as exc:
                repo.error(str(exc))
                self.stats.record_failure(repo.identity, str(exc))
        return self.stats

    def changed_identities(self) -> List[str]:
        """Module identities to print in names-only mode."""
        if self.options.action is ActionKind.LIST:
            return self.chain.identities
        return [repo.identity for repo in self.chain if repo.status.changed]

    def collect_dependencies(self, repo: RepoHandle, *, force: bool = False) -> List[RepoHandle]:
        """Earlier repositories in the chain that ``repo`` should pin.

        Without ``force`` only direct imports with a resolved or freshly
        changed version qualify. With ``force`` every earlier repository found
        in the lock file qualifies, whatever its status.
        """
        dependencies: List[RepoHandle] = []
        for earlier in self.chain.before(repo):
            status = earlier.status
            has_update = status.updated or status.tagged or status.committed or bool(earlier.version)
            if force and repo.depends_on(earlier):
                dependencies.append(earlier)
            elif has_update and repo.directly_imports(earlier):
                dependencies.append(earlier)
        return dependencies

    def commit_details(self, dependencies: Sequence[RepoHandle]) -> Tuple[str, str]:
        title = COMMIT_PREFIX + (self.options.commit_message or DEFAULT_COMMIT_TITLE)
        lines = []
        for dependency in dependencies:
            verb = "Updated" if dependency.status.updated else "Set"
            lines.append(f"{verb} {dependency.identity}@{dependency.version}")
        return title, "\n".join(lines)

    # ------------------------------------------------------------------
    # sync

    def _sync(self, repo: RepoHandle) -> None:
        if repo.version:
            repo.info(f"Already has version set: {repo.version}")
            return

        run = RepoRun(repo=repo)
        steps: Tuple[Tuple[SyncState, Callable[[RepoRun], None]], ...] = (
            (SyncState.STASHED, self._stash),
            (SyncState.BRANCH_READY, self._prepare_branch),
            (SyncState.PULLED, self._pull_latest),
            (SyncState.PULLED, self._deploy_local_changes),
            (SyncState.DEPS_COLLECTED, self._collect),
            (SyncState.MANIFEST_REGENERATED, self._regenerate_manifest),
            (SyncState.COMMITTED, self._commit_manifest),
            (SyncState.COMMITTED, self._push_branch),
            (SyncState.PR_ATTEMPTED, self._open_pull_request),
            (SyncState.BRANCH_PRUNED, self._prune_branch),
            (SyncState.TAGGED, self._resolve_version),
        )
        for state, step in steps:
            if self.token.cancelled:
                repo.debug(f"Cancelled after state {run.state.value}")
                return
            step(run)
            if run.state is not state:
                run.state = state
                repo.debug(f"State -> {state.value}")
        run.state = SyncState.DONE

    def _stash(self, run: RepoRun) -> None:
        try:
            if run.repo.stash():
                run.repo.info("Stashed local changes")
        except CommandError as exc:
            run.repo.error(f"Failed to stash local changes: {exc}")
            self.stats.record_failure(run.repo.identity, "stash failed")

    def _prepare_branch(self, run: RepoRun) -> None:
        repo = run.repo
        repo.info("Updating refs...")
        if not repo.version and not self.options.tag:
            previous = repo.latest_tag()
            self._fetch(repo)
            if previous:
                current = repo.latest_tag()
                if current and current != previous:
                    repo.info("Tag was out of date, setting explicit version.")
                    repo.version = current
                    repo.status.tagged = True
        else:
            self._fetch(repo)

        branch = self.options.branch
        if not branch:
            return
        try:
            switched, created = repo.checkout_or_create(branch)
        except CommandError as exc:
            repo.error(f"Failed to checkout {branch}: {exc}")
            self.stats.record_failure(repo.identity, f"checkout {branch} failed")
            return
        if created:
            run.branch_created = True
            repo.info(f"Created branch {branch}!")
            try:
                repo.push(branch)
            except CommandError as exc:
                repo.error(f"Failed to push new branch {branch}: {exc}")
        elif switched:
            repo.info(f"Switched to {branch}")
        else:
            repo.info(f"Already on {branch}")

    def _fetch(self, repo: RepoHandle) -> None:
        try:
            repo.fetch()
        except CommandError as exc:
            repo.error(f"Fetch failed: {exc}")

    def _pull_latest(self, run: RepoRun) -> None:
        run.repo.info("Pulling latest changes...")
        try:
            run.repo.pull()
        except CommandError as exc:
            run.repo.error(f"Failed to pull {self.options.branch or 'current branch'}: {exc}")
            self.stats.record_failure(run.repo.identity, "pull failed")

    def _deploy_local_changes(self, run: RepoRun) -> None:
        if not self.options.commit:
            return
        repo = run.repo
        repo.info("Checking for local changes...")
        repo.stash_pop()
        try:
            repo.add(".")
            # Module files are regenerated later; never ship local edits to them.
            repo.succeeds("git", "reset", "--", MANIFEST_FILE, LOCK_FILE)
            try:
                repo.commit(self._deploy_message(repo))
            except CommandError as exc:
                if not _nothing_to_commit(exc):
                    raise
                repo.info("No changes to deploy!")
                return
            repo.status.committed = True
            self.stats.record_commit(repo.identity)
            repo.info("Deploying local changes...")
            repo.push(self.options.branch or None)
            repo.info("Deploy Complete!")
        except CommandError as exc:
            repo.error(f"Deploy failed: {exc}")
            self.stats.record_failure(repo.identity, "deploy failed")
        finally:
            try:
                repo.stash()
            except CommandError as exc:
                repo.error(f"Failed to re-stash local changes: {exc}")

    def _deploy_message(self, repo: RepoHandle) -> str:
        if self.options.set_version:
            message = f"{COMMIT_PREFIX}Deploy local changes before updating version to {self.options.set_version}"
        else:
            version = repo.version or (None if repo.is_plugin else repo.latest_tag())
            if version:
                message = f"{COMMIT_PREFIX}Deploy local changes before incrementing version from {version}"
            else:
                message = f"{COMMIT_PREFIX}Deploy local changes"
        if self.options.commit_message:
            message = f"{self.options.commit_message}\n\n{message}"
        return message

    def _collect(self, run: RepoRun) -> None:
        run.dependencies = self.collect_dependencies(run.repo)
        if run.dependencies:
            run.repo.debug(
                "Dependencies to pin: " + ", ".join(dep.identity for dep in run.dependencies)
            )

    def _regenerate_manifest(self, run: RepoRun) -> None:
        repo = run.repo
        repo.info("Checking deps...")
        if not repo.has_manifest():
            repo.info("No mod file found; not a tracked module. Skipping.")
            run.tracked = False
            return

        manifest = self._manifest_factory(repo)
        _, had_lock = manifest.clear()
        if not had_lock:
            repo.info("No sum file found. No dependencies sorted.")
        try:
            manifest.init()
        except CommandError as exc:
            self._abandon_manifest(run, manifest, f"Mod init failed: {exc}")
            return

        self._pin_dependencies(repo, run.dependencies, manifest)

        try:
            manifest.tidy()
        except CommandError as exc:
            self._abandon_manifest(run, manifest, f"Mod tidy failed: {exc}")

    def _abandon_manifest(self, run: RepoRun, manifest: ModuleManifest, reason: str) -> None:
        run.repo.error(reason)
        self.stats.record_failure(run.repo.identity, reason)
        run.tracked = False
        try:
            manifest.revert("HEAD")
        except CommandError as exc:
            run.repo.error(f"Unable to restore mod files: {exc}")

    def _pin_dependencies(
        self,
        repo: RepoHandle,
        dependencies: Sequence[RepoHandle],
        manifest: ModuleManifest,
    ) -> None:
        for dependency in dependencies:
            version = dependency.version or dependency.latest_tag()
            if not version:
                repo.error(f"No version to set for {dependency.identity}")
                self.stats.record_pin_failure(repo.identity, dependency.identity, "?")
                continue
            dependency.version = version
            try:
                manifest.pin(dependency.identity, version)
            except CommandError as exc:
                repo.error(f"Failed to get {dependency.identity} @ {version}: {exc}")
                self.stats.record_pin_failure(repo.identity, dependency.identity, version)
                continue
            verb = "Updated" if dependency.status.changed else "Set"
            repo.info(f"{verb} {dependency.identity} @ {version}")

    def _commit_manifest(self, run: RepoRun) -> None:
        if not run.tracked:
            return
        repo = run.repo
        title, body = self.commit_details(run.dependencies)
        try:
            repo.add("-A", "--", MODULE_FILES_PATHSPEC)
            repo.commit(f"{title}\n{body}" if body else title)
        except CommandError as exc:
            if _nothing_to_commit(exc):
                repo.info("Deps up to date!")
            else:
                repo.error(f"Failed to commit mod files: {exc}")
                self.stats.record_failure(repo.identity, "commit failed")
            return
        repo.status.updated = True
        self.stats.record_update(repo.identity)
        repo.info("Updating mod files...")

    def _push_branch(self, run: RepoRun) -> None:
        if not run.tracked:
            return
        try:
            run.repo.push(self.options.branch or None)
        except CommandError as exc:
            run.repo.error(f"Push failed; check local changes: {exc}")
            self.stats.record_failure(run.repo.identity, "push failed")
            return
        run.repo.info("Mod Sync Complete!")

    def _open_pull_request(self, run: RepoRun) -> None:
        if not self.options.pull_request or self.client is None:
            return
        repo = run.repo
        branch = self.options.branch
        if not branch:
            try:
                branch = repo.current_branch()
            except CommandError as exc:
                repo.error(f"Unable to determine current branch: {exc}")
                return
        base = self.config.trunk_branch
        if branch == base:
            repo.info(f"Cannot create PR from {branch} to {base}; skipping")
            return

        repo.info(f"Attempting Pull Request {branch} to {base}...")
        title, body = self.commit_details(run.dependencies)
        try:
            url = self.client.create_pull_request(
                repo.identity, title=title, body=body, head=branch, base=base
            )
        except HostingError as exc:
            if exc.mentions(NO_COMMITS_PREFIX):
                repo.info("No commits to open a pull request for.")
            elif exc.mentions(PR_EXISTS_PREFIX):
                repo.info("Pull request already exists.")
            else:
                repo.error(f"Failed to create PR: {exc}")
                self.stats.record_failure(repo.identity, str(exc))
            return
        repo.status.pr_opened = True
        self.stats.record_pull_request(url or repo.identity)
        repo.info(f"PR Created! {url}".rstrip())

    def _prune_branch(self, run: RepoRun) -> None:
        if not run.branch_created:
            return
        repo = run.repo
        branch = self.options.branch
        status = repo.status
        if status.updated or status.committed or status.pr_opened:
            self.stats.record_branch(repo.identity, branch)
            return
        if self.config.is_protected(branch):
            return
        try:
            repo.checkout(self.config.trunk_branch)
        except CommandError as exc:
            repo.error(f"Unable to leave unused branch {branch}: {exc}")
            return
        if repo.delete_branch(branch):
            run.branch_created = False
            if not self.token.cancelled:
                repo.info("Newly created branch did not update. Deleted unused branch")

    def _resolve_version(self, run: RepoRun) -> None:
        repo = run.repo
        if repo.is_plugin:
            repo.info("Not tagging plugins. Skipping tag.")
            return
        if repo.version:
            return
        if self.options.tag and (self.options.set_version or self._tag_is_stale(repo)):
            new_tag = self._cut_tag(repo)
            if new_tag:
                repo.version = new_tag
                repo.status.tagged = True
                self.stats.record_tag(repo.identity, new_tag)
        if not repo.version:
            repo.version = repo.latest_tag()

    def _tag_is_stale(self, repo: RepoHandle) -> bool:
        tag = repo.latest_tag()
        if not tag:
            repo.info("No tag set. Skipping tag.")
            return False
        try:
            stale = repo.tag_is_stale(tag)
        except CommandError as exc:
            repo.info(f"No revision history. Skipping tag. ({exc})")
            return False
        repo.info("Tag outdated..." if stale else f"Tag up to date @ {tag}!")
        return stale

    def _cut_tag(self, repo: RepoHandle) -> Optional[str]:
        tag = self.options.set_version or increment_version(repo.latest_tag())
        repo.info("Setting tag..." if self.options.set_version else "Updating tag...")
        try:
            repo.create_tag(tag)
        except CommandError as exc:
            repo.error(f"Unable to set tag {tag}: {exc}")
            self.stats.record_failure(repo.identity, f"tag {tag} failed")
            return None
        repo.info(f"Set Tag - {tag}")
        return tag

    # ------------------------------------------------------------------
    # Other actions

    def _list(self, repo: RepoHandle) -> None:
        return None

    def _pull(self, repo: RepoHandle) -> None:
        if repo.version:
            repo.info(f"Already has version set: {repo.version}")
            return
        branch = self.options.branch
        if branch:
            repo.info(f"Checking out {branch}...")
            try:
                repo.checkout(branch)
            except CommandError as exc:
                repo.error(f"Failed to check out branch: {exc}")
        repo.info("Pulling latest changes...")
        try:
            repo.pull()
        except CommandError as exc:
            repo.error(f"Failed to update: {exc}")
            self.stats.record_failure(repo.identity, "pull failed")
            return
        repo.status.updated = True
        self.stats.record_update(repo.identity)
        repo.info("Updated successfully!")

    def _replace(self, repo: RepoHandle) -> None:
        repo.info("Checking deps...")
        if not repo.has_manifest():
            repo.info("No mod file found; not a tracked module. Skipping.")
            return
        dependencies = self.collect_dependencies(repo, force=True)
        if not dependencies:
            repo.info("Skipping: No deps in chain to set.")
            return
        repo.info("Setting local replacements...")
        if self._manifest_factory(repo).replace_local(dependencies):
            repo.status.updated = True
            self.stats.record_update(repo.identity)
            repo.info("Local replacements set!")
        else:
            repo.error("Failed to set local deps")
            self.stats.record_failure(repo.identity, "replace failed")

    def _reset(self, repo: RepoHandle) -> None:
        ref = self.options.branch or "HEAD"
        repo.info(f"Reverting mod files to <{ref}> ref...")
        repo.stash_pop()
        try:
            self._manifest_factory(repo).revert(ref)
        except CommandError as exc:
            repo.error(f"Failed to revert mod files: {exc}")
            self.stats.record_failure(repo.identity, "reset failed")
            return
        repo.info("Reverted mod files!")
        if repo.has_changes():
            repo.info("Warning! Has local changes.")

    def _test(self, repo: RepoHandle) -> None:
        if repo.stash_pop():
            repo.info("Applying local changes...")

        dependencies = self.collect_dependencies(repo)
        if dependencies:
            repo.info("Setting dep versions...")
            self._pin_dependencies(repo, dependencies, self._manifest_factory(repo))

        repo.info("Building...")
        built = repo.succeeds("go", "build", "-o", BUILD_ARTIFACT) or repo.succeeds(
            "go", "build", "-buildmode=plugin", "-o", BUILD_ARTIFACT
        )
        if not built:
            repo.error("Build failed")
            self._record_test_failure(repo)
            return
        repo.info("Build Succeeded!")
        (repo.path / BUILD_ARTIFACT).unlink(missing_ok=True)

        repo.info("Testing...")
        try:
            output = repo.capture("go", "test", "./...")
        except CommandError as exc:
            repo.error(f"Test failed: {exc}")
            self._record_test_failure(repo)
            return
        if _tests_ran(output):
            repo.info("Test Passed!")
        else:
            repo.info("No tests to run.")

    def _record_test_failure(self, repo: RepoHandle) -> None:
        repo.status.test_failed = True
        self.stats.record_test_failure(repo.identity)

    def _secret(self, repo: RepoHandle) -> None:
        source = self.options.source_path
        if self.client is None or source is None:
            repo.error("Secret action requires a source file and hosting credentials")
            self.stats.record_failure(repo.identity, "secret not configured")
            return
        name = secret_name(source)
        try:
            value = source.read_text(encoding="utf-8")
        except OSError as exc:
            repo.error(f"Unable to read secret from {source}: {exc}")
            self.stats.record_failure(repo.identity, "secret unreadable")
            return
        try:
            self.client.upload_secret(repo.identity, name, value)
        except HostingError as exc:
            repo.error(f"Unable to add secret: {exc}")
            self.stats.record_failure(repo.identity, str(exc))
            return
        repo.status.updated = True
        self.stats.record_update(repo.identity)
        repo.info(f"Added secret {name}")


def secret_name(source: Path) -> str:
    """Secret name derived from a file name: upper case, non-alphanumerics as ``_``."""
    return re.sub(r"[^A-Za-z0-9_]", "_", source.name).upper()


def _nothing_to_commit(exc: CommandError) -> bool:
    lowered = exc.output.lower()
    return any(marker in lowered for marker in NOTHING_TO_COMMIT_MARKERS)


def _tests_ran(output: str) -> bool:
    for line in output.splitlines():
        if line.startswith("ok") or line.strip() == "PASS":
            return True
    return False


__all__ = ["ActionPipeline", "RepoRun", "SyncState", "secret_name"]
