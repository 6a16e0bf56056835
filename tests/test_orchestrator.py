"""Tests for modchain.orchestrator."""

from __future__ import annotations

import json
import time
from pathlib import Path

from modchain.cancellation import CancellationToken
from modchain.config import ActionOptions, ModchainConfig
from modchain.git.repo import STASH_MESSAGE, RepoHandle
from modchain.graph import RepoRegistry
from modchain.hosting.credentials import CredentialStore
from modchain.models import ActionKind
from modchain.orchestrator import Orchestrator, reviewed_chain
from tests._fixtures.go_workspace import GoWorkspace
from tests._fixtures.runner import FakeRunner


def _fleet(workspace: GoWorkspace) -> None:
    workspace.add("core")
    workspace.add("util", requires={"core": "v0.1.0"})
    workspace.add("app", requires={"util": "v0.1.0"}, resolved={"core": "v0.1.0"})


def _orchestrator(
    workspace: GoWorkspace,
    config: ModchainConfig,
    runner: FakeRunner,
    options: ActionOptions,
    **kwargs,
) -> Orchestrator:
    registry = RepoRegistry(lambda path: RepoHandle(path, runner=runner))
    kwargs.setdefault("credentials", CredentialStore(workspace.root / ".modchainrc", interactive=False))
    return Orchestrator(options, config=config, registry=registry, **kwargs)


def test_run_executes_pipeline_and_restores_stashes(
    workspace: GoWorkspace, runner: FakeRunner, config: ModchainConfig
) -> None:
    _fleet(workspace)
    workspace.add("tools", dirty=True)
    options = ActionOptions(tag=True, target_directories=(workspace.root,))

    result = _orchestrator(workspace, config, runner, options).run()

    assert result.ok
    assert result.chain.identities[:3] == [workspace.module(name) for name in ("core", "util", "app")]
    assert len(result.stats.tagged) == 4
    assert result.dirty == [workspace.module("tools")]
    for name in ("core", "util", "app", "tools"):
        assert ("git", "stash", "list", "--format=%s") in runner.commands(workspace.path(name))
    assert workspace.states["tools"].stashes == []


def test_interrupt_leaves_later_repositories_untouched_but_cleans_up_all(
    workspace: GoWorkspace, config: ModchainConfig
) -> None:
    _fleet(workspace)
    workspace.add("core-extra", dirty=True)
    workspace.states["core-extra"].stashes.append(STASH_MESSAGE)
    token = CancellationToken()

    def handler(command, cwd):
        if command == ("git", "pull") and cwd.name == "core":
            token.cancel()
        return workspace.handle(command, cwd)

    runner = FakeRunner(handler)
    options = ActionOptions(target_directories=(workspace.root,))

    result = _orchestrator(workspace, config, runner, options, token=token).run()

    assert result.interrupted
    assert not result.ok
    assert ("git", "pull") not in runner.commands(workspace.path("app"))
    for name in ("core", "util", "app", "core-extra"):
        assert ("git", "stash", "list", "--format=%s") in runner.commands(workspace.path(name))
    assert workspace.states["core-extra"].stashes == []


def test_declined_confirmation_skips_pipeline(
    workspace: GoWorkspace, runner: FakeRunner, config: ModchainConfig
) -> None:
    _fleet(workspace)
    seen = []

    def confirm(options, chain):
        seen.append(chain.identities)
        return False

    options = ActionOptions(target_directories=(workspace.root,))
    result = _orchestrator(workspace, config, runner, options, confirm=confirm).run()

    assert result.declined
    assert seen == [[workspace.module(name) for name in ("core", "util", "app")]]
    assert not any(command == ("git", "pull") for command in runner.commands())


def test_interrupt_at_confirmation_cleans_up_without_waiting_for_worker(
    workspace: GoWorkspace, runner: FakeRunner, tmp_path: Path
) -> None:
    _fleet(workspace)
    config = ModchainConfig(root=tmp_path, shutdown_timeout=30.0, max_workers=2)

    def confirm(options, chain):
        raise KeyboardInterrupt

    options = ActionOptions(target_directories=(workspace.root,))
    started = time.monotonic()
    result = _orchestrator(workspace, config, runner, options, confirm=confirm).run()

    assert time.monotonic() - started < 10
    assert result.interrupted
    assert result.errors == []
    assert not any(command[:2] in {("git", "pull"), ("git", "fetch")} for command in runner.commands())
    for name in ("core", "util", "app"):
        assert ("git", "stash", "list", "--format=%s") in runner.commands(workspace.path(name))


def test_missing_credentials_abort_before_any_repository_work(
    workspace: GoWorkspace, runner: FakeRunner, config: ModchainConfig
) -> None:
    _fleet(workspace)
    options = ActionOptions(pull_request=True, branch="bump", target_directories=(workspace.root,))

    result = _orchestrator(workspace, config, runner, options).run()

    assert len(result.errors) == 1
    assert "credentials" in result.errors[0]
    assert not any(command[:2] == ("git", "fetch") for command in runner.commands())
    for name in ("core", "util", "app"):
        assert ("git", "stash", "list", "--format=%s") in runner.commands(workspace.path(name))


def test_stored_credentials_allow_pull_request_runs(
    workspace: GoWorkspace, runner: FakeRunner, config: ModchainConfig
) -> None:
    workspace.add("core")
    credentials_path = workspace.root.parent / ".modchainrc"
    credentials_path.write_text(json.dumps({"user": "octocat", "token": "abc"}), encoding="utf-8")
    opened = []

    class Client:
        def create_pull_request(self, identity, **kwargs):
            opened.append(identity)
            return "https://github.com/acme/core/pull/3"

    options = ActionOptions(pull_request=True, branch="bump", target_directories=(workspace.root,))
    result = _orchestrator(
        workspace,
        config,
        runner,
        options,
        credentials=CredentialStore(credentials_path, interactive=False),
        client=Client(),
    ).run()

    assert result.ok
    assert opened == [workspace.module("core")]
    assert result.changed == [workspace.module("core")]


def test_list_action_reports_chain_without_running_git_actions(
    workspace: GoWorkspace, runner: FakeRunner, config: ModchainConfig
) -> None:
    _fleet(workspace)
    options = ActionOptions(action=ActionKind.LIST, target_directories=(workspace.root,))

    result = _orchestrator(workspace, config, runner, options).run()

    assert result.changed == [workspace.module(name) for name in ("core", "util", "app")]
    assert {command[:2] for command in runner.commands()} <= {("git", "stash"), ("git", "status")}


def test_reviewed_chain_lists_order(workspace: GoWorkspace, runner: FakeRunner, config: ModchainConfig) -> None:
    _fleet(workspace)
    options = ActionOptions(target_directories=(workspace.root,))
    seen = []

    _orchestrator(
        workspace, config, runner, options, confirm=lambda opts, chain: seen.append(reviewed_chain(opts, chain))
    ).run()

    assert seen[0].startswith("Sync action will:")
    assert f"  1) {workspace.module('core')}" in seen[0]


def test_discovery_override_is_used(workspace: GoWorkspace, runner: FakeRunner, config: ModchainConfig) -> None:
    _fleet(workspace)
    requested = []

    def discover(directories):
        requested.append(list(directories))
        return [workspace.path("core")]

    options = ActionOptions(action=ActionKind.LIST, target_directories=(Path("somewhere"),))
    result = _orchestrator(workspace, config, runner, options, discover=discover).run()

    assert requested == [[Path("somewhere")]]
    assert result.chain.identities == [workspace.module("core")]
