from __future__ import annotations

from pathlib import Path

import pytest

from modchain.config import ModchainConfig
from modchain.git.repo import RepoHandle
from modchain.graph import RepoRegistry
from tests._fixtures.go_workspace import GoWorkspace
from tests._fixtures.runner import FakeRunner


@pytest.fixture
def workspace(tmp_path: Path) -> GoWorkspace:
    """Provide an empty Go workspace rooted at the pytest tmp_path."""
    return GoWorkspace(tmp_path)


@pytest.fixture
def runner(workspace: GoWorkspace) -> FakeRunner:
    """Runner whose git and go commands are simulated by the workspace."""
    return FakeRunner(workspace.handle)


@pytest.fixture
def registry(runner: FakeRunner) -> RepoRegistry:
    return RepoRegistry(lambda path: RepoHandle(path, runner=runner))


@pytest.fixture
def config(tmp_path: Path) -> ModchainConfig:
    return ModchainConfig(root=tmp_path, shutdown_timeout=5.0, max_workers=2)
