"""Configuration loading for modchain (.modchain.yml) and per-run action options."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import yaml

from .models import ActionKind, DependencyFilter, FilterMode, Verbosity

CONFIG_FILENAME = ".modchain.yml"

DEFAULT_PROTECTED_BRANCHES = ("master", "main", "develop", "staging", "beta", "prod")


class ConfigError(RuntimeError):
    """Raised when the configuration file cannot be parsed."""


@dataclass(frozen=True)
class ModchainConfig:
    """Workspace-level settings defined in .modchain.yml."""

    root: Path
    workspace_marker: str = "go/src"
    trunk_branch: str = "master"
    protected_branches: Tuple[str, ...] = DEFAULT_PROTECTED_BRANCHES
    remote: str = "origin"
    credentials_file: str = ".modchainrc"
    command_timeout: Optional[float] = None
    http_timeout: Optional[float] = 30.0
    shutdown_timeout: Optional[float] = 60.0
    max_workers: Optional[int] = None

    def is_protected(self, branch: str) -> bool:
        return not branch or branch == self.trunk_branch or branch in self.protected_branches


@dataclass(frozen=True)
class ActionOptions:
    """Immutable settings for a single run."""

    action: ActionKind = ActionKind.SYNC
    branch: str = ""
    commit_message: str = ""
    commit: bool = False
    tag: bool = False
    pull_request: bool = False
    direct_import: bool = False
    set_version: str = ""
    source_path: Optional[Path] = None
    target_directories: Tuple[Path, ...] = ()
    filters: Tuple[DependencyFilter, ...] = ()
    verbosity: Verbosity = Verbosity.NORMAL
    assume_yes: bool = False

    @property
    def filter_mode(self) -> FilterMode:
        return FilterMode.DIRECT if self.direct_import else FilterMode.RECURSIVE

    @property
    def needs_credentials(self) -> bool:
        return self.pull_request or self.action is ActionKind.SECRET

    def describe(self) -> str:
        """Summarise what a sync run is about to do, for confirmation prompts."""
        lines = ["Sync action will:"]
        if self.branch:
            lines.append(f"- checkout (or create) branch {self.branch}")
        lines.append("- update mod files")
        if self.commit:
            lines.append("- commit local changes (if any)")
        if self.pull_request:
            lines.append("- open pull request for changes (if any)")
        if self.tag:
            if self.set_version:
                lines.append(f"- tag all dependencies {self.set_version}")
            else:
                lines.append("- increment tag version (if updated)")
        message = "\n  ".join(lines)
        if self.filters:
            message += "\n\nOn repositories: " + " ".join(str(item) for item in self.filters)
        if self.target_directories:
            message += "\nIn directories: " + " ".join(str(item) for item in self.target_directories)
        return message


def load_config(config_path: Path) -> ModchainConfig:
    """Load configuration from disk, returning defaults when the file is absent."""
    config_file = _resolve_config_path(config_path)
    root = config_file.parent.resolve()

    if not config_file.exists():
        return ModchainConfig(root=root)

    data = _read_config(config_file)
    if not isinstance(data, dict):
        raise ConfigError(f"{CONFIG_FILENAME} must contain a mapping at the root")

    defaults = ModchainConfig(root=root)
    protected = _as_str_list(data.get("protected_branches"))

    return ModchainConfig(
        root=root,
        workspace_marker=_as_str(data.get("workspace_marker")) or defaults.workspace_marker,
        trunk_branch=_as_str(data.get("trunk_branch")) or defaults.trunk_branch,
        protected_branches=tuple(protected) if protected else defaults.protected_branches,
        remote=_as_str(data.get("remote")) or defaults.remote,
        credentials_file=_as_str(data.get("credentials_file")) or defaults.credentials_file,
        command_timeout=_as_float(data.get("command_timeout")),
        http_timeout=_as_float(data.get("http_timeout"), defaults.http_timeout),
        shutdown_timeout=_as_float(data.get("shutdown_timeout"), defaults.shutdown_timeout),
        max_workers=_as_int(data.get("max_workers")),
    )


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _read_config(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return loaded or {}


def _as_str(value: Any) -> Optional[str]:
    return str(value) if isinstance(value, (str, int, float)) and not isinstance(value, bool) else None


def _as_float(value: Any, default: Optional[float] = None) -> Optional[float]:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return default
    return default


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float))]
    return []


__all__ = [
    "ActionOptions",
    "CONFIG_FILENAME",
    "ConfigError",
    "ModchainConfig",
    "load_config",
]
