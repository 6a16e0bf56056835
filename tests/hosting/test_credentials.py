"""Tests for the credential store."""

from __future__ import annotations

import json
import stat
from pathlib import Path

import pytest

from modchain.hosting.credentials import CredentialError, CredentialStore, Credentials


def _store(path: Path, answers=("octocat",), secrets=("ghp_token",), **kwargs) -> CredentialStore:
    user_answers = iter(answers)
    secret_answers = iter(secrets)
    return CredentialStore(
        path,
        prompt=lambda message: next(user_answers),
        secret_prompt=lambda message: next(secret_answers),
        **kwargs,
    )


def test_require_returns_stored_credentials(tmp_path: Path) -> None:
    path = tmp_path / ".modchainrc"
    path.write_text(json.dumps({"user": "octocat", "token": "abc"}), encoding="utf-8")

    credentials = _store(path, answers=(), secrets=()).require()

    assert credentials == Credentials("octocat", "abc")


def test_require_prompts_and_saves_when_missing(tmp_path: Path) -> None:
    path = tmp_path / ".modchainrc"

    credentials = _store(path, answers=("", "octocat"), secrets=("ghp_token",)).require()

    assert credentials == Credentials("octocat", "ghp_token")
    assert json.loads(path.read_text(encoding="utf-8")) == {"user": "octocat", "token": "ghp_token"}
    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_require_without_prompting_raises(tmp_path: Path) -> None:
    path = tmp_path / ".modchainrc"
    path.write_text(json.dumps({"user": "octocat"}), encoding="utf-8")

    with pytest.raises(CredentialError):
        _store(path, interactive=False).require()


def test_aborted_prompt_raises(tmp_path: Path) -> None:
    def interrupted(message: str) -> str:
        raise EOFError

    store = CredentialStore(tmp_path / ".modchainrc", prompt=interrupted)

    with pytest.raises(CredentialError):
        store.require()


def test_clear_deletes_file_and_forgets_cache(tmp_path: Path) -> None:
    path = tmp_path / ".modchainrc"
    path.write_text(json.dumps({"user": "octocat", "token": "abc"}), encoding="utf-8")
    store = _store(path, answers=("hubot",), secrets=("fresh",))
    store.require()

    store.clear()
    store.clear()

    assert not path.exists()
    assert store.load() is None
    assert store.require() == Credentials("hubot", "fresh")


def test_unreadable_file_is_ignored(tmp_path: Path) -> None:
    path = tmp_path / ".modchainrc"
    path.write_text("{not json", encoding="utf-8")

    assert _store(path).load() is None
