"""Hosting-provider credential storage."""

from __future__ import annotations

import getpass
import json
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Optional

from ..logging import get_logger

DEFAULT_CREDENTIALS_FILENAME = ".modchainrc"
TOKEN_HELP_URL = (
    "https://docs.github.com/en/authentication/keeping-your-account-and-data-secure/"
    "managing-your-personal-access-tokens"
)

Prompt = Callable[[str], str]


class CredentialError(RuntimeError):
    """Raised when credentials are required but cannot be obtained."""


@dataclass
class Credentials:
    """Username and personal access token for the hosting provider."""

    user: str = ""
    token: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.user and self.token)


class CredentialStore:
    """Loads credentials lazily from a dotfile and prompts for them on first need."""

    def __init__(
        self,
        path: Path | None = None,
        *,
        interactive: bool = True,
        prompt: Prompt | None = None,
        secret_prompt: Prompt | None = None,
    ) -> None:
        self.path = path or Path.home() / DEFAULT_CREDENTIALS_FILENAME
        self.interactive = interactive
        self._prompt = prompt or input
        self._secret_prompt = secret_prompt or getpass.getpass
        self._cached: Optional[Credentials] = None
        self._loaded = False
        self._logger = get_logger("credentials")

    def load(self) -> Optional[Credentials]:
        """Return stored credentials, reading the file at most once."""
        if self._loaded:
            return self._cached
        self._loaded = True
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            self._logger.warning("Ignoring unreadable credentials file %s: %s", self.path, exc)
            return None
        if not isinstance(data, dict):
            return None
        self._cached = Credentials(
            user=str(data.get("user") or ""),
            token=str(data.get("token") or ""),
        )
        return self._cached

    def save(self, credentials: Credentials) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(asdict(credentials)), encoding="utf-8")
        os.chmod(self.path, 0o600)
        self._cached = credentials
        self._loaded = True

    def clear(self) -> None:
        """Delete the stored credential file and forget any cached value."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        self._cached = None
        self._loaded = True
        self._logger.info("Bad credentials cleared.")

    def require(self) -> Credentials:
        """Return complete credentials, prompting and saving them when missing."""
        credentials = self.load()
        if credentials is not None and credentials.is_complete:
            return credentials
        if not self.interactive:
            raise CredentialError(
                "unable to read credentials: auth token or user name not found in "
                f"{self.path}"
            )
        credentials = self._ask()
        self.save(credentials)
        self._logger.info("Saved credentials to %s", self.path)
        return credentials

    def _ask(self) -> Credentials:
        self._logger.info("Hosting credentials needed (access token instructions: %s)", TOKEN_HELP_URL)
        try:
            user = ""
            while not user:
                user = self._prompt("Enter github username: ").strip()
            token = ""
            while not token:
                token = self._secret_prompt("Enter github personal access token: ").strip()
        except (EOFError, KeyboardInterrupt) as exc:
            raise CredentialError("credential prompt aborted") from exc
        return Credentials(user=user, token=token)


__all__ = ["CredentialError", "CredentialStore", "Credentials", "DEFAULT_CREDENTIALS_FILENAME"]
