"""REST client for the hosting provider (pull requests and repository secrets)."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from ..logging import get_logger
from .credentials import CredentialStore, Credentials
from .secrets import seal_secret

SUPPORTED_HOSTS: Mapping[str, str] = {"github.com": "https://api.github.com"}

# One request plus a single retry after clearing rejected credentials.
MAX_AUTH_ATTEMPTS = 2


@dataclass(frozen=True)
class HttpRequest:
    method: str
    url: str
    headers: Mapping[str, str]
    body: Optional[bytes] = None
    timeout: Optional[float] = None


@dataclass(frozen=True)
class HttpResponse:
    status: int
    body: bytes = b""

    def json(self) -> Dict[str, Any]:
        if not self.body:
            return {}
        try:
            payload = json.loads(self.body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return {}
        return payload if isinstance(payload, dict) else {}


Transport = Callable[[HttpRequest], HttpResponse]
Encryptor = Callable[[str, str], str]


class HostingError(RuntimeError):
    """Raised for unsuccessful hosting-provider API calls."""

    def __init__(self, status: int, messages: List[str] | None = None) -> None:
        self.status = status
        self.messages = list(messages or [])
        detail = f": {self.messages[0]}" if self.messages else ""
        super().__init__(f"Http error {status}{detail}")

    @classmethod
    def from_response(cls, response: HttpResponse) -> "HostingError":
        return cls(response.status, _error_messages(response.json()))

    def mentions(self, prefix: str) -> bool:
        return any(message.startswith(prefix) for message in self.messages)


class UnsupportedHostError(HostingError):
    """Raised when a module lives on a host without API support."""

    def __init__(self, host: str) -> None:
        super().__init__(0, [f"{host} currently not supported for pull requests"])
        self.host = host


@dataclass(frozen=True)
class RepoCoordinates:
    """Host, owner and name of a repository derived from its module identity."""

    host: str
    owner: str
    name: str
    api_root: str = field(repr=False, default="")

    @classmethod
    def from_identity(cls, identity: str) -> "RepoCoordinates":
        components = [part for part in identity.split("/") if part]
        host = components[0] if components else identity
        api_root = SUPPORTED_HOSTS.get(host)
        if api_root is None:
            raise UnsupportedHostError(host)
        if len(components) < 3:
            raise HostingError(0, [f"cannot derive owner and repository from '{identity}'"])
        return cls(host=host, owner=components[1], name=components[2], api_root=api_root)

    def endpoint(self, resource: str) -> str:
        return f"{self.api_root}/repos/{self.owner}/{self.name}/{resource}"


class HostingClient:
    """Issues authenticated API calls, retrying once after a 401."""

    def __init__(
        self,
        credentials: CredentialStore,
        *,
        transport: Transport | None = None,
        timeout: Optional[float] = 30.0,
        encryptor: Encryptor | None = None,
    ) -> None:
        self.credentials = credentials
        self.timeout = timeout
        self._transport = transport or self._urllib_transport
        self._encryptor = encryptor or seal_secret
        self._logger = get_logger("hosting")

    def create_pull_request(
        self,
        identity: str,
        *,
        title: str,
        body: str,
        head: str,
        base: str,
    ) -> str:
        """Open a pull request and return its URL."""
        coordinates = RepoCoordinates.from_identity(identity)
        response = self._request(
            "POST",
            coordinates.endpoint("pulls"),
            {"title": title, "body": body, "head": head, "base": base},
        )
        return str(response.json().get("html_url") or "")

    def upload_secret(self, identity: str, name: str, value: str) -> None:
        """Encrypt ``value`` with the repository public key and store it as ``name``."""
        coordinates = RepoCoordinates.from_identity(identity)
        key_payload = self._request("GET", coordinates.endpoint("actions/secrets/public-key")).json()
        key = key_payload.get("key")
        key_id = key_payload.get("key_id")
        if not key or not key_id:
            raise HostingError(0, ["public key response missing key or key_id"])
        encrypted = self._encryptor(str(key), value)
        self._request(
            "PUT",
            coordinates.endpoint(f"actions/secrets/{name}"),
            {"encrypted_value": encrypted, "key_id": str(key_id)},
        )

    def _request(self, method: str, url: str, payload: Optional[Dict[str, Any]] = None) -> HttpResponse:
        body = json.dumps(payload).encode("utf-8") if payload is not None else None
        response = HttpResponse(status=0)
        for attempt in range(1, MAX_AUTH_ATTEMPTS + 1):
            credentials = self.credentials.require()
            request = HttpRequest(
                method=method,
                url=url,
                headers=self._headers(credentials),
                body=body,
                timeout=self.timeout,
            )
            self._logger.debug("%s %s (attempt %d)", method, url, attempt)
            response = self._transport(request)
            if response.status == 401 and attempt < MAX_AUTH_ATTEMPTS:
                self._logger.warning("Credentials rejected by %s; clearing and retrying once", url)
                self.credentials.clear()
                continue
            break
        if response.status >= 300:
            error = HostingError.from_response(response)
            self._logger.debug("%s %s failed: %s", method, url, error)
            raise error
        return response

    @staticmethod
    def _headers(credentials: Credentials) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {credentials.token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _urllib_transport(request: HttpRequest) -> HttpResponse:
        http_request = Request(
            request.url,
            data=request.body,
            headers=dict(request.headers),
            method=request.method,
        )
        try:
            with urlopen(http_request, timeout=request.timeout) as response:  # type: ignore[arg-type]
                return HttpResponse(status=response.status, body=response.read())
        except HTTPError as exc:
            return HttpResponse(status=exc.code, body=exc.read() or b"")
        except URLError as exc:
            raise HostingError(0, [f"request to {request.url} failed: {exc.reason}"]) from exc


def _error_messages(payload: Mapping[str, Any]) -> List[str]:
    messages: List[str] = []
    errors = payload.get("errors")
    if isinstance(errors, list):
        for item in errors:
            if isinstance(item, dict) and item.get("message"):
                messages.append(str(item["message"]))
    message = payload.get("message")
    if isinstance(message, str) and message:
        messages.append(message)
    return messages


__all__ = [
    "HostingClient",
    "HostingError",
    "HttpRequest",
    "HttpResponse",
    "MAX_AUTH_ATTEMPTS",
    "RepoCoordinates",
    "Transport",
    "UnsupportedHostError",
]
