"""Hosting-provider credentials and API access."""

from .client import HostingClient, HostingError, UnsupportedHostError
from .credentials import CredentialError, CredentialStore, Credentials

__all__ = [
    "CredentialError",
    "CredentialStore",
    "Credentials",
    "HostingClient",
    "HostingError",
    "UnsupportedHostError",
]
