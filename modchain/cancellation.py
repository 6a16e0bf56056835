"""Cooperative cancellation shared between the orchestrator and the pipeline."""

from __future__ import annotations

import threading
from typing import Optional


class CancellationToken:
    """Set-once flag checked between pipeline steps."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


__all__ = ["CancellationToken"]
