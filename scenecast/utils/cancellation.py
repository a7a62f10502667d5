"""Cancellation token shared between a job's caller and its long-running stages."""

import threading
from typing import Optional


class CancellationToken:
    """Thread-safe, one-way cancel flag."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()
