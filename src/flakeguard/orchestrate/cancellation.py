"""Cooperative cancellation shared by module workers."""

from __future__ import annotations

import threading


class CancellationToken:
    """Thread-safe flag checked by workers before each build step."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()
