"""Cooperative cancellation shared by capture and transcode stages."""

from __future__ import annotations

import threading

from loop_export.errors import ExportCancelled


class CancellationToken:
    """Thread-safe flag checked between frames and between encode attempts."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, where: str = "export") -> None:
        if self._event.is_set():
            raise ExportCancelled(f"{where} cancelled")


__all__ = ["CancellationToken"]
