"""Exception types raised by the loop export pipeline."""

from __future__ import annotations

from typing import Optional


class LoopExportError(Exception):
    """Base class for all export failures."""


class ParameterError(LoopExportError, ValueError):
    """Raised synchronously when a job or component is configured with invalid values."""


class SourceLoadError(LoopExportError):
    """Raised when the background image cannot be resolved or decoded."""


class EncodeError(LoopExportError):
    """Raised when the streaming encoder rejects a frame or fails to finalize."""

    def __init__(self, message: str, *, stderr: Optional[bytes] = None) -> None:
        self.stderr = stderr or b""
        tail = self.stderr.decode("utf-8", errors="replace").strip().splitlines()[-5:]
        if tail:
            message = f"{message}\n" + "\n".join(tail)
        super().__init__(message)


class ExportCancelled(LoopExportError):
    """Raised when a caller cancels an in-flight capture or transcode."""


class BudgetUnmet(LoopExportError):
    """All quality profiles were exhausted and the artifact is still over budget."""

    def __init__(self, size_bytes: int, budget_bytes: int) -> None:
        self.size_bytes = size_bytes
        self.budget_bytes = budget_bytes
        super().__init__(
            f"Encoded artifact is {size_bytes} bytes, exceeding the {budget_bytes} byte budget"
        )


__all__ = [
    "BudgetUnmet",
    "EncodeError",
    "ExportCancelled",
    "LoopExportError",
    "ParameterError",
    "SourceLoadError",
]
