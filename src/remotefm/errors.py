from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import BatchSummary


class RemoteFmError(Exception):
    pass


class ValidationError(RemoteFmError, ValueError):
    """A request was rejected before anything was sent to the remote agent."""


class BatchInProgress(ValidationError):
    pass


class RemoteError(RemoteFmError, RuntimeError):
    """The remote agent or its transport reported a failure for an issued call."""

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.path = path

    def __str__(self) -> str:
        prefix = f"{self.operation}: " if self.operation else ""
        location = f" ({self.path})" if self.path else ""
        return f"{prefix}{self.message}{location}".strip()


class PartialBatchFailure(RemoteFmError):
    def __init__(self, summary: BatchSummary) -> None:
        super().__init__(
            f"{summary.failed} of {summary.total} uploads failed"
        )
        self.summary = summary


class InvalidTransition(RemoteFmError, RuntimeError):
    pass
