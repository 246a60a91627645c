from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Protocol, TypeAlias

from .errors import InvalidTransition, PartialBatchFailure


class OsFamily(str, Enum):
    WINDOWS = "windows"
    POSIX = "posix"


@dataclass(frozen=True)
class Session:
    id: str
    os_family: OsFamily = OsFamily.POSIX

    @property
    def is_windows(self) -> bool:
        return self.os_family == OsFamily.WINDOWS


@dataclass(frozen=True)
class FileEntry:
    name: str
    is_dir: bool
    size: int
    mod_time: datetime
    mode: str
    link: str | None = None


@dataclass(frozen=True)
class DirectoryListing:
    path: str
    entries: tuple[FileEntry, ...] = ()

    def find(self, name: str) -> FileEntry | None:
        for entry in self.entries:
            if entry.name == name:
                return entry
        return None


def sort_entries(entries: list[FileEntry] | tuple[FileEntry, ...]) -> tuple[FileEntry, ...]:
    return tuple(sorted(entries, key=lambda entry: (not entry.is_dir, entry.name)))


@dataclass(frozen=True)
class GrepMatch:
    path: str
    line_number: int
    line: str


class UploadStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class Pending:
    progress: int = 0
    status = UploadStatus.PENDING


@dataclass(frozen=True)
class Uploading:
    progress: int
    status = UploadStatus.UPLOADING


@dataclass(frozen=True)
class Done:
    status = UploadStatus.DONE

    @property
    def progress(self) -> int:
        return 100


@dataclass(frozen=True)
class Failed:
    progress: int
    message: str
    status = UploadStatus.ERROR


UploadState: TypeAlias = Pending | Uploading | Done | Failed

_TRANSITIONS: dict[UploadStatus, frozenset[UploadStatus]] = {
    UploadStatus.PENDING: frozenset({UploadStatus.UPLOADING}),
    UploadStatus.UPLOADING: frozenset({UploadStatus.DONE, UploadStatus.ERROR}),
    UploadStatus.DONE: frozenset(),
    UploadStatus.ERROR: frozenset(),
}

TERMINAL_STATUSES = frozenset({UploadStatus.DONE, UploadStatus.ERROR})


class LocalFile(Protocol):
    @property
    def name(self) -> str: ...

    def read_bytes(self) -> bytes: ...


@dataclass(frozen=True)
class LocalBlob:
    """In-memory upload source, for data that does not live on local disk."""

    name: str
    data: bytes

    def read_bytes(self) -> bytes:
        return self.data


_item_ids = itertools.count(1)


@dataclass(eq=False)
class UploadItem:
    """One local file of an upload batch.

    The state is a tagged variant moved forward through ``_TRANSITIONS``;
    ``status``, ``progress`` and ``error_message`` are all derived from it, so
    a finished item always reports 100 and a failed one keeps the progress it
    had when the transfer broke.
    """

    local: LocalFile
    dest_path: str
    item_id: int = field(default_factory=lambda: next(_item_ids))
    state: UploadState = field(default_factory=Pending)

    @property
    def name(self) -> str:
        return self.local.name

    @property
    def status(self) -> UploadStatus:
        return self.state.status

    @property
    def progress(self) -> int:
        return self.state.progress

    @property
    def error_message(self) -> str | None:
        if isinstance(self.state, Failed):
            return self.state.message
        return None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def _move(self, new_state: UploadState) -> None:
        if new_state.status not in _TRANSITIONS[self.status]:
            raise InvalidTransition(
                f"upload {self.dest_path}: {self.status.value} -> {new_state.status.value}"
            )
        self.state = new_state

    def start(self, initial_progress: int = 0) -> None:
        self._move(Uploading(progress=max(0, min(initial_progress, 99))))

    def advance(self, progress: int, *, cap: int = 99) -> bool:
        """Raise the in-flight progress; never lowers it and never reaches 100."""
        if not isinstance(self.state, Uploading):
            raise InvalidTransition(f"upload {self.dest_path} is not uploading")
        target = min(progress, cap, 99)
        if target <= self.state.progress:
            return False
        # Progress updates stay inside Uploading; they are not transitions.
        self.state = Uploading(progress=target)
        return True

    def finish(self) -> None:
        self._move(Done())

    def fail(self, message: str) -> None:
        self._move(Failed(progress=self.progress, message=message))


@dataclass(frozen=True)
class BatchSummary:
    succeeded: int
    failed: int

    @property
    def total(self) -> int:
        return self.succeeded + self.failed

    @property
    def partial_failure(self) -> bool:
        return self.succeeded > 0 and self.failed > 0

    def raise_for_partial_failure(self) -> None:
        if self.partial_failure:
            raise PartialBatchFailure(self)
