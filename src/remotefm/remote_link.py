from __future__ import annotations

from datetime import datetime
from typing import Protocol

from .models import FileEntry, GrepMatch, Session


class RemoteLink(Protocol):
    """Session-scoped calls into the remote agent.

    Every method raises ``RemoteError`` when the agent or the transport
    reports a failure. Timeouts are the link's concern and surface the same
    way.
    """

    def list(self, session: Session, path: str) -> list[FileEntry]: ...

    def mkdir(self, session: Session, path: str) -> None: ...

    def delete(self, session: Session, path: str) -> None: ...

    def move(self, session: Session, src: str, dst: str) -> None: ...

    def copy(self, session: Session, src: str, dst: str) -> None: ...

    def grep(
        self,
        session: Session,
        path: str,
        pattern: str,
        *,
        recursive: bool,
        case_insensitive: bool,
    ) -> list[GrepMatch]: ...

    def head(
        self,
        session: Session,
        path: str,
        line_count: int,
        byte_count: int | None = None,
    ) -> str: ...

    def tail(
        self,
        session: Session,
        path: str,
        line_count: int,
        byte_count: int | None = None,
    ) -> str: ...

    def chmod(self, session: Session, path: str, mode: str, *, recursive: bool) -> None: ...

    def chown(
        self,
        session: Session,
        path: str,
        uid: str,
        gid: str,
        *,
        recursive: bool,
    ) -> None: ...

    def chtimes(
        self,
        session: Session,
        path: str,
        access_time: datetime,
        modify_time: datetime,
    ) -> None: ...

    def upload(self, session: Session, dest_path: str, data: bytes) -> None: ...

    def download(self, session: Session, path: str) -> bytes: ...
