from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from datetime import datetime
from typing import ClassVar, TypeAlias

from . import paths
from .dir_cache import RemoteDirectoryCache
from .errors import RemoteError, ValidationError
from .models import GrepMatch, Session
from .remote_link import RemoteLink

logger = logging.getLogger(__name__)

_OCTAL_MODE_RE = re.compile(r"^[0-7]{3,4}$")


@dataclass(frozen=True)
class MkdirRequest:
    path: str
    kind: ClassVar[str] = "mkdir"


@dataclass(frozen=True)
class DeleteRequest:
    path: str
    kind: ClassVar[str] = "delete"


@dataclass(frozen=True)
class MoveRequest:
    src: str
    dst: str
    kind: ClassVar[str] = "move"


@dataclass(frozen=True)
class CopyRequest:
    src: str
    dst: str
    kind: ClassVar[str] = "copy"


@dataclass(frozen=True)
class GrepRequest:
    path: str
    pattern: str
    recursive: bool = False
    case_insensitive: bool = False
    kind: ClassVar[str] = "grep"


@dataclass(frozen=True)
class HeadRequest:
    path: str
    line_count: int = 10
    byte_count: int | None = None
    kind: ClassVar[str] = "head"


@dataclass(frozen=True)
class TailRequest:
    path: str
    line_count: int = 10
    byte_count: int | None = None
    kind: ClassVar[str] = "tail"


@dataclass(frozen=True)
class ChmodRequest:
    path: str
    mode: str
    recursive: bool = False
    kind: ClassVar[str] = "chmod"


@dataclass(frozen=True)
class ChownRequest:
    path: str
    uid: str = ""
    gid: str = ""
    recursive: bool = False
    kind: ClassVar[str] = "chown"


@dataclass(frozen=True)
class ChtimesRequest:
    """Overwrite access and modification times of one remote path."""

    path: str
    access_time: datetime
    modify_time: datetime
    kind: ClassVar[str] = "chtimes"


OperationRequest: TypeAlias = (
    MkdirRequest
    | DeleteRequest
    | MoveRequest
    | CopyRequest
    | GrepRequest
    | HeadRequest
    | TailRequest
    | ChmodRequest
    | ChownRequest
    | ChtimesRequest
)

MUTATING_KINDS = frozenset(
    {"mkdir", "delete", "move", "copy", "chmod", "chown", "chtimes"}
)


@dataclass(frozen=True)
class OperationResult:
    request: OperationRequest
    invalidated: tuple[str, ...] = ()
    matches: tuple[GrepMatch, ...] = ()
    text: str | None = None

    @property
    def kind(self) -> str:
        return self.request.kind


def _require_path(value: str, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} is required")
    if paths.has_relative_segments(value):
        raise ValidationError(f"{field_name} must not contain . or .. segments: {value!r}")
    return paths.normalize(value)


def _require_count(value: int | None, field_name: str, *, optional: bool) -> None:
    if value is None and optional:
        return
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field_name} must be a positive integer")


def validate_request(session: Session, request: OperationRequest) -> OperationRequest:
    """Fast-fail checks done before anything reaches the link.

    Returns the request with its paths normalized. The agent still validates
    on its side; this only catches what is wrong regardless of remote state.
    """
    if isinstance(request, (MkdirRequest, DeleteRequest)):
        return replace(request, path=_require_path(request.path, "path"))

    if isinstance(request, (MoveRequest, CopyRequest)):
        src = _require_path(request.src, "src")
        dst = _require_path(request.dst, "dst")
        if src == dst:
            raise ValidationError(f"{request.kind}: source and destination are the same")
        if src == paths.ROOT:
            raise ValidationError(f"{request.kind}: refusing to use / as source")
        return replace(request, src=src, dst=dst)

    if isinstance(request, GrepRequest):
        path = _require_path(request.path, "path")
        if not request.pattern:
            raise ValidationError("pattern is required")
        flags = re.IGNORECASE if request.case_insensitive else 0
        try:
            re.compile(request.pattern, flags)
        except re.error as exc:
            raise ValidationError(f"invalid pattern {request.pattern!r}: {exc}") from exc
        return replace(request, path=path)

    if isinstance(request, (HeadRequest, TailRequest)):
        path = _require_path(request.path, "path")
        _require_count(request.line_count, "line_count", optional=False)
        _require_count(request.byte_count, "byte_count", optional=True)
        return replace(request, path=path)

    if isinstance(request, ChmodRequest):
        path = _require_path(request.path, "path")
        mode = (request.mode or "").strip()
        if not _OCTAL_MODE_RE.match(mode):
            raise ValidationError(f"invalid mode {request.mode!r}, expected octal like 644")
        return replace(request, path=path, mode=mode)

    if isinstance(request, ChownRequest):
        path = _require_path(request.path, "path")
        if session.is_windows:
            raise ValidationError("chown is not supported on windows sessions")
        uid = (request.uid or "").strip()
        gid = (request.gid or "").strip()
        if not uid and not gid:
            raise ValidationError("chown needs a uid/user, a gid/group, or both")
        return replace(request, path=path, uid=uid, gid=gid)

    if isinstance(request, ChtimesRequest):
        path = _require_path(request.path, "path")
        for field_name in ("access_time", "modify_time"):
            if not isinstance(getattr(request, field_name), datetime):
                raise ValidationError(f"{field_name} must be a datetime")
        return replace(request, path=path)

    raise ValidationError(f"unsupported operation: {type(request).__name__}")


def invalidation_paths(request: OperationRequest) -> tuple[set[str], set[str]]:
    """Listings a successful request makes stale.

    Returns ``(exact, subtrees)``: exact cache keys to drop, and roots whose
    cached descendants must go as well. Every touched path drops its parent
    listing; paths that were created, removed or changed recursively also drop
    their own listing.
    """
    if request.kind not in MUTATING_KINDS:
        return set(), set()

    if isinstance(request, (MoveRequest, CopyRequest)):
        exact = {paths.parent(request.src), paths.parent(request.dst), request.dst}
        if isinstance(request, MoveRequest):
            exact.add(request.src)
            return exact, {request.src, request.dst}
        return exact, {request.dst}

    path = request.path
    exact = {paths.parent(path)}
    subtrees: set[str] = set()
    if isinstance(request, (MkdirRequest, DeleteRequest)):
        exact.add(path)
    if isinstance(request, DeleteRequest):
        subtrees.add(path)
    if isinstance(request, (ChmodRequest, ChownRequest)) and request.recursive:
        exact.add(path)
        subtrees.add(path)
    return exact, subtrees


class OperationDispatcher:
    def __init__(
        self,
        link: RemoteLink,
        cache: RemoteDirectoryCache | None = None,
    ) -> None:
        self.link = link
        self.cache = cache

    def dispatch(self, session: Session, request: OperationRequest) -> OperationResult:
        request = validate_request(session, request)
        logger.debug("%s %s on %s", request.kind, request, session.id)

        try:
            result = self._call(session, request)
        except RemoteError as exc:
            logger.warning("%s failed on %s: %s", request.kind, session.id, exc)
            if exc.operation is None:
                exc.operation = request.kind
            raise
        except (OSError, EOFError) as exc:
            logger.warning("%s failed on %s: %s", request.kind, session.id, exc)
            raise RemoteError(str(exc) or type(exc).__name__, operation=request.kind) from exc

        exact, subtrees = invalidation_paths(request)
        if self.cache is not None and (exact or subtrees):
            self.cache.drop(session, exact, descendants_of=subtrees)
        return replace(result, invalidated=tuple(sorted(exact)))

    def _call(self, session: Session, request: OperationRequest) -> OperationResult:
        link = self.link
        if isinstance(request, MkdirRequest):
            link.mkdir(session, request.path)
        elif isinstance(request, DeleteRequest):
            link.delete(session, request.path)
        elif isinstance(request, MoveRequest):
            link.move(session, request.src, request.dst)
        elif isinstance(request, CopyRequest):
            link.copy(session, request.src, request.dst)
        elif isinstance(request, GrepRequest):
            matches = link.grep(
                session,
                request.path,
                request.pattern,
                recursive=request.recursive,
                case_insensitive=request.case_insensitive,
            )
            return OperationResult(request, matches=tuple(matches))
        elif isinstance(request, HeadRequest):
            text = link.head(session, request.path, request.line_count, request.byte_count)
            return OperationResult(request, text=text)
        elif isinstance(request, TailRequest):
            text = link.tail(session, request.path, request.line_count, request.byte_count)
            return OperationResult(request, text=text)
        elif isinstance(request, ChmodRequest):
            link.chmod(session, request.path, request.mode, recursive=request.recursive)
        elif isinstance(request, ChownRequest):
            link.chown(
                session,
                request.path,
                request.uid,
                request.gid,
                recursive=request.recursive,
            )
        elif isinstance(request, ChtimesRequest):
            link.chtimes(session, request.path, request.access_time, request.modify_time)
        return OperationResult(request)
