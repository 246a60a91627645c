from __future__ import annotations

import logging
from pathlib import Path

from . import paths
from .config import UploadSettings
from .dir_cache import RemoteDirectoryCache
from .errors import ValidationError
from .models import DirectoryListing, Session, sort_entries
from .operations import (
    DeleteRequest,
    MkdirRequest,
    OperationDispatcher,
    OperationRequest,
    OperationResult,
)
from .remote_link import RemoteLink
from .uploads import UploadQueueManager

logger = logging.getLogger(__name__)


class RemoteBrowser:
    """Navigation state for one session, backed by the shared listing cache.

    Moving around only changes ``current_path``; ``listing()`` fetches through
    the link on a cache miss. Every mutation goes through the dispatcher so
    the cache is invalidated without callers having to remember to refetch.
    """

    def __init__(
        self,
        link: RemoteLink,
        session: Session,
        cache: RemoteDirectoryCache | None = None,
        dispatcher: OperationDispatcher | None = None,
        start_path: str = paths.ROOT,
    ) -> None:
        self.link = link
        self.session = session
        self.cache = cache if cache is not None else RemoteDirectoryCache()
        self.dispatcher = dispatcher or OperationDispatcher(link, self.cache)
        self.current_path = paths.normalize(start_path)

    def navigate(self, path: str) -> str:
        self.current_path = paths.normalize(path)
        return self.current_path

    def enter(self, name: str) -> str:
        if name == "..":
            return self.up()
        if name == ".":
            return self.current_path
        cached = self.cache.get(self.session, self.current_path)
        entry = cached.find(name) if cached is not None else None
        if entry is not None and not entry.is_dir:
            return self.current_path
        return self.navigate(paths.enter(self.current_path, name))

    def up(self) -> str:
        return self.navigate(paths.up(self.current_path))

    def home(self) -> str:
        return self.navigate(paths.ROOT)

    def breadcrumbs(self) -> list[paths.Breadcrumb]:
        return paths.breadcrumbs(self.current_path)

    def listing(self, path: str | None = None, *, refresh: bool = False) -> DirectoryListing:
        target = paths.normalize(path if path is not None else self.current_path)
        if not refresh:
            cached = self.cache.get(self.session, target)
            if cached is not None:
                return cached
        logger.debug("fetching listing of %s on %s", target, self.session.id)
        entries = self.link.list(self.session, target)
        listing = DirectoryListing(path=target, entries=sort_entries(entries))
        self.cache.put(self.session, target, listing)
        return listing

    def dispatch(self, request: OperationRequest) -> OperationResult:
        return self.dispatcher.dispatch(self.session, request)

    def _child(self, name: str) -> str:
        if not paths.basename(name):
            raise ValidationError("name is required")
        if paths.has_relative_segments(name):
            raise ValidationError(f"invalid name {name!r}")
        return paths.enter(self.current_path, name)

    def mkdir(self, name: str) -> OperationResult:
        return self.dispatch(MkdirRequest(path=self._child(name)))

    def delete(self, name: str) -> OperationResult:
        return self.dispatch(DeleteRequest(path=self._child(name)))

    def download(self, name_or_path: str, local_dest: Path) -> Path:
        if name_or_path.startswith("/"):
            remote_path = paths.normalize(name_or_path)
        else:
            remote_path = paths.enter(self.current_path, name_or_path)
        data = self.link.download(self.session, remote_path)
        target = local_dest / paths.basename(remote_path) if local_dest.is_dir() else local_dest
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.info("downloaded %s to %s (%d bytes)", remote_path, target, len(data))
        return target

    def upload_queue(self, settings: UploadSettings | None = None) -> UploadQueueManager:
        return UploadQueueManager(self.link, self.session, self.cache, settings)

    def reconnected(self) -> None:
        self.cache.invalidate_all(self.session)
