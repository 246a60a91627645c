from __future__ import annotations

import concurrent.futures
import logging
import threading
from collections import Counter
from collections.abc import Callable, Iterable

from . import paths
from .config import UploadSettings
from .dir_cache import RemoteDirectoryCache
from .errors import BatchInProgress
from .models import BatchSummary, LocalFile, Session, UploadItem, UploadStatus
from .remote_link import RemoteLink

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[UploadItem], None]


class UploadQueueManager:
    """Sequential upload of one batch of local files into a remote directory.

    Items run one at a time. A failing item is marked and the batch moves on;
    only the summary reaches the caller. Discarding a batch mid-run stops
    after the in-flight item, but that transfer itself is not retracted: the
    agent may still receive and complete it.
    """

    def __init__(
        self,
        link: RemoteLink,
        session: Session,
        cache: RemoteDirectoryCache | None = None,
        settings: UploadSettings | None = None,
    ) -> None:
        self.link = link
        self.session = session
        self.cache = cache
        self.settings = settings or UploadSettings()
        self.current_path = paths.ROOT
        self._items: list[UploadItem] = []
        self._lock = threading.Lock()
        self._discarded = threading.Event()
        self._running = False

    @property
    def items(self) -> list[UploadItem]:
        with self._lock:
            return list(self._items)

    @property
    def is_active(self) -> bool:
        return any(not item.is_terminal for item in self.items)

    def stage(self, files: Iterable[LocalFile], current_path: str) -> list[UploadItem]:
        with self._lock:
            if self._running:
                raise BatchInProgress("an upload batch is still running")
        destination = paths.normalize(current_path)
        batch = [
            UploadItem(local=local, dest_path=paths.join(destination, local.name))
            for local in files
        ]
        with self._lock:
            self._items = batch
            self.current_path = destination
        self._discarded.clear()
        for dest_path in self.collisions():
            logger.warning("several files in this batch target %s; last one wins", dest_path)
        return list(batch)

    def collisions(self) -> list[str]:
        counts = Counter(item.dest_path for item in self.items)
        return sorted(dest for dest, count in counts.items() if count > 1)

    def remove(self, item_id: int) -> bool:
        with self._lock:
            for idx, item in enumerate(self._items):
                if item.item_id != item_id:
                    continue
                if item.status != UploadStatus.PENDING:
                    return False
                del self._items[idx]
                return True
        return False

    def discard(self) -> None:
        with self._lock:
            in_flight = [item for item in self._items if item.status == UploadStatus.UPLOADING]
            self._items = []
        self._discarded.set()
        for item in in_flight:
            logger.info("batch discarded; %s may still complete remotely", item.dest_path)

    def summary(self) -> BatchSummary:
        items = self.items
        return BatchSummary(
            succeeded=sum(1 for item in items if item.status == UploadStatus.DONE),
            failed=sum(1 for item in items if item.status == UploadStatus.ERROR),
        )

    def run(self, on_update: UpdateCallback | None = None) -> BatchSummary:
        with self._lock:
            if self._running:
                raise BatchInProgress("an upload batch is still running")
            self._running = True
        try:
            return self._run(on_update)
        finally:
            with self._lock:
                self._running = False

    def _run(self, on_update: UpdateCallback | None) -> BatchSummary:
        batch = [item for item in self.items if item.status == UploadStatus.PENDING]
        if not batch:
            return self.summary()

        with concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="remotefm-upload"
        ) as pool:
            for item in batch:
                if self._discarded.is_set():
                    break
                with self._lock:
                    still_queued = item in self._items
                if not still_queued:
                    continue
                try:
                    self._upload_one(pool, item, on_update)
                except BaseException:
                    if item.status == UploadStatus.UPLOADING:
                        item.fail("upload interrupted")
                        logger.error("upload of %s interrupted", item.dest_path)
                    raise

        if self._discarded.is_set():
            logger.info("upload batch to %s discarded before completion", self.current_path)
            return self.summary()

        summary = self.summary()
        log = logger.warning if summary.failed else logger.info
        log(
            "upload batch to %s finished: %d succeeded, %d failed",
            self.current_path,
            summary.succeeded,
            summary.failed,
        )
        if self.cache is not None:
            self.cache.invalidate(self.session, self.current_path)
        return summary

    def _upload_one(
        self,
        pool: concurrent.futures.ThreadPoolExecutor,
        item: UploadItem,
        on_update: UpdateCallback | None,
    ) -> None:
        settings = self.settings
        item.start(settings.initial_progress)
        logger.debug("uploading %s -> %s", item.name, item.dest_path)
        _notify(on_update, item)

        future = pool.submit(self._transfer, item)
        while True:
            done, _pending = concurrent.futures.wait([future], timeout=settings.tick_interval)
            if done:
                break
            if item.advance(item.progress + settings.tick_step, cap=settings.tick_cap):
                _notify(on_update, item)

        exc = future.exception()
        if exc is not None:
            item.fail(str(exc) or type(exc).__name__)
            logger.warning("upload of %s failed: %s", item.dest_path, item.error_message)
            _notify(on_update, item)
            return

        item.finish()
        logger.debug("uploaded %s", item.dest_path)
        _notify(on_update, item)

    def _transfer(self, item: UploadItem) -> None:
        data = item.local.read_bytes()
        self.link.upload(self.session, item.dest_path, data)


def _notify(on_update: UpdateCallback | None, item: UploadItem) -> None:
    if on_update is not None:
        on_update(item)
