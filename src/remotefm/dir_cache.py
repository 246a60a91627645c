from __future__ import annotations

import logging
import threading
from collections.abc import Iterable

from . import paths
from .models import DirectoryListing, Session

logger = logging.getLogger(__name__)


class RemoteDirectoryCache:
    """Last fetched listing per (session, directory).

    Listings are frozen and only ever replaced wholesale. Writes take a lock
    because listings are fetched from worker threads while a batch may be
    invalidating the same session.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[tuple[Session, str], DirectoryListing] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, session: Session, path: str) -> DirectoryListing | None:
        with self._lock:
            return self._entries.get((session, paths.normalize(path)))

    def put(self, session: Session, path: str, listing: DirectoryListing) -> None:
        with self._lock:
            self._entries[(session, paths.normalize(path))] = listing

    def keys(self, session: Session) -> list[str]:
        with self._lock:
            return sorted(key for sess, key in self._entries if sess == session)

    def invalidate(self, session: Session, path: str) -> None:
        normalized = paths.normalize(path)
        self.drop(session, {normalized, paths.parent(normalized)})

    def invalidate_all(self, session: Session) -> None:
        with self._lock:
            stale = [key for key in self._entries if key[0] == session]
            for key in stale:
                del self._entries[key]
        logger.debug("dropped %d cached listings for %s", len(stale), session.id)

    def drop(
        self,
        session: Session,
        keys: Iterable[str],
        *,
        descendants_of: Iterable[str] = (),
    ) -> list[str]:
        exact = {paths.normalize(key) for key in keys}
        subtrees = [paths.normalize(root) for root in descendants_of]
        dropped: list[str] = []
        with self._lock:
            for sess, key in list(self._entries):
                if sess != session:
                    continue
                if key in exact or any(paths.is_ancestor(root, key) for root in subtrees):
                    del self._entries[(sess, key)]
                    dropped.append(key)
        if dropped:
            logger.debug("invalidated %s for %s", ", ".join(sorted(dropped)), session.id)
        return dropped
