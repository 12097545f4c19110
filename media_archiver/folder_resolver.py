"""Resolve (and create on demand) the remote folder chain for a logical path.

Folder ids are cached per ``(name, parent_id)`` for the lifetime of the
process. A cache miss is handled under a lock dedicated to that key, so a
burst of pipelines filing into the same folder issues a single
check-then-create sequence while unrelated folders resolve in parallel.

The cache is only a cache: after a restart it is rebuilt from the remote
store. Two independent processes resolving the same path with cold caches
can still both create the folder.
"""

from __future__ import annotations

import logging
import threading
from typing import Hashable, Sequence

from .drive_client import ROOT_FOLDER_ID, RemoteStore
from .errors import RemoteFolderError

logger = logging.getLogger(__name__)

FolderKey = tuple[str, str]


class KeyedLock:
    """Hand out one lock per key, created lazily."""

    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._locks: dict[Hashable, threading.Lock] = {}

    def for_key(self, key: Hashable) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock


class RemoteFolderCache:
    """Process-wide ``(name, parent_id) -> folder id`` mapping."""

    def __init__(self) -> None:
        self._entries: dict[FolderKey, str] = {}

    def get(self, key: FolderKey) -> str | None:
        return self._entries.get(key)

    def put(self, key: FolderKey, folder_id: str) -> None:
        self._entries[key] = folder_id

    def discard(self, key: FolderKey) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class RemoteFolderResolver:
    def __init__(self, store: RemoteStore, cache: RemoteFolderCache | None = None) -> None:
        self.store = store
        self.cache = cache if cache is not None else RemoteFolderCache()
        self._locks = KeyedLock()

    def resolve(self, path: Sequence[str]) -> str:
        """Return the folder id of the last segment of ``path``."""
        chain = self.resolve_chain(path)
        return chain[-1] if chain else ROOT_FOLDER_ID

    def resolve_chain(self, path: Sequence[str]) -> list[str]:
        """Return the folder id of every segment of ``path``, in order."""
        parent_id = ROOT_FOLDER_ID
        chain: list[str] = []
        for name in path:
            parent_id = self._resolve_segment(name, parent_id)
            chain.append(parent_id)
        return chain

    def invalidate(self, path: Sequence[str]) -> None:
        """Forget cached ids along ``path`` so the next resolve asks the store again."""
        parent_id = ROOT_FOLDER_ID
        for name in path:
            key = (name, parent_id)
            folder_id = self.cache.get(key)
            self.cache.discard(key)
            if folder_id is None:
                return
            parent_id = folder_id

    def _resolve_segment(self, name: str, parent_id: str) -> str:
        key = (name, parent_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        with self._locks.for_key(key):
            # Another pipeline may have filled the entry while we waited.
            cached = self.cache.get(key)
            if cached is not None:
                return cached
            folder_id = self._find_or_create(name, parent_id)
            self.cache.put(key, folder_id)
            return folder_id

    def _find_or_create(self, name: str, parent_id: str) -> str:
        try:
            existing = self.store.list_folders(name, parent_id)
            if existing:
                if len(existing) > 1:
                    logger.warning(
                        "Found %d remote folders named '%s' under %s; using %s",
                        len(existing),
                        name,
                        parent_id,
                        existing[0].folder_id,
                    )
                return existing[0].folder_id
            logger.info("Remote folder '%s' missing under %s; creating it", name, parent_id)
            return self.store.create_folder(name, parent_id)
        except Exception as exc:
            logger.error("Failed to resolve remote folder '%s' under %s: %s", name, parent_id, exc)
            raise RemoteFolderError(
                f"Unable to resolve remote folder '{name}' under {parent_id}: {exc}"
            ) from exc
