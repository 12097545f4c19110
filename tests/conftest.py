"""Shared fixtures: an in-memory remote store and test settings."""

from __future__ import annotations

import itertools
import threading
import time
from pathlib import Path

import pytest

from media_archiver.config import Settings
from media_archiver.errors import RemoteStoreError
from media_archiver.models import RemoteFolder


class FakeStore:
    """Thread-safe stand-in for OneDrive that records every call."""

    def __init__(self, list_delay: float = 0.0) -> None:
        self.list_delay = list_delay
        self.folders: list[RemoteFolder] = []
        self.files: dict[str, dict] = {}
        self.grants: list[tuple[str, str]] = []
        self.create_calls: list[tuple[str, str]] = []
        self.fail_upload = False
        self.fail_grants_for: set[str] = set()
        self.fail_folder_names: set[str] = set()
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def _next_id(self, prefix: str) -> str:
        with self._lock:
            return f"{prefix}-{next(self._ids)}"

    def list_folders(self, name, parent_id):
        if name in self.fail_folder_names:
            raise RemoteStoreError("listing failed", status_code=500)
        with self._lock:
            found = [f for f in self.folders if f.name == name and f.parent_id == parent_id]
        # widen the window between the existence check and the create
        if self.list_delay:
            time.sleep(self.list_delay)
        return found

    def create_folder(self, name, parent_id):
        folder_id = self._next_id("folder")
        with self._lock:
            self.create_calls.append((name, parent_id))
            self.folders.append(RemoteFolder(folder_id=folder_id, name=name, parent_id=parent_id))
        return folder_id

    def upload_file(self, path, file_name, mime_type, parent_id):
        if self.fail_upload:
            raise RemoteStoreError("upload rejected", status_code=507)
        content = Path(path).read_bytes()
        file_id = self._next_id("file")
        with self._lock:
            self.files[file_id] = {
                "name": file_name,
                "mime_type": mime_type,
                "parent_id": parent_id,
                "content": content,
            }
        return file_id

    def grant_read_access(self, file_id, identity):
        if identity in self.fail_grants_for:
            raise RemoteStoreError(f"cannot share with {identity}", status_code=400)
        with self._lock:
            self.grants.append((file_id, identity))

    def files_named(self, name: str) -> list[dict]:
        return [f for f in self.files.values() if f["name"] == name]

    def folder_named(self, name: str) -> list[RemoteFolder]:
        return [f for f in self.folders if f.name == name]


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def settings(tmp_path, monkeypatch):
    for var in ("GRAPH_DRIVE_USER", "GRAPH_AUTH_MODE", "EMAILS_ACESSO_PERMITIDO", "ARCHIVE_LEDGER_DB"):
        monkeypatch.delenv(var, raising=False)
    media = tmp_path / "media"
    return Settings(
        _env_file=None,
        ROOT_FOLDER_NAME="Root",
        GRAPH_CLIENT_ID="client-id",
        LOCAL_AUDIO_DIR=str(media / "audios"),
        LOCAL_IMAGE_DIR=str(media / "imagens"),
        LOCAL_VIDEO_DIR=str(media / "videos"),
        LOCAL_TEXT_DIR=str(media / "textos"),
        LOCAL_CONTACTS_DIR=str(media / "contatos"),
        LOCAL_STICKERS_DIR=str(media / "stickers"),
        LOCAL_OTHER_DIR=str(media / "outros"),
        ARCHIVE_LEDGER_DB="",
        GRAPH_TOKEN_CACHE=str(tmp_path / "token_cache.bin"),
    )
