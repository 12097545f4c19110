"""SQLite-backed audit trail of archived attachments."""

from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Iterable, Sequence

import sqlite_utils

from .models import AccessGrant, UploadRecord
from .utils import utc_now_iso


class UploadLedger:
    """Append one row per uploaded file. Never consulted to skip work."""

    TABLE = "uploads"

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        # pipelines record from worker threads
        conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.db = sqlite_utils.Database(conn)
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        self.db[self.TABLE].create(
            {
                "attachment_id": str,
                "remote_file_id": str,
                "file_name": str,
                "mime_type": str,
                "remote_folder_path": str,
                "checksum": str,
                "granted_to": str,
                "grant_failures": str,
                "uploaded_at": str,
            },
            pk="attachment_id",
            if_not_exists=True,
        )

    def record(
        self,
        *,
        attachment_id: str,
        upload: UploadRecord,
        remote_folder_path: Sequence[str],
        checksum: str,
        grants: Iterable[AccessGrant] = (),
    ) -> None:
        grants = list(grants)
        row = {
            "attachment_id": attachment_id,
            "remote_file_id": upload.remote_file_id,
            "file_name": upload.file_name,
            "mime_type": upload.mime_type,
            "remote_folder_path": "/".join(remote_folder_path),
            "checksum": checksum,
            "granted_to": json.dumps([g.identity for g in grants if g.granted]),
            "grant_failures": json.dumps([g.identity for g in grants if not g.granted]),
            "uploaded_at": utc_now_iso(),
        }
        with self._lock:
            self.db[self.TABLE].upsert(row, pk="attachment_id")

    def count(self) -> int:
        with self._lock:
            return self.db[self.TABLE].count

    def get(self, attachment_id: str) -> dict | None:
        with self._lock:
            rows = list(
                self.db[self.TABLE].rows_where("attachment_id = ?", [attachment_id], limit=1)
            )
        return rows[0] if rows else None
