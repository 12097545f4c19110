"""Utility helpers shared across modules."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from hashlib import sha256
from pathlib import Path


def new_attachment_id() -> str:
    """Collision-resistant identifier used in staged file names."""
    return uuid.uuid4().hex


def utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


def base_mime_type(mime_type: str) -> str:
    """Strip parameters such as ``; codecs=opus`` and normalise case."""
    return (mime_type or "").split(";", 1)[0].strip().lower()


def sha256_file(path: Path, chunk_size: int = 1024 * 1024) -> str:
    """Hex digest of a file, read in chunks."""
    digest = sha256()
    with path.open("rb") as handle:
        for block in iter(lambda: handle.read(chunk_size), b""):
            digest.update(block)
    return digest.hexdigest()
