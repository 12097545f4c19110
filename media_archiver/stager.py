"""Write attachment bytes to the local staging area."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable

from .errors import StagingError
from .models import StagedFile

logger = logging.getLogger(__name__)


def ensure_directories(directories: Iterable[Path]) -> None:
    """Create every staging directory up front. Safe to call repeatedly."""
    for directory in directories:
        try:
            Path(directory).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StagingError(f"Unable to create staging directory {directory}: {exc}") from exc


def stage(content: bytes, path: Path, mime_type: str) -> StagedFile:
    """Write ``content`` to ``path`` through a temp file so readers never see a partial file."""
    path = Path(path)
    tmp_name: str | None = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".part")
        with os.fdopen(fd, "wb") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as exc:
        logger.error("Failed to stage %s: %s", path, exc)
        raise StagingError(f"Unable to write {path}: {exc}") from exc
    finally:
        if tmp_name is not None:
            Path(tmp_name).unlink(missing_ok=True)

    logger.info("Staged %d bytes as %s", len(content), path)
    return StagedFile(local_path=path, mime_type=mime_type)


def remove_staged(staged: StagedFile) -> None:
    """Delete a staged file; a file that is already gone is not an error."""
    staged.local_path.unlink(missing_ok=True)
