"""Upload staged files into a resolved remote folder."""

from __future__ import annotations

import logging

from .drive_client import RemoteStore
from .errors import UploadError
from .models import StagedFile, UploadRecord

logger = logging.getLogger(__name__)


class Uploader:
    """Single-attempt uploads. The local file is never touched here."""

    def __init__(self, store: RemoteStore) -> None:
        self.store = store

    def upload(self, staged: StagedFile, file_name: str, parent_id: str) -> UploadRecord:
        logger.info("Uploading '%s' to remote folder %s", file_name, parent_id)
        try:
            remote_id = self.store.upload_file(
                staged.local_path, file_name, staged.mime_type, parent_id
            )
        except Exception as exc:
            logger.error("Upload of '%s' failed: %s", file_name, exc)
            raise UploadError(f"Unable to upload {staged.local_path}: {exc}") from exc

        if not remote_id:
            logger.error("Remote store returned no id for '%s'", file_name)
            raise UploadError(f"Upload of {staged.local_path} returned no remote id")

        logger.info("File %s uploaded, remote id %s", file_name, remote_id)
        return UploadRecord(remote_file_id=remote_id, file_name=file_name, mime_type=staged.mime_type)
