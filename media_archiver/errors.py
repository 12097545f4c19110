"""Exceptions raised by the archiving pipeline."""

from __future__ import annotations


class ArchiveError(Exception):
    """Base class for pipeline failures."""


class StagingError(ArchiveError):
    """Attachment bytes could not be written to local disk."""


class TranscodeError(ArchiveError):
    """The external transcoder failed or produced no output."""


class RemoteStoreError(ArchiveError):
    """A call to the remote storage service failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteFolderError(ArchiveError):
    """A remote folder could not be looked up or created."""


class UploadError(ArchiveError):
    """The staged file could not be uploaded."""


class AccessGrantError(ArchiveError):
    """Granting read access to one identity failed. Never fatal."""


class TransportError(ArchiveError):
    """An inbound message envelope could not be read."""
