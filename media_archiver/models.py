"""Typed containers shared across the pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional


class MediaCategory(str, Enum):
    """Content class an attachment is archived under."""

    AUDIO = "audio"
    IMAGE = "image"
    STICKER = "sticker"
    VIDEO = "video"
    CONTACT = "contact"
    OTHER = "other"


class PipelineState(str, Enum):
    RECEIVED = "received"
    CLASSIFIED = "classified"
    STAGED = "staged"
    TRANSCODED = "transcoded"
    FOLDER_RESOLVED = "folder_resolved"
    UPLOADED = "uploaded"
    ACCESS_GRANTED = "access_granted"
    CLEANED_UP = "cleaned_up"
    FAILED = "failed"


@dataclass(frozen=True)
class Attachment:
    """Media payload pulled from a chat message."""

    mime_type: str
    chat_id: str
    content: bytes = field(repr=False)
    message_id: Optional[str] = None
    caption: Optional[str] = None


@dataclass(frozen=True)
class ClassificationResult:
    """Where an attachment is staged locally and filed remotely.

    ``staged_name`` differs from ``file_name`` only when the bytes are
    written in one format and converted before upload (voice notes).
    """

    category: MediaCategory
    attachment_id: str
    file_name: str
    staged_name: str
    local_dir: Path
    remote_folder_path: tuple[str, ...]

    @property
    def local_path(self) -> Path:
        return self.local_dir / self.file_name

    @property
    def staged_path(self) -> Path:
        return self.local_dir / self.staged_name

    @property
    def needs_transcode(self) -> bool:
        return self.staged_name != self.file_name


@dataclass(frozen=True)
class StagedFile:
    """A file on local disk owned by exactly one pipeline."""

    local_path: Path
    mime_type: str


@dataclass(frozen=True)
class RemoteFolder:
    folder_id: str
    name: str
    parent_id: str


@dataclass(frozen=True)
class UploadRecord:
    remote_file_id: str
    file_name: str
    mime_type: str


@dataclass(frozen=True)
class AccessGrant:
    """Outcome of one read-access grant for one identity."""

    remote_file_id: str
    identity: str
    role: str = "reader"
    granted: bool = True
    error: Optional[str] = None


@dataclass
class PipelineOutcome:
    """Terminal report for one attachment run through the pipeline."""

    attachment_id: str
    state: PipelineState = PipelineState.RECEIVED
    history: list[PipelineState] = field(default_factory=lambda: [PipelineState.RECEIVED])
    classification: Optional[ClassificationResult] = None
    upload: Optional[UploadRecord] = None
    grants: list[AccessGrant] = field(default_factory=list)
    error: Optional[Exception] = None
    cleanup_error: Optional[str] = None

    def advance(self, state: PipelineState) -> None:
        self.state = state
        self.history.append(state)

    def fail(self, error: Exception) -> None:
        self.error = error
        self.advance(PipelineState.FAILED)

    @property
    def succeeded(self) -> bool:
        return self.state is PipelineState.CLEANED_UP

    @property
    def failed_grants(self) -> list[AccessGrant]:
        return [grant for grant in self.grants if not grant.granted]
