"""Rules that decide how an attachment is named and where it is filed."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Mapping

from .models import ClassificationResult, MediaCategory
from .utils import base_mime_type, new_attachment_id

logger = logging.getLogger(__name__)

STICKER_MIME_TYPE = "image/webp"
VCARD_MIME_TYPE = "text/x-vcard"

REMOTE_FOLDER_NAMES: dict[MediaCategory, str] = {
    MediaCategory.AUDIO: "Audios",
    MediaCategory.IMAGE: "Imagens",
    MediaCategory.STICKER: "Stickers",
    MediaCategory.VIDEO: "Videos",
    MediaCategory.CONTACT: "Contatos",
    MediaCategory.OTHER: "Outros",
}

# (file name prefix, extension) per category; voice notes are staged as opus.
FILE_NAMING: dict[MediaCategory, tuple[str, str]] = {
    MediaCategory.AUDIO: ("audio", ".mp3"),
    MediaCategory.IMAGE: ("image", ".jpeg"),
    MediaCategory.STICKER: ("sticker", ".webp"),
    MediaCategory.VIDEO: ("video", ".mp4"),
    MediaCategory.CONTACT: ("contact", ".vcf"),
    MediaCategory.OTHER: ("file", ""),
}
AUDIO_STAGED_EXTENSION = ".opus"


def categorize(mime_type: str) -> MediaCategory:
    """Map a declared media type onto a category. Order of checks matters."""
    raw = (mime_type or "").strip().lower()
    base = base_mime_type(mime_type)

    if raw.startswith("audio/ogg") or base == "audio/opus":
        return MediaCategory.AUDIO
    if raw.startswith("image"):
        if base == STICKER_MIME_TYPE:
            return MediaCategory.STICKER
        return MediaCategory.IMAGE
    if raw.startswith("video"):
        return MediaCategory.VIDEO
    if base == VCARD_MIME_TYPE:
        return MediaCategory.CONTACT
    return MediaCategory.OTHER


def classify(
    mime_type: str,
    *,
    root_folder: str,
    directories: Mapping[MediaCategory, Path],
    id_factory: Callable[[], str] = new_attachment_id,
) -> ClassificationResult:
    """Build the naming and filing decision for one attachment. No I/O."""
    category = categorize(mime_type)
    attachment_id = id_factory()
    prefix, extension = FILE_NAMING[category]
    stem = f"{prefix}_{attachment_id}"
    file_name = f"{stem}{extension}"
    staged_name = f"{stem}{AUDIO_STAGED_EXTENSION}" if category is MediaCategory.AUDIO else file_name

    result = ClassificationResult(
        category=category,
        attachment_id=attachment_id,
        file_name=file_name,
        staged_name=staged_name,
        local_dir=Path(directories[category]),
        remote_folder_path=(root_folder, REMOTE_FOLDER_NAMES[category]),
    )
    logger.debug("Classified media type %r as %s (%s)", mime_type, category.value, file_name)
    return result


class AttachmentClassifier:
    """Bind the configured root folder and staging directories to ``classify``."""

    def __init__(
        self,
        root_folder: str,
        directories: Mapping[MediaCategory, Path],
        id_factory: Callable[[], str] = new_attachment_id,
    ) -> None:
        self.root_folder = root_folder
        self.directories = dict(directories)
        self.id_factory = id_factory

    def classify(self, mime_type: str) -> ClassificationResult:
        return classify(
            mime_type,
            root_folder=self.root_folder,
            directories=self.directories,
            id_factory=self.id_factory,
        )
