"""Inbound chat messages, read from a spool directory fed by the chat bridge.

The bridge process that holds the chat session writes one JSON envelope per
message::

    {"id": "...", "from": "<chat id>", "chatName": "KRATERA", "hasMedia": true,
     "body": "caption", "media": {"mimetype": "image/jpeg", "data": "<base64>"}}

Envelopes must appear atomically (written under another name, then renamed
to ``*.json``); a half-written envelope is rejected as malformed.
"""

from __future__ import annotations

import base64
import binascii
import logging
import shutil
import stat
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import TransportError
from .models import PipelineOutcome, PipelineState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MediaPayload:
    mime_type: str
    data: bytes = field(repr=False)
    filename: Optional[str] = None


class ChatMessage(Protocol):
    """What the pipeline needs from an inbound message."""

    message_id: str
    chat_id: str
    has_media: bool
    body: str

    def download_media(self) -> MediaPayload:
        ...


class MediaEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    mimetype: str
    data: str
    filename: Optional[str] = None


class MessageEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    message_id: str = Field(..., alias="id")
    chat_id: str = Field(..., alias="from")
    chat_name: Optional[str] = Field(None, alias="chatName")
    has_media: bool = Field(False, alias="hasMedia")
    body: str = ""
    media: Optional[MediaEnvelope] = None


@dataclass
class SpoolMessage:
    """A message backed by one envelope file in the spool directory."""

    message_id: str
    chat_id: str
    has_media: bool
    body: str
    path: Path
    _media: Optional[MediaEnvelope] = field(default=None, repr=False)

    def download_media(self) -> MediaPayload:
        if self._media is None:
            raise TransportError(f"Message {self.message_id} carries no media")
        try:
            data = base64.b64decode(self._media.data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise TransportError(f"Message {self.message_id} has invalid base64 media: {exc}") from exc
        return MediaPayload(mime_type=self._media.mimetype, data=data, filename=self._media.filename)


class SpoolTransport:
    """Yield envelopes for the monitored chat, oldest first.

    A yielded envelope stays on disk, claimed, until ``settle`` decides its
    fate from the pipeline outcome. Claimed envelopes are not yielded again.
    """

    REJECTED_DIR = "rejected"

    def __init__(self, spool_dir: Path, chat_name: str, chat_id: str | None = None) -> None:
        self.spool_dir = Path(spool_dir)
        self.chat_name = chat_name
        self.chat_id = chat_id
        self.spool_dir.mkdir(parents=True, exist_ok=True)
        self._claimed: set[Path] = set()
        self._lock = threading.Lock()

    def is_monitored(self, envelope: MessageEnvelope) -> bool:
        if self.chat_id:
            return envelope.chat_id == self.chat_id
        return envelope.chat_name == self.chat_name

    def poll(self, max_messages: int | None = None) -> Iterator[SpoolMessage]:
        """Yield messages from the monitored chat; other envelopes are dropped."""
        yielded = 0
        for path in self._pending():
            try:
                envelope = MessageEnvelope.model_validate_json(path.read_bytes())
            except ValidationError as exc:
                logger.error("Malformed envelope %s: %s", path.name, exc)
                self._reject(path)
                continue
            except OSError as exc:
                # removed by the bridge between listing and reading
                logger.debug("Skipping unreadable envelope %s: %s", path.name, exc)
                continue

            if not self.chat_id and envelope.chat_name is None:
                logger.error(
                    "Envelope %s has no chatName and CHAT_GROUP_ID is unset; cannot tell its chat",
                    path.name,
                )
                self._reject(path)
                continue

            if not self.is_monitored(envelope):
                logger.debug("Ignoring message %s from chat %s", envelope.message_id, envelope.chat_id)
                path.unlink(missing_ok=True)
                continue

            logger.info("Message received in %s: %s", self.chat_name, envelope.body)
            with self._lock:
                self._claimed.add(path)
            yield SpoolMessage(
                message_id=envelope.message_id,
                chat_id=envelope.chat_id,
                has_media=envelope.has_media and envelope.media is not None,
                body=envelope.body,
                path=path,
                _media=envelope.media,
            )
            yielded += 1
            if max_messages and yielded >= max_messages:
                return

    def acknowledge(self, message: SpoolMessage) -> None:
        """Delete the envelope; its media now lives elsewhere (or never existed)."""
        message.path.unlink(missing_ok=True)
        self._release(message.path)

    def reject(self, message: SpoolMessage) -> None:
        """Keep the envelope for an operator, out of the polling path."""
        if message.path.exists():
            self._reject(message.path)
        self._release(message.path)

    def settle(self, message: SpoolMessage, outcome: Optional[PipelineOutcome]) -> None:
        """Remove the envelope only once the media has been staged locally.

        Text messages are acknowledged. Runs that failed before staging are
        rejected so the media survives without being retried. Dry runs leave
        the envelope in place, claimed for the rest of the process.
        """
        if outcome is None:
            if message.has_media:
                self.reject(message)
            else:
                self.acknowledge(message)
            return
        if PipelineState.STAGED in outcome.history:
            self.acknowledge(message)
        elif outcome.state is PipelineState.FAILED:
            self.reject(message)

    @property
    def claimed(self) -> int:
        with self._lock:
            return len(self._claimed)

    def _release(self, path: Path) -> None:
        with self._lock:
            self._claimed.discard(path)

    def _pending(self) -> list[Path]:
        with self._lock:
            claimed = set(self._claimed)
        entries: list[tuple[float, str, Path]] = []
        for path in self.spool_dir.glob("*.json"):
            if path in claimed:
                continue
            try:
                info = path.stat()
            except OSError:
                # vanished between the listing and the stat
                continue
            if not stat.S_ISREG(info.st_mode):
                continue
            entries.append((info.st_mtime, path.name, path))
        return [path for _, _, path in sorted(entries)]

    def _reject(self, path: Path) -> None:
        target_dir = self.spool_dir / self.REJECTED_DIR
        target_dir.mkdir(parents=True, exist_ok=True)
        shutil.move(str(path), target_dir / path.name)
