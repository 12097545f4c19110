"""Per-attachment pipeline and the worker pool that runs pipelines concurrently."""

from __future__ import annotations

import logging
import sqlite3
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Optional

from .access import AccessController
from .classifier import AttachmentClassifier
from .config import Settings
from .drive_client import RemoteStore
from .errors import ArchiveError, TransportError
from .folder_resolver import RemoteFolderResolver
from .ledger import UploadLedger
from .models import Attachment, PipelineOutcome, PipelineState
from .stager import remove_staged, stage
from .transcoder import FFmpegTranscoder
from .transport import ChatMessage, SpoolTransport
from .uploader import Uploader
from .utils import sha256_file

logger = logging.getLogger(__name__)


class ArchivePipeline:
    """Classify, stage, transcode, file, upload, share and clean up one attachment.

    Staging, transcoding, folder resolution and upload failures end the run in
    ``FAILED`` and leave the staged file on disk. Grant failures are only
    recorded. Nothing is retried.
    """

    def __init__(
        self,
        classifier: AttachmentClassifier,
        transcoder: FFmpegTranscoder,
        resolver: RemoteFolderResolver,
        uploader: Uploader,
        access: AccessController,
        ledger: UploadLedger | None = None,
        dry_run: bool = False,
    ) -> None:
        self.classifier = classifier
        self.transcoder = transcoder
        self.resolver = resolver
        self.uploader = uploader
        self.access = access
        self.ledger = ledger
        self.dry_run = dry_run

    @classmethod
    def from_settings(
        cls, settings: Settings, store: RemoteStore, dry_run: bool = False
    ) -> "ArchivePipeline":
        ledger = None
        if settings.archive_ledger_db is not None and not dry_run:
            ledger = UploadLedger(settings.archive_ledger_db)
        return cls(
            classifier=AttachmentClassifier(settings.root_folder_name, settings.local_directories),
            transcoder=FFmpegTranscoder(settings.ffmpeg_binary, settings.ffmpeg_extra_args),
            resolver=RemoteFolderResolver(store),
            uploader=Uploader(store),
            access=AccessController(store, settings.allowed_emails),
            ledger=ledger,
            dry_run=dry_run,
        )

    def process(self, attachment: Attachment) -> PipelineOutcome:
        outcome = PipelineOutcome(attachment_id=attachment.message_id or "")
        try:
            classification = self.classifier.classify(attachment.mime_type)
            outcome.attachment_id = classification.attachment_id
            outcome.classification = classification
            outcome.advance(PipelineState.CLASSIFIED)

            if self.dry_run:
                logger.info(
                    "[DRY-RUN] Would archive %s (%s) as '%s' under %s",
                    attachment.message_id,
                    attachment.mime_type,
                    classification.file_name,
                    "/".join(classification.remote_folder_path),
                )
                return outcome

            staged = stage(attachment.content, classification.staged_path, attachment.mime_type)
            outcome.advance(PipelineState.STAGED)

            if classification.needs_transcode:
                staged = self.transcoder.to_mp3(staged, classification.local_path)
                outcome.advance(PipelineState.TRANSCODED)

            parent_id = self.resolver.resolve(classification.remote_folder_path)
            outcome.advance(PipelineState.FOLDER_RESOLVED)

            record = self.uploader.upload(staged, classification.file_name, parent_id)
            outcome.upload = record
            outcome.advance(PipelineState.UPLOADED)
        except ArchiveError as exc:
            logger.error(
                "Pipeline for attachment %s failed after %s: %s",
                outcome.attachment_id,
                outcome.state.value,
                exc,
            )
            outcome.fail(exc)
            return outcome

        if self.access.enabled:
            outcome.grants = self.access.grant_all(record)
            outcome.advance(PipelineState.ACCESS_GRANTED)
            if outcome.failed_grants:
                logger.warning(
                    "Attachment %s: %d of %d access grants failed",
                    outcome.attachment_id,
                    len(outcome.failed_grants),
                    len(outcome.grants),
                )

        self._record(outcome, staged)
        self._cleanup(outcome, staged)
        return outcome

    def _record(self, outcome: PipelineOutcome, staged) -> None:
        if self.ledger is None or outcome.upload is None or outcome.classification is None:
            return
        try:
            self.ledger.record(
                attachment_id=outcome.attachment_id,
                upload=outcome.upload,
                remote_folder_path=outcome.classification.remote_folder_path,
                checksum=sha256_file(staged.local_path),
                grants=outcome.grants,
            )
        except (OSError, sqlite3.Error) as exc:
            logger.warning("Could not write ledger entry for %s: %s", outcome.attachment_id, exc)

    def _cleanup(self, outcome: PipelineOutcome, staged) -> None:
        try:
            remove_staged(staged)
            logger.info("Local file %s removed", staged.local_path)
        except OSError as exc:
            logger.warning("Could not remove %s after upload: %s", staged.local_path, exc)
            outcome.cleanup_error = str(exc)
        outcome.advance(PipelineState.CLEANED_UP)


class PipelineDispatcher:
    """Run one pipeline per inbound media message on a bounded worker pool."""

    def __init__(
        self,
        pipeline: ArchivePipeline,
        max_workers: int = 4,
        on_complete: Optional[Callable[[ChatMessage, Optional[PipelineOutcome]], None]] = None,
    ) -> None:
        self.pipeline = pipeline
        self.on_complete = on_complete
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="archive")
        self._in_flight: set[Future] = set()
        self._lock = threading.Lock()
        self.stats = {"received": 0, "archived": 0, "failed": 0, "skipped": 0, "dry_run": 0}

    def submit(self, message: ChatMessage) -> Future:
        """Queue a message; returns a future resolving to its outcome (None when skipped)."""
        future = self._executor.submit(self._handle, message)
        with self._lock:
            self._in_flight.add(future)
        future.add_done_callback(self._forget)
        return future

    def drain(self, timeout: float | None = None) -> None:
        """Wait for every pipeline submitted so far."""
        with self._lock:
            pending = set(self._in_flight)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self, wait_for_pending: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_pending)

    @property
    def in_flight(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._in_flight.discard(future)

    def _count(self, key: str) -> None:
        with self._lock:
            self.stats[key] += 1

    def _handle(self, message: ChatMessage) -> Optional[PipelineOutcome]:
        outcome: Optional[PipelineOutcome] = None
        try:
            outcome = self._run(message)
        except Exception:
            logger.exception("Unexpected error while archiving message %s", message.message_id)
            self._count("failed")
        if self.on_complete is not None:
            try:
                self.on_complete(message, outcome)
            except OSError:
                logger.exception("Could not settle message %s", message.message_id)
        return outcome

    def _run(self, message: ChatMessage) -> Optional[PipelineOutcome]:
        if not message.has_media:
            self._count("skipped")
            return None

        self._count("received")
        try:
            payload = message.download_media()
        except TransportError as exc:
            logger.error("Could not download media of message %s: %s", message.message_id, exc)
            outcome = PipelineOutcome(attachment_id=message.message_id)
            outcome.fail(exc)
            self._count("failed")
            return outcome

        attachment = Attachment(
            mime_type=payload.mime_type,
            chat_id=message.chat_id,
            content=payload.data,
            message_id=message.message_id,
            caption=message.body or None,
        )
        outcome = self.pipeline.process(attachment)
        if outcome.state is PipelineState.FAILED:
            self._count("failed")
        elif self.pipeline.dry_run:
            self._count("dry_run")
        else:
            self._count("archived")
        return outcome


def sweep(transport: SpoolTransport, dispatcher: PipelineDispatcher, max_messages: int | None = None) -> int:
    """Hand every pending message to the dispatcher; returns how many were taken.

    Envelopes are settled by the dispatcher's completion callback, not here.
    """
    taken = 0
    for message in transport.poll(max_messages=max_messages):
        dispatcher.submit(message)
        taken += 1
    return taken
