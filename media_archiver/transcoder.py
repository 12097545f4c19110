"""FFmpeg wrapper that turns staged voice notes into mp3 files."""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Sequence

from .errors import TranscodeError
from .models import StagedFile

logger = logging.getLogger(__name__)

MP3_MIME_TYPE = "audio/mpeg"


class FFmpegTranscoder:
    """Run ffmpeg as a child process and wait for it to finish."""

    def __init__(self, binary: str = "ffmpeg", extra_args: Sequence[str] = ()) -> None:
        self.binary = binary
        self.extra_args = list(extra_args)

    def _resolve_binary(self) -> str:
        path = shutil.which(self.binary)
        if not path:
            raise TranscodeError(f"ffmpeg binary '{self.binary}' not found in PATH")
        return path

    def build_command(self, source: Path, target: Path) -> list[str]:
        return [
            self._resolve_binary(),
            "-y",
            "-loglevel",
            "error",
            "-i",
            str(source),
            "-vn",
            "-codec:a",
            "libmp3lame",
            *self.extra_args,
            str(target),
        ]

    def to_mp3(self, staged: StagedFile, target_path: Path) -> StagedFile:
        """Convert ``staged`` into ``target_path`` and delete the original on success.

        On failure the original is left in place and any partial output is
        removed, so nothing in the wrong format can be uploaded.
        """
        source = staged.local_path
        target = Path(target_path)
        cmd = self.build_command(source, target)
        logger.info("Transcoding %s -> %s", source, target)
        logger.debug("ffmpeg command: %s", " ".join(cmd))

        try:
            completed = subprocess.run(
                cmd, capture_output=True, text=True, errors="replace", check=False
            )
        except OSError as exc:
            target.unlink(missing_ok=True)
            raise TranscodeError(f"Unable to start ffmpeg for {source}: {exc}") from exc

        if completed.returncode != 0:
            target.unlink(missing_ok=True)
            stderr = (completed.stderr or "").strip()
            logger.error("ffmpeg exited with %s for %s: %s", completed.returncode, source, stderr)
            raise TranscodeError(
                f"ffmpeg exited with code {completed.returncode} converting {source}: {stderr}"
            )
        if not target.is_file():
            raise TranscodeError(f"ffmpeg reported success but {target} was not written")

        try:
            source.unlink(missing_ok=True)
        except OSError as exc:
            # the mp3 is complete; a leftover original does not block the upload
            logger.warning("Could not remove original %s after conversion: %s", source, exc)
        else:
            logger.info("Removed original %s after conversion", source)
        return StagedFile(local_path=target, mime_type=MP3_MIME_TYPE)
