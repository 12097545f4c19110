"""Entry point that archives media posted in the monitored chat into OneDrive."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

from dotenv import load_dotenv

# Ensure project root is on sys.path when running as a script
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from media_archiver.config import Settings
from media_archiver.drive_client import OneDriveClient
from media_archiver.pipeline import ArchivePipeline, PipelineDispatcher, sweep
from media_archiver.stager import ensure_directories
from media_archiver.transport import SpoolTransport

load_dotenv()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Archive chat media attachments to OneDrive.")
    parser.add_argument("--once", action="store_true", help="Process the spool once, then exit")
    parser.add_argument("--spool-dir", type=Path, help="Override SPOOL_DIR")
    parser.add_argument("--max-messages", type=int, help="Limit how many messages to take per sweep")
    parser.add_argument("--dry-run", action="store_true", help="Classify and log without staging/uploading")
    return parser


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(threadName)s %(name)s %(message)s",
    )


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    settings = Settings()
    configure_logging(settings.log_level)

    if not args.dry_run:
        ensure_directories(settings.all_local_directories)

    store = OneDriveClient(settings)
    pipeline = ArchivePipeline.from_settings(settings, store, dry_run=args.dry_run)
    transport = SpoolTransport(
        args.spool_dir or settings.spool_dir,
        chat_name=settings.chat_group_name,
        chat_id=settings.chat_group_id,
    )
    dispatcher = PipelineDispatcher(
        pipeline,
        max_workers=settings.max_concurrent_pipelines,
        on_complete=transport.settle,
    )

    logging.info("Monitoring chat: %s (spool %s)", settings.chat_group_name, transport.spool_dir)
    try:
        while True:
            sweep(transport, dispatcher, args.max_messages)
            if args.once:
                break
            time.sleep(settings.poll_interval_seconds)
    except KeyboardInterrupt:
        logging.info("Interrupted; waiting for %s in-flight pipelines", dispatcher.in_flight)
    finally:
        dispatcher.drain()
        dispatcher.shutdown()

    stats = dispatcher.stats
    logging.info(
        "Run complete: received=%s archived=%s failed=%s skipped=%s dry_run=%s",
        stats["received"],
        stats["archived"],
        stats["failed"],
        stats["skipped"],
        stats["dry_run"],
    )


if __name__ == "__main__":
    main()
