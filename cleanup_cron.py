import argparse
import time
from datetime import date, datetime, timezone
from pathlib import Path

import schedule

import config
from logger import get_logger, setup_logging

logger = get_logger(__name__)


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def delete_files_not_modified_today(folder: Path, today: date | None = None) -> list[Path]:
    """Delete files in folder whose UTC modification date is not today."""
    today = today or _utc_today()
    deleted: list[Path] = []
    if not folder.exists():
        logger.warning("cleanup_folder_missing", folder=str(folder))
        return deleted

    for path in folder.iterdir():
        try:
            if not path.is_file():
                continue
            modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc).date()
            if modified == today:
                continue
            path.unlink()
        except OSError as exc:
            logger.error("cleanup_delete_failed", path=str(path), error=str(exc))
            continue
        deleted.append(path)
        logger.info("cleanup_deleted", path=str(path))
    return deleted


def run_cleanup(folders: list[Path] | None = None) -> list[Path]:
    logger.info("cleanup_started")
    deleted: list[Path] = []
    for folder in folders or [config.UPLOAD_FOLDER, config.OUTPUT_FOLDER]:
        deleted.extend(delete_files_not_modified_today(folder))
    logger.info("cleanup_finished", deleted=len(deleted))
    return deleted


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Delete uploads and generated invitations not modified today, once a day."
    )
    parser.add_argument("--at", default=config.CLEANUP_TIME, help="Daily run time, HH:MM (local time).")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit.")
    return parser.parse_args()


def main() -> None:
    setup_logging(config.LOG_LEVEL, config.LOG_JSON)
    args = parse_args()
    if args.once:
        run_cleanup()
        return

    schedule.every().day.at(args.at).do(run_cleanup)
    logger.info("cleanup_scheduled", at=args.at)
    while True:
        schedule.run_pending()
        time.sleep(30)


if __name__ == "__main__":
    main()
