"""
Daily backup. Cron: 0 2 * * * in REPORT_TIMEZONE.

Per-collection failures are recorded in the manifest and do not fail the
run; a manifest write failure does.
"""
from __future__ import annotations

import argparse
import logging
from typing import Optional, Sequence

from orderflow.core.config import settings
from orderflow.core.database import Database
from orderflow.core.logging import configure_logging
from orderflow.features.backups.service import run_backup
from orderflow.features.backups.storage import LocalBlobStore

logger = logging.getLogger("orderflow.workers")


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Export collections to blob storage.")
    parser.add_argument(
        "--collections",
        nargs="+",
        default=list(settings.BACKUP_COLLECTIONS),
        help="Collections to export (default: BACKUP_COLLECTIONS)",
    )
    args = parser.parse_args(argv)

    configure_logging(settings.ENV)
    db = Database(settings.DATABASE_URL)
    try:
        manifest = run_backup(db, LocalBlobStore(settings.BACKUP_ROOT), args.collections, "daily_scheduled")
    except Exception:
        logger.exception("worker.daily_backup_failed")
        raise
    finally:
        db.dispose()

    failed = [c.collection for c in manifest.collections if c.status == "failed"]
    if failed:
        logger.warning("worker.daily_backup_partial", extra={"backup_id": manifest.id, "failed": ",".join(failed)})
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
