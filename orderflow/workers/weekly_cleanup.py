"""Weekly retention sweep. Cron: 0 3 * * 0 in REPORT_TIMEZONE."""
from __future__ import annotations

import argparse
import logging
from typing import Optional, Sequence

from orderflow.core.config import settings
from orderflow.core.database import Database
from orderflow.core.logging import configure_logging
from orderflow.features.backups.service import run_retention_sweep
from orderflow.features.backups.storage import LocalBlobStore

logger = logging.getLogger("orderflow.workers")


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Delete expired analytics, logs and temp blobs.")
    parser.add_argument("--batch-size", type=int, default=None, help="Override RETENTION_BATCH_SIZE")
    args = parser.parse_args(argv)

    cfg = settings
    if args.batch_size is not None:
        cfg = settings.model_copy(update={"RETENTION_BATCH_SIZE": args.batch_size})

    configure_logging(cfg.ENV)
    db = Database(cfg.DATABASE_URL)
    try:
        results = run_retention_sweep(db, LocalBlobStore(cfg.BACKUP_ROOT), cfg)
    except Exception:
        logger.exception("worker.weekly_cleanup_failed")
        raise
    finally:
        db.dispose()

    logger.info("worker.weekly_cleanup_done", extra={"deleted_total": sum(r.deleted_count for r in results)})
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
