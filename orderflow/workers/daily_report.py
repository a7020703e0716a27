"""
Daily analytics rollup. Cron: 0 1 * * * in REPORT_TIMEZONE.

Builds yesterday's report by default; --date rebuilds a specific day (safe to
repeat, the report and its month are overwritten, never incremented).
"""
from __future__ import annotations

import argparse
import logging
from datetime import date
from typing import Optional, Sequence

from orderflow.core.config import settings
from orderflow.core.database import Database
from orderflow.core.logging import configure_logging
from orderflow.features.analytics.service import generate_daily_report

logger = logging.getLogger("orderflow.workers")


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Generate the daily analytics report.")
    parser.add_argument("--date", type=date.fromisoformat, default=None, help="YYYY-MM-DD (default: yesterday)")
    args = parser.parse_args(argv)

    configure_logging(settings.ENV)
    db = Database(settings.DATABASE_URL)
    try:
        report = generate_daily_report(db, settings, day=args.date)
    except Exception:
        logger.exception("worker.daily_report_failed")
        raise
    finally:
        db.dispose()

    logger.info("worker.daily_report_done", extra={"date": report.date})
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
