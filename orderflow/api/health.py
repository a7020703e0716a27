"""
Health endpoints.

Liveness has no dependencies; readiness probes the database and the tables
the service writes to.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import inspect

from orderflow.core.database import Database

logger = logging.getLogger("orderflow")

router = APIRouter(tags=["health"])

REQUIRED_TABLES = ("orders", "users", "analytics_events", "daily_reports", "payment_events")


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz(request: Request):
    """Readiness check: DB connectivity + required tables."""
    db: Database = request.app.state.db
    try:
        with db.engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")

        inspector = inspect(db.engine)
        missing = [t for t in REQUIRED_TABLES if not inspector.has_table(t)]
        if missing:
            detail = f"missing tables: {', '.join(missing)}"
            logger.warning("readyz.missing_tables", extra={"detail": detail})
            return JSONResponse(status_code=503, content={"status": "error", "detail": detail})

        return {"status": "ok"}
    except Exception as e:
        logger.error("readyz.failed", extra={"error": str(e)})
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})
