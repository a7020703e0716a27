"""
Backups and retention.

run_backup exports each collection independently: one collection failing is
recorded in the manifest and the rest still run. run_retention_sweep deletes
expired rows in bounded batches, one transaction per batch, so a large
backlog never becomes one giant delete. Both are safe to overlap with a
manual run: exports are keyed by run id and deletes are delete-if-older-than.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import Column, Table, delete, insert, select

from orderflow.core.auth import Caller
from orderflow.core.config import Settings, settings as default_settings
from orderflow.core.database import (
    BACKUP_TABLES,
    Database,
    analytics_events,
    backup_logs,
    cleanup_logs,
    notification_logs,
    page_views,
    utc_now,
)
from orderflow.core.errors import InvalidArgumentError, PermissionDeniedError, UnauthenticatedError
from orderflow.features.backups.storage import BlobStore
from orderflow.models.backup import BackupManifest, CleanupResult, CollectionBackupResult

logger = logging.getLogger("orderflow.backups")

DEFAULT_MANUAL_COLLECTIONS = ("users", "orders")


def new_backup_id(backup_type: str, now: datetime) -> str:
    prefix = "manual-backup" if backup_type == "manual" else "backup"
    return f"{prefix}-{now.date().isoformat()}-{int(now.timestamp() * 1000)}"


def backup_collection(db: Database, store: BlobStore, name: str, backup_id: str, now: datetime) -> CollectionBackupResult:
    """Export one collection. Never raises; failures come back as a failed result."""
    try:
        table = BACKUP_TABLES.get(name)
        if table is None:
            raise LookupError(f"Unknown collection: {name}")

        with db.session() as session:
            rows = session.execute(select(table)).all()
        documents = [dict(r._mapping) for r in rows]

        file_name = f"backups/{backup_id}/{name}.json"
        store.write_json(
            file_name,
            documents,
            metadata={
                "backup_id": backup_id,
                "collection": name,
                "document_count": str(len(documents)),
                "created_at": now.isoformat(),
            },
        )
    except Exception as e:
        logger.error("backup.collection_failed", extra={"backup_id": backup_id, "collection": name, "error": str(e)})
        return CollectionBackupResult(collection=name, status="failed", error=str(e) or e.__class__.__name__)

    logger.info("backup.collection_exported", extra={"backup_id": backup_id, "collection": name, "document_count": len(documents)})
    return CollectionBackupResult(collection=name, status="success", document_count=len(documents), file_name=file_name)


def _write_manifest(db: Database, manifest: BackupManifest) -> None:
    with db.session() as session:
        session.execute(
            insert(backup_logs).values(
                id=manifest.id,
                backup_type=manifest.backup_type,
                status=manifest.status,
                collections=[c.model_dump() for c in manifest.collections],
                error=manifest.error,
                initiated_by=manifest.initiated_by,
                timestamp=manifest.timestamp,
            )
        )


def run_backup(
    db: Database,
    store: BlobStore,
    collections: Sequence[str],
    backup_type: str = "daily_scheduled",
    *,
    initiated_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> BackupManifest:
    """
    Export `collections` and record one manifest.

    Collection failures do not raise. If the manifest itself cannot be
    written, a terminal failed manifest is attempted and the error re-raised.
    """
    now = now or utc_now()
    backup_id = new_backup_id(backup_type, now)
    logger.info("backup.started", extra={"backup_id": backup_id, "backup_type": backup_type})

    results = [backup_collection(db, store, name, backup_id, now) for name in collections]
    manifest = BackupManifest(
        id=backup_id,
        backup_type=backup_type,
        status="completed",
        collections=results,
        timestamp=now,
        initiated_by=initiated_by,
    )

    try:
        _write_manifest(db, manifest)
    except Exception as e:
        logger.exception("backup.manifest_failed", extra={"backup_id": backup_id})
        failed = manifest.model_copy(update={"status": "failed", "error": str(e) or e.__class__.__name__})
        try:
            _write_manifest(db, failed)
        except Exception:
            logger.exception("backup.failure_manifest_failed", extra={"backup_id": backup_id})
        raise

    failures = sum(1 for r in results if r.status == "failed")
    logger.info(
        "backup.completed",
        extra={"backup_id": backup_id, "collections_total": len(results), "collections_failed": failures},
    )
    return manifest


def create_manual_backup(
    db: Database,
    store: BlobStore,
    caller: Optional[Caller],
    collections: Optional[Sequence[str]] = None,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    if caller is None:
        raise UnauthenticatedError("User must be authenticated")
    if not caller.is_admin:
        raise PermissionDeniedError("Admin access required")

    names = list(collections or DEFAULT_MANUAL_COLLECTIONS)
    unknown = [n for n in names if n not in BACKUP_TABLES]
    if unknown:
        raise InvalidArgumentError(f"Unknown collections: {', '.join(unknown)}")

    manifest = run_backup(db, store, names, "manual", initiated_by=caller.uid, now=now)
    return {"success": True, "backup_id": manifest.id, "collections": manifest.collections}


def purge_older_than(
    db: Database,
    table: Table,
    timestamp_column: Column,
    cutoff: datetime,
    batch_size: int,
) -> Tuple[int, int]:
    """Delete rows older than `cutoff`, `batch_size` at a time. Returns (deleted, batches)."""
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")

    pk = list(table.primary_key.columns)[0]
    deleted = 0
    batches = 0
    while True:
        with db.session() as session:
            ids = session.execute(
                select(pk).where(timestamp_column < cutoff).order_by(timestamp_column).limit(batch_size)
            ).scalars().all()
            if not ids:
                break
            result = session.execute(delete(table).where(pk.in_(ids)))
            deleted += result.rowcount or 0
            batches += 1
        if len(ids) < batch_size:
            break
    return deleted, batches


def _retention_targets(cfg: Settings) -> List[Tuple[str, Table, Column, int]]:
    return [
        ("analytics_events", analytics_events, analytics_events.c.timestamp, cfg.RETENTION_ANALYTICS_DAYS),
        ("page_views", page_views, page_views.c.timestamp, cfg.RETENTION_PAGE_VIEWS_DAYS),
        ("backup_logs", backup_logs, backup_logs.c.timestamp, cfg.RETENTION_BACKUP_LOGS_DAYS),
        ("notification_logs", notification_logs, notification_logs.c.timestamp, cfg.RETENTION_NOTIFICATION_LOGS_DAYS),
    ]


def _record_cleanup(db: Database, status: str, now: datetime, results: Sequence[CleanupResult] = (), error: Optional[str] = None) -> None:
    with db.session() as session:
        session.execute(
            insert(cleanup_logs).values(
                cleanup_type="weekly_scheduled",
                status=status,
                results=[r.model_dump(mode="json") for r in results],
                error=error,
                timestamp=now,
            )
        )


def run_retention_sweep(
    db: Database,
    store: Optional[BlobStore] = None,
    cfg: Optional[Settings] = None,
    *,
    now: Optional[datetime] = None,
) -> List[CleanupResult]:
    """Purge expired rows per category (and stale temp blobs) and log the counts."""
    cfg = cfg or default_settings
    now = now or utc_now()
    results: List[CleanupResult] = []

    try:
        for category, table, column, days in _retention_targets(cfg):
            cutoff = now - timedelta(days=days)
            deleted, batches = purge_older_than(db, table, column, cutoff, cfg.RETENTION_BATCH_SIZE)
            results.append(CleanupResult(category=category, deleted_count=deleted, batches=batches, cutoff=cutoff))
            logger.info("retention.purged", extra={"category": category, "deleted_count": deleted, "batches": batches})

        if store is not None:
            cutoff = now - timedelta(days=cfg.RETENTION_TEMP_FILES_DAYS)
            deleted = store.delete_older_than("temp", cutoff)
            results.append(CleanupResult(category="temp_files", deleted_count=deleted, batches=1 if deleted else 0, cutoff=cutoff))

        _record_cleanup(db, "completed", now, results)
    except Exception as e:
        logger.exception("retention.failed")
        try:
            _record_cleanup(db, "failed", now, results, error=str(e) or e.__class__.__name__)
        except Exception:
            logger.exception("retention.failure_log_failed")
        raise

    return results
