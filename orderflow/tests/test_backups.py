"""
Backup exports and manifests.

Exports go to a LocalBlobStore under tmp_path.
"""
import json

import pytest
from sqlalchemy import Column, MetaData, String, Table, select

from orderflow.core.auth import Caller
from orderflow.core.database import BACKUP_TABLES, backup_logs
from orderflow.core.errors import InvalidArgumentError, PermissionDeniedError, UnauthenticatedError
from orderflow.features.backups import service as backup_service
from orderflow.features.backups.service import create_manual_backup, new_backup_id, run_backup
from orderflow.tests.factories import FIXED_NOW, auth_headers, make_order, make_user

ADMIN = Caller(uid="root", is_admin=True)


def _manifests(db):
    with db.session() as session:
        return session.execute(select(backup_logs).order_by(backup_logs.c.timestamp)).all()


@pytest.fixture
def ghost_collection(monkeypatch):
    """A registered collection whose table was never created."""
    ghost = Table("ghost_users", MetaData(), Column("id", String(32), primary_key=True))
    monkeypatch.setitem(BACKUP_TABLES, "ghost_users", ghost)
    return "ghost_users"


def test_backup_ids():
    assert new_backup_id("daily_scheduled", FIXED_NOW) == f"backup-2024-03-15-{int(FIXED_NOW.timestamp() * 1000)}"
    assert new_backup_id("manual", FIXED_NOW).startswith("manual-backup-2024-03-15-")


def test_backup_exports_each_collection(db, blob_store, tmp_path):
    make_user(db, "alice")
    for i in range(3):
        make_order(db, f"o{i}")

    manifest = run_backup(db, blob_store, ["users", "orders"], now=FIXED_NOW)

    assert manifest.status == "completed"
    assert [(c.collection, c.status, c.document_count) for c in manifest.collections] == [
        ("users", "success", 1),
        ("orders", "success", 3),
    ]
    exported = blob_store.read_json(manifest.collections[1].file_name)
    assert sorted(doc["id"] for doc in exported) == ["o0", "o1", "o2"]

    sidecar = tmp_path / "blobs" / "backups" / manifest.id / "orders.json.meta.json"
    meta = json.loads(sidecar.read_text())
    assert meta["metadata"]["document_count"] == "3"
    assert meta["metadata"]["collection"] == "orders"


def test_one_failed_collection_does_not_stop_the_rest(db, blob_store, ghost_collection):
    for i in range(3):
        make_order(db, f"o{i}")

    manifest = run_backup(db, blob_store, [ghost_collection, "orders"], now=FIXED_NOW)

    ghost, orders_result = manifest.collections
    assert ghost.status == "failed"
    assert ghost.error
    assert orders_result.status == "success"
    assert orders_result.document_count == 3

    rows = _manifests(db)
    assert len(rows) == 1
    assert rows[0].status == "completed"
    assert rows[0].collections[0]["status"] == "failed"


def test_manifest_write_failure_records_failed_manifest(db, blob_store, monkeypatch):
    real_write = backup_service._write_manifest
    calls = []

    def flaky_write(database, manifest):
        calls.append(manifest.status)
        if len(calls) == 1:
            raise RuntimeError("storage offline")
        real_write(database, manifest)

    monkeypatch.setattr(backup_service, "_write_manifest", flaky_write)

    with pytest.raises(RuntimeError, match="storage offline"):
        run_backup(db, blob_store, ["orders"], now=FIXED_NOW)

    assert calls == ["completed", "failed"]
    rows = _manifests(db)
    assert len(rows) == 1
    assert rows[0].status == "failed"
    assert rows[0].error == "storage offline"


def test_manual_backup_requires_admin(db, blob_store):
    with pytest.raises(UnauthenticatedError):
        create_manual_backup(db, blob_store, None)
    with pytest.raises(PermissionDeniedError):
        create_manual_backup(db, blob_store, Caller(uid="alice"))
    assert _manifests(db) == []


def test_manual_backup_rejects_unknown_collections(db, blob_store):
    with pytest.raises(InvalidArgumentError, match="secrets"):
        create_manual_backup(db, blob_store, ADMIN, ["orders", "secrets"])
    assert _manifests(db) == []


def test_manual_backup_defaults_to_users_and_orders(db, blob_store):
    result = create_manual_backup(db, blob_store, ADMIN, now=FIXED_NOW)

    assert result["backup_id"].startswith("manual-backup-")
    assert [c.collection for c in result["collections"]] == ["users", "orders"]
    row = _manifests(db)[0]
    assert (row.backup_type, row.initiated_by) == ("manual", "root")


def test_manual_backup_via_api(client, db):
    make_user(db, "alice")

    denied = client.post("/api/backups/manual", json={}, headers=auth_headers("alice"))
    ok = client.post("/api/backups/manual", json={"collections": ["users"]}, headers=auth_headers("root", admin=True))

    assert denied.status_code == 403
    assert ok.status_code == 200
    # alice plus root, provisioned on first sight
    assert ok.json()["collections"][0]["document_count"] == 2


def test_blob_store_refuses_paths_outside_root(blob_store):
    with pytest.raises(ValueError):
        blob_store.write_json("../escape.json", {})
