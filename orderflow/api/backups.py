"""
Backup API routes.

- POST /api/backups/manual: Admin-initiated export of selected collections
"""
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from orderflow.api.deps import get_blob_store, get_db
from orderflow.core.auth import Caller, get_optional_caller
from orderflow.core.database import Database
from orderflow.features.backups.service import create_manual_backup
from orderflow.features.backups.storage import BlobStore

router = APIRouter(prefix="/backups", tags=["backups"])


class ManualBackupRequest(BaseModel):
    collections: Optional[List[str]] = None


@router.post("/manual")
def manual_backup(
    body: ManualBackupRequest,
    caller: Optional[Caller] = Depends(get_optional_caller),
    db: Database = Depends(get_db),
    store: BlobStore = Depends(get_blob_store),
):
    result = create_manual_backup(db, store, caller, body.collections)
    return {
        "success": True,
        "backup_id": result["backup_id"],
        "collections": [c.model_dump() for c in result["collections"]],
    }
