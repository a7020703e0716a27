from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict


class CollectionBackupResult(BaseModel):
    """Outcome of exporting one collection."""
    model_config = ConfigDict(frozen=True)

    collection: str
    status: Literal["success", "failed"]
    document_count: Optional[int] = None
    file_name: Optional[str] = None
    error: Optional[str] = None


class BackupManifest(BaseModel):
    """One backup run. Written once; only a terminal failure may follow."""
    model_config = ConfigDict(frozen=True)

    id: str
    backup_type: Literal["daily_scheduled", "manual"]
    status: Literal["completed", "failed"]
    collections: List[CollectionBackupResult]
    timestamp: datetime
    initiated_by: Optional[str] = None
    error: Optional[str] = None


class CleanupResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: str
    deleted_count: int
    batches: int
    cutoff: datetime
