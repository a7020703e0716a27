"""
Blob storage for backup exports.

LocalBlobStore keeps the bucket layout (`backups/<run id>/<collection>.json`
plus a metadata sidecar) on the local filesystem.
"""
import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Protocol


class BlobStore(Protocol):
    def write_json(self, path: str, payload: Any, metadata: Optional[Dict[str, str]] = None) -> str:
        """Write `payload` as JSON at `path`; returns the stored path."""
        ...

    def delete_older_than(self, prefix: str, cutoff: datetime) -> int:
        """Delete blobs under `prefix` last modified before `cutoff`; returns the count."""
        ...


class LocalBlobStore:
    def __init__(self, root: str):
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if target != self.root and self.root not in target.parents:
            raise ValueError(f"Path escapes blob root: {path}")
        return target

    def write_json(self, path: str, payload: Any, metadata: Optional[Dict[str, str]] = None) -> str:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)

        # Write-then-rename so a crashed run never leaves a half-written export
        fd, tmp = tempfile.mkstemp(dir=target.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=2, default=str)
            os.replace(tmp, target)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

        if metadata:
            sidecar = target.with_name(target.name + ".meta.json")
            sidecar.write_text(
                json.dumps({"content_type": "application/json", "metadata": metadata}, indent=2),
                encoding="utf-8",
            )
        return path

    def read_json(self, path: str) -> Any:
        return json.loads(self._resolve(path).read_text(encoding="utf-8"))

    def delete_older_than(self, prefix: str, cutoff: datetime) -> int:
        base = self._resolve(prefix)
        if not base.exists():
            return 0
        if cutoff.tzinfo is None:
            cutoff = cutoff.replace(tzinfo=timezone.utc)

        deleted = 0
        for file in sorted(p for p in base.rglob("*") if p.is_file()):
            modified = datetime.fromtimestamp(file.stat().st_mtime, timezone.utc)
            if modified < cutoff:
                file.unlink()
                deleted += 1
        return deleted
