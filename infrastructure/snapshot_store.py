# infrastructure/snapshot_store.py
import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from config import settings
from core.domain import VectorEntry, VectorSnapshot
from core.exceptions import PersistenceError
from core.interfaces import ISnapshotStore

logger = logging.getLogger(settings.LOGGER_NAME)


class JsonSnapshotStore(ISnapshotStore):
    """
    Stores the whole vector index as one JSON document.

    Layout: {dimension, total_vectors, last_updated, vectors: {chunk_id: {vector, metadata}}}.
    Writes go to a temp file which then replaces the snapshot, so a crash
    mid-write leaves the previous snapshot intact.
    """

    def __init__(self, path: Optional[str] = None):
        self._path = Path(path) if path else Path(settings.VECTOR_DB_PATH) / settings.VECTOR_SNAPSHOT_FILENAME
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    async def load_snapshot(self) -> Optional[VectorSnapshot]:
        if not self._path.exists():
            return None
        data = await asyncio.to_thread(self._read)

        entries = [
            VectorEntry(
                chunk_id=chunk_id,
                vector=item.get("vector") or [],
                metadata=item.get("metadata") or {}
            )
            for chunk_id, item in (data.get("vectors") or {}).items()
        ]
        logger.info(f"[SNAPSHOT] Loaded {len(entries)} vectors from {self._path}")
        return VectorSnapshot(dimension=data.get("dimension"), entries=entries)

    def _read(self) -> dict:
        with open(self._path, 'r', encoding='utf-8') as f:
            return json.load(f)

    async def save_snapshot(self, snapshot: VectorSnapshot) -> None:
        data = {
            "dimension": snapshot.dimension,
            "total_vectors": len(snapshot.entries),
            "last_updated": datetime.now(timezone.utc).isoformat(),
            "vectors": {
                e.chunk_id: {"vector": list(e.vector), "metadata": e.metadata}
                for e in snapshot.entries
            }
        }
        try:
            await asyncio.to_thread(self._write, data)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to save vector snapshot to {self._path}: {e}") from e
        logger.info(f"[SNAPSHOT] Saved {len(snapshot.entries)} vectors.")

    def _write(self, data: dict) -> None:
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, ensure_ascii=False)
        os.replace(tmp_path, self._path)
