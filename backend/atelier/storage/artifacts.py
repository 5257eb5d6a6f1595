"""Content storage for generated artifacts.

Files are append-only under ``{base_dir}/{owner_id}/{job_id}/``: every save
gets a fresh name, so a duplicate unit run never clobbers an artifact an
earlier write already referenced.
"""

import asyncio
import os
import uuid
from typing import Optional

from atelier.core.config import ARTIFACT_DIR


class ArtifactStore:
    def __init__(self, base_dir: Optional[str] = None) -> None:
        self._base_dir = base_dir or ARTIFACT_DIR

    @property
    def base_dir(self) -> str:
        return self._base_dir

    def get_job_dir(self, owner_id: str, job_id: str) -> str:
        job_dir = os.path.join(self._base_dir, _safe(owner_id), _safe(job_id))
        os.makedirs(job_dir, exist_ok=True)
        return job_dir

    def resolve(self, ref: str) -> str:
        path = os.path.normpath(os.path.join(self._base_dir, ref))
        if not path.startswith(os.path.normpath(self._base_dir) + os.sep):
            raise ValueError(f"artifact ref escapes storage root: {ref}")
        return path

    def exists(self, ref: str) -> bool:
        return os.path.exists(self.resolve(ref))

    def read(self, ref: str) -> bytes:
        with open(self.resolve(ref), "rb") as fh:
            return fh.read()

    async def save(
        self, owner_id: str, job_id: str, filename: str, data: bytes
    ) -> str:
        """Persist bytes and return the artifact ref (path relative to root)."""
        return await asyncio.to_thread(self._save_sync, owner_id, job_id, filename, data)

    def _save_sync(
        self, owner_id: str, job_id: str, filename: str, data: bytes
    ) -> str:
        job_dir = self.get_job_dir(owner_id, job_id)
        stem, ext = os.path.splitext(_safe(filename))
        name = f"{stem}-{uuid.uuid4().hex[:8]}{ext or '.png'}"
        final_path = os.path.join(job_dir, name)
        tmp_path = f"{final_path}.part"
        with open(tmp_path, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, final_path)
        return os.path.relpath(final_path, self._base_dir)


def _safe(part: str) -> str:
    cleaned = "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in part)
    return cleaned.strip(".") or "_"


_store: Optional[ArtifactStore] = None


def get_store() -> ArtifactStore:
    global _store
    if _store is None:
        _store = ArtifactStore()
    return _store


def set_store(store: Optional[ArtifactStore]) -> None:
    global _store
    _store = store
