"""
storage.py — Blob storage for uploaded files.

Two backends share one interface: put / get / delete by opaque id.
Neither survives a restart; the disk backend clears its directory when it
opens and when it closes.
"""

import logging
import os
import re
import threading
import uuid
from dataclasses import dataclass
from typing import Optional, Protocol

import config
from errors import NotFoundError

logger = logging.getLogger(__name__)

# uuid4().hex, the only names this store ever writes
_BLOB_ID = re.compile(r"[0-9a-f]{32}")


@dataclass(frozen=True)
class BlobRef:
    """What a session holds: the blob id plus the metadata captured at upload."""

    id: str
    name: str
    media_type: str
    size: int


@dataclass(frozen=True)
class Blob:
    ref: BlobRef
    data: bytes


class BlobStore(Protocol):
    backend_name: str

    def put(self, data: bytes, name: str, media_type: str) -> BlobRef:
        ...

    def get(self, blob_id: str) -> Blob:
        ...

    def delete(self, blob_id: str) -> bool:
        ...

    def __len__(self) -> int:
        ...

    def close(self) -> None:
        ...


class MemoryBlobStore:
    backend_name = "Memory"

    def __init__(self):
        self._blobs: dict[str, Blob] = {}
        self._lock = threading.Lock()

    def put(self, data: bytes, name: str, media_type: str) -> BlobRef:
        ref = BlobRef(id=uuid.uuid4().hex, name=name, media_type=media_type, size=len(data))
        with self._lock:
            self._blobs[ref.id] = Blob(ref=ref, data=bytes(data))
        return ref

    def get(self, blob_id: str) -> Blob:
        with self._lock:
            blob = self._blobs.get(blob_id)
        if blob is None:
            raise NotFoundError()
        return blob

    def delete(self, blob_id: str) -> bool:
        with self._lock:
            return self._blobs.pop(blob_id, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._blobs)

    def close(self) -> None:
        with self._lock:
            self._blobs.clear()


class LocalDiskBlobStore:
    """Payloads on disk under ``base_path/<id>``, metadata in memory."""

    backend_name = "LocalDisk"

    def __init__(self, base_path: str = config.UPLOAD_DIR):
        self.base_path = base_path
        os.makedirs(self.base_path, exist_ok=True)
        self._refs: dict[str, BlobRef] = {}
        self._lock = threading.Lock()
        removed = self._clear_directory()
        if removed:
            logger.info(f"Removed {removed} stale upload(s) from {self.base_path}")

    def _path(self, blob_id: str) -> str:
        return os.path.join(self.base_path, blob_id)

    def _clear_directory(self) -> int:
        removed = 0
        for fname in os.listdir(self.base_path):
            fpath = os.path.join(self.base_path, fname)
            if _BLOB_ID.fullmatch(fname) and os.path.isfile(fpath):
                try:
                    os.remove(fpath)
                    removed += 1
                except OSError as e:
                    logger.error(f"LocalDisk cleanup failed for {fpath}: {e}")
        return removed

    def put(self, data: bytes, name: str, media_type: str) -> BlobRef:
        ref = BlobRef(id=uuid.uuid4().hex, name=name, media_type=media_type, size=len(data))
        with open(self._path(ref.id), "wb") as f:
            f.write(data)
        with self._lock:
            self._refs[ref.id] = ref
        return ref

    def get(self, blob_id: str) -> Blob:
        with self._lock:
            ref = self._refs.get(blob_id)
        if ref is None:
            raise NotFoundError()
        try:
            with open(self._path(blob_id), "rb") as f:
                return Blob(ref=ref, data=f.read())
        except FileNotFoundError:
            raise NotFoundError() from None

    def delete(self, blob_id: str) -> bool:
        with self._lock:
            known = self._refs.pop(blob_id, None) is not None
        try:
            os.remove(self._path(blob_id))
        except FileNotFoundError:
            return known
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._refs)

    def close(self) -> None:
        with self._lock:
            self._refs.clear()
        self._clear_directory()


def create_blob_store(backend: str = config.STORAGE_BACKEND) -> BlobStore:
    if backend == "local":
        return LocalDiskBlobStore(config.UPLOAD_DIR)
    if backend != "memory":
        logger.warning(f"Unknown STORAGE_BACKEND {backend!r}. Falling back to memory.")
    return MemoryBlobStore()


_store: Optional[BlobStore] = None
_store_lock = threading.Lock()


def get_blob_store() -> BlobStore:
    """FastAPI dependency returning the process-wide blob store."""
    global _store
    with _store_lock:
        if _store is None:
            _store = create_blob_store()
            logger.info(f"Blob store ready: {_store.backend_name}")
        return _store
