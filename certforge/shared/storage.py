from __future__ import annotations

import logging
import os
import tempfile
from abc import ABC, abstractmethod

from ..constants import BUCKETS
from .errors import AssetNotFoundError, StorageError

logger = logging.getLogger("certforge.storage")


def ensure_dir(path: str) -> None:
    """Create directory if missing (mkdir -p equivalent)."""
    os.makedirs(path, exist_ok=True)


def write_atomic(path: str, data: bytes) -> None:
    """Write data to a temporary file then atomically rename to target path."""
    dir_path = os.path.dirname(path)
    ensure_dir(dir_path)
    fd, tmp_path = tempfile.mkstemp(dir=dir_path, prefix=".tmp-")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)


class StorageGateway(ABC):
    """Named byte blobs grouped by bucket."""

    @abstractmethod
    def save(self, bucket: str, name: str, data: bytes) -> str:
        """Store ``data`` and return a location reference."""

    @abstractmethod
    def get(self, bucket: str, name: str) -> bytes:
        ...

    @abstractmethod
    def exists(self, bucket: str, name: str) -> bool:
        ...

    @abstractmethod
    def delete(self, bucket: str, name: str) -> bool:
        ...

    @abstractmethod
    def list(self, bucket: str) -> list[str]:
        ...


class LocalStorage(StorageGateway):
    def __init__(self, root: str):
        self.root = os.path.realpath(root)

    def _bucket_dir(self, bucket: str) -> str:
        if bucket not in BUCKETS:
            raise StorageError(f"Unknown storage bucket: {bucket!r}")
        return os.path.join(self.root, bucket)

    def path_for(self, bucket: str, name: str) -> str:
        bucket_dir = self._bucket_dir(bucket)
        raw = (name or "").strip()
        if not raw or os.path.isabs(raw):
            raise StorageError(f"Invalid storage name: {name!r}")
        resolved = os.path.realpath(os.path.join(bucket_dir, raw))
        if not resolved.startswith(f"{os.path.realpath(bucket_dir)}{os.sep}"):
            raise StorageError(f"Storage name escapes bucket {bucket}: {name!r}")
        return resolved

    def save(self, bucket: str, name: str, data: bytes) -> str:
        path = self.path_for(bucket, name)
        try:
            write_atomic(path, data)
        except OSError as exc:
            raise StorageError(f"Could not write {bucket}/{name}: {exc}") from exc
        logger.debug("[STORAGE] wrote bucket=%s name=%s bytes=%d", bucket, name, len(data))
        return f"{bucket}/{name}"

    def get(self, bucket: str, name: str) -> bytes:
        path = self.path_for(bucket, name)
        try:
            with open(path, "rb") as handle:
                return handle.read()
        except FileNotFoundError:
            raise AssetNotFoundError(f"File not found in storage: {bucket}/{name}") from None
        except OSError as exc:
            raise StorageError(f"Could not read {bucket}/{name}: {exc}") from exc

    def exists(self, bucket: str, name: str) -> bool:
        try:
            return os.path.isfile(self.path_for(bucket, name))
        except StorageError:
            return False

    def delete(self, bucket: str, name: str) -> bool:
        path = self.path_for(bucket, name)
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageError(f"Could not delete {bucket}/{name}: {exc}") from exc
        logger.info("[STORAGE] deleted bucket=%s name=%s", bucket, name)
        return True

    def list(self, bucket: str) -> list[str]:
        bucket_dir = self._bucket_dir(bucket)
        if not os.path.isdir(bucket_dir):
            return []
        return sorted(
            name
            for name in os.listdir(bucket_dir)
            if not name.startswith(".tmp-")
            and os.path.isfile(os.path.join(bucket_dir, name))
        )
