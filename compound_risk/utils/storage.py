"""
Persistence backends for the hazard cache snapshot
A backend stores exactly one opaque payload under a fixed storage key
"""

import errno
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from compound_risk.exceptions import QuotaExceededError

logger = logging.getLogger(__name__)

_QUOTA_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}


class CacheStorage(ABC):
    """Durable storage for a single serialized cache snapshot"""

    @abstractmethod
    def load(self) -> Optional[bytes]:
        """Return the stored snapshot, or None if nothing was saved yet"""

    @abstractmethod
    def save(self, payload: bytes) -> None:
        """
        Replace the stored snapshot

        Raises:
            QuotaExceededError: If the backend has no room for the payload
        """

    def _check_quota(self, payload: bytes, max_bytes: Optional[int]) -> None:
        if max_bytes is not None and len(payload) > max_bytes:
            raise QuotaExceededError(
                f"Snapshot of {len(payload)} bytes exceeds storage quota of {max_bytes} bytes",
                details={"payload_bytes": len(payload), "max_bytes": max_bytes},
            )


class InMemoryCacheStorage(CacheStorage):
    """
    Process-local storage

    Used when no storage directory is configured, and in tests.
    """

    def __init__(self, max_bytes: Optional[int] = None):
        self.max_bytes = max_bytes
        self._payload: Optional[bytes] = None
        self._lock = threading.Lock()

    def load(self) -> Optional[bytes]:
        with self._lock:
            return self._payload

    def save(self, payload: bytes) -> None:
        self._check_quota(payload, self.max_bytes)
        with self._lock:
            self._payload = payload


class FileCacheStorage(CacheStorage):
    """
    JSON file storage, one file per storage key

    Writes go to a temporary file that atomically replaces the snapshot, so a
    crash mid-write never leaves a truncated snapshot behind.
    """

    def __init__(self, directory: str, storage_key: str, max_bytes: Optional[int] = None):
        self._root = Path(directory).expanduser()
        self._root.mkdir(parents=True, exist_ok=True)
        self.path = self._root / f"{storage_key}.json"
        self.max_bytes = max_bytes

    def load(self) -> Optional[bytes]:
        if not self.path.exists():
            return None
        try:
            return self.path.read_bytes()
        except OSError as e:
            logger.warning(f"Failed to read cache snapshot {self.path}: {e}")
            return None

    def save(self, payload: bytes) -> None:
        self._check_quota(payload, self.max_bytes)
        tmp_path = self.path.with_suffix(".json.tmp")
        try:
            tmp_path.write_bytes(payload)
            os.replace(tmp_path, self.path)
        except OSError as e:
            if tmp_path.exists():
                tmp_path.unlink()
            if e.errno in _QUOTA_ERRNOS:
                raise QuotaExceededError(
                    f"No space left for cache snapshot {self.path}",
                    details={"errno": e.errno},
                ) from e
            raise


def create_storage(
    directory: Optional[str], storage_key: str, max_bytes: Optional[int] = None
) -> CacheStorage:
    """
    Build the configured storage backend

    Args:
        directory: Snapshot directory; None selects in-memory storage
        storage_key: Fixed key (file stem) of the snapshot
        max_bytes: Optional snapshot size quota

    Returns:
        CacheStorage implementation
    """
    if directory:
        logger.info(f"Using file cache storage in {directory} (key={storage_key})")
        return FileCacheStorage(directory, storage_key, max_bytes=max_bytes)
    logger.info("Using in-memory cache storage")
    return InMemoryCacheStorage(max_bytes=max_bytes)
