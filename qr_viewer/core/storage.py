"""
File storage

Uploaded images and generated QR artifacts share one base directory that
the app serves read-only at /uploads. Storage keys are paths relative to
that directory; they are what the database records.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path

from qr_viewer.core.logging import get_logger

logger = get_logger(__name__)

PUBLIC_PREFIX = "/uploads"


class IStorage(ABC):
    """Where upload bytes live. Keys are opaque to callers."""

    @abstractmethod
    async def save(self, file_data: bytes, original_name: str, folder: str = "") -> str:
        """Store bytes under a fresh name keeping only original_name's extension. Returns the key."""

    @abstractmethod
    async def save_as(self, file_data: bytes, storage_key: str) -> str:
        """Store bytes under a caller-chosen key."""

    @abstractmethod
    async def delete(self, storage_key: str) -> bool:
        """Best-effort removal. True if something was removed; never raises."""

    @abstractmethod
    def path_for(self, storage_key: str) -> Path:
        pass

    @abstractmethod
    def url_for(self, storage_key: str) -> str:
        pass


class LocalStorage(IStorage):
    """Files on the local disk under base_path."""

    def __init__(self, base_path: str = "./uploads"):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _unique_name(original_name: str) -> str:
        # <timestamp>_<12 hex>.<ext>; sortable and collision-free
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return f"{stamp}_{uuid.uuid4().hex[:12]}{Path(original_name).suffix.lower()}"

    def _write(self, storage_key: str, file_data: bytes):
        target = self.base_path / storage_key
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(file_data)

    async def save(self, file_data: bytes, original_name: str, folder: str = "") -> str:
        name = self._unique_name(original_name)
        storage_key = f"{folder}/{name}" if folder else name
        self._write(storage_key, file_data)
        return storage_key

    async def save_as(self, file_data: bytes, storage_key: str) -> str:
        self._write(storage_key, file_data)
        return storage_key

    async def delete(self, storage_key: str) -> bool:
        try:
            (self.base_path / storage_key).unlink()
        except FileNotFoundError:
            logger.info("storage_delete_missing", storage_key=storage_key)
            return False
        except OSError as e:
            logger.warning("storage_delete_failed", storage_key=storage_key, error=str(e))
            return False
        return True

    def path_for(self, storage_key: str) -> Path:
        return self.base_path / storage_key

    def url_for(self, storage_key: str) -> str:
        return f"{PUBLIC_PREFIX}/{storage_key}"
