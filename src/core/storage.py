"""
Storage Abstraction Layer - The Bridge Pattern

Provides a clean interface for object storage with LocalStorage, a
filesystem-backed bucket keyed by caller-supplied object names.
"""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path

from src.core.config import Settings
from src.core.exceptions import StoreUnavailableError


class IStorage(ABC):
    """Interface for object storage operations - The Bridge"""

    @abstractmethod
    async def put(self, data: bytes, name: str) -> str:
        """
        Store an object under a caller-supplied name.

        Args:
            data: Raw bytes of the object
            name: Object name; an existing object with that name is replaced

        Returns:
            Locator that can be passed to get()
        """
        pass

    @abstractmethod
    async def get(self, locator: str) -> bytes:
        """
        Read an object back.

        Raises:
            FileNotFoundError: if no object exists for the locator
        """
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """Check that the store is reachable."""
        pass


class LocalStorage(IStorage):
    """Local filesystem storage: one directory per bucket, no versioning."""

    def __init__(self, base_path: str = "./data/storage", bucket: str = "images"):
        self.base_path = Path(base_path)
        self.bucket = bucket
        self.bucket_path = self.base_path / bucket
        self.bucket_path.mkdir(parents=True, exist_ok=True)

    def _ensure_available(self):
        if not self.bucket_path.is_dir():
            raise StoreUnavailableError(
                f"Bucket '{self.bucket}' is not available",
                details={"bucket": self.bucket}
            )

    def _object_path(self, locator: str) -> Path:
        """Resolve a locator inside the bucket; anything outside does not exist."""
        root = self.bucket_path.resolve()
        path = (root / locator).resolve()
        if path == root or root not in path.parents:
            raise FileNotFoundError(f"Object not found: {locator}")
        return path

    def _write(self, path: Path, data: bytes):
        with open(path, "wb") as f:
            f.write(data)

    def _read(self, path: Path) -> bytes:
        with open(path, "rb") as f:
            return f.read()

    async def put(self, data: bytes, name: str) -> str:
        self._ensure_available()

        # Object names are flat within a bucket
        object_name = Path(name).name
        if object_name in ("", ".", ".."):
            raise ValueError(f"Invalid object name: {name!r}")

        await asyncio.to_thread(self._write, self.bucket_path / object_name, data)
        return object_name

    async def get(self, locator: str) -> bytes:
        self._ensure_available()
        path = self._object_path(locator)
        return await asyncio.to_thread(self._read, path)

    async def ping(self) -> bool:
        return self.bucket_path.is_dir()


def create_storage(settings: Settings) -> IStorage:
    """Build the storage backend described by settings."""
    return LocalStorage(
        base_path=settings.LOCAL_STORAGE_PATH,
        bucket=settings.STORAGE_BUCKET
    )
