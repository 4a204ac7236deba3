"""
Upload/Fetch Gateway

Wraps the object store and normalizes its failures into the relay's error
taxonomy. No retries happen here; callers decide.
"""

from src.core.exceptions import (
    ImageryRelayError,
    NotFoundError,
    StorageIOError,
    StoreUnavailableError,
)
from src.core.logging import get_logger
from src.core.metrics import record_blob_operation
from src.core.storage import IStorage

logger = get_logger(__name__)


class BlobGateway:
    """put/get against the object store."""

    def __init__(self, storage: IStorage):
        self._storage = storage

    async def put(self, data: bytes, name: str) -> str:
        """Store ``data`` under ``name`` and return its locator.

        Raises:
            StoreUnavailableError: the store cannot be reached
            StorageIOError: the write failed
        """
        try:
            locator = await self._storage.put(data, name)
        except ImageryRelayError:
            record_blob_operation("put", "error")
            raise
        except (ConnectionError, TimeoutError) as e:
            record_blob_operation("put", "error")
            logger.error("object_store_unavailable", operation="put", error=str(e))
            raise StoreUnavailableError("Object store unavailable") from e
        except (OSError, ValueError) as e:
            record_blob_operation("put", "error")
            logger.error("object_store_failed", locator=name, error=str(e))
            raise StorageIOError("Failed to store object", locator=name) from e

        record_blob_operation("put", "success")
        logger.info("object_stored", locator=locator, size_bytes=len(data))
        return locator

    async def get(self, locator: str) -> bytes:
        """Read the object behind ``locator``.

        Raises:
            NotFoundError: no such object
            StoreUnavailableError: the store cannot be reached
            StorageIOError: the read failed
        """
        try:
            data = await self._storage.get(locator)
        except ImageryRelayError:
            record_blob_operation("get", "error")
            raise
        except FileNotFoundError as e:
            record_blob_operation("get", "not_found")
            raise NotFoundError(f"Object not found: {locator}", locator=locator) from e
        except (ConnectionError, TimeoutError) as e:
            record_blob_operation("get", "error")
            logger.error("object_store_unavailable", operation="get", error=str(e))
            raise StoreUnavailableError("Object store unavailable") from e
        except OSError as e:
            record_blob_operation("get", "error")
            logger.error("object_fetch_failed", locator=locator, error=str(e))
            raise StorageIOError("Failed to read object", locator=locator) from e

        record_blob_operation("get", "success")
        logger.info("object_fetched", locator=locator, size_bytes=len(data))
        return data
