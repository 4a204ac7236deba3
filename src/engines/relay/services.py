"""
Relay Service

Runs one uploaded image through the full round trip:

1. store the bytes (Upload Gateway)
2. build the job descriptor
3. register a reply slot and publish the job (Broker Gateway)
4. wait for the correlated reply (Response Correlator)
5. fetch the result object and copy it to the processed-images directory
"""

import asyncio
import html
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from src.core.exceptions import StorageIOError
from src.core.logging import get_logger, with_logging
from src.engines.relay.blob_gateway import BlobGateway
from src.engines.relay.broker_gateway import BrokerGateway
from src.engines.relay.builder import build_job_descriptor
from src.engines.relay.correlator import ResponseCorrelator
from src.engines.relay.schemas import JobDescriptor, ReplyMessage

logger = get_logger(__name__)

RESULT_FRAGMENT = "<div><img src='/images/{name}' class='uploaded-image' alt='Processed Image'></div>"


def render_fragment(rendered_name: str) -> str:
    """HTML fragment the upload page swaps in for one processed image."""
    return RESULT_FRAGMENT.format(name=html.escape(rendered_name, quote=True))


@dataclass(frozen=True)
class ProcessedImage:
    """Outcome of one upload."""
    source_name: str
    source_locator: str
    result_locator: str
    rendered_name: str

    @property
    def html(self) -> str:
        return render_fragment(self.rendered_name)


class ImageRelayService:
    """Per-request orchestration on top of the shared gateways and correlator."""

    def __init__(
        self,
        blob_gateway: BlobGateway,
        broker_gateway: BrokerGateway,
        correlator: ResponseCorrelator,
        output_dir: str = "./static/images",
        reply_timeout: float = 30.0
    ):
        self.blob_gateway = blob_gateway
        self.broker_gateway = broker_gateway
        self.correlator = correlator
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.reply_timeout = reply_timeout

        # Keeps slot registration order identical to publish order
        self._dispatch_lock = asyncio.Lock()

    async def process_image(
        self,
        name: str,
        data: bytes,
        timeout: Optional[float] = None
    ) -> ProcessedImage:
        """Store, dispatch, await and fetch one image.

        Raises:
            StoreUnavailableError, StorageIOError, NotFoundError: store failures
            SerializationError, BrokerUnavailableError: publish failures
            ReplyTimeoutError: no reply within the timeout
        """
        locator = await self._store_upload(data, name)
        job = build_job_descriptor(locator)

        reply = await self._dispatch_and_wait(job, timeout)

        rendered_name = await self._fetch_result(reply.updated_image_url)

        logger.info(
            "image_processed",
            source_locator=locator,
            result_locator=reply.updated_image_url,
            rendered_name=rendered_name
        )
        return ProcessedImage(
            source_name=name,
            source_locator=locator,
            result_locator=reply.updated_image_url,
            rendered_name=rendered_name
        )

    # =========================================================================
    # Stages
    # =========================================================================

    @with_logging("upload")
    async def _store_upload(self, data: bytes, name: str) -> str:
        return await self.blob_gateway.put(data, name)

    @with_logging("await_reply")
    async def _dispatch_and_wait(self, job: JobDescriptor, timeout: Optional[float]) -> ReplyMessage:
        async with self._dispatch_lock:
            slot = self.correlator.register()
            try:
                await self.broker_gateway.publish(job)
            except BaseException:
                self.correlator.discard(slot)
                raise

        return await self.correlator.wait(
            slot,
            self.reply_timeout if timeout is None else timeout
        )

    @with_logging("fetch_result")
    async def _fetch_result(self, result_locator: str) -> str:
        data = await self.blob_gateway.get(result_locator)

        suffix = Path(result_locator).suffix or ".png"
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        rendered_name = f"processed_image_{timestamp}_{uuid.uuid4().hex[:8]}{suffix}"

        try:
            await asyncio.to_thread((self.output_dir / rendered_name).write_bytes, data)
        except OSError as e:
            logger.error("processed_image_write_failed", rendered_name=rendered_name, error=str(e))
            raise StorageIOError(
                "Failed to write processed image",
                locator=result_locator
            ) from e

        return rendered_name
