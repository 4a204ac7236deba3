"""
Process Context

Everything the relay shares across requests lives on one AppContext: the
broker connection, the object store, the slot registry and the background
task that drains the reply topic. The FastAPI lifespan builds it, starts
it and stops it; handlers reach it through Depends().
"""

import asyncio
from dataclasses import dataclass, field
from typing import Optional

from src.core.broker import IBroker, create_broker
from src.core.config import Settings
from src.core.logging import get_logger
from src.core.storage import IStorage, create_storage
from src.engines.relay.blob_gateway import BlobGateway
from src.engines.relay.broker_gateway import BrokerGateway
from src.engines.relay.correlator import ResponseCorrelator
from src.engines.relay.services import ImageRelayService

logger = get_logger(__name__)


@dataclass
class AppContext:
    settings: Settings
    broker: IBroker
    storage: IStorage
    broker_gateway: BrokerGateway
    blob_gateway: BlobGateway
    correlator: ResponseCorrelator
    relay_service: ImageRelayService
    reply_task: Optional[asyncio.Task] = field(default=None)

    @property
    def reply_loop_running(self) -> bool:
        return self.reply_task is not None and not self.reply_task.done()

    async def start(self):
        """Start the reply subscription loop."""
        if self.reply_task is not None:
            raise RuntimeError("AppContext already started")

        self.reply_task = asyncio.create_task(
            self.correlator.run(self.broker_gateway.subscribe()),
            name="reply-subscription"
        )
        logger.info("reply_loop_started", topic=self.broker_gateway.reply_topic)

    async def stop(self, timeout: float = 5.0):
        """Close the broker gateway and wait for the reply loop to exit."""
        await self.broker_gateway.close()

        if self.reply_task is None:
            return

        try:
            await asyncio.wait_for(self.reply_task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("reply_loop_stop_timed_out", timeout_seconds=timeout)
        except Exception as e:
            logger.error("reply_loop_failed", error=str(e), error_type=type(e).__name__)

        logger.info("reply_loop_stopped", pending=self.correlator.pending_count)


def build_context(
    settings: Settings,
    broker: Optional[IBroker] = None,
    storage: Optional[IStorage] = None
) -> AppContext:
    """Wire the relay components. Pass broker/storage to override the configured backends."""
    broker = broker or create_broker(settings)
    storage = storage or create_storage(settings)

    broker_gateway = BrokerGateway(
        broker,
        job_topic=settings.BROKER_JOB_TOPIC,
        reply_topic=settings.BROKER_REPLY_TOPIC,
        poll_timeout=settings.BROKER_POLL_TIMEOUT_SECONDS,
        poll_interval=settings.BROKER_POLL_INTERVAL_SECONDS,
        max_records=settings.BROKER_MAX_RECORDS_PER_POLL,
        error_backoff=settings.BROKER_ERROR_BACKOFF_SECONDS
    )
    blob_gateway = BlobGateway(storage)
    correlator = ResponseCorrelator(default_timeout=settings.REPLY_TIMEOUT_SECONDS)
    relay_service = ImageRelayService(
        blob_gateway,
        broker_gateway,
        correlator,
        output_dir=settings.PROCESSED_IMAGES_DIR,
        reply_timeout=settings.REPLY_TIMEOUT_SECONDS
    )

    return AppContext(
        settings=settings,
        broker=broker,
        storage=storage,
        broker_gateway=broker_gateway,
        blob_gateway=blob_gateway,
        correlator=correlator,
        relay_service=relay_service
    )
