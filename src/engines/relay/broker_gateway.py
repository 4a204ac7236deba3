"""
Broker Gateway

Publishes job descriptors to the job topic and turns the reply topic into
a single lazy stream of ReplyMessage values. The stream long-polls the
broker until close() is called; close() also unblocks a poll in flight.
"""

import asyncio
from typing import AsyncIterator, List, Optional

from pydantic import ValidationError

from src.core.broker import IBroker
from src.core.exceptions import BrokerUnavailableError, SerializationError
from src.core.logging import get_logger
from src.core.metrics import record_job_published, record_reply
from src.engines.relay.schemas import JobDescriptor, ReplyMessage

logger = get_logger(__name__)


class BrokerGateway:
    """Owns the broker connection for the lifetime of the process."""

    def __init__(
        self,
        broker: IBroker,
        job_topic: str,
        reply_topic: str,
        poll_timeout: float = 1.0,
        poll_interval: float = 0.1,
        max_records: int = 100,
        error_backoff: float = 1.0
    ):
        self._broker = broker
        self.job_topic = job_topic
        self.reply_topic = reply_topic
        self.poll_timeout = poll_timeout
        self.poll_interval = poll_interval
        self.max_records = max_records
        self.error_backoff = error_backoff

        self._closed = asyncio.Event()
        self._subscribed = False

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    async def publish(self, job: JobDescriptor) -> None:
        """Send a job to the job topic.

        Raises:
            SerializationError: the descriptor could not be encoded
            BrokerUnavailableError: the broker rejected or never received it
        """
        try:
            payload = job.to_wire()
        except (TypeError, ValueError) as e:
            record_job_published("error")
            raise SerializationError(
                f"Failed to serialize job: {e}",
                details={"image_url": job.image_url}
            ) from e

        if self.closed:
            record_job_published("error")
            raise BrokerUnavailableError("Broker gateway is closed", topic=self.job_topic)

        try:
            await self._broker.publish(self.job_topic, payload)
        except BrokerUnavailableError:
            record_job_published("error")
            raise

        record_job_published("success")
        logger.info(
            "job_published",
            topic=self.job_topic,
            image_url=job.image_url,
            payload_bytes=len(payload)
        )

    def subscribe(self) -> AsyncIterator[ReplyMessage]:
        """Return the reply stream. It can only be taken once."""
        if self._subscribed:
            raise RuntimeError("Reply stream has already been subscribed")
        self._subscribed = True
        return self._reply_stream()

    async def close(self) -> None:
        """Stop the reply stream and release the broker connection."""
        if self._closed.is_set():
            return
        self._closed.set()
        await self._broker.close()
        logger.info("broker_gateway_closed")

    # =========================================================================
    # Internals
    # =========================================================================

    async def _reply_stream(self) -> AsyncIterator[ReplyMessage]:
        logger.info("reply_subscription_started", topic=self.reply_topic)

        while not self._closed.is_set():
            try:
                payloads = await self._poll_until_closed()
            except Exception as e:
                if self._closed.is_set():
                    break
                logger.error(
                    "reply_poll_failed",
                    topic=self.reply_topic,
                    error=str(e),
                    error_type=type(e).__name__
                )
                await self._sleep_until_closed(self.error_backoff)
                continue

            if payloads is None:
                break

            for payload in payloads:
                reply = self._decode(payload)
                if reply is not None:
                    yield reply

            await self._sleep_until_closed(self.poll_interval)

        logger.info("reply_subscription_stopped", topic=self.reply_topic)

    async def _poll_until_closed(self) -> Optional[List[bytes]]:
        """One poll cycle; None means the gateway closed while waiting."""
        poll = asyncio.ensure_future(
            self._broker.poll(self.reply_topic, self.poll_timeout, self.max_records)
        )
        closed = asyncio.ensure_future(self._closed.wait())
        try:
            done, _ = await asyncio.wait(
                {poll, closed},
                return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            closed.cancel()
            if not poll.done():
                poll.cancel()

        if poll in done:
            return poll.result()
        return None

    async def _sleep_until_closed(self, seconds: float):
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._closed.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def _decode(self, payload: bytes) -> Optional[ReplyMessage]:
        try:
            reply = ReplyMessage.model_validate_json(payload)
        except ValidationError as e:
            record_reply("malformed")
            logger.warning(
                "malformed_reply",
                topic=self.reply_topic,
                error=str(e),
                payload_preview=payload[:200].decode("utf-8", errors="replace")
            )
            return None

        logger.info("reply_received", updated_image_url=reply.updated_image_url)
        return reply
