"""
Broker Abstraction Layer

IBroker is the publish/poll capability the relay needs from a message
broker. RedisBroker maps each topic onto a Redis list: producers RPUSH,
the consumer long-polls with BLPOP and drains the backlog with LPOP.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from src.core.config import Settings
from src.core.exceptions import BrokerUnavailableError
from src.core.logging import get_logger

logger = get_logger(__name__)


class IBroker(ABC):
    """Interface for topic publish and long-poll consumption."""

    @abstractmethod
    async def publish(self, topic: str, payload: bytes) -> None:
        """Append one payload to a topic."""
        pass

    @abstractmethod
    async def poll(self, topic: str, timeout: float, max_records: int) -> List[bytes]:
        """
        Long-poll a topic.

        Blocks for at most ``timeout`` seconds waiting for the first record,
        then returns it together with up to ``max_records - 1`` records
        already queued behind it. Returns an empty list when nothing arrived.
        """
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """Check that the broker is reachable."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying connection."""
        pass


class RedisBroker(IBroker):
    """Redis list-backed broker."""

    def __init__(
        self,
        url: str,
        client_id: str = "producer-1",
        client: Optional[redis.Redis] = None
    ):
        self.url = url
        self.client_id = client_id
        self._client = client or redis.from_url(url, decode_responses=False)

    async def publish(self, topic: str, payload: bytes) -> None:
        try:
            await self._client.rpush(topic, payload)
        except (RedisError, OSError) as e:
            logger.error("broker_publish_failed", topic=topic, error=str(e))
            raise BrokerUnavailableError(
                "Failed to publish to broker",
                topic=topic
            ) from e

    async def poll(self, topic: str, timeout: float, max_records: int) -> List[bytes]:
        try:
            first = await self._client.blpop([topic], timeout=timeout)
            if first is None:
                return []

            _, value = first
            records = [value]

            if max_records > 1:
                rest = await self._client.lpop(topic, max_records - 1)
                if rest:
                    records.extend(rest)

            return records
        except (RedisError, OSError) as e:
            logger.error("broker_poll_failed", topic=topic, error=str(e))
            raise BrokerUnavailableError(
                "Failed to poll broker",
                topic=topic
            ) from e

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError):
            return False

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("broker_connection_closed", client_id=self.client_id)


def create_broker(settings: Settings) -> IBroker:
    """Build the broker backend described by settings."""
    return RedisBroker(settings.REDIS_URL, client_id=settings.BROKER_CLIENT_ID)
