import pytest
from unittest.mock import AsyncMock
from redis.exceptions import ConnectionError as RedisConnectionError

from src.core.broker import RedisBroker
from src.core.exceptions import BrokerUnavailableError


def make_broker():
    client = AsyncMock()
    return RedisBroker("redis://test:6379/0", client=client), client


@pytest.mark.asyncio
async def test_publish_appends_to_topic_list():
    broker, client = make_broker()

    await broker.publish("jobs", b"{}")

    client.rpush.assert_awaited_once_with("jobs", b"{}")


@pytest.mark.asyncio
async def test_poll_returns_empty_list_when_nothing_arrives():
    broker, client = make_broker()
    client.blpop.return_value = None

    assert await broker.poll("replies", timeout=0.5, max_records=10) == []
    client.blpop.assert_awaited_once_with(["replies"], timeout=0.5)
    client.lpop.assert_not_awaited()


@pytest.mark.asyncio
async def test_poll_drains_backlog_behind_first_record():
    broker, client = make_broker()
    client.blpop.return_value = (b"replies", b"one")
    client.lpop.return_value = [b"two", b"three"]

    records = await broker.poll("replies", timeout=1.0, max_records=10)

    assert records == [b"one", b"two", b"three"]
    client.lpop.assert_awaited_once_with("replies", 9)


@pytest.mark.asyncio
async def test_poll_with_single_record_budget_skips_drain():
    broker, client = make_broker()
    client.blpop.return_value = (b"replies", b"one")

    assert await broker.poll("replies", timeout=1.0, max_records=1) == [b"one"]
    client.lpop.assert_not_awaited()


@pytest.mark.asyncio
async def test_redis_errors_become_broker_unavailable():
    broker, client = make_broker()
    client.rpush.side_effect = RedisConnectionError("connection refused")
    client.blpop.side_effect = RedisConnectionError("connection refused")

    with pytest.raises(BrokerUnavailableError) as publish_error:
        await broker.publish("jobs", b"{}")
    assert publish_error.value.details["topic"] == "jobs"

    with pytest.raises(BrokerUnavailableError):
        await broker.poll("replies", timeout=1.0, max_records=10)


@pytest.mark.asyncio
async def test_ping_reports_unreachable_broker():
    broker, client = make_broker()
    client.ping.side_effect = RedisConnectionError("down")

    assert await broker.ping() is False


@pytest.mark.asyncio
async def test_close_releases_client():
    broker, client = make_broker()

    await broker.close()

    client.aclose.assert_awaited_once()
