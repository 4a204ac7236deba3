import asyncio
import json
from collections import defaultdict
from typing import AsyncGenerator, Dict, List, Tuple

import pytest
from httpx import AsyncClient, ASGITransport

from src.core.broker import IBroker
from src.core.config import Settings
from src.core.context import build_context
from src.core.exceptions import BrokerUnavailableError
from src.core.storage import LocalStorage
from src.main import create_app


class FakeBroker(IBroker):
    """In-memory topics backed by asyncio queues."""

    def __init__(self):
        self.topics: Dict[str, asyncio.Queue] = defaultdict(asyncio.Queue)
        self.published: List[Tuple[str, bytes]] = []
        self.fail_publish = False
        self.failing_polls = 0
        self.close_calls = 0

    async def publish(self, topic: str, payload: bytes) -> None:
        if self.fail_publish:
            raise BrokerUnavailableError("broker is down", topic=topic)
        self.published.append((topic, payload))
        await self.topics[topic].put(payload)

    async def poll(self, topic: str, timeout: float, max_records: int) -> List[bytes]:
        if self.failing_polls:
            self.failing_polls -= 1
            raise BrokerUnavailableError("poll failed", topic=topic)

        queue = self.topics[topic]
        try:
            first = await asyncio.wait_for(queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return []

        records = [first]
        while len(records) < max_records and not queue.empty():
            records.append(queue.get_nowait())
        return records

    async def ping(self) -> bool:
        return self.close_calls == 0

    async def close(self) -> None:
        self.close_calls += 1

    def jobs(self, topic: str) -> List[dict]:
        return [json.loads(payload) for t, payload in self.published if t == topic]

    async def reply(self, topic: str, locator: str):
        await self.publish(topic, json.dumps({"updated_image_url": locator}).encode("utf-8"))


class FakeWorker:
    """Answers every job with a processed copy of the source object."""

    def __init__(self, broker: FakeBroker, storage: LocalStorage, job_topic: str, reply_topic: str):
        self.broker = broker
        self.storage = storage
        self.job_topic = job_topic
        self.reply_topic = reply_topic
        self.handled: List[str] = []

    async def run(self):
        while True:
            for payload in await self.broker.poll(self.job_topic, timeout=0.05, max_records=10):
                job = json.loads(payload)
                source = job["image_url"]
                result = f"processed_{source}"
                await self.storage.put(b"processed:" + await self.storage.get(source), result)
                self.handled.append(source)
                await self.broker.reply(self.reply_topic, result)


async def _wait_until(predicate, timeout: float = 2.0):
    """Poll a condition from inside the event loop."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        LOCAL_STORAGE_PATH=str(tmp_path / "storage"),
        PROCESSED_IMAGES_DIR=str(tmp_path / "static" / "images"),
        STATIC_DIR=str(tmp_path / "static"),
        BROKER_POLL_TIMEOUT_SECONDS=0.05,
        BROKER_POLL_INTERVAL_SECONDS=0.0,
        BROKER_ERROR_BACKOFF_SECONDS=0.01,
        REPLY_TIMEOUT_SECONDS=0.5,
        MAX_UPLOAD_SIZE_BYTES=1024,
    )


@pytest.fixture
def fake_broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def storage(settings) -> LocalStorage:
    return LocalStorage(base_path=settings.LOCAL_STORAGE_PATH, bucket=settings.STORAGE_BUCKET)


@pytest.fixture
async def context(settings, fake_broker, storage):
    ctx = build_context(settings, broker=fake_broker, storage=storage)
    await ctx.start()
    yield ctx
    await ctx.stop()


@pytest.fixture
async def worker(settings, fake_broker, storage):
    fake_worker = FakeWorker(
        fake_broker,
        storage,
        job_topic=settings.BROKER_JOB_TOPIC,
        reply_topic=settings.BROKER_REPLY_TOPIC
    )
    task = asyncio.create_task(fake_worker.run())
    yield fake_worker
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


@pytest.fixture
def app(settings, fake_broker, storage):
    return create_app(
        settings,
        context_factory=lambda: build_context(settings, broker=fake_broker, storage=storage)
    )


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    # Trigger lifespan events (startup/shutdown)
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
