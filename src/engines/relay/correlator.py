"""
Response Correlator

Bridges the single shared reply stream to the requests waiting on it.

Replies from the worker carry only a result locator, so they are paired
with waiting requests purely by order: the oldest open slot receives the
next reply. When two jobs for different images complete out of publish
order, each caller gets the other's result. Fixing that needs a
correlation id on both the job and the reply payloads; the registry would
then be keyed by that id instead of by registration order.

Delivery rules:
- every reply goes to at most one slot, and every slot gets at most one reply
- a reply that finds no open slot is dropped
- a slot that timed out or was discarded is never delivered to
- the registry is mutated only under ``_lock``, and never across an await
"""

import asyncio
import threading
import time
import uuid
from collections import OrderedDict
from enum import Enum
from typing import AsyncIterator, Optional

from src.core.exceptions import ReplyTimeoutError
from src.core.logging import get_logger
from src.core.metrics import open_slots_gauge, record_reply, record_reply_wait
from src.engines.relay.schemas import ReplyMessage

logger = get_logger(__name__)


class SlotState(str, Enum):
    """Pending request lifecycle."""
    CREATED = "created"
    AWAITING_REPLY = "awaiting_reply"
    SATISFIED = "satisfied"          # terminal
    TIMED_OUT = "timed_out"          # terminal
    ABANDONED = "abandoned"          # terminal: job never published or caller cancelled


TERMINAL_STATES = frozenset({SlotState.SATISFIED, SlotState.TIMED_OUT, SlotState.ABANDONED})


class Slot:
    """One-shot delivery target for a single in-flight request."""

    __slots__ = ("slot_id", "created_at", "state", "_future")

    def __init__(self, future: asyncio.Future):
        self.slot_id = uuid.uuid4().hex
        self.created_at = time.monotonic()
        self.state = SlotState.CREATED
        self._future = future

    @property
    def is_open(self) -> bool:
        return self.state not in TERMINAL_STATES

    def __repr__(self) -> str:
        return f"Slot({self.slot_id[:8]}, {self.state.value})"


class ResponseCorrelator:
    """FIFO pairing of replies with registered slots."""

    def __init__(self, default_timeout: float = 30.0):
        self.default_timeout = default_timeout
        self._slots: "OrderedDict[str, Slot]" = OrderedDict()
        self._lock = threading.Lock()

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._slots)

    def register(self) -> Slot:
        """Open a slot. Call before publishing the job so a fast reply is not missed."""
        slot = Slot(asyncio.get_running_loop().create_future())
        with self._lock:
            self._slots[slot.slot_id] = slot
            open_slots_gauge.set(len(self._slots))

        logger.debug("slot_registered", slot_id=slot.slot_id)
        return slot

    def deliver(self, reply: ReplyMessage) -> bool:
        """Hand a reply to the oldest open slot. Returns False if it was dropped."""
        with self._lock:
            slot = None
            while self._slots:
                _, candidate = self._slots.popitem(last=False)
                if candidate.is_open and not candidate._future.done():
                    slot = candidate
                    break

            if slot is not None:
                slot._future.set_result(reply)
                slot.state = SlotState.SATISFIED
            open_slots_gauge.set(len(self._slots))

        if slot is None:
            record_reply("dropped")
            logger.warning(
                "reply_dropped",
                reason="no_open_slot",
                updated_image_url=reply.updated_image_url
            )
            return False

        record_reply("delivered")
        logger.info(
            "reply_delivered",
            slot_id=slot.slot_id,
            updated_image_url=reply.updated_image_url
        )
        return True

    async def wait(self, slot: Slot, timeout: Optional[float] = None) -> ReplyMessage:
        """Wait for the slot's reply.

        Raises:
            ReplyTimeoutError: nothing was delivered within the timeout; the
                slot is retired and will never receive a later reply
        """
        timeout = self.default_timeout if timeout is None else timeout

        with self._lock:
            if slot.state == SlotState.CREATED:
                slot.state = SlotState.AWAITING_REPLY

        try:
            # asyncio.wait leaves the future alone on timeout, so the
            # outcome is decided below under the lock
            await asyncio.wait({slot._future}, timeout=timeout)
        except asyncio.CancelledError:
            self._retire(slot, SlotState.ABANDONED)
            raise

        with self._lock:
            if slot._future.done() and not slot._future.cancelled():
                reply = slot._future.result()
            else:
                reply = None
                retired = self._retire_locked(slot, SlotState.TIMED_OUT)

        if reply is not None:
            record_reply_wait("satisfied", time.monotonic() - slot.created_at)
            return reply

        if retired:
            record_reply_wait(SlotState.TIMED_OUT.value, time.monotonic() - slot.created_at)
        logger.warning("reply_wait_timed_out", slot_id=slot.slot_id, timeout_seconds=timeout)
        raise ReplyTimeoutError(timeout)

    def discard(self, slot: Slot):
        """Retire a slot whose job was never published."""
        self._retire(slot, SlotState.ABANDONED)

    async def run(self, replies: AsyncIterator[ReplyMessage]):
        """Reader loop: the only writer into slots. Ends when the stream ends."""
        logger.info("correlator_started")
        try:
            async for reply in replies:
                self.deliver(reply)
        finally:
            logger.info("correlator_stopped", pending=self.pending_count)

    def _retire(self, slot: Slot, state: SlotState):
        with self._lock:
            retired = self._retire_locked(slot, state)

        if retired:
            record_reply_wait(state.value, time.monotonic() - slot.created_at)

    def _retire_locked(self, slot: Slot, state: SlotState) -> bool:
        if not slot.is_open:
            return False
        self._slots.pop(slot.slot_id, None)
        slot.state = state
        slot._future.cancel()
        open_slots_gauge.set(len(self._slots))
        return True
