"""
Message Buffer - Coalesces bursts of messages per sender with a debounce timer.

This module provides the MessageBuffer class that accumulates rapid messages
from one sender and hands them to the orchestrator as a single turn. Users
often split one thought across several chat messages; answering each fragment
separately produces noisy, contradictory replies.

The debounce pattern works as follows:
1. When a message arrives, it's added to the sender's buffer
2. The sender's pending flush task (if any) is replaced by a new one
3. When the quiet period elapses with no new arrivals, the buffer is flushed
4. The flush removes the buffer from the live map before any async work, so
   messages arriving mid-processing start a fresh buffer

Optionally, orchestrations for the same sender are serialized: a turn that
flushes while the previous turn for that sender is still being processed
waits for it instead of running alongside it.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from assistant_bot.core.models import BufferedMessage, Turn

logger = logging.getLogger(__name__)

# Type alias for the flush callback signature
FlushCallback = Callable[[Turn], Awaitable[object]]

MESSAGE_SEPARATOR = ". "


def merge_messages(messages: list[BufferedMessage], separator: str = MESSAGE_SEPARATOR) -> str:
    """Join message texts in timestamp order (stable for equal timestamps)."""
    ordered = sorted(messages, key=lambda m: m.timestamp)
    return separator.join(m.text.strip() for m in ordered)


class MessageBuffer:
    """
    Per-sender debounce buffer.

    - Messages accumulate in an in-memory buffer keyed by sender_id
    - Each new message replaces the sender's pending flush task
    - When the quiet period passes without arrivals, the buffer is flushed
      to the callback as one Turn
    - No size or wait-time cap: arrivals are accepted unconditionally

    Attributes:
        quiet_period: Seconds without arrivals before a sender's buffer flushes
        flush_callback: Async function called with each merged Turn
        serialize_per_sender: Run at most one callback per sender at a time

    Example:
        async def process_turn(turn: Turn) -> None:
            print(f"{turn.sender_id}: {turn.text}")

        buffer = MessageBuffer(quiet_period=2.0, flush_callback=process_turn)
        await buffer.enqueue("5511999990000", "Ana", "oi", 1718000000)
    """

    def __init__(
        self,
        quiet_period: float = 2.0,
        flush_callback: Optional[FlushCallback] = None,
        serialize_per_sender: bool = True,
        separator: str = MESSAGE_SEPARATOR,
    ):
        """
        Initialize the MessageBuffer.

        Args:
            quiet_period: Seconds of silence from a sender before flushing.
            flush_callback: Async function to call with the merged Turn.
                           Signature: async def callback(turn: Turn)
            serialize_per_sender: When True, a sender's turns are processed one
                           at a time even if a later turn flushes while an
                           earlier one is still running.
            separator: Text placed between merged messages.
        """
        if quiet_period <= 0:
            raise ValueError("quiet_period must be positive")

        self._buffers: dict[str, list[BufferedMessage]] = {}
        self._display_names: dict[str, str] = {}
        self._timers: dict[str, asyncio.Task] = {}
        self._in_flight: set[asyncio.Task] = set()
        self._sender_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._quiet_period = quiet_period
        self._flush_callback = flush_callback
        self._serialize_per_sender = serialize_per_sender
        self._separator = separator

        logger.debug(
            f"MessageBuffer initialized: quiet_period={quiet_period}, "
            f"serialize_per_sender={serialize_per_sender}"
        )

    async def enqueue(
        self,
        sender_id: str,
        display_name: str,
        text: str,
        timestamp: int,
        message_id: Optional[int] = None,
    ) -> None:
        """
        Buffer one inbound message and restart the sender's debounce timer.

        Args:
            sender_id: Normalized sender identity
            display_name: Human name shown by the channel (kept from the first message)
            text: Plain-text content of the message
            timestamp: Epoch seconds of the message as reported by the channel
            message_id: Channel message ID, when available
        """
        if not text or not text.strip():
            logger.debug(f"Ignoring blank message from {sender_id}")
            return

        await self.add_message(
            sender_id,
            BufferedMessage(text=text, timestamp=timestamp, message_id=message_id),
            display_name=display_name,
        )

    async def add_message(
        self,
        sender_id: str,
        message: BufferedMessage,
        display_name: str = "",
    ) -> None:
        """
        Add a message to the buffer and reset the debounce timer.

        Args:
            sender_id: Normalized sender identity
            message: The BufferedMessage to add
            display_name: Human name, captured only when the buffer is created
        """
        # Initialize buffer if needed
        if sender_id not in self._buffers:
            self._buffers[sender_id] = []
            self._display_names[sender_id] = display_name
            logger.debug(f"Created new buffer for sender {sender_id}")

        self._buffers[sender_id].append(message)

        logger.debug(
            f"Added message to buffer for {sender_id}, "
            f"buffer size: {len(self._buffers[sender_id])}"
        )

        # Cancel existing timer if present
        timer = self._timers.pop(sender_id, None)
        if timer is not None and not timer.done():
            timer.cancel()
            logger.debug(f"Cancelled existing timer for {sender_id}")

        self._start_timer(sender_id)

    def _start_timer(self, sender_id: str) -> None:
        """Schedule the flush task for a sender after the quiet period."""

        async def timer_task():
            try:
                await asyncio.sleep(self._quiet_period)
            except asyncio.CancelledError:
                logger.debug(f"Timer cancelled for {sender_id}")
                raise
            await self._flush_buffer(sender_id)

        task = asyncio.create_task(timer_task())
        self._timers[sender_id] = task
        logger.debug(f"Started timer for {sender_id}: {self._quiet_period:.2f}s")

    async def _flush_buffer(self, sender_id: str) -> None:
        """
        Flush the buffer and call the callback with the merged turn.

        The buffer entry and the timer handle are removed before anything is
        awaited. A second flush for the same sender (or a flush of an empty
        buffer) is a no-op.
        """
        messages = self._buffers.pop(sender_id, None)
        display_name = self._display_names.pop(sender_id, "")

        current = asyncio.current_task()
        timer = self._timers.get(sender_id)
        from_timer = timer is not None and timer is current
        if from_timer:
            del self._timers[sender_id]
        elif timer is not None and messages:
            # Manual flush (shutdown): the pending timer must not fire later
            del self._timers[sender_id]
            timer.cancel()

        if not messages:
            logger.debug(f"No messages to flush for {sender_id}")
            return

        turn = Turn(
            sender_id=sender_id,
            display_name=display_name,
            text=merge_messages(messages, self._separator),
            message_count=len(messages),
            first_timestamp=min(m.timestamp for m in messages),
            last_timestamp=max(m.timestamp for m in messages),
        )

        logger.info(f"Flushing buffer for {sender_id}: {len(messages)} message(s)")

        if not self._flush_callback:
            logger.warning(
                f"No flush callback configured, {len(messages)} messages "
                f"for {sender_id} were discarded"
            )
            return

        if from_timer:
            self._in_flight.add(current)
            current.add_done_callback(self._in_flight.discard)

        try:
            if self._serialize_per_sender:
                await self._run_serialized(turn)
            else:
                await self._flush_callback(turn)
            logger.debug(f"Flush callback completed for {sender_id}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Buffer is already cleared - messages are "processed"
            logger.error(
                f"Error in flush callback for {sender_id}: {e}. "
                f"Turn was: {turn.text[:50]!r}"
            )

    async def _run_serialized(self, turn: Turn) -> None:
        sender_id = turn.sender_id
        lock = self._sender_locks.setdefault(sender_id, asyncio.Lock())
        self._lock_users[sender_id] = self._lock_users.get(sender_id, 0) + 1
        if lock.locked():
            logger.info(f"Turn for {sender_id} waiting for the previous turn to finish")
        try:
            async with lock:
                await self._flush_callback(turn)
        finally:
            self._lock_users[sender_id] -= 1
            if self._lock_users[sender_id] == 0:
                del self._lock_users[sender_id]
                self._sender_locks.pop(sender_id, None)

    def get_buffer_size(self, sender_id: str) -> int:
        """Number of messages currently buffered for a sender (0 if none)."""
        return len(self._buffers.get(sender_id, []))

    def get_buffered_messages(self, sender_id: str) -> list[BufferedMessage]:
        """Copy of the buffered messages for a sender, without flushing."""
        return list(self._buffers.get(sender_id, []))

    def has_pending_buffer(self, sender_id: str) -> bool:
        """True if the sender has messages waiting for their quiet period."""
        return bool(self._buffers.get(sender_id))

    def get_all_pending_sender_ids(self) -> list[str]:
        """Sender IDs with non-empty buffers (used at shutdown)."""
        return [sid for sid, msgs in self._buffers.items() if msgs]

    @property
    def in_flight_count(self) -> int:
        """Number of turns whose callback is currently running or waiting."""
        return len(self._in_flight)

    async def flush_all(self) -> None:
        """
        Flush all pending buffers immediately.

        Used for graceful shutdown so buffered messages are processed before
        the application exits.
        """
        sender_ids = list(self._buffers.keys())
        logger.info(f"Flushing all buffers: {len(sender_ids)} sender(s)")

        for sender_id in sender_ids:
            await self._flush_buffer(sender_id)

    async def cancel_all(self) -> None:
        """Cancel all pending timers and drop buffered messages without flushing."""
        timers = list(self._timers.values())
        self._timers.clear()
        dropped = sum(len(msgs) for msgs in self._buffers.values())
        self._buffers.clear()
        self._display_names.clear()
        logger.info(f"Cancelling all timers: {len(timers)} timer(s), {dropped} message(s) dropped")

        for timer in timers:
            timer.cancel()
        await asyncio.gather(*timers, return_exceptions=True)

    async def wait_idle(self) -> None:
        """Wait until no timer is pending and no flush callback is running."""
        while self._timers or self._in_flight:
            pending = list(self._timers.values()) + list(self._in_flight)
            await asyncio.gather(*pending, return_exceptions=True)

    @property
    def quiet_period(self) -> float:
        """Get the current quiet period."""
        return self._quiet_period

    @quiet_period.setter
    def quiet_period(self, value: float) -> None:
        """Set a new quiet period. Only affects future timers."""
        if value <= 0:
            raise ValueError("quiet_period must be positive")
        self._quiet_period = value
        logger.debug(f"Quiet period updated to {value}")

    def __repr__(self) -> str:
        """String representation for debugging."""
        active_buffers = len([b for b in self._buffers.values() if b])
        return (
            f"MessageBuffer(quiet_period={self._quiet_period}, "
            f"serialize_per_sender={self._serialize_per_sender}, "
            f"active_buffers={active_buffers}, "
            f"active_timers={len(self._timers)}, "
            f"in_flight={len(self._in_flight)})"
        )
