"""
Ingestion buffer for conversation events.

A single buffer is shared across every channel, so an extraction cycle sees
the recent cross-talk as one transcript. The buffer flushes on silence, on
volume or when the estimated token count reaches the cap. Flushing takes a
snapshot, clears the buffer and hands the snapshot to an async handler as a
detached task; the caller never waits for extraction.
"""

import asyncio
import threading
from typing import Awaitable, Callable, List, Optional, Set

from ..models.core import BufferedEvent, BufferStats, EventOrigin, TriggerReason
from ..utils.config import BufferConfig
from ..utils.config import config as app_config
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import utc_now
from .triggers import count_tokens, evaluate_triggers, event_tokens

logger = get_logger(__name__)

SnapshotHandler = Callable[[List[BufferedEvent], TriggerReason], Awaitable[None]]


class MemoryBuffer:
    """Process-wide ordered buffer of conversation events.

    Must be used from the thread running the event loop. ``add`` and ``flush``
    are synchronous: append, trigger evaluation and snapshot-and-clear happen
    under one lock with no suspension point, so a silence timer firing right
    after a volume flush finds an empty buffer and does nothing.
    """

    def __init__(self, handler: SnapshotHandler, config: Optional[BufferConfig] = None):
        self.config = config or app_config.buffer
        self._handler = handler
        self._events: List[BufferedEvent] = []
        self._token_count = 0
        self._lock = threading.Lock()
        self._silence_timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()
        self.flush_count = 0

    def __len__(self) -> int:
        return len(self._events)

    @property
    def token_count(self) -> int:
        return self._token_count

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    def add(self,
            content: str,
            user_id: str,
            username: str,
            channel_id: str,
            origin: EventOrigin,
            is_bot: bool = False,
            timestamp=None) -> Optional[TriggerReason]:
        """
        Append an event and flush if a volume or token threshold is reached.

        Args:
            content: Message text
            user_id: Author id
            username: Author display name
            channel_id: Channel the event was seen in
            origin: incoming, outgoing or observed
            is_bot: Whether the author is a bot
            timestamp: Event time (defaults to now, UTC)

        Returns:
            The trigger that fired, or None
        """
        if not self.config.enabled:
            return None

        loop = asyncio.get_running_loop()
        event = BufferedEvent(content=content,
                              user_id=user_id,
                              username=username,
                              channel_id=channel_id,
                              timestamp=timestamp or utc_now(),
                              origin=EventOrigin(origin),
                              is_bot=is_bot)

        snapshot: List[BufferedEvent] = []
        with self._lock:
            self._events.append(event)
            self._token_count += event_tokens(event)
            count, tokens = len(self._events), self._token_count

            reason = evaluate_triggers(count, tokens, self.config)
            if reason is not None:
                snapshot = self._drain_locked()
            else:
                self._arm_silence_timer(loop)

        logger.debug(f'Added {event.origin.value} message from {username} ({count} msgs, ~{tokens} tokens)')

        if snapshot:
            self._dispatch(snapshot, reason, loop)
        return reason

    def flush(self, reason: TriggerReason = TriggerReason.MANUAL) -> int:
        """
        Snapshot and clear the buffer, then dispatch extraction.

        Returns:
            Number of events handed to extraction (0 for an empty buffer)
        """
        with self._lock:
            snapshot = self._drain_locked()

        if not snapshot:
            logger.debug(f'Flush ({reason.value}) on empty buffer, nothing to extract')
            return 0

        self._dispatch(snapshot, reason, asyncio.get_running_loop())
        return len(snapshot)

    def clear(self) -> None:
        """Drop buffered events without extracting them."""
        with self._lock:
            dropped = self._drain_locked()
        logger.info(f'Cleared memory buffer ({len(dropped)} events dropped)')

    def close(self) -> None:
        """Disarm the silence timer. Buffered events are kept."""
        with self._lock:
            self._cancel_silence_timer()

    async def drain(self) -> None:
        """Wait until every dispatched extraction task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def get_events(self) -> List[BufferedEvent]:
        """Copy of the buffered events in arrival order."""
        with self._lock:
            return list(self._events)

    def stats(self) -> BufferStats:
        with self._lock:
            events = list(self._events)
        channels = list(dict.fromkeys(e.channel_id for e in events))
        return BufferStats(message_count=len(events),
                           token_count=count_tokens(events),
                           oldest_message=events[0].timestamp if events else None,
                           newest_message=events[-1].timestamp if events else None,
                           unique_channels=channels)

    def _drain_locked(self) -> List[BufferedEvent]:
        self._cancel_silence_timer()
        snapshot = self._events
        self._events = []
        self._token_count = 0
        return snapshot

    def _arm_silence_timer(self, loop: asyncio.AbstractEventLoop) -> None:
        self._cancel_silence_timer()
        self._silence_timer = loop.call_later(self.config.silence_timeout_seconds, self._on_silence)

    def _cancel_silence_timer(self) -> None:
        if self._silence_timer is not None:
            self._silence_timer.cancel()
            self._silence_timer = None

    def _on_silence(self) -> None:
        with self._lock:
            self._silence_timer = None
        self.flush(TriggerReason.SILENCE)

    def _dispatch(self, snapshot: List[BufferedEvent], reason: TriggerReason, loop: asyncio.AbstractEventLoop) -> None:
        self.flush_count += 1
        channels = list(dict.fromkeys(e.channel_id for e in snapshot))
        logger.info(f'Memory extraction triggered (reason: {reason.value}, messages: {len(snapshot)}, '
                    f'~{count_tokens(snapshot)} tokens, channels: {len(channels)})')

        task = loop.create_task(self._handler(snapshot, reason), name=f'memory-extraction-{self.flush_count}')
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f'{task.get_name()} was cancelled; its snapshot is lost')
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f'{task.get_name()} failed; its snapshot is lost: {exc}', exc_info=exc)
