"""
Session registry and answer routing for the Kanji Quiz Bot.
Guarantees at most one quiz per channel and funnels chat answers into the active round.
"""
import asyncio
import dataclasses
import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Union

from .models import AnswerEvent, Session, StopSignal

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 100

RoundEvent = Union[AnswerEvent, StopSignal]


def presence_text(count: int) -> str:
    """Status line shown on the bot while quizzes are running."""
    if count == 1:
        return "1 quiz"
    if count >= 2:
        return f"{count} quizzes"
    return ""


class SessionRegistry:
    """
    Tracks which channels have an active quiz.

    A single lock guards the channel map, so concurrent reservations for one
    channel give exactly one success.
    """

    def __init__(self, presence_callback: Optional[Callable[[int], Any]] = None):
        """
        Initialize the registry.

        Args:
            presence_callback: Called with the active quiz count after every
                reserve/release. May be a plain function or a coroutine function.
        """
        self._lock = threading.Lock()
        self._sessions: Dict[int, Session] = {}
        self._presence_callback = presence_callback
        # Pending presence updates, applied one after another in publish order
        self._presence_tasks: Set[asyncio.Task] = set()
        self._last_presence: Optional[asyncio.Task] = None

    def reserve(self, channel_id: int, mode: str = "quiz") -> bool:
        """
        Reserve a channel for a new quiz.

        Returns:
            True on success, False if the channel already has an active quiz
        """
        with self._lock:
            if channel_id in self._sessions:
                count = None
            else:
                self._sessions[channel_id] = Session(channel_id=channel_id, mode=mode)
                count = len(self._sessions)

        if count is None:
            logger.debug(
                f"Channel {channel_id} already has an active quiz",
                extra={
                    'event_type': 'session_conflict',
                    'channel_id': channel_id,
                    'timestamp': time.time()
                }
            )
            return False

        logger.info(
            f"Reserved channel {channel_id} for {mode}, {count} active",
            extra={
                'event_type': 'session_reserved',
                'channel_id': channel_id,
                'mode': mode,
                'active_count': count,
                'timestamp': time.time()
            }
        )
        self._publish(count)
        return True

    def release(self, channel_id: int) -> None:
        """Release a channel. Releasing an unreserved channel is a no-op."""
        with self._lock:
            session = self._sessions.pop(channel_id, None)
            count = len(self._sessions)

        if session is None:
            return

        session.active = False
        logger.info(
            f"Released channel {channel_id}, {count} active",
            extra={
                'event_type': 'session_released',
                'channel_id': channel_id,
                'active_count': count,
                'timestamp': time.time()
            }
        )
        self._publish(count)

    def is_active(self, channel_id: int) -> bool:
        with self._lock:
            return channel_id in self._sessions

    def summary(self) -> List[Session]:
        """Snapshot of active sessions, oldest first."""
        with self._lock:
            sessions = list(self._sessions.values())
        return sorted(sessions, key=lambda s: s.started_at)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _publish(self, count: int) -> None:
        """Best-effort presence update; failures are logged, never raised."""
        if self._presence_callback is None:
            return

        try:
            result = self._presence_callback(count)
        except Exception as e:
            logger.error(f"Could not update presence: {e}")
            return

        if asyncio.iscoroutine(result):
            update = self._after(self._last_presence, result)
            try:
                task = asyncio.ensure_future(update)
            except RuntimeError as e:
                update.close()
                result.close()
                logger.error(f"Could not schedule presence update: {e}")
                return
            self._last_presence = task
            self._presence_tasks.add(task)
            task.add_done_callback(self._presence_tasks.discard)
            task.add_done_callback(self._log_publish_failure)

    @property
    def pending_presence_updates(self) -> int:
        return len(self._presence_tasks)

    @staticmethod
    async def _after(previous: Optional[asyncio.Task], update) -> None:
        """Await the previous presence update before applying this one."""
        if previous is not None and not previous.done() and previous.get_loop() is asyncio.get_running_loop():
            await asyncio.wait([previous])
        await update

    @staticmethod
    def _log_publish_failure(task: "asyncio.Future") -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Could not update presence: {error}")


class RoundSubscription:
    """Bounded inbox of events for one round, consumed by a single round loop."""

    def __init__(self, channel_id: int, maxsize: int = DEFAULT_QUEUE_SIZE):
        self.channel_id = channel_id
        self._queue: "asyncio.Queue[RoundEvent]" = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    def offer(self, event: RoundEvent) -> bool:
        """Queue an event without blocking. Returns False if it was dropped."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                f"Answer queue full for channel {self.channel_id}, dropping event",
                extra={
                    'event_type': 'answer_queue_overflow',
                    'channel_id': self.channel_id,
                    'timestamp': time.time()
                }
            )
            return False
        return True

    async def get(self) -> RoundEvent:
        return await self._queue.get()

    def close(self) -> None:
        self._closed = True

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()


class AnswerRouter:
    """
    Routes chat events for a channel into the quiz run listening there.

    Each quiz run registers a stop flag for its whole lifetime; each round opens
    a RoundSubscription that receives answers until the round closes.
    """

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE):
        self._queue_size = queue_size
        self._subscriptions: Dict[int, RoundSubscription] = {}
        self._stop_flags: Dict[int, asyncio.Event] = {}

    @contextmanager
    def run(self, channel_id: int) -> Iterator[asyncio.Event]:
        """Register a quiz run for a channel; yields its stop flag."""
        stop_flag = asyncio.Event()
        self._stop_flags[channel_id] = stop_flag
        try:
            yield stop_flag
        finally:
            if self._stop_flags.get(channel_id) is stop_flag:
                del self._stop_flags[channel_id]

    @contextmanager
    def subscribe(self, channel_id: int) -> Iterator[RoundSubscription]:
        """Open a round subscription; it is closed and unregistered on exit."""
        subscription = RoundSubscription(channel_id, self._queue_size)
        self._subscriptions[channel_id] = subscription
        if self.stop_requested(channel_id):
            subscription.offer(StopSignal())
        try:
            yield subscription
        finally:
            subscription.close()
            if self._subscriptions.get(channel_id) is subscription:
                del self._subscriptions[channel_id]

    def deliver(self, channel_id: int, event: AnswerEvent) -> bool:
        """
        Offer an answer to the channel's open round.

        Returns:
            True if the event was queued
        """
        subscription = self._subscriptions.get(channel_id)
        if subscription is None:
            return False
        if not event.received_at:
            event = dataclasses.replace(event, received_at=asyncio.get_running_loop().time())
        return subscription.offer(event)

    def request_stop(self, channel_id: int, requested_by: Optional[int] = None) -> bool:
        """
        Ask the quiz run in a channel to stop.

        Returns:
            True if a run was listening in the channel
        """
        stop_flag = self._stop_flags.get(channel_id)
        if stop_flag is None:
            return False
        stop_flag.set()
        subscription = self._subscriptions.get(channel_id)
        if subscription is not None:
            subscription.offer(StopSignal(requested_by=requested_by))
        return True

    def stop_requested(self, channel_id: int) -> bool:
        stop_flag = self._stop_flags.get(channel_id)
        return stop_flag is not None and stop_flag.is_set()

    async def pause(self, channel_id: int, seconds: float) -> bool:
        """
        Sleep between rounds, waking early on a stop request.

        Returns:
            True if a stop was requested
        """
        stop_flag = self._stop_flags.get(channel_id)
        if stop_flag is None:
            await asyncio.sleep(seconds)
            return False
        try:
            await asyncio.wait_for(stop_flag.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    def is_listening(self, channel_id: int) -> bool:
        return channel_id in self._subscriptions

    def has_run(self, channel_id: int) -> bool:
        return channel_id in self._stop_flags
