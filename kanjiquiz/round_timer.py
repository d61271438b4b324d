"""
Round timer for quiz rounds.
Tracks the armed deadline, the grace window after the first correct answer, and closing.
"""
import asyncio
import logging
import time
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_ROUND_TIMEOUT = 20
SCRAMBLE_ROUND_TIMEOUT = 30
GAUNTLET_TIMEOUT = 120


class TimerState(Enum):
    """States of a round timer."""
    IDLE = "idle"
    ARMED = "armed"
    GRACE = "grace"
    CLOSED = "closed"


class CloseReason(Enum):
    """Why a round closed."""
    GRACE_EXPIRED = "grace_expired"
    TIMEOUT = "timeout"
    ABORTED = "aborted"
    ALL_CLAIMED = "all_claimed"


class RoundLifecycleLogger:
    """Structured logging for round timer lifecycle events."""

    @staticmethod
    def log_armed(channel_id, timeout: float) -> None:
        logger.debug(
            f"Round lifecycle: ARMED - Channel {channel_id}, Timeout {timeout:.1f}s",
            extra={
                'event_type': 'round_armed',
                'channel_id': channel_id,
                'timeout': timeout,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_state_transition(channel_id, from_state: TimerState, to_state: TimerState, reason: str = None) -> None:
        logger.debug(
            f"Round lifecycle: STATE_TRANSITION - Channel {channel_id}, {from_state.value} -> {to_state.value}" +
            (f" ({reason})" if reason else ""),
            extra={
                'event_type': 'round_state_transition',
                'channel_id': channel_id,
                'from_state': from_state.value,
                'to_state': to_state.value,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_closed(channel_id, reason: CloseReason, elapsed: float) -> None:
        logger.info(
            f"Round lifecycle: CLOSED - Channel {channel_id}, Reason {reason.value}, Elapsed {elapsed:.3f}s",
            extra={
                'event_type': 'round_closed',
                'channel_id': channel_id,
                'reason': reason.value,
                'elapsed': elapsed,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_late_event(channel_id, late_by: float) -> None:
        logger.debug(
            f"Round lifecycle: LATE_EVENT - Channel {channel_id}, {late_by:.3f}s after deadline",
            extra={
                'event_type': 'round_late_event',
                'channel_id': channel_id,
                'late_by': late_by,
                'timestamp': time.time()
            }
        )


def _loop_clock() -> float:
    return asyncio.get_running_loop().time()


class RoundTimer:
    """
    Deadline tracker for one round.

    ARMED waits for the first correct answer until the full round timeout.
    The first accepted answer moves it to GRACE, resetting the deadline to the
    pacing window. CLOSED is reached on either deadline or on abort.
    """

    def __init__(self, channel_id=None, clock: Callable[[], float] = None):
        self._channel_id = channel_id
        self._clock = clock or _loop_clock
        self._state = TimerState.IDLE
        self._deadline = 0.0
        self._opened_at = 0.0
        self._close_reason: Optional[CloseReason] = None

    def arm(self, timeout: float) -> None:
        """Start the round with a full timeout in seconds."""
        self._opened_at = self._clock()
        self._deadline = self._opened_at + timeout
        self._close_reason = None
        previous = self._state
        self._state = TimerState.ARMED
        RoundLifecycleLogger.log_armed(self._channel_id, timeout)
        RoundLifecycleLogger.log_state_transition(self._channel_id, previous, TimerState.ARMED, "round opened")

    def enter_grace(self, window_ms: int) -> bool:
        """
        Switch to the grace window after the first correct answer.

        Happens at most once per round. A zero window closes the round.

        Returns:
            True if the transition happened
        """
        if self._state is not TimerState.ARMED:
            return False

        if window_ms <= 0:
            self.close(CloseReason.GRACE_EXPIRED)
            return True

        self._deadline = self._clock() + window_ms / 1000.0
        self._state = TimerState.GRACE
        RoundLifecycleLogger.log_state_transition(
            self._channel_id, TimerState.ARMED, TimerState.GRACE, f"first correct answer, window {window_ms}ms"
        )
        return True

    def close(self, reason: CloseReason) -> None:
        if self._state is TimerState.CLOSED:
            return
        previous = self._state
        self._state = TimerState.CLOSED
        self._close_reason = reason
        RoundLifecycleLogger.log_state_transition(self._channel_id, previous, TimerState.CLOSED, reason.value)
        RoundLifecycleLogger.log_closed(self._channel_id, reason, self._clock() - self._opened_at)

    def expire(self) -> None:
        """Close the round because its current deadline passed."""
        if self._state is TimerState.GRACE:
            self.close(CloseReason.GRACE_EXPIRED)
        else:
            self.close(CloseReason.TIMEOUT)

    def remaining(self) -> float:
        """Seconds left before the current deadline, never negative."""
        return max(0.0, self._deadline - self._clock())

    def expired(self) -> bool:
        return self._clock() >= self._deadline

    def accepts(self, received_at: float) -> bool:
        """Whether an event stamped at `received_at` arrived before the deadline."""
        if self._state is TimerState.CLOSED:
            return False
        if received_at > self._deadline:
            RoundLifecycleLogger.log_late_event(self._channel_id, received_at - self._deadline)
            return False
        return True

    @property
    def state(self) -> TimerState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state is TimerState.CLOSED

    @property
    def close_reason(self) -> Optional[CloseReason]:
        return self._close_reason

    @property
    def deadline(self) -> float:
        return self._deadline

    @property
    def channel_id(self):
        return self._channel_id
