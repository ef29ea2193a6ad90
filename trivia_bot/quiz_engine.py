"""
Quiz engine core logic for the Trivia Quiz Bot.
Handles answer shuffling and the per-question countdown timer.
"""
import random
import asyncio
import logging
import time
from typing import List, Optional, Callable, Any, Awaitable

from .models import AnswerChoice, Question

# Set up logger for timer operations
logger = logging.getLogger(__name__)


def shuffle_choices(question: Question, rng: Optional[random.Random] = None) -> List[AnswerChoice]:
    """
    Combine the correct and incorrect answers of a question in random order.

    Args:
        question: Question to build choices for
        rng: Randomness source; the module-level generator is used when omitted

    Returns:
        Answer choices whose positions follow the shuffled order
    """
    texts = list(question.incorrect_answers) + [question.correct_answer]
    (rng or random).shuffle(texts)
    return [
        AnswerChoice(position=position, text=text, is_correct=text == question.correct_answer)
        for position, text in enumerate(texts)
    ]


class TimerLifecycleLogger:
    """Structured logging for timer lifecycle events."""

    @staticmethod
    def log_timer_start(owner_id: str, duration: int) -> None:
        """Log timer countdown start."""
        logger.debug(
            f"Timer lifecycle: COUNTDOWN_START - Session {owner_id}, Duration {duration}s",
            extra={
                'event_type': 'timer_countdown_start',
                'owner_id': owner_id,
                'duration': duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_update(owner_id: str, remaining_time: int, total_duration: int) -> None:
        """Log timer update events (throttled to avoid spam)."""
        if remaining_time % 5 == 0 or remaining_time <= 3:
            progress_percent = ((total_duration - remaining_time) / total_duration) * 100 if total_duration else 100.0
            logger.debug(
                f"Timer lifecycle: UPDATE - Session {owner_id}, Remaining {remaining_time}s ({progress_percent:.1f}% complete)",
                extra={
                    'event_type': 'timer_update',
                    'owner_id': owner_id,
                    'remaining_time': remaining_time,
                    'total_duration': total_duration,
                    'progress_percent': progress_percent,
                    'timestamp': time.time()
                }
            )

    @staticmethod
    def log_timer_completion(owner_id: str, completion_type: str, total_duration: int) -> None:
        """Log timer completion (natural expiry or cancellation)."""
        logger.debug(
            f"Timer lifecycle: COMPLETED - Session {owner_id}, Type {completion_type}, Duration {total_duration}s",
            extra={
                'event_type': 'timer_completed',
                'owner_id': owner_id,
                'completion_type': completion_type,
                'total_duration': total_duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_state_transition(owner_id: str, from_state: str, to_state: str, reason: str = None) -> None:
        """Log timer state transitions."""
        logger.debug(
            f"Timer lifecycle: STATE_TRANSITION - Session {owner_id}, {from_state} -> {to_state}" +
            (f" ({reason})" if reason else ""),
            extra={
                'event_type': 'timer_state_transition',
                'owner_id': owner_id,
                'from_state': from_state,
                'to_state': to_state,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(owner_id: str, error_type: str, error_message: str, operation: str) -> None:
        """Log timer-related errors with context."""
        logger.error(
            f"Timer lifecycle: ERROR - Session {owner_id}, Operation {operation}, Type {error_type}: {error_message}",
            extra={
                'event_type': 'timer_error',
                'owner_id': owner_id,
                'error_type': error_type,
                'error_message': error_message,
                'operation': operation,
                'timestamp': time.time()
            },
            exc_info=True
        )


class QuizTimer:
    """
    Countdown timer for a single question.

    The countdown runs as one asyncio task that wakes once per tick, so at most
    one tick is ever pending. Tick deadlines are fixed when the countdown
    starts. Starting a new countdown cancels the previous one.
    """

    def __init__(self, owner_id: str = None, tick_interval: float = 1.0):
        """Initialize the timer."""
        self._task: Optional[asyncio.Task] = None
        self._remaining_time = 0
        self._total_duration = 0
        self._is_cancelled = False
        self._generation = 0
        self._owner_id = owner_id
        self.tick_interval = tick_interval

    def start(
        self,
        duration: int,
        tick_callback: Callable[[int], Awaitable[Any]],
        expiry_callback: Callable[[], Awaitable[Any]]
    ) -> asyncio.Task:
        """
        Start a countdown, replacing any countdown already running.

        Args:
            duration: Timer duration in seconds
            tick_callback: Awaited after every decrement that leaves time on the clock
            expiry_callback: Awaited once when the remaining time reaches zero

        Returns:
            The task running the countdown
        """
        self.cancel()

        self._generation += 1
        self._remaining_time = duration
        self._total_duration = duration
        self._is_cancelled = False

        TimerLifecycleLogger.log_timer_start(self._owner_id, duration)
        self._task = asyncio.get_running_loop().create_task(
            self._run_countdown(self._generation, tick_callback, expiry_callback)
        )
        return self._task

    async def _run_countdown(
        self,
        generation: int,
        tick_callback: Callable[[int], Awaitable[Any]],
        expiry_callback: Callable[[], Awaitable[Any]]
    ) -> None:
        loop = asyncio.get_running_loop()
        started_at = loop.time()
        elapsed_ticks = 0
        try:
            while self._remaining_time > 0:
                # Tick n is due at started_at + n * tick_interval, however long callbacks take
                elapsed_ticks += 1
                deadline = started_at + elapsed_ticks * self.tick_interval
                await asyncio.sleep(max(0.0, deadline - loop.time()))
                if generation != self._generation:
                    return

                self._remaining_time -= 1
                TimerLifecycleLogger.log_timer_update(
                    self._owner_id,
                    self._remaining_time,
                    self._total_duration
                )
                if self._remaining_time > 0:
                    await tick_callback(self._remaining_time)
                    if generation != self._generation:
                        return

            TimerLifecycleLogger.log_timer_completion(
                self._owner_id,
                "natural_expiry",
                self._total_duration
            )
            await expiry_callback()

        except asyncio.CancelledError:
            TimerLifecycleLogger.log_timer_completion(
                self._owner_id,
                "asyncio_cancelled",
                self._total_duration
            )
            raise
        except Exception as e:
            # Nothing awaits this task, so report here instead of leaving it unretrieved
            TimerLifecycleLogger.log_timer_error(
                self._owner_id,
                "countdown_execution_error",
                str(e),
                "run_countdown"
            )

    def cancel(self) -> bool:
        """
        Stop the countdown. Safe to call repeatedly, including from a timer callback.

        Returns:
            True if a running countdown task was cancelled
        """
        already_cancelled = self._is_cancelled
        self._generation += 1
        self._is_cancelled = True

        task = self._task
        if already_cancelled or task is None or task.done():
            return False

        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is current:
            # Called from our own callback; the generation bump ends the loop
            TimerLifecycleLogger.log_timer_state_transition(
                self._owner_id, "running", "cancelled", "cancelled from timer callback"
            )
            return False

        task.cancel()
        TimerLifecycleLogger.log_timer_state_transition(
            self._owner_id, "running", "cancelled", "task cancelled"
        )
        return True

    @property
    def is_running(self) -> bool:
        """Check if a countdown is in progress."""
        return self._task is not None and not self._task.done() and not self._is_cancelled

    @property
    def is_cancelled(self) -> bool:
        """Check if timer is cancelled."""
        return self._is_cancelled

    @property
    def remaining_time(self) -> int:
        """Get remaining time in seconds."""
        return self._remaining_time
