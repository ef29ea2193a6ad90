"""
Unit tests for answer shuffling and the QuizTimer countdown.
"""
import unittest
import asyncio
import logging
import random
from unittest.mock import AsyncMock, patch

from trivia_bot.quiz_engine import QuizTimer, TimerLifecycleLogger, shuffle_choices
from tests.test_fixtures import TestFixtures, AsyncTestHelpers


class TestShuffleChoices(unittest.TestCase):
    """Test cases for building the shuffled answer set."""

    def setUp(self):
        self.question = TestFixtures.create_question()

    def test_all_answers_present_once(self):
        """Test that the choices are the correct answer plus every distractor."""
        choices = shuffle_choices(self.question, random.Random(3))

        self.assertEqual(len(choices), 4)
        self.assertEqual(sorted(c.text for c in choices), ["Berlin", "London", "Madrid", "Paris"])

    def test_exactly_one_choice_is_correct(self):
        """Test that only the correct answer is flagged correct."""
        choices = shuffle_choices(self.question, random.Random(3))

        correct = [c for c in choices if c.is_correct]
        self.assertEqual(len(correct), 1)
        self.assertEqual(correct[0].text, "Paris")

    def test_positions_follow_order(self):
        """Test that positions number the shuffled list from zero."""
        choices = shuffle_choices(self.question, random.Random(9))

        self.assertEqual([c.position for c in choices], [0, 1, 2, 3])

    def test_seeded_rng_is_deterministic(self):
        """Test that equal seeds give equal orders."""
        first = shuffle_choices(self.question, random.Random(42))
        second = shuffle_choices(self.question, random.Random(42))

        self.assertEqual(first, second)

    def test_correct_answer_lands_in_every_position(self):
        """Test that the correct answer is not pinned to one slot."""
        rng = random.Random(0)
        positions = {
            next(c.position for c in shuffle_choices(self.question, rng) if c.is_correct)
            for _ in range(200)
        }

        self.assertEqual(positions, {0, 1, 2, 3})

    def test_question_is_not_mutated(self):
        """Test that shuffling leaves the question untouched."""
        shuffle_choices(self.question, random.Random(5))

        self.assertEqual(self.question.incorrect_answers, ("London", "Berlin", "Madrid"))

    def test_duplicate_distractor_marks_both_correct(self):
        """Test that a distractor equal to the answer compares equal to it."""
        question = TestFixtures.create_question(correct="Paris", incorrect=("Paris", "Rome", "Oslo"))

        choices = shuffle_choices(question, random.Random(1))

        self.assertEqual(sum(1 for c in choices if c.is_correct), 2)


class TestQuizTimer(unittest.IsolatedAsyncioTestCase):
    """Test cases for countdown, expiry and cancellation."""

    def setUp(self):
        logging.disable(logging.CRITICAL)
        self.timer = QuizTimer("test-session", tick_interval=0.001)
        self.ticks = []
        self.expired = asyncio.Event()

    async def asyncTearDown(self):
        self.timer.cancel()
        await asyncio.sleep(0)

    def tearDown(self):
        logging.disable(logging.NOTSET)

    async def on_tick(self, remaining):
        self.ticks.append(remaining)

    async def on_expired(self):
        self.expired.set()

    async def test_countdown_ticks_then_expires(self):
        """Test that every second is reported before expiry."""
        self.timer.start(3, self.on_tick, self.on_expired)

        await asyncio.wait_for(self.expired.wait(), timeout=2.0)

        self.assertEqual(self.ticks, [2, 1])
        self.assertEqual(self.timer.remaining_time, 0)
        await AsyncTestHelpers.wait_for(lambda: not self.timer.is_running)

    async def test_zero_duration_expires_without_ticks(self):
        """Test that a zero budget expires straight away."""
        self.timer.start(0, self.on_tick, self.on_expired)

        await asyncio.wait_for(self.expired.wait(), timeout=2.0)

        self.assertEqual(self.ticks, [])

    async def test_cancel_stops_countdown(self):
        """Test that a cancelled countdown neither ticks further nor expires."""
        self.timer.start(15, self.on_tick, self.on_expired)
        await AsyncTestHelpers.wait_for(lambda: len(self.ticks) >= 2)

        self.assertTrue(self.timer.cancel())
        ticks_at_cancel = len(self.ticks)
        await asyncio.sleep(0.05)

        self.assertEqual(len(self.ticks), ticks_at_cancel)
        self.assertFalse(self.expired.is_set())
        self.assertTrue(self.timer.is_cancelled)
        self.assertFalse(self.timer.is_running)

    async def test_cancel_is_idempotent(self):
        """Test that cancelling twice or before starting is harmless."""
        self.assertFalse(self.timer.cancel())

        self.timer.start(15, self.on_tick, self.on_expired)
        self.assertTrue(self.timer.cancel())
        self.assertFalse(self.timer.cancel())

    async def test_repeated_cancel_logs_one_transition(self):
        """Test that only the first cancel of a countdown is logged as a transition."""
        self.timer.start(15, self.on_tick, self.on_expired)

        with patch.object(TimerLifecycleLogger, 'log_timer_state_transition') as log_transition:
            self.timer.cancel()
            self.timer.cancel()
            self.timer.cancel()

        log_transition.assert_called_once()

    async def test_no_tick_at_zero(self):
        """Test that the last second is reported by expiry alone."""
        self.timer.start(1, self.on_tick, self.on_expired)

        await asyncio.wait_for(self.expired.wait(), timeout=2.0)

        self.assertEqual(self.ticks, [])

    async def test_slow_tick_callback_does_not_stretch_countdown(self):
        """Test that tick deadlines stay fixed while callbacks take time."""
        self.timer.tick_interval = 0.05

        async def slow_tick(remaining):
            self.ticks.append(remaining)
            await asyncio.sleep(0.03)

        loop = asyncio.get_running_loop()
        started = loop.time()
        self.timer.start(4, slow_tick, self.on_expired)
        await asyncio.wait_for(self.expired.wait(), timeout=2.0)

        self.assertEqual(self.ticks, [3, 2, 1])
        self.assertLess(loop.time() - started, 0.28)

    async def test_restart_replaces_previous_countdown(self):
        """Test that starting again cancels the running countdown."""
        stale_ticks = []

        async def stale_tick(remaining):
            stale_ticks.append(remaining)

        first_task = self.timer.start(15, stale_tick, AsyncMock())
        self.timer.start(2, self.on_tick, self.on_expired)

        await asyncio.wait_for(self.expired.wait(), timeout=2.0)

        self.assertTrue(first_task.cancelled())
        self.assertEqual(stale_ticks, [])
        self.assertEqual(self.ticks, [1])

    async def test_cancel_from_tick_callback_ends_loop(self):
        """Test that cancelling inside a tick stops the countdown without cancelling the task."""
        async def cancelling_tick(remaining):
            self.ticks.append(remaining)
            self.assertFalse(self.timer.cancel())

        task = self.timer.start(10, cancelling_tick, self.on_expired)
        await asyncio.wait_for(task, timeout=2.0)

        self.assertEqual(self.ticks, [9])
        self.assertFalse(self.expired.is_set())
        self.assertFalse(task.cancelled())

    async def test_callback_error_is_logged(self):
        """Test that a failing callback ends the countdown and is logged."""
        async def failing_tick(remaining):
            raise RuntimeError("boom")

        with patch.object(TimerLifecycleLogger, 'log_timer_error') as log_error:
            task = self.timer.start(5, failing_tick, self.on_expired)
            await asyncio.wait_for(task, timeout=2.0)

        log_error.assert_called_once()
        self.assertEqual(log_error.call_args[0][0], "test-session")
        self.assertFalse(self.expired.is_set())


class TestTimerLifecycleLogger(unittest.TestCase):
    """Test cases for throttled timer update logging."""

    def test_updates_logged_on_fives_and_final_seconds(self):
        """Test that updates are logged every five seconds and for the last three."""
        with patch('trivia_bot.quiz_engine.logger') as mock_logger:
            for remaining in range(14, -1, -1):
                TimerLifecycleLogger.log_timer_update("s", remaining, 15)

        logged = [call.kwargs['extra']['remaining_time'] for call in mock_logger.debug.call_args_list]
        self.assertEqual(logged, [10, 5, 3, 2, 1, 0])

    def test_completion_carries_event_type(self):
        """Test that structured fields are attached to completion logs."""
        with patch('trivia_bot.quiz_engine.logger') as mock_logger:
            TimerLifecycleLogger.log_timer_completion("s", "natural_expiry", 15)

        extra = mock_logger.debug.call_args.kwargs['extra']
        self.assertEqual(extra['event_type'], 'timer_completed')
        self.assertEqual(extra['completion_type'], 'natural_expiry')


if __name__ == '__main__':
    unittest.main()
