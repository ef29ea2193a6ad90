"""
Unit tests for the QuizController class.
"""
import asyncio
import logging
import random
import unittest

from trivia_bot.config_manager import ConfigManager
from trivia_bot.models import SessionOutcome, SessionState
from trivia_bot.question_source import error_for_response_code
from trivia_bot.quiz_controller import QuizController
from tests.test_fixtures import StubQuestionSource, TestFixtures


class TestQuizController(unittest.IsolatedAsyncioTestCase):
    """Test cases for QuizController session management."""

    def setUp(self):
        """Set up test fixtures."""
        logging.disable(logging.CRITICAL)
        self.source = StubQuestionSource(TestFixtures.create_sample_questions(3))
        self.config_manager = ConfigManager()
        self.controller = QuizController(self.source, self.config_manager, tick_interval=60.0)
        self.channel_id = 12345
        self.user_id = 67890

    async def asyncTearDown(self):
        await self.controller.shutdown()

    def tearDown(self):
        logging.disable(logging.NOTSET)

    async def test_start_quiz_success(self):
        """Test starting a quiz loads the first question."""
        result = await self.controller.start_quiz(
            self.channel_id, self.user_id, "history", "Hard", rng=random.Random(1)
        )

        self.assertTrue(result['success'])
        session = result['session']
        self.assertEqual(session.state, SessionState.READY)
        self.assertEqual(session.category, "History")
        self.assertEqual(session.session_id, f"channel-{self.channel_id}")
        self.assertIs(self.controller.get_session(self.channel_id), session)
        self.assertTrue(self.controller.has_active_session(self.channel_id))
        self.assertTrue(self.controller.is_owner(self.channel_id, self.user_id))
        self.assertFalse(self.controller.is_owner(self.channel_id, 1))

    async def test_start_quiz_uses_configured_count(self):
        """Test that the configured question count is requested."""
        self.config_manager.set_question_count(7)

        await self.controller.start_quiz(self.channel_id, self.user_id, "History", "easy")

        self.assertEqual(self.source.calls[0][2], 7)

    async def test_start_quiz_conflict(self):
        """Test that a second quiz in a busy channel is refused."""
        await self.controller.start_quiz(self.channel_id, self.user_id, "History", "easy")

        result = await self.controller.start_quiz(self.channel_id, 2, "Geography", "easy")

        self.assertFalse(result['success'])
        self.assertIn("already running", result['user_message'])
        self.assertEqual(self.controller.get_owner(self.channel_id), self.user_id)
        self.assertEqual(len(self.source.calls), 1)

    async def test_start_quiz_replaces_finished_session(self):
        """Test that a finished session does not block a new quiz."""
        first = (await self.controller.start_quiz(self.channel_id, self.user_id, "History", "easy"))['session']
        while first.state is SessionState.READY:
            first.select_answer(0)
            first.next()

        result = await self.controller.start_quiz(self.channel_id, 2, "Geography", "easy")

        self.assertTrue(result['success'])
        self.assertIsNot(result['session'], first)
        self.assertEqual(self.controller.get_owner(self.channel_id), 2)

    async def test_start_quiz_unknown_category(self):
        """Test that unknown categories are rejected with the available list."""
        result = await self.controller.start_quiz(self.channel_id, self.user_id, "Cooking", "easy")

        self.assertFalse(result['success'])
        self.assertIn("Available categories", result['user_message'])
        self.assertIsNone(self.controller.get_session(self.channel_id))
        self.assertEqual(self.source.calls, [])

    async def test_start_quiz_unknown_difficulty(self):
        """Test that unknown difficulties are rejected."""
        result = await self.controller.start_quiz(self.channel_id, self.user_id, "History", "brutal")

        self.assertFalse(result['success'])
        self.assertIn("Unknown difficulty", result['user_message'])

    async def test_start_quiz_load_failed(self):
        """Test that a provider failure is reported and keeps the failed session visible."""
        self.source.error = error_for_response_code(1)

        result = await self.controller.start_quiz(self.channel_id, self.user_id, "History", "hard")

        self.assertFalse(result['success'])
        self.assertTrue(result['load_failed'])
        self.assertIn("Insufficient questions", result['user_message'])
        self.assertEqual(result['session'].state, SessionState.LOAD_FAILED)
        self.assertFalse(self.controller.has_active_session(self.channel_id))
        self.assertIn("Failed to load", self.controller.get_session_status_summary(self.channel_id))

    async def test_load_failed_session_does_not_block_retry(self):
        """Test that a failed load can be retried in the same channel."""
        self.source.error = error_for_response_code(1)
        await self.controller.start_quiz(self.channel_id, self.user_id, "History", "hard")

        self.source.error = None
        result = await self.controller.start_quiz(self.channel_id, self.user_id, "History", "easy")

        self.assertTrue(result['success'])

    async def test_stop_while_loading(self):
        """Test that stopping during the fetch ends the start with a stopped message."""
        self.source.release = asyncio.Event()
        start_task = asyncio.create_task(
            self.controller.start_quiz(self.channel_id, self.user_id, "History", "easy")
        )
        await asyncio.sleep(0)

        self.assertTrue(self.controller.has_active_session(self.channel_id))
        stop_result = self.controller.abandon_quiz(self.channel_id)
        self.source.release.set()
        start_result = await start_task

        self.assertTrue(stop_result['success'])
        self.assertEqual(stop_result['result'].outcome, SessionOutcome.ABANDONED)
        self.assertFalse(start_result['success'])
        self.assertIn("stopped", start_result['user_message'])
        self.assertIsNone(self.controller.get_session(self.channel_id))

    async def test_abandon_quiz(self):
        """Test abandoning a running quiz reports the score so far."""
        session = (await self.controller.start_quiz(self.channel_id, self.user_id, "History", "easy"))['session']
        session.select_answer(next(c.position for c in session.choices if c.is_correct))

        result = self.controller.abandon_quiz(self.channel_id)

        self.assertTrue(result['success'])
        self.assertEqual((result['result'].score, result['result'].total), (1, 3))
        self.assertEqual(session.state, SessionState.ABANDONED)
        self.assertIsNone(self.controller.get_session(self.channel_id))
        self.assertIsNone(self.controller.get_owner(self.channel_id))

    async def test_abandon_quiz_without_session(self):
        """Test abandoning in an empty channel."""
        result = self.controller.abandon_quiz(self.channel_id)

        self.assertFalse(result['success'])
        self.assertIn("no quiz", result['user_message'])

    async def test_status_summary(self):
        """Test status text for each stage of a session."""
        self.assertIn("No quiz", self.controller.get_session_status_summary(self.channel_id))

        session = (await self.controller.start_quiz(self.channel_id, self.user_id, "History", "easy"))['session']
        summary = self.controller.get_session_status_summary(self.channel_id)
        self.assertIn("Question 1/3", summary)
        self.assertIn("Answering", summary)

        while session.state is SessionState.READY:
            session.select_answer(0)
            session.next()
        self.assertIn("Finished", self.controller.get_session_status_summary(self.channel_id))

    async def test_get_all_active_sessions(self):
        """Test the listing of active sessions across channels."""
        await self.controller.start_quiz(1, 10, "History", "easy")
        await self.controller.start_quiz(2, 20, "Geography", "medium")
        self.controller.abandon_quiz(2)

        active = self.controller.get_all_active_sessions()

        self.assertEqual(list(active), [1])
        self.assertEqual(active[1]['owner_id'], 10)
        self.assertEqual(active[1]['total_questions'], 3)
        self.assertEqual(active[1]['state'], 'ready')

    async def test_channels_are_independent(self):
        """Test that sessions in different channels do not interfere."""
        first = (await self.controller.start_quiz(1, 10, "History", "easy"))['session']
        second = (await self.controller.start_quiz(2, 20, "History", "easy"))['session']

        first.select_answer(0)

        self.assertEqual(second.selected_position, None)
        self.assertIsNot(first, second)

    async def test_shutdown_abandons_sessions_and_closes_source(self):
        """Test that shutdown stops every session and the source."""
        session = (await self.controller.start_quiz(self.channel_id, self.user_id, "History", "easy"))['session']

        await self.controller.shutdown()

        self.assertEqual(session.state, SessionState.ABANDONED)
        self.assertFalse(session.timer.is_running)
        self.assertTrue(self.source.closed)
        self.assertEqual(self.controller.get_all_active_sessions(), {})


if __name__ == '__main__':
    unittest.main()
