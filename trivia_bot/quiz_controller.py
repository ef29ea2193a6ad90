"""
Quiz session controller for the Trivia Quiz Bot.
Manages the quiz session of each Discord channel and the player who owns it.
"""
import logging
import random
import time
from typing import Dict, Optional, Any

from .categories import resolve_category
from .config_manager import ConfigManager
from .models import Difficulty, SessionState
from .question_source import QuestionSource
from .quiz_session import InvalidSessionStateError, QuizSession, SessionListener


class QuizControllerError(Exception):
    """Base exception for quiz controller errors."""
    pass


class SessionConflictError(QuizControllerError):
    """Raised when attempting to create a session that conflicts with existing session."""
    pass


class SessionNotFoundError(QuizControllerError):
    """Raised when attempting to operate on a non-existent session."""
    pass


class QuizController:
    """
    Orchestrates quiz sessions across Discord channels.

    Each channel holds at most one session. A session that is loading or
    being played blocks new quizzes in its channel; a finished, failed or
    abandoned one is replaced by the next quiz started there.
    """

    def __init__(
        self,
        question_source: QuestionSource,
        config_manager: ConfigManager,
        tick_interval: float = 1.0
    ):
        """
        Initialize the quiz controller.

        Args:
            question_source: Shared source for question batches
            config_manager: Instance for managing configuration
            tick_interval: Seconds between timer ticks for new sessions
        """
        self.logger = logging.getLogger(__name__)
        self.question_source = question_source
        self.config_manager = config_manager
        self.tick_interval = tick_interval

        self._sessions: Dict[int, QuizSession] = {}
        self._owners: Dict[int, int] = {}

        self.logger.info("QuizController initialized")

    async def start_quiz(
        self,
        channel_id: int,
        user_id: int,
        category: str,
        difficulty: Any,
        listener: Optional[SessionListener] = None,
        rng: Optional[random.Random] = None
    ) -> Dict[str, Any]:
        """
        Create a session for the channel and load its questions.

        Args:
            channel_id: Discord channel identifier
            user_id: Discord user who plays the quiz
            category: Category name
            difficulty: Difficulty or its string value
            listener: Receives the session's events
            rng: Randomness source for answer shuffling

        Returns:
            Dictionary with operation results; ``session`` is set whenever a session was created
        """
        session = None
        try:
            existing = self._sessions.get(channel_id)
            if existing is not None:
                if existing.is_active:
                    raise SessionConflictError(f"Quiz already running in channel {channel_id}")
                self._remove_session(channel_id)

            category = resolve_category(category, self.question_source.categories)
            difficulty = Difficulty.parse(difficulty)

            session = QuizSession(
                self.question_source,
                category,
                difficulty,
                settings=self.config_manager.get_quiz_settings(),
                rng=rng,
                listener=listener,
                tick_interval=self.tick_interval,
                session_id=f"channel-{channel_id}"
            )
            self._sessions[channel_id] = session
            self._owners[channel_id] = user_id

            self.logger.info(
                f"Created quiz session for channel {channel_id}: {category}/{difficulty.value}",
                extra={
                    'event_type': 'session_created',
                    'channel_id': channel_id,
                    'user_id': user_id,
                    'timestamp': time.time()
                }
            )

            state = await session.load()

        except Exception as e:
            if session is not None and self._sessions.get(channel_id) is session:
                session.abandon()
                self._remove_session(channel_id)
            return self._handle_session_error(channel_id, e, "start_quiz")

        if state is SessionState.READY:
            return {
                'success': True,
                'message': f"Quiz '{category}' ({difficulty.value}) started with {session.total} questions",
                'session': session
            }

        if state is SessionState.LOAD_FAILED:
            return {
                'success': False,
                'load_failed': True,
                'error': session.error_message,
                'user_message': f"❌ {session.error_message}",
                'session': session
            }

        return {
            'success': False,
            'error': f"Session for channel {channel_id} ended while loading",
            'user_message': "⏹️ The quiz was stopped before its questions arrived.",
            'session': session
        }

    def abandon_quiz(self, channel_id: int) -> Dict[str, Any]:
        """
        Abandon the channel's session and forget it.

        Args:
            channel_id: Discord channel identifier

        Returns:
            Dictionary with operation results and the session result
        """
        try:
            session = self._sessions.get(channel_id)
            if session is None:
                raise SessionNotFoundError(f"No quiz session in channel {channel_id}")

            result = session.abandon()
            self._remove_session(channel_id)

            self.logger.info(
                f"Stopped and cleaned up session for channel {channel_id}",
                extra={
                    'event_type': 'session_stopped',
                    'channel_id': channel_id,
                    'outcome': result.outcome.value,
                    'timestamp': time.time()
                }
            )
            return {
                'success': True,
                'message': f"Quiz in channel {channel_id} stopped",
                'result': result
            }

        except Exception as e:
            return self._handle_session_error(channel_id, e, "abandon_quiz")

    def _remove_session(self, channel_id: int) -> None:
        self._sessions.pop(channel_id, None)
        self._owners.pop(channel_id, None)

    def get_session(self, channel_id: int) -> Optional[QuizSession]:
        """
        Get the session for a channel, whatever its state.

        Args:
            channel_id: Discord channel identifier

        Returns:
            QuizSession if one exists, None otherwise
        """
        return self._sessions.get(channel_id)

    def has_active_session(self, channel_id: int) -> bool:
        """
        Check if a channel has a session that is loading or being played.

        Args:
            channel_id: Discord channel identifier

        Returns:
            True if channel has active session, False otherwise
        """
        session = self._sessions.get(channel_id)
        return session is not None and session.is_active

    def get_owner(self, channel_id: int) -> Optional[int]:
        return self._owners.get(channel_id)

    def is_owner(self, channel_id: int, user_id: int) -> bool:
        return self._owners.get(channel_id) == user_id

    def get_session_status_summary(self, channel_id: int) -> str:
        """
        Get a short, human-readable status line for the channel's session.

        Args:
            channel_id: Discord channel identifier

        Returns:
            Status summary string
        """
        session = self._sessions.get(channel_id)
        if session is None:
            return "No quiz in this channel. Use /quiz to start one."

        header = f"Quiz: {session.category} ({session.difficulty.value})"
        if session.state is SessionState.LOADING:
            return f"{header} | Status: Loading questions"
        if session.state is SessionState.LOAD_FAILED:
            return f"{header} | Status: Failed to load | {session.error_message}"
        if session.state is SessionState.READY:
            return (
                f"{header} | Status: Active | Question {session.current_index + 1}/{session.total} | "
                f"Score {session.score} | {session.phase.value.capitalize()}"
            )
        result = session.result
        return f"{header} | Status: {session.state.value.capitalize()} | Score {result.score}/{result.total}"

    def get_all_active_sessions(self) -> Dict[int, Dict[str, Any]]:
        """
        Get progress information for every active session.

        Returns:
            Dictionary mapping channel IDs to progress info
        """
        return {
            channel_id: {
                'category': session.category,
                'difficulty': session.difficulty.value,
                'state': session.state.value,
                'current_question': session.current_index + 1,
                'total_questions': session.total,
                'score': session.score,
                'owner_id': self._owners.get(channel_id)
            }
            for channel_id, session in self._sessions.items()
            if session.is_active
        }

    async def shutdown(self) -> None:
        """Abandon every session and release the question source."""
        for channel_id in list(self._sessions):
            self._sessions[channel_id].abandon()
            self._remove_session(channel_id)
        await self.question_source.close()
        self.logger.info("QuizController shut down")

    def _handle_session_error(self, channel_id: int, error: Exception, operation: str) -> Dict[str, Any]:
        """
        Log a controller error and turn it into a result dictionary.

        Args:
            channel_id: Discord channel identifier
            error: The exception that occurred
            operation: The operation that failed

        Returns:
            Dictionary with error information for the caller
        """
        self.logger.error(
            f"Error in {operation} for channel {channel_id}: {error}",
            extra={
                'event_type': 'session_error',
                'channel_id': channel_id,
                'operation': operation,
                'error_type': type(error).__name__,
                'timestamp': time.time()
            }
        )
        return {
            'success': False,
            'error': str(error),
            'user_message': self._get_user_friendly_error_message(error)
        }

    def _get_user_friendly_error_message(self, error: Exception) -> str:
        if isinstance(error, SessionConflictError):
            return "❌ A quiz is already running in this channel. Use /stop to end it first."
        if isinstance(error, SessionNotFoundError):
            return "❌ There is no quiz in this channel."
        if isinstance(error, InvalidSessionStateError):
            return "❌ The quiz is not in a state that allows this action."
        if isinstance(error, ValueError):
            return f"❌ {error}"
        return "❌ An unexpected error occurred. Please try again."
