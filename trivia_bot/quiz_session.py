"""
Quiz session state machine for the Trivia Quiz Bot.

A session fetches one batch of questions, then walks through it one question
at a time: each question is answered (or times out), feedback is shown, and
the player advances until the final tally is reported.
"""
import asyncio
import inspect
import itertools
import logging
import random
from typing import Any, Callable, List, Optional, Set, Tuple

from .models import (
    AnswerChoice,
    Difficulty,
    Question,
    QuestionPhase,
    QuizSettings,
    SessionOutcome,
    SessionResult,
    SessionState,
)
from .question_source import QuestionSource, QuestionSourceError
from .quiz_engine import QuizTimer, shuffle_choices


logger = logging.getLogger(__name__)

# listener(event_name, session); may return an awaitable
SessionListener = Callable[[str, "QuizSession"], Any]

EVENT_QUESTION_STARTED = "question_started"
EVENT_TICK = "tick"
EVENT_ANSWERED = "answered"
EVENT_TIMED_OUT = "timed_out"
EVENT_FINISHED = "finished"
EVENT_LOAD_FAILED = "load_failed"
EVENT_ABANDONED = "abandoned"

NO_QUESTIONS_MESSAGE = "No questions available for this category and difficulty. Please try another selection."

_session_ids = itertools.count(1)


class InvalidSessionStateError(Exception):
    """Raised when session is in an invalid state for the requested operation."""
    pass


class QuizSession:
    """
    Drives a single player through one batch of trivia questions.

    States go LOADING -> READY or LOAD_FAILED, READY -> FINISHED, and any
    state that has not ended can be ABANDONED. While READY, each question
    cycles ANSWERING -> FEEDBACK.
    """

    def __init__(
        self,
        source: QuestionSource,
        category: str,
        difficulty: Any,
        settings: Optional[QuizSettings] = None,
        rng: Optional[random.Random] = None,
        listener: Optional[SessionListener] = None,
        tick_interval: float = 1.0,
        session_id: Optional[str] = None,
    ):
        """
        Args:
            source: Question source used for the single batch fetch
            category: Category name
            difficulty: Difficulty or its string value
            settings: Question count and timer budget; defaults apply when omitted
            rng: Randomness source for answer shuffling
            listener: Called with (event_name, session) on every state change
            tick_interval: Seconds between timer ticks
            session_id: Identifier used in logs
        """
        self._source = source
        self.category = category
        self.difficulty = Difficulty.parse(difficulty)
        self.settings = settings or QuizSettings()
        self.listener = listener
        self.session_id = session_id or f"session-{next(_session_ids)}"
        self._rng = rng or random.Random()

        self._state = SessionState.LOADING
        self._phase: Optional[QuestionPhase] = None
        self._questions: Tuple[Question, ...] = ()
        self._current_index = 0
        self._score = 0
        self._remaining_time = self.settings.timer_duration
        self._choices: List[AnswerChoice] = []
        self._selected_position: Optional[int] = None
        self._timed_out = False
        self._error_message: Optional[str] = None
        self._result: Optional[SessionResult] = None
        self._questions_started = 0
        self._load_started = False

        self._timer = QuizTimer(self.session_id, tick_interval=tick_interval)
        self._pending_events: Set[asyncio.Future] = set()

    # Loading

    async def load(self) -> SessionState:
        """
        Fetch the question batch and enter the first question.

        Returns:
            The state after loading: READY, LOAD_FAILED, or ABANDONED if the
            session was abandoned while the fetch was in flight

        Raises:
            InvalidSessionStateError: If load was already called
        """
        if self._load_started:
            raise InvalidSessionStateError(f"Session {self.session_id} has already been loaded")
        self._load_started = True

        logger.info(
            f"Loading session {self.session_id}: {self.category}/{self.difficulty.value}",
            extra={'event_type': 'session_loading', 'session_id': self.session_id}
        )

        try:
            questions = await self._source.fetch_batch(
                self.category, self.difficulty, self.settings.question_count
            )
        except QuestionSourceError as e:
            if self._discard_late_load():
                return self._state
            self._fail_load(e.user_message)
            return self._state

        if self._discard_late_load():
            return self._state

        if not questions:
            self._fail_load(NO_QUESTIONS_MESSAGE)
            return self._state

        self._questions = tuple(questions)
        self._current_index = 0
        self._score = 0
        self._state = SessionState.READY
        logger.info(
            f"Session {self.session_id} ready with {len(self._questions)} questions",
            extra={'event_type': 'session_ready', 'session_id': self.session_id, 'total': len(self._questions)}
        )
        self._enter_question()
        return self._state

    def _discard_late_load(self) -> bool:
        if self._state is SessionState.LOADING:
            return False
        logger.info(
            f"Discarding fetch result for session {self.session_id} in state {self._state.value}",
            extra={'event_type': 'session_late_load_discarded', 'session_id': self.session_id}
        )
        return True

    def _fail_load(self, message: str) -> None:
        self._state = SessionState.LOAD_FAILED
        self._error_message = message
        logger.warning(
            f"Session {self.session_id} failed to load: {message}",
            extra={'event_type': 'session_load_failed', 'session_id': self.session_id}
        )
        self._emit(EVENT_LOAD_FAILED)

    # Question cycle

    def _enter_question(self) -> None:
        question = self._questions[self._current_index]
        self._choices = shuffle_choices(question, self._rng)
        self._remaining_time = self.settings.timer_duration
        self._selected_position = None
        self._timed_out = False
        self._phase = QuestionPhase.ANSWERING
        self._questions_started += 1

        self._timer.start(self.settings.timer_duration, self._on_tick, self._on_expired)

        logger.debug(
            f"Session {self.session_id} presenting question {self._current_index + 1}/{len(self._questions)}",
            extra={'event_type': 'question_started', 'session_id': self.session_id, 'index': self._current_index}
        )
        self._emit(EVENT_QUESTION_STARTED)

    async def _on_tick(self, remaining_time: int) -> None:
        if self._state is not SessionState.READY or self._phase is not QuestionPhase.ANSWERING:
            return
        self._remaining_time = remaining_time
        self._emit(EVENT_TICK)

    async def _on_expired(self) -> None:
        if self._state is not SessionState.READY or self._phase is not QuestionPhase.ANSWERING:
            return
        self._timer.cancel()
        self._remaining_time = 0
        self._selected_position = None
        self._timed_out = True
        self._phase = QuestionPhase.FEEDBACK
        logger.info(
            f"Session {self.session_id} question {self._current_index + 1} timed out",
            extra={'event_type': 'question_timed_out', 'session_id': self.session_id, 'index': self._current_index}
        )
        self._emit(EVENT_TIMED_OUT)

    def select_answer(self, position: int) -> bool:
        """
        Record the player's answer for the current question.

        Args:
            position: Position of the chosen answer in ``choices``

        Returns:
            True if the answer was recorded, False if answers are not being accepted

        Raises:
            ValueError: If the position does not name one of the current choices
        """
        if self._state is not SessionState.READY or self._phase is not QuestionPhase.ANSWERING:
            logger.debug(
                f"Ignoring answer for session {self.session_id} in state {self._state.value}",
                extra={'event_type': 'answer_ignored', 'session_id': self.session_id}
            )
            return False

        if isinstance(position, bool) or not isinstance(position, int) or not 0 <= position < len(self._choices):
            raise ValueError(f"Answer position must be between 0 and {len(self._choices) - 1}, got {position!r}")

        self._timer.cancel()
        choice = self._choices[position]
        self._selected_position = position
        self._phase = QuestionPhase.FEEDBACK

        correct = choice.text == self.current_question.correct_answer
        if correct:
            self._score += 1

        logger.info(
            f"Session {self.session_id} question {self._current_index + 1} answered "
            f"{'correctly' if correct else 'incorrectly'}",
            extra={
                'event_type': 'question_answered',
                'session_id': self.session_id,
                'index': self._current_index,
                'correct': correct
            }
        )
        self._emit(EVENT_ANSWERED)
        return True

    def next(self) -> bool:
        """
        Advance to the next question, or finish after the last one.

        Returns:
            True if the session moved on, False if feedback is not being shown
        """
        if self._state is not SessionState.READY or self._phase is not QuestionPhase.FEEDBACK:
            return False

        if self._current_index < len(self._questions) - 1:
            self._current_index += 1
            self._enter_question()
        else:
            self._finish()
        return True

    def _finish(self) -> None:
        self._timer.cancel()
        self._state = SessionState.FINISHED
        self._phase = None
        self._result = SessionResult(self._score, len(self._questions), SessionOutcome.COMPLETED)
        logger.info(
            f"Session {self.session_id} finished: {self._score}/{len(self._questions)}",
            extra={
                'event_type': 'session_finished',
                'session_id': self.session_id,
                'score': self._score,
                'total': len(self._questions)
            }
        )
        self._emit(EVENT_FINISHED)

    def abandon(self) -> SessionResult:
        """
        Leave the session, stopping its timer and ignoring any fetch still in flight.

        Returns:
            The session result; a finished session keeps its final tally
        """
        if self._result is not None:
            return self._result

        self._timer.cancel()
        previous = self._state
        if previous is SessionState.LOAD_FAILED:
            result = SessionResult(0, 0, SessionOutcome.LOAD_FAILED, self._error_message)
        elif previous is SessionState.LOADING:
            result = SessionResult(0, 0, SessionOutcome.ABANDONED)
        else:
            result = SessionResult(self._score, len(self._questions), SessionOutcome.ABANDONED)

        self._state = SessionState.ABANDONED
        self._phase = None
        self._result = result
        logger.info(
            f"Session {self.session_id} abandoned from state {previous.value}",
            extra={'event_type': 'session_abandoned', 'session_id': self.session_id, 'from_state': previous.value}
        )
        self._emit(EVENT_ABANDONED)
        return result

    # Listener dispatch

    def _emit(self, event: str) -> None:
        if self.listener is None:
            return
        try:
            outcome = self.listener(event, self)
        except Exception as e:
            logger.error(f"Session listener failed on {event}: {e}", exc_info=True)
            return
        if inspect.isawaitable(outcome):
            future = asyncio.ensure_future(outcome)
            self._pending_events.add(future)
            future.add_done_callback(self._on_event_done)

    def _on_event_done(self, future: asyncio.Future) -> None:
        self._pending_events.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.error(
                f"Session listener failed for session {self.session_id}: {future.exception()}",
                exc_info=future.exception()
            )

    # Public state

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def phase(self) -> Optional[QuestionPhase]:
        return self._phase

    @property
    def is_active(self) -> bool:
        """True while the session is loading or being played."""
        return self._state in (SessionState.LOADING, SessionState.READY)

    @property
    def questions(self) -> Tuple[Question, ...]:
        return self._questions

    @property
    def total(self) -> int:
        return len(self._questions)

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def current_question(self) -> Optional[Question]:
        if not self._questions:
            return None
        return self._questions[self._current_index]

    @property
    def questions_remaining(self) -> int:
        """Questions left including the one on display."""
        if self._state is not SessionState.READY:
            return 0
        return len(self._questions) - self._current_index

    @property
    def is_last_question(self) -> bool:
        return bool(self._questions) and self._current_index == len(self._questions) - 1

    @property
    def choices(self) -> List[AnswerChoice]:
        return list(self._choices)

    @property
    def score(self) -> int:
        return self._score

    @property
    def remaining_time(self) -> int:
        return self._remaining_time

    @property
    def selected_position(self) -> Optional[int]:
        return self._selected_position

    @property
    def selected_choice(self) -> Optional[AnswerChoice]:
        if self._selected_position is None:
            return None
        return self._choices[self._selected_position]

    @property
    def timed_out(self) -> bool:
        return self._timed_out

    @property
    def error_message(self) -> Optional[str]:
        return self._error_message

    @property
    def result(self) -> Optional[SessionResult]:
        return self._result

    @property
    def questions_started(self) -> int:
        return self._questions_started

    @property
    def timer(self) -> QuizTimer:
        return self._timer
