"""
Core data models for the Trivia Quiz Bot.
"""
import html
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


logger = logging.getLogger(__name__)


class Difficulty(str, Enum):
    """Question difficulty levels accepted by the trivia provider."""
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"

    @classmethod
    def parse(cls, value: Any) -> "Difficulty":
        """
        Convert a user or provider value into a Difficulty.

        Raises:
            ValueError: If the value is not a known difficulty
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        valid = ", ".join(d.value for d in cls)
        raise ValueError(f"Unknown difficulty {value!r}. Expected one of: {valid}")


class SessionState(Enum):
    """Lifecycle states of a quiz session."""
    LOADING = "loading"
    READY = "ready"
    LOAD_FAILED = "load_failed"
    FINISHED = "finished"
    ABANDONED = "abandoned"


class QuestionPhase(Enum):
    """Phase of the question currently on display."""
    ANSWERING = "answering"
    FEEDBACK = "feedback"


class SessionOutcome(Enum):
    """How a session ended, reported alongside the final tally."""
    COMPLETED = "completed"
    LOAD_FAILED = "load_failed"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class Question:
    """A single multiple-choice trivia question, as returned by the provider."""
    category: str
    difficulty: Difficulty
    prompt: str
    correct_answer: str
    incorrect_answers: Tuple[str, ...]
    question_type: str = "multiple"

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Question":
        """
        Build a Question from one provider result object.

        Text is kept exactly as the provider sent it, HTML entities included.

        Raises:
            ValueError: If a required field is missing or has the wrong type
        """
        if not isinstance(data, dict):
            raise ValueError(f"Question data must be an object, got {type(data).__name__}")

        for key in ("category", "difficulty", "question", "correct_answer", "incorrect_answers"):
            if key not in data:
                raise ValueError(f"Question data is missing '{key}'")

        incorrect = data["incorrect_answers"]
        if not isinstance(incorrect, list) or not all(isinstance(a, str) for a in incorrect):
            raise ValueError("'incorrect_answers' must be a list of strings")

        question = cls(
            category=str(data["category"]),
            difficulty=Difficulty.parse(data["difficulty"]),
            prompt=str(data["question"]),
            correct_answer=str(data["correct_answer"]),
            incorrect_answers=tuple(incorrect),
            question_type=str(data.get("type", "multiple")),
        )

        if question.correct_answer in question.incorrect_answers:
            logger.warning(
                f"Provider returned a distractor identical to the correct answer: {question.prompt!r}",
                extra={'event_type': 'question_duplicate_answer'}
            )
        return question

    @property
    def choice_count(self) -> int:
        return len(self.incorrect_answers) + 1

    @property
    def display_prompt(self) -> str:
        return html.unescape(self.prompt)

    @property
    def display_category(self) -> str:
        return html.unescape(self.category)


@dataclass(frozen=True)
class AnswerChoice:
    """One button-worth of answer, identified by its position in the shuffled set."""
    position: int
    text: str
    is_correct: bool

    @property
    def display_text(self) -> str:
        return html.unescape(self.text)


@dataclass
class QuizSettings:
    """Configuration settings for quiz sessions and the question provider."""
    question_count: int = 10
    timer_duration: int = 15
    min_request_interval: float = 5.0
    request_timeout: float = 10.0
    api_url: str = "https://opentdb.com/api.php"


@dataclass(frozen=True)
class SessionResult:
    """Final tally of a quiz session."""
    score: int
    total: int
    outcome: SessionOutcome
    message: Optional[str] = field(default=None)

    @property
    def percentage(self) -> int:
        if self.total == 0:
            return 0
        return round(self.score * 100 / self.total)
