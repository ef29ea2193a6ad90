"""
Configuration manager for Trivia Quiz Bot settings and provider parameters.
"""
import logging
from typing import Optional, Dict, Any, List
from urllib.parse import urlparse

from .models import QuizSettings


class ConfigManager:
    """Manages quiz and provider settings with validation."""

    # Default configuration values
    DEFAULT_QUESTION_COUNT = 10
    DEFAULT_TIMER_DURATION = 15
    DEFAULT_MIN_REQUEST_INTERVAL = 5.0
    DEFAULT_REQUEST_TIMEOUT = 10.0
    DEFAULT_API_URL = "https://opentdb.com/api.php"

    # Validation limits
    MIN_QUESTION_COUNT = 1
    MAX_QUESTION_COUNT = 50  # OpenTDB serves at most 50 per request
    MIN_TIMER_DURATION = 5
    MAX_TIMER_DURATION = 120
    MIN_REQUEST_INTERVAL = 0.0
    MAX_REQUEST_INTERVAL = 60.0
    MIN_REQUEST_TIMEOUT = 1.0
    MAX_REQUEST_TIMEOUT = 60.0

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self._settings = self._default_settings()

    def _default_settings(self) -> QuizSettings:
        return QuizSettings(
            question_count=self.DEFAULT_QUESTION_COUNT,
            timer_duration=self.DEFAULT_TIMER_DURATION,
            min_request_interval=self.DEFAULT_MIN_REQUEST_INTERVAL,
            request_timeout=self.DEFAULT_REQUEST_TIMEOUT,
            api_url=self.DEFAULT_API_URL
        )

    def get_quiz_settings(self) -> QuizSettings:
        """
        Get current quiz settings.

        Returns:
            A copy of the current QuizSettings
        """
        return QuizSettings(
            question_count=self._settings.question_count,
            timer_duration=self._settings.timer_duration,
            min_request_interval=self._settings.min_request_interval,
            request_timeout=self._settings.request_timeout,
            api_url=self._settings.api_url
        )

    def _failure(self, error_msg: str, user_message: str) -> Dict[str, Any]:
        self.logger.error(error_msg)
        return {
            'success': False,
            'error': error_msg,
            'user_message': user_message
        }

    def _success(self, message: str, user_message: str) -> Dict[str, Any]:
        self.logger.info(message)
        return {
            'success': True,
            'message': message,
            'user_message': user_message
        }

    def set_question_count(self, count: int) -> Dict[str, Any]:
        """
        Set the number of questions fetched for each quiz.

        Args:
            count: Number of questions per quiz

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if isinstance(count, bool) or not isinstance(count, int):
            return self._failure(
                f"Question count must be an integer, got {type(count).__name__}",
                f"❌ Invalid input: Expected a number, got {type(count).__name__}"
            )

        if count < self.MIN_QUESTION_COUNT:
            return self._failure(
                f"Question count must be at least {self.MIN_QUESTION_COUNT}",
                f"❌ Too few questions: Minimum is {self.MIN_QUESTION_COUNT}"
            )

        if count > self.MAX_QUESTION_COUNT:
            return self._failure(
                f"Question count cannot exceed {self.MAX_QUESTION_COUNT}",
                f"❌ Too many questions: Maximum is {self.MAX_QUESTION_COUNT}"
            )

        self._settings.question_count = count
        return self._success(f"Question count set to {count}", f"✅ Question count set to {count}")

    def get_question_count(self) -> int:
        return self._settings.question_count

    def set_timer_duration(self, duration: int) -> Dict[str, Any]:
        """
        Set the time allowed for each question.

        Args:
            duration: Timer duration in seconds

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if isinstance(duration, bool) or not isinstance(duration, int):
            return self._failure(
                f"Timer duration must be an integer, got {type(duration).__name__}",
                f"❌ Invalid input: Expected a number, got {type(duration).__name__}"
            )

        if duration < self.MIN_TIMER_DURATION:
            return self._failure(
                f"Timer duration must be at least {self.MIN_TIMER_DURATION} seconds",
                f"❌ Timer too short: Minimum is {self.MIN_TIMER_DURATION} seconds"
            )

        if duration > self.MAX_TIMER_DURATION:
            return self._failure(
                f"Timer duration cannot exceed {self.MAX_TIMER_DURATION} seconds",
                f"❌ Timer too long: Maximum is {self.MAX_TIMER_DURATION} seconds"
            )

        self._settings.timer_duration = duration
        return self._success(f"Timer duration set to {duration} seconds", f"✅ Timer set to {duration} seconds")

    def get_timer_duration(self) -> int:
        return self._settings.timer_duration

    def set_min_request_interval(self, interval: float) -> Dict[str, Any]:
        """
        Set the minimum spacing between requests to the trivia provider.

        Args:
            interval: Interval in seconds

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if isinstance(interval, bool) or not isinstance(interval, (int, float)):
            return self._failure(
                f"Request interval must be a number, got {type(interval).__name__}",
                f"❌ Invalid input: Expected a number, got {type(interval).__name__}"
            )

        if not self.MIN_REQUEST_INTERVAL <= interval <= self.MAX_REQUEST_INTERVAL:
            return self._failure(
                f"Request interval must be between {self.MIN_REQUEST_INTERVAL} and {self.MAX_REQUEST_INTERVAL} seconds",
                f"❌ Request interval out of range: {self.MIN_REQUEST_INTERVAL:g}-{self.MAX_REQUEST_INTERVAL:g} seconds"
            )

        self._settings.min_request_interval = float(interval)
        return self._success(
            f"Minimum request interval set to {interval} seconds",
            f"✅ Provider requests spaced at least {interval:g} seconds apart"
        )

    def set_request_timeout(self, timeout: float) -> Dict[str, Any]:
        """
        Set the HTTP timeout for provider requests.

        Args:
            timeout: Timeout in seconds

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
            return self._failure(
                f"Request timeout must be a number, got {type(timeout).__name__}",
                f"❌ Invalid input: Expected a number, got {type(timeout).__name__}"
            )

        if not self.MIN_REQUEST_TIMEOUT <= timeout <= self.MAX_REQUEST_TIMEOUT:
            return self._failure(
                f"Request timeout must be between {self.MIN_REQUEST_TIMEOUT} and {self.MAX_REQUEST_TIMEOUT} seconds",
                f"❌ Request timeout out of range: {self.MIN_REQUEST_TIMEOUT:g}-{self.MAX_REQUEST_TIMEOUT:g} seconds"
            )

        self._settings.request_timeout = float(timeout)
        return self._success(f"Request timeout set to {timeout} seconds", f"✅ Request timeout set to {timeout:g} seconds")

    def set_api_url(self, url: str) -> Dict[str, Any]:
        """
        Set the trivia provider endpoint.

        Args:
            url: Absolute http(s) URL of the provider's question endpoint

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(url, str) or not url.strip():
            return self._failure("API URL must be a non-empty string", "❌ API URL cannot be empty")

        parsed = urlparse(url.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return self._failure(f"Invalid API URL: {url}", f"❌ Invalid API URL: {url}")

        self._settings.api_url = url.strip()
        return self._success(f"API URL set to {self._settings.api_url}", f"✅ API URL set to {self._settings.api_url}")

    def apply_config(self, config: Optional[Dict[str, Any]]) -> List[str]:
        """
        Apply settings from a parsed config.json.

        Invalid values are logged and skipped so the defaults stay in effect.

        Args:
            config: Parsed configuration dictionary

        Returns:
            User-friendly messages for every rejected value
        """
        problems: List[str] = []
        if not config:
            return problems

        quiz_config = config.get('quiz', {}) or {}
        api_config = config.get('api', {}) or {}

        setters = [
            (quiz_config, 'question_count', self.set_question_count),
            (quiz_config, 'timer_duration', self.set_timer_duration),
            (api_config, 'url', self.set_api_url),
            (api_config, 'min_request_interval', self.set_min_request_interval),
            (api_config, 'request_timeout', self.set_request_timeout),
        ]
        for section, key, setter in setters:
            if key not in section:
                continue
            result = setter(section[key])
            if not result['success']:
                problems.append(result['user_message'])

        if problems:
            self.logger.warning(f"Ignored {len(problems)} invalid configuration values")
        return problems

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        self._settings = self._default_settings()
        self.logger.info("All settings reset to default values")

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings and return validation results.

        Returns:
            Dictionary with validation results and any issues found
        """
        validation_result = {
            "valid": True,
            "issues": []
        }
        settings = self._settings

        if (not isinstance(settings.question_count, int) or
                not self.MIN_QUESTION_COUNT <= settings.question_count <= self.MAX_QUESTION_COUNT):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid question count: {settings.question_count}")

        if (not isinstance(settings.timer_duration, int) or
                not self.MIN_TIMER_DURATION <= settings.timer_duration <= self.MAX_TIMER_DURATION):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid timer duration: {settings.timer_duration}")

        if not self.MIN_REQUEST_INTERVAL <= settings.min_request_interval <= self.MAX_REQUEST_INTERVAL:
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid request interval: {settings.min_request_interval}")

        if not self.MIN_REQUEST_TIMEOUT <= settings.request_timeout <= self.MAX_REQUEST_TIMEOUT:
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid request timeout: {settings.request_timeout}")

        return validation_result

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        return (
            f"Quiz Settings:\n"
            f"• Questions: {self._settings.question_count}\n"
            f"• Timer: {self._settings.timer_duration} seconds\n"
            f"• Provider: {self._settings.api_url}\n"
            f"• Request spacing: {self._settings.min_request_interval:g} seconds"
        )
