"""
Question source for the Trivia Quiz Bot.
Fetches question batches from the Open Trivia Database with caching and request throttling.
"""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

import aiohttp

from .categories import CATEGORIES, resolve_category
from .models import Difficulty, Question


logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://opentdb.com/api.php"
DEFAULT_QUESTION_COUNT = 10
MIN_REQUEST_INTERVAL = 5.0
QUESTION_TYPE = "multiple"

# OpenTDB response codes other than 0 (success)
RESPONSE_CODE_REASONS: Dict[int, str] = {
    1: "Insufficient questions: the provider does not have enough questions for this category and difficulty",
    2: "Invalid parameters: the provider rejected the request arguments",
    3: "Unknown session token: the provider does not recognise the session token",
    4: "Session token exhausted: every question for this query has already been returned",
}
RATE_LIMIT_RESPONSE_CODE = 5

CacheKey = Tuple[str, Difficulty, int]


class QuestionSourceError(Exception):
    """Base exception for question fetch failures."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason

    @property
    def user_message(self) -> str:
        return f"Failed to load questions: {self.reason}"


class NetworkError(QuestionSourceError):
    """Raised when the provider cannot be reached or answers with a non-success HTTP status."""

    def __init__(self, reason: str, status: Optional[int] = None):
        super().__init__(reason)
        self.status = status


class RateLimitedError(NetworkError):
    """Raised when the provider signals that requests are coming in too fast."""

    def __init__(self, reason: str = "Rate limited by the trivia provider, retry after waiting a few seconds",
                 status: Optional[int] = 429):
        super().__init__(reason, status)


class ProviderError(QuestionSourceError):
    """Raised when the provider answers with a non-zero response code or an unusable body."""

    def __init__(self, reason: str, response_code: Optional[int] = None):
        super().__init__(reason)
        self.response_code = response_code


def error_for_response_code(code: int) -> QuestionSourceError:
    """Map a non-zero provider response code to the matching failure."""
    if code == RATE_LIMIT_RESPONSE_CODE:
        return RateLimitedError(status=None)
    reason = RESPONSE_CODE_REASONS.get(code, f"API error {code}")
    return ProviderError(reason, response_code=code)


class QuestionSource:
    """
    Resolves (category, difficulty, count) to an ordered batch of questions.

    Batches are cached for the lifetime of the instance and never expire.
    Outbound requests are spaced at least ``min_interval`` seconds apart;
    cache hits are served immediately.
    """

    def __init__(
        self,
        categories: Mapping[str, int] = CATEGORIES,
        api_url: str = DEFAULT_API_URL,
        min_interval: float = MIN_REQUEST_INTERVAL,
        request_timeout: float = 10.0,
        http_session: Optional[aiohttp.ClientSession] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._categories = dict(categories)
        self.api_url = api_url
        self.min_interval = min_interval
        self.request_timeout = request_timeout
        self._http_session = http_session
        self._owns_http_session = http_session is None
        self._clock = clock
        self._sleep = sleep

        self._cache: Dict[CacheKey, Tuple[Question, ...]] = {}
        self._last_request_at: Optional[float] = None
        self._request_lock = asyncio.Lock()
        self.request_count = 0

    async def __aenter__(self) -> "QuestionSource":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def categories(self) -> Dict[str, int]:
        return dict(self._categories)

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    @property
    def last_request_at(self) -> Optional[float]:
        return self._last_request_at

    def clear_cache(self) -> None:
        """Drop every cached batch."""
        self._cache.clear()
        logger.info("Question cache cleared", extra={'event_type': 'question_cache_cleared'})

    async def close(self) -> None:
        """Close the HTTP session if this source created it."""
        if self._owns_http_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    async def fetch_batch(
        self,
        category: str,
        difficulty: Any,
        count: int = DEFAULT_QUESTION_COUNT
    ) -> List[Question]:
        """
        Return a batch of questions for the given category and difficulty.

        Args:
            category: Category name, one of the configured categories
            difficulty: Difficulty or its string value
            count: Number of questions to request

        Returns:
            The questions in provider order; fewer than ``count`` if the provider returned fewer

        Raises:
            ValueError: If an argument is invalid
            QuestionSourceError: If the provider could not deliver the batch
        """
        category = resolve_category(category, self._categories)
        difficulty = Difficulty.parse(difficulty)
        if isinstance(count, bool) or not isinstance(count, int) or count < 1:
            raise ValueError(f"Question count must be a positive integer, got {count!r}")

        key: CacheKey = (category, difficulty, count)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug(
                f"Cache hit for {category}/{difficulty.value}/{count}",
                extra={'event_type': 'question_cache_hit', 'category': category}
            )
            return list(cached)

        async with self._request_lock:
            # Another caller may have fetched the same batch while we waited
            cached = self._cache.get(key)
            if cached is not None:
                return list(cached)

            logger.debug(
                f"Cache miss for {category}/{difficulty.value}/{count}",
                extra={'event_type': 'question_cache_miss', 'category': category}
            )
            await self._wait_for_throttle()

            issued_at = self._clock()
            try:
                questions = await self._request(self._categories[category], difficulty, count)
            finally:
                # Failed requests count too; the provider saw them
                self._last_request_at = issued_at

            self._cache[key] = tuple(questions)

        logger.info(
            f"Fetched {len(questions)} questions for {category}/{difficulty.value} (requested {count})",
            extra={
                'event_type': 'question_batch_fetched',
                'category': category,
                'difficulty': difficulty.value,
                'requested': count,
                'received': len(questions)
            }
        )
        return list(questions)

    async def _wait_for_throttle(self) -> None:
        if self._last_request_at is None:
            return
        elapsed = self._clock() - self._last_request_at
        if elapsed < self.min_interval:
            delay = self.min_interval - elapsed
            logger.debug(
                f"Throttling provider request for {delay:.2f}s",
                extra={'event_type': 'question_request_throttled', 'delay': delay}
            )
            await self._sleep(delay)

    def _get_http_session(self) -> aiohttp.ClientSession:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout)
            )
            self._owns_http_session = True
        return self._http_session

    async def _request(self, category_id: int, difficulty: Difficulty, count: int) -> List[Question]:
        params = {
            'amount': count,
            'category': category_id,
            'difficulty': difficulty.value,
            'type': QUESTION_TYPE,
        }
        self.request_count += 1
        logger.info(
            f"Requesting {count} questions from provider (category {category_id}, {difficulty.value})",
            extra={'event_type': 'question_request', 'params': params}
        )

        session = self._get_http_session()
        try:
            async with session.get(self.api_url, params=params) as response:
                if response.status == 429:
                    logger.warning("Provider rate limited the request", extra={'event_type': 'question_rate_limited'})
                    raise RateLimitedError()
                if not 200 <= response.status < 300:
                    logger.error(
                        f"Provider returned HTTP {response.status}",
                        extra={'event_type': 'question_http_error', 'status': response.status}
                    )
                    raise NetworkError(f"HTTP error {response.status}", status=response.status)
                try:
                    data = await response.json(content_type=None)
                except ValueError as e:
                    raise ProviderError(f"Invalid JSON from provider: {e}") from e
        except QuestionSourceError:
            raise
        except asyncio.TimeoutError as e:
            logger.error("Provider request timed out", extra={'event_type': 'question_timeout'})
            raise NetworkError(f"Request timed out after {self.request_timeout}s") from e
        except aiohttp.ClientError as e:
            logger.error(f"Provider request failed: {e}", extra={'event_type': 'question_network_error'})
            raise NetworkError(f"Network error: {e}") from e

        return self._parse_response(data)

    def _parse_response(self, data: Any) -> List[Question]:
        if not isinstance(data, dict):
            raise ProviderError("Unexpected response from provider")

        code = data.get('response_code')
        if isinstance(code, bool) or not isinstance(code, int):
            raise ProviderError("Provider response has no response code")
        if code != 0:
            error = error_for_response_code(code)
            logger.warning(
                f"Provider returned response code {code}: {error.reason}",
                extra={'event_type': 'question_provider_error', 'response_code': code}
            )
            raise error

        results = data.get('results')
        if not isinstance(results, list):
            raise ProviderError("Provider response has no results")

        try:
            return [Question.from_api(item) for item in results]
        except ValueError as e:
            raise ProviderError(f"Malformed question from provider: {e}") from e
