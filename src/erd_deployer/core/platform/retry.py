"""
Retry policy for Web API requests.

Wraps tenacity's ``AsyncRetrying`` with:
- A bounded number of attempts
- Exponential backoff (doubling from the initial delay, capped)
- ``Retry-After`` support (integer seconds or HTTP date)
- An injectable clock so tests never wait on real time
- An explicit phase record (ATTEMPTING -> BACKOFF -> ... -> EXHAUSTED)

The wait before retry ``n`` is ``min(max(retry_after, floor_n), max_delay)``
where ``floor_n = min(initial_delay * 2 ** (n - 1), max_delay)``.

Usage:
    policy = RetryPolicy(is_retryable=lambda e: isinstance(e, TransientAPIError))
    response = await policy.run(send_request, method, url)
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Tuple, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
)

from ...constants import APIConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Clock
# =============================================================================

class Clock(Protocol):
    """Time source used for backoff and token expiry."""

    def now(self) -> float:
        """Current time as epoch seconds."""
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Wall-clock time and real ``asyncio.sleep``."""

    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


def parse_retry_after(value: Optional[str], now: float) -> Optional[float]:
    """
    Parse a ``Retry-After`` header.

    Args:
        value: Header value: delay in seconds or an HTTP date.
        now: Current epoch seconds, used to turn a date into a delay.

    Returns:
        Non-negative delay in seconds, or None when absent or unparseable.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring unparseable Retry-After header: {value!r}")
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, when.timestamp() - now)


def format_http_date(epoch_seconds: float) -> str:
    """Render epoch seconds as an RFC 7231 HTTP date."""
    moment = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
    return moment.strftime("%a, %d %b %Y %H:%M:%S GMT")


# =============================================================================
# State Machine
# =============================================================================

class RetryPhase(Enum):
    ATTEMPTING = "attempting"
    BACKOFF = "backoff"
    EXHAUSTED = "exhausted"


@dataclass
class RetryState:
    """
    Record of one retried call.

    Attributes:
        phase: Current phase.
        attempts: Attempts started so far.
        total_wait: Seconds spent in backoff.
        transitions: ``(phase, attempt, delay)`` for every phase change.
        last_error: Most recent failure, if any.
    """
    phase: RetryPhase = RetryPhase.ATTEMPTING
    attempts: int = 0
    total_wait: float = 0.0
    transitions: List[Tuple[RetryPhase, int, float]] = field(default_factory=list)
    last_error: Optional[BaseException] = None

    def transition(self, phase: RetryPhase, delay: float = 0.0) -> None:
        self.phase = phase
        self.transitions.append((phase, self.attempts, delay))

    @property
    def delays(self) -> List[float]:
        return [delay for phase, _, delay in self.transitions if phase == RetryPhase.BACKOFF]


# =============================================================================
# Policy
# =============================================================================

class RetryPolicy:
    """
    Bounded exponential-backoff retry on top of tenacity.

    Non-retryable exceptions propagate immediately. When attempts run out
    the last exception is re-raised and the state ends in EXHAUSTED.
    """

    def __init__(
        self,
        is_retryable: Callable[[BaseException], bool],
        max_attempts: int = APIConfig.DEFAULT_MAX_ATTEMPTS,
        initial_delay: float = APIConfig.DEFAULT_INITIAL_DELAY_SECONDS,
        max_delay: float = APIConfig.DEFAULT_MAX_DELAY_SECONDS,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the policy.

        Args:
            is_retryable: Predicate selecting exceptions that are retried.
            max_attempts: Total attempts including the first one.
            initial_delay: Backoff floor for the first retry.
            max_delay: Upper bound for any single wait.
            clock: Time source (defaults to the system clock).
            logger: Logger for retry warnings.
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        if initial_delay < 0 or max_delay < 0:
            raise ValueError("Retry delays cannot be negative")
        self.is_retryable = is_retryable
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.clock = clock or SystemClock()
        self.logger = logger or logging.getLogger(__name__)

    def backoff_floor(self, attempt_number: int) -> float:
        """Exponential floor for the wait after ``attempt_number`` failed."""
        return min(self.initial_delay * (2 ** (attempt_number - 1)), self.max_delay)

    def compute_delay(self, attempt_number: int, retry_after: Optional[float] = None) -> float:
        floor = self.backoff_floor(attempt_number)
        return min(max(retry_after or 0.0, floor), self.max_delay)

    async def run(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        state: Optional[RetryState] = None,
        **kwargs: Any,
    ) -> T:
        """
        Call ``fn`` until it succeeds, fails permanently or attempts run out.

        Args:
            fn: Coroutine function to call.
            *args: Positional arguments for ``fn``.
            state: Optional state object to record phases into.
            **kwargs: Keyword arguments for ``fn``.

        Returns:
            The value returned by ``fn``.
        """
        state = state if state is not None else RetryState()

        async def attempt() -> T:
            state.attempts += 1
            state.transition(RetryPhase.ATTEMPTING)
            try:
                return await fn(*args, **kwargs)
            except BaseException as e:
                state.last_error = e
                raise

        def wait(retry_state: RetryCallState) -> float:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            return self.compute_delay(
                retry_state.attempt_number, getattr(error, "retry_after", None)
            )

        async def sleep(seconds: float) -> None:
            state.total_wait += seconds
            state.transition(RetryPhase.BACKOFF, seconds)
            await self.clock.sleep(seconds)

        def exhausted(retry_state: RetryCallState) -> T:
            state.transition(RetryPhase.EXHAUSTED)
            self.logger.error(
                f"Giving up after {retry_state.attempt_number} attempts: "
                f"{retry_state.outcome.exception()}"
            )
            raise retry_state.outcome.exception()

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait,
            retry=retry_if_exception(self.is_retryable),
            sleep=sleep,
            before_sleep=before_sleep_log(self.logger, logging.WARNING),
            retry_error_callback=exhausted,
            reraise=True,
        )
        return await retrying(attempt)
