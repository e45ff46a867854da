"""
Tests for RetryPolicy and Retry-After parsing.

All waits go through FakeClock, so no test sleeps on real time.
"""

import pytest

from erd_deployer.core.platform.metadata_client import (
    MetadataAPIError,
    TransientAPIError,
    is_transient_error,
)
from erd_deployer.core.platform.retry import (
    RetryPhase,
    RetryPolicy,
    RetryState,
    format_http_date,
    parse_retry_after,
)


class Flaky:
    """Raise the queued errors in order, then return 'ok'."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


def policy(clock, **kwargs):
    kwargs.setdefault("max_attempts", 3)
    return RetryPolicy(is_transient_error, clock=clock, **kwargs)


# =============================================================================
# Retry Loop
# =============================================================================

@pytest.mark.resilience
class TestRetryPolicy:
    """Attempts, waits and phases."""

    @pytest.mark.asyncio
    async def test_retry_after_is_honoured(self, fake_clock):
        call = Flaky(TransientAPIError(429, retry_after=2))
        state = RetryState()

        assert await policy(fake_clock).run(call, state=state) == "ok"

        assert call.calls == 2
        assert state.attempts == 2
        assert state.delays == [2.0]
        assert state.total_wait == 2.0
        assert fake_clock.sleeps == [2.0]
        assert state.transitions == [
            (RetryPhase.ATTEMPTING, 1, 0.0),
            (RetryPhase.BACKOFF, 1, 2.0),
            (RetryPhase.ATTEMPTING, 2, 0.0),
        ]

    @pytest.mark.asyncio
    async def test_exhaustion_reraises_last_error(self, fake_clock):
        call = Flaky(*(TransientAPIError(503, message=f"down {n}") for n in range(5)))
        state = RetryState()

        with pytest.raises(TransientAPIError, match="down 2"):
            await policy(fake_clock).run(call, state=state)

        assert call.calls == 3
        assert state.phase == RetryPhase.EXHAUSTED
        assert state.delays == [1.0, 2.0]
        assert fake_clock.total_slept == 3.0

    @pytest.mark.asyncio
    async def test_permanent_error_is_not_retried(self, fake_clock):
        call = Flaky(MetadataAPIError(400, "0x80040203", "Bad request"))
        state = RetryState()

        with pytest.raises(MetadataAPIError) as exc_info:
            await policy(fake_clock).run(call, state=state)

        assert exc_info.value.status_code == 400
        assert call.calls == 1
        assert fake_clock.sleeps == []
        assert state.phase == RetryPhase.ATTEMPTING

    @pytest.mark.asyncio
    async def test_retry_after_is_capped(self, fake_clock):
        call = Flaky(TransientAPIError(429, retry_after=100))

        await policy(fake_clock, max_delay=16.0).run(call)

        assert fake_clock.sleeps == [16.0]

    @pytest.mark.asyncio
    async def test_single_attempt(self, fake_clock):
        call = Flaky(TransientAPIError(503))

        with pytest.raises(TransientAPIError):
            await policy(fake_clock, max_attempts=1).run(call)

        assert call.calls == 1
        assert fake_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_arguments_are_passed_through(self, fake_clock):
        async def add(a, b, scale=1):
            return (a + b) * scale

        assert await policy(fake_clock).run(add, 2, 3, scale=10) == 50

    @pytest.mark.parametrize("attempt,retry_after,expected", [
        (1, None, 1.0),
        (2, None, 2.0),
        (3, None, 4.0),
        (6, None, 16.0),
        (1, 0.5, 1.0),
        (2, 5.0, 5.0),
        (1, 60.0, 16.0),
    ])
    def test_compute_delay(self, attempt, retry_after, expected):
        assert RetryPolicy(is_transient_error).compute_delay(attempt, retry_after) == expected

    @pytest.mark.parametrize("kwargs", [{"max_attempts": 0}, {"initial_delay": -1}])
    def test_invalid_settings(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(is_transient_error, **kwargs)


# =============================================================================
# Retry-After Header
# =============================================================================

@pytest.mark.unit
class TestParseRetryAfter:
    """parse_retry_after"""

    NOW = 1_700_000_000.0

    @pytest.mark.parametrize("value,expected", [
        ("2", 2.0),
        (" 30 ", 30.0),
        ("0", 0.0),
        (None, None),
        ("", None),
        ("soon", None),
        ("-5", None),
    ])
    def test_values(self, value, expected):
        assert parse_retry_after(value, self.NOW) == expected

    def test_http_date(self):
        assert parse_retry_after(format_http_date(self.NOW + 30), self.NOW) == 30.0

    def test_past_http_date(self):
        assert parse_retry_after(format_http_date(self.NOW - 30), self.NOW) == 0.0

    def test_format_http_date(self):
        assert format_http_date(0) == "Thu, 01 Jan 1970 00:00:00 GMT"
