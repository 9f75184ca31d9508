"""
Property-based tests for the Retry Manager module.

Uses Hypothesis for property-based testing of bounded retry, pause
calculation and the transient/definitive distinction.
"""

from hypothesis import given, settings
from hypothesis import strategies as st

from share_redirect.config import RetryConfig
from share_redirect.exceptions import NameNotFoundError, TransientNetworkError
from share_redirect.retry_manager import RetryManager, RetryResult, is_transient

from fakes import RecordingSleep


# Strategies for generating test data

@st.composite
def retry_config_strategy(draw) -> RetryConfig:
    """Generate valid RetryConfig objects."""
    return RetryConfig(
        max_retries=draw(st.integers(min_value=0, max_value=5)),
        base_delay_seconds=draw(st.floats(min_value=0.0, max_value=5.0)),
        backoff_factor=draw(st.floats(min_value=1.0, max_value=3.0)),
        max_delay_seconds=draw(st.floats(min_value=5.0, max_value=60.0)),
    )


def _transient() -> TransientNetworkError:
    return TransientNetworkError(code="timeout", message="simulated timeout")


class TestBoundedRetryProperty:
    """Property 1: transient failures are retried exactly max_retries times."""

    @given(config=retry_config_strategy())
    @settings(max_examples=100)
    def test_attempts_bounded(self, config: RetryConfig) -> None:
        sleep = RecordingSleep()
        calls = 0

        def always_failing():
            nonlocal calls
            calls += 1
            raise _transient()

        result = RetryManager(config, sleep=sleep).execute_with_retry(always_failing)

        assert not result.success
        assert result.result is None
        assert calls == config.max_retries + 1
        assert result.attempts == calls
        assert isinstance(result.last_error, TransientNetworkError)
        assert len(sleep.delays) == config.max_retries

    @given(
        config=retry_config_strategy(),
        failures=st.integers(min_value=0, max_value=5),
    )
    @settings(max_examples=100)
    def test_success_after_transient_failures(self, config: RetryConfig, failures: int) -> None:
        sleep = RecordingSleep()
        remaining = failures

        def flaky():
            nonlocal remaining
            if remaining > 0:
                remaining -= 1
                raise _transient()
            return "10.0.0.1"

        result: RetryResult = RetryManager(config, sleep=sleep).execute_with_retry(flaky)

        if failures <= config.max_retries:
            assert result.success
            assert result.result == "10.0.0.1"
            assert result.attempts == failures + 1
            assert len(sleep.delays) == failures
        else:
            assert not result.success
            assert result.attempts == config.max_retries + 1


class TestDefinitiveFailureProperty:
    """Property 2: definitive failures stop immediately, with no pause."""

    @given(config=retry_config_strategy())
    @settings(max_examples=100)
    def test_not_found_is_not_retried(self, config: RetryConfig) -> None:
        sleep = RecordingSleep()
        calls = 0

        def nxdomain():
            nonlocal calls
            calls += 1
            raise NameNotFoundError(code="nxdomain", message="no such name")

        result = RetryManager(config, sleep=sleep).execute_with_retry(nxdomain)

        assert not result.success
        assert calls == 1
        assert sleep.delays == []
        assert isinstance(result.last_error, NameNotFoundError)

    def test_default_predicate(self) -> None:
        assert is_transient(_transient())
        assert not is_transient(NameNotFoundError(code="nxdomain", message="x"))
        assert not is_transient(ValueError("x"))

    def test_custom_predicate_and_callback(self) -> None:
        sleep = RecordingSleep()
        seen = []

        def failing():
            raise ValueError("boom")

        result = RetryManager(RetryConfig(max_retries=2), sleep=sleep).execute_with_retry(
            failing,
            is_retryable=lambda e: isinstance(e, ValueError),
            on_retry=lambda attempt, error: seen.append(attempt),
        )

        assert not result.success
        assert seen == [1, 2]
        assert sleep.delays == [1.0, 1.0]


class TestDelayProperty:
    """Property 3: pauses follow base * factor**n and never exceed the cap."""

    @given(
        config=retry_config_strategy(),
        attempt=st.integers(min_value=0, max_value=10),
    )
    @settings(max_examples=100)
    def test_delay_formula(self, config: RetryConfig, attempt: int) -> None:
        manager = RetryManager(config)
        expected = min(
            config.base_delay_seconds * config.backoff_factor ** attempt,
            config.max_delay_seconds,
        )
        assert abs(manager._calculate_delay(attempt) - expected) < 1e-9
        assert manager._calculate_delay(attempt) <= config.max_delay_seconds

    def test_default_policy_is_fixed_one_second(self) -> None:
        manager = RetryManager(RetryConfig())
        assert manager.max_attempts == 4
        assert [manager._calculate_delay(n) for n in range(3)] == [1.0, 1.0, 1.0]
