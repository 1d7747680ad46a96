"""Property-based tests for retry logic with exponential backoff.

Feature: subscriber-sync
"""

import pytest
import structlog
from hypothesis import given, settings, strategies as st

from subsync.utils.retry import backoff_delay, exponential_backoff_retry, retry_call

log = structlog.stdlib.get_logger()


@given(
    st.integers(min_value=1, max_value=5),
    st.floats(min_value=0.01, max_value=2.0),
)
@settings(max_examples=50)
def test_property_19_exponential_backoff_behavior(num_failures: int, base_delay: float):
    """Property 19: Exponential backoff behavior.

    For any sequence of failures followed by a success, each delay doubles
    the previous one until it reaches the cap.

    **Feature: subscriber-sync, Property 19: Exponential backoff behavior**
    """
    log.info(
        "test_property_19_exponential_backoff_behavior",
        num_failures=num_failures,
        base_delay=base_delay,
    )

    delays: list[float] = []
    call_count = 0

    def flaky():
        nonlocal call_count
        call_count += 1
        if call_count <= num_failures:
            raise ValueError(f"Simulated failure {call_count}")
        return "success"

    result = retry_call(
        flaky,
        max_retries=num_failures,
        base_delay=base_delay,
        max_delay=5.0,
        exceptions=(ValueError,),
        sleep=delays.append,
    )

    assert result == "success"
    assert call_count == num_failures + 1
    assert delays == [backoff_delay(i, base_delay, 5.0) for i in range(num_failures)]
    for previous, current in zip(delays, delays[1:]):
        assert current == min(previous * 2, 5.0) or current == 5.0


@given(max_retries=st.integers(min_value=0, max_value=4))
def test_property_20_retries_are_bounded(max_retries: int):
    """Property 20: A function that always fails is called max_retries + 1 times.

    **Feature: subscriber-sync, Property 20: Bounded retries**
    """
    log.info("test_property_20_retries_are_bounded", max_retries=max_retries)
    calls = []

    def always_fails():
        calls.append(1)
        raise ConnectionError("unreachable")

    with pytest.raises(ConnectionError):
        retry_call(always_fails, max_retries=max_retries, sleep=lambda _: None)

    assert len(calls) == max_retries + 1


def test_unlisted_exceptions_are_not_retried():
    calls = []

    def wrong_kind():
        calls.append(1)
        raise KeyError("missing")

    with pytest.raises(KeyError):
        retry_call(wrong_kind, exceptions=(ValueError,), sleep=lambda _: None)

    assert len(calls) == 1


def test_arguments_are_forwarded():
    assert retry_call(lambda a, b=0: a + b, 2, b=3, sleep=lambda _: None) == 5


def test_decorator_retries_and_preserves_name():
    attempts = []

    @exponential_backoff_retry(max_retries=2, base_delay=0.0, exceptions=(OSError,))
    def read_mirror():
        attempts.append(1)
        if len(attempts) < 2:
            raise OSError("file busy")
        return {"subscribers": {}}

    assert read_mirror() == {"subscribers": {}}
    assert len(attempts) == 2
    assert read_mirror.__name__ == "read_mirror"


def test_backoff_delay_is_capped():
    assert backoff_delay(0, 1.0, 10.0) == 1.0
    assert backoff_delay(3, 1.0, 10.0) == 8.0
    assert backoff_delay(10, 1.0, 10.0) == 10.0
