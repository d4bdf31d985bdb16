"""Property-based tests for the retry budget.

**Feature: wallet-reconciliation-core, Property 5: Bounded Retry**
"""

import asyncio

import pytest
from hypothesis import given, settings, strategies as st

from app.core.exceptions import ProviderUnavailableError, RetryExhaustedError
from app.services.retry import RetryEngine
from support import RecordingSleep


@settings(max_examples=100, deadline=None)
@given(
    max_attempts=st.integers(min_value=1, max_value=6),
    failures=st.integers(min_value=0, max_value=8),
    base_delay=st.floats(min_value=0.0, max_value=5.0, allow_nan=False),
    max_delay=st.floats(min_value=0.0, max_value=30.0, allow_nan=False),
)
def test_operation_runs_at_most_max_attempts(
    max_attempts: int, failures: int, base_delay: float, max_delay: float
) -> None:
    """
    **Feature: wallet-reconciliation-core, Property 5: Bounded Retry**

    *For any* attempt budget and run of transient failures, the operation SHALL
    be invoked at most ``max_attempts`` times, succeed only if a call inside the
    budget succeeds, and never wait longer than the delay cap between calls.
    """
    calls = 0

    async def operation() -> str:
        nonlocal calls
        calls += 1
        if calls <= failures:
            raise ProviderUnavailableError()
        return "ok"

    sleep = RecordingSleep()
    engine = RetryEngine(max_attempts=max_attempts, base_delay=base_delay, max_delay=max_delay, sleep=sleep)

    if failures < max_attempts:
        assert asyncio.run(engine.run(operation, "flaky call")) == "ok"
        assert calls == failures + 1
    else:
        with pytest.raises(RetryExhaustedError) as exc_info:
            asyncio.run(engine.run(operation, "flaky call"))
        assert calls == max_attempts
        assert exc_info.value.attempts == max_attempts

    assert len(sleep.delays) == calls - 1
    assert all(0 <= delay <= max_delay for delay in sleep.delays)
