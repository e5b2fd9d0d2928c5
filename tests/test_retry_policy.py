import asyncio

import pytest

from concall.common.errors import EnrichmentError, RetriesExhaustedError
from concall.enrichment.retry_policy import (
    MAX_ATTEMPTS,
    backoff_delay,
    call_with_retry,
    is_transient,
    status_code_of,
)
from tests._fakes import _Recorder


class _ApiError(Exception):
    """Shape-compatible with google.genai.errors.APIError (exposes `.code`)."""

    def __init__(self, code: int, message: str = "upstream error") -> None:
        super().__init__(f"{code} {message}")
        self.code = code


class _HttpStatusError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"status {status_code}")
        self.status_code = status_code


@pytest.mark.parametrize("i", range(6))
def test_backoff_delay_stays_within_jitter_band(i):
    base = 0.1
    lo = base * 2**i
    assert backoff_delay(i, base_s=base, rng=lambda: 0.0) == pytest.approx(lo)
    hi = backoff_delay(i, base_s=base, rng=lambda: 0.999999)
    assert lo <= hi < lo * 1.2


def test_transient_classification():
    assert is_transient(_ApiError(429))
    assert is_transient(_ApiError(500))
    assert is_transient(_ApiError(503))
    assert is_transient(_HttpStatusError(503))
    assert not is_transient(_ApiError(400))
    assert not is_transient(_ApiError(403))
    assert not is_transient(_ApiError(502))
    assert not is_transient(ValueError("no status"))
    assert status_code_of(ValueError("x")) is None


def test_three_rate_limits_then_success_waits_three_times():
    sleep = _Recorder()
    calls = {"n": 0}

    async def _op():
        calls["n"] += 1
        if calls["n"] <= 3:
            raise _ApiError(429, "rate limited")
        return "ok"

    out = asyncio.run(call_with_retry(_op, op="gemini.generate", sleep=sleep, rng=lambda: 0.0))

    assert out == "ok"
    assert calls["n"] == 4
    assert sleep.delays == pytest.approx([0.1, 0.2, 0.4])


def test_all_transient_attempts_exhaust_retries():
    sleep = _Recorder()
    calls = {"n": 0}

    async def _op():
        calls["n"] += 1
        raise _ApiError(503, "unavailable")

    with pytest.raises(RetriesExhaustedError) as ei:
        asyncio.run(call_with_retry(_op, op="gemini.generate", sleep=sleep, rng=lambda: 0.5))

    assert calls["n"] == MAX_ATTEMPTS
    assert ei.value.attempts == MAX_ATTEMPTS
    assert isinstance(ei.value, EnrichmentError)
    assert len(sleep.delays) == MAX_ATTEMPTS - 1
    for i, d in enumerate(sleep.delays):
        assert 0.1 * 2**i <= d < 0.1 * 2**i * 1.2


def test_terminal_error_is_not_retried():
    sleep = _Recorder()
    calls = {"n": 0}

    async def _op():
        calls["n"] += 1
        raise _ApiError(401, "bad api key")

    with pytest.raises(EnrichmentError) as ei:
        asyncio.run(call_with_retry(_op, op="gemini.upload", sleep=sleep))

    assert not isinstance(ei.value, RetriesExhaustedError)
    assert calls["n"] == 1
    assert sleep.delays == []
    assert "non-retriable" in str(ei.value)


def test_cancellation_during_backoff_propagates():
    async def _op():
        raise _ApiError(429)

    async def _run():
        task = asyncio.create_task(call_with_retry(_op, op="gemini.generate", base_delay_s=10.0))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(_run())
