from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import AsyncRetrying, RetryCallState, RetryError, retry_if_exception, stop_after_attempt

from concall.common.errors import EnrichmentError, RetriesExhaustedError
from concall.common.logging import log_event

T = TypeVar("T")
logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5
BASE_DELAY_S = 0.1

# 429 rate limited, 500/503 transient backend failures.
TRANSIENT_STATUS_CODES: frozenset[int] = frozenset({429, 500, 503})


def status_code_of(exc: BaseException) -> int | None:
    """
    Best-effort HTTP status of an upstream error.

    google.genai.errors.APIError exposes `.code`; httpx/requests style errors expose
    `.status_code`.
    """
    for attr in ("code", "status_code"):
        v = getattr(exc, attr, None)
        if isinstance(v, int):
            return v
    return None


def is_transient(exc: BaseException) -> bool:
    return status_code_of(exc) in TRANSIENT_STATUS_CODES


def backoff_delay(
    attempt_index: int,
    *,
    base_s: float = BASE_DELAY_S,
    rng: Callable[[], float] = random.random,
) -> float:
    """
    Delay before the retry that follows attempt `attempt_index` (0-based).

    base * 2^i plus uniform jitter in [0, delay/5), so the result lies in
    [base * 2^i, base * 2^i * 1.2).
    """
    delay = float(base_s) * (2 ** int(attempt_index))
    return delay + rng() * (delay / 5.0)


def _log_before_sleep(op: str, max_attempts: int) -> Callable[[RetryCallState], None]:
    def _hook(rs: RetryCallState) -> None:
        exc = rs.outcome.exception() if rs.outcome else None
        log_event(
            logger,
            "enrichment.retry",
            severity="WARNING",
            op=op,
            attempt=rs.attempt_number,
            max_attempts=max_attempts,
            sleep_s=round(float(rs.upcoming_sleep or 0.0), 4),
            status_code=status_code_of(exc) if exc else None,
            error=str(exc) if exc else None,
        )

    return _hook


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    op: str,
    max_attempts: int = MAX_ATTEMPTS,
    base_delay_s: float = BASE_DELAY_S,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    rng: Callable[[], float] = random.random,
) -> T:
    """
    Run `fn` with bounded exponential backoff on transient upstream errors.

    - transient (429/500/503): retried, up to `max_attempts` attempts in total
    - anything else: raised immediately as EnrichmentError
    - all attempts transient: RetriesExhaustedError
    - cancellation while waiting propagates as asyncio.CancelledError
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        retry=retry_if_exception(is_transient),
        wait=lambda rs: backoff_delay(rs.attempt_number - 1, base_s=base_delay_s, rng=rng),
        sleep=sleep,
        before_sleep=_log_before_sleep(op, max_attempts),
    )
    try:
        return await retrying(fn)
    except RetryError as e:
        last = e.last_attempt.exception()
        raise RetriesExhaustedError(
            f"{op} failed after {max_attempts} attempts due to rate limits/transient errors: {last}",
            attempts=max_attempts,
        ) from last
    except EnrichmentError:
        raise
    except Exception as e:
        raise EnrichmentError(f"{op} failed with non-retriable error: {e}") from e
