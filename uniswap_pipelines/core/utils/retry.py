from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from uniswap_pipelines.core.errors import (
    PipelineError,
    SimulationFailureError,
    TransientRPCError,
)

T = TypeVar("T")

_TRANSIENT_HTTP_STATUS = {429, 502, 503, 504}
_TRANSIENT_RPC_ERROR_CODES = {429, -32005, -33200, -33300, -33400}
_TRANSIENT_MESSAGE_MARKERS = (
    "too many requests",
    "rate limit",
    "request rate exceeded",
    "limit exceeded",
    "timed out",
    "timeout",
    "connection reset",
    "connection refused",
    "temporarily unavailable",
    "bad gateway",
    "service unavailable",
)
_SIMULATION_FAILURE_MARKERS = (
    "insufficient liquidity",
    "execution reverted",
    "revert",
)
# Bad addresses, ABI encoding errors and lookups of unknown entries.
_DEFINITIVE_ERROR_TYPES = (ValueError, TypeError, KeyError, AttributeError)


def exponential_backoff_s(
    attempt: int, *, base_delay_s: float = 0.25, max_delay_s: float | None = None
) -> float:
    delay_s = base_delay_s * (2**attempt)
    if max_delay_s is not None:
        delay_s = min(delay_s, max_delay_s)
    return delay_s


def _http_status(exc: BaseException) -> int | None:
    for attr in ("status", "status_code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    code = getattr(response, "status_code", None) if response is not None else None
    return code if isinstance(code, int) else None


def is_simulation_failure(exc: BaseException) -> bool:
    """True for definitive read failures (reverts, insufficient liquidity)."""
    if isinstance(exc, SimulationFailureError):
        return True
    text = str(exc).lower()
    return any(marker in text for marker in _SIMULATION_FAILURE_MARKERS)


def is_transient_rpc_error(exc: BaseException) -> bool:
    if is_simulation_failure(exc):
        return False
    if isinstance(exc, (TransientRPCError, asyncio.TimeoutError, ConnectionError)):
        return True
    if _http_status(exc) in _TRANSIENT_HTTP_STATUS:
        return True
    code = getattr(exc, "code", None)
    if isinstance(code, int) and code in _TRANSIENT_RPC_ERROR_CODES:
        return True
    text = str(exc).lower()
    return any(marker in text for marker in _TRANSIENT_MESSAGE_MARKERS)


def is_retryable_read_error(exc: BaseException) -> bool:
    """Whether a failed read is worth another attempt.

    Transient provider errors are retried. Simulation failures, pipeline errors
    and definitive local errors are not. Anything else (an unclassified RPC
    error) is retried.
    """
    if is_simulation_failure(exc):
        return False
    if is_transient_rpc_error(exc):
        return True
    if isinstance(exc, PipelineError):
        return False
    return not isinstance(exc, _DEFINITIVE_ERROR_TYPES)


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    base_delay_s: float = 0.25,
    max_delay_s: float | None = None,
    should_retry: Callable[[Exception], bool] | None = None,
    get_delay_s: Callable[[int, Exception], float] | None = None,
    on_retry: Callable[[int, Exception, float], None] | None = None,
) -> T:
    if max_retries < 1:
        raise ValueError("max_retries must be >= 1")

    for attempt in range(max_retries):
        try:
            return await fn()
        except Exception as exc:  # noqa: BLE001
            if attempt >= max_retries - 1:
                raise
            if should_retry is not None and not should_retry(exc):
                raise

            delay_s = (
                get_delay_s(attempt, exc)
                if get_delay_s is not None
                else exponential_backoff_s(
                    attempt, base_delay_s=base_delay_s, max_delay_s=max_delay_s
                )
            )
            if on_retry is not None:
                on_retry(attempt, exc, delay_s)
            await asyncio.sleep(delay_s)

    raise RuntimeError("retry_async exhausted retries")


async def retry_rpc(
    fn: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    base_delay_s: float = 0.25,
    on_retry: Callable[[int, Exception, float], None] | None = None,
) -> T:
    """Retry failed reads; definitive failures surface at once."""
    return await retry_async(
        fn,
        max_retries=max_attempts,
        base_delay_s=base_delay_s,
        should_retry=is_retryable_read_error,
        on_retry=on_retry,
    )
