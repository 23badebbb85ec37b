from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from uniswap_pipelines.core.errors import (
    PipelineError,
    PositionNotLoadedError,
    SimulationFailureError,
    TransientRPCError,
)
from uniswap_pipelines.core.utils.retry import (
    exponential_backoff_s,
    is_simulation_failure,
    is_retryable_read_error,
    is_transient_rpc_error,
    retry_async,
    retry_rpc,
)


class _HttpError(Exception):
    def __init__(self, status: int):
        super().__init__(f"HTTP {status}")
        self.status = status


class _RpcError(Exception):
    def __init__(self, code: int, message: str = "rpc error"):
        super().__init__(message)
        self.code = code


def test_exponential_backoff():
    assert exponential_backoff_s(0) == 0.25
    assert exponential_backoff_s(2) == 1.0
    assert exponential_backoff_s(5, max_delay_s=2.0) == 2.0


@pytest.mark.parametrize(
    "exc",
    [
        SimulationFailureError("quote failed"),
        RuntimeError("Insufficient liquidity"),
        ValueError("execution reverted: PriceLimitAlreadyExceeded"),
    ],
)
def test_simulation_failures(exc):
    assert is_simulation_failure(exc)
    assert not is_transient_rpc_error(exc)


@pytest.mark.parametrize(
    "exc",
    [
        TransientRPCError("flaky"),
        TimeoutError(),
        ConnectionError("connection reset by peer"),
        _HttpError(429),
        _HttpError(503),
        _RpcError(-32005),
        RuntimeError("Too Many Requests"),
    ],
)
def test_transient_errors(exc):
    assert is_transient_rpc_error(exc)


def test_other_errors_are_not_transient():
    assert not is_transient_rpc_error(_HttpError(400))
    assert not is_transient_rpc_error(KeyError("missing"))


@pytest.mark.asyncio
async def test_retry_async_returns_first_success():
    fn = AsyncMock(side_effect=[RuntimeError("a"), "ok"])
    seen: list[tuple[int, float]] = []

    with patch(
        "uniswap_pipelines.core.utils.retry.asyncio.sleep", new=AsyncMock()
    ) as sleep:
        result = await retry_async(
            fn, on_retry=lambda attempt, exc, delay: seen.append((attempt, delay))
        )

    assert result == "ok"
    assert fn.await_count == 2
    assert seen == [(0, 0.25)]
    sleep.assert_awaited_once_with(0.25)


@pytest.mark.asyncio
async def test_retry_async_raises_last_error():
    fn = AsyncMock(side_effect=RuntimeError("always"))
    with patch("uniswap_pipelines.core.utils.retry.asyncio.sleep", new=AsyncMock()):
        with pytest.raises(RuntimeError, match="always"):
            await retry_async(fn, max_retries=4)
    assert fn.await_count == 4


@pytest.mark.asyncio
async def test_retry_async_custom_delay():
    fn = AsyncMock(side_effect=[RuntimeError("a"), RuntimeError("b"), 1])
    with patch(
        "uniswap_pipelines.core.utils.retry.asyncio.sleep", new=AsyncMock()
    ) as sleep:
        await retry_async(fn, get_delay_s=lambda attempt, exc: 7.0)
    assert [c.args[0] for c in sleep.await_args_list] == [7.0, 7.0]


@pytest.mark.asyncio
async def test_retry_async_requires_an_attempt():
    with pytest.raises(ValueError):
        await retry_async(AsyncMock(), max_retries=0)


@pytest.mark.asyncio
async def test_retry_rpc_does_not_retry_simulation_failures():
    fn = AsyncMock(side_effect=RuntimeError("execution reverted"))
    with pytest.raises(RuntimeError, match="execution reverted"):
        await retry_rpc(fn)
    assert fn.await_count == 1


@pytest.mark.asyncio
async def test_retry_rpc_retries_up_to_max_attempts():
    fn = AsyncMock(side_effect=TimeoutError("timed out"))
    with patch("uniswap_pipelines.core.utils.retry.asyncio.sleep", new=AsyncMock()):
        with pytest.raises(TimeoutError):
            await retry_rpc(fn, max_attempts=3)
    assert fn.await_count == 3


@pytest.mark.parametrize(
    "exc",
    [
        ValueError("invalid address"),
        KeyError(7),
        TypeError("bad abi argument"),
        PositionNotLoadedError(7),
        PipelineError("pool not initialized"),
    ],
)
@pytest.mark.asyncio
async def test_retry_rpc_does_not_retry_definitive_errors(exc):
    fn = AsyncMock(side_effect=exc)
    with patch("uniswap_pipelines.core.utils.retry.asyncio.sleep", new=AsyncMock()):
        with pytest.raises(type(exc)):
            await retry_rpc(fn)
    assert fn.await_count == 1


@pytest.mark.parametrize(
    "exc",
    [
        TransientRPCError("rate limited"),
        ValueError("429 Too Many Requests"),
        RuntimeError("rpc down"),
        ConnectionError("reset"),
    ],
)
@pytest.mark.asyncio
async def test_retry_rpc_retries_transient_and_unclassified_errors(exc):
    fn = AsyncMock(side_effect=exc)
    with patch("uniswap_pipelines.core.utils.retry.asyncio.sleep", new=AsyncMock()):
        with pytest.raises(type(exc)):
            await retry_rpc(fn, max_attempts=3)
    assert fn.await_count == 3


def test_retryable_read_error_classification():
    assert is_retryable_read_error(_HttpError(503))
    assert is_retryable_read_error(OSError("network unreachable"))
    assert not is_retryable_read_error(SimulationFailureError("execution reverted"))
    assert not is_retryable_read_error(AttributeError("no attribute 'call'"))
