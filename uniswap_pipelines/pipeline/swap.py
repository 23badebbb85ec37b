"""Swap pipeline: a leading quote step in front of the generic step pipeline.

The quote is keyed by the trade inputs (pool, direction, amount in, slippage);
a quote fetched for other inputs is treated as missing. While the swap has not
been confirmed a background refresher keeps the quote fresh. Confirmation
suspends it and ``reset`` resumes it.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, replace

from loguru import logger

from uniswap_pipelines.core.config import PipelineSettings, get_pipeline_settings
from uniswap_pipelines.core.errors import QuoteNotLoadedError, SimulationFailureError
from uniswap_pipelines.core.interfaces import (
    Calldata,
    CalldataSDK,
    ChainReader,
    PoolKey,
    Wallet,
)
from uniswap_pipelines.core.utils.retry import is_simulation_failure, retry_rpc
from uniswap_pipelines.core.utils.tokens import is_native_token
from uniswap_pipelines.core.utils.uniswap_v4_math import (
    calculate_minimum_output,
    deadline,
    validate_slippage_bps,
)
from uniswap_pipelines.pipeline.orchestrator import PermitPayload, StepPipeline
from uniswap_pipelines.pipeline.types import PermitToken


@dataclass(frozen=True)
class SwapParams:
    pool_key: PoolKey
    zero_for_one: bool
    amount_in: int
    slippage_bps: int | None = None

    @property
    def token_in(self) -> str:
        return self.pool_key.currency0 if self.zero_for_one else self.pool_key.currency1

    @property
    def token_out(self) -> str:
        return self.pool_key.currency1 if self.zero_for_one else self.pool_key.currency0


@dataclass(frozen=True)
class SwapQuote:
    params: SwapParams
    amount_out: int
    minimum_amount_out: int
    fetched_at: float


@dataclass(frozen=True)
class SwapExecuteArgs:
    recipient: str | None = None
    deadline_seconds: int | None = None


class SwapPipeline(StepPipeline[SwapExecuteArgs | None]):
    def __init__(
        self,
        *,
        params: SwapParams,
        chain_id: int,
        reader: ChainReader,
        wallet: Wallet | None,
        sdk: CalldataSDK,
        universal_router: str,
        permit2_address: str,
        settings: PipelineSettings | None = None,
        name: str = "swap",
    ):
        settings = settings or get_pipeline_settings()
        slippage = params.slippage_bps
        if slippage is None:
            slippage = settings.slippage_bps
        params = replace(params, slippage_bps=validate_slippage_bps(slippage))
        if params.amount_in < 0:
            raise ValueError("amount_in must be non-negative")

        self.sdk = sdk
        self._params = params
        self._quote: SwapQuote | None = None
        self.quote_error: Exception | None = None
        self.quote_failure_count = 0
        self._resume = asyncio.Event()
        self._resume.set()
        self._refresher: asyncio.Task | None = None

        super().__init__(
            tokens=[PermitToken(params.token_in, params.amount_in)],
            spender=universal_router,
            target=universal_router,
            chain_id=chain_id,
            reader=reader,
            wallet=wallet,
            permit2_address=permit2_address,
            build_calldata=self._build_swap_calldata,
            settings=settings,
            name=name,
        )
        self.logger = logger.bind(pipeline=name, step="swap")

    @property
    def params(self) -> SwapParams:
        return self._params

    def update_params(
        self, *, amount_in: int | None = None, slippage_bps: int | None = None
    ) -> None:
        """Change the trade inputs; a quote for the old inputs stops counting."""
        changes = {}
        if slippage_bps is not None:
            changes["slippage_bps"] = validate_slippage_bps(slippage_bps)
        if amount_in is not None:
            if amount_in < 0:
                raise ValueError("amount_in must be non-negative")
            changes["amount_in"] = int(amount_in)
        if not changes:
            return
        self._params = replace(self._params, **changes)
        self.set_tokens([PermitToken(self._params.token_in, self._params.amount_in)])

    @property
    def quote(self) -> SwapQuote | None:
        if self._quote is not None and self._quote.params == self._params:
            return self._quote
        return None

    @property
    def is_native_input(self) -> bool:
        return is_native_token(self._params.token_in)

    def _quote_ready(self) -> bool:
        return self.quote is not None and bool(self.owner)

    @property
    def refresh_suspended(self) -> bool:
        return self.execute_transaction.is_confirmed

    async def fetch_quote(self) -> SwapQuote:
        params = self._params
        validate_slippage_bps(params.slippage_bps)

        async def simulate() -> int:
            try:
                return await self.reader.simulate_quote(
                    params.pool_key, params.amount_in, params.zero_for_one
                )
            except Exception:
                self.quote_failure_count += 1
                raise

        try:
            amount_out = await retry_rpc(
                simulate,
                max_attempts=self.settings.max_rpc_attempts,
                on_retry=self._on_quote_retry,
            )
        except Exception as exc:
            if params == self._params:
                self.quote_error = exc
            if is_simulation_failure(exc) and not isinstance(
                exc, SimulationFailureError
            ):
                raise SimulationFailureError(str(exc), reason=str(exc)) from exc
            raise

        quote = SwapQuote(
            params=params,
            amount_out=int(amount_out),
            minimum_amount_out=calculate_minimum_output(
                amount_out, params.slippage_bps
            ),
            fetched_at=time.monotonic(),
        )
        if params == self._params:
            self._quote = quote
            self.quote_error = None
            self.quote_failure_count = 0
        self.logger.debug(
            f"Quote {params.amount_in} -> {quote.amount_out} "
            f"(min {quote.minimum_amount_out})"
        )
        return quote

    def _on_quote_retry(self, attempt: int, exc: Exception, delay_s: float) -> None:
        self.logger.warning(
            f"Quote attempt {attempt + 1} failed, retrying in {delay_s:.2f}s: {exc}"
        )

    async def execute_all(self, args: SwapExecuteArgs | None = None) -> str:
        if self.quote is None:
            raise QuoteNotLoadedError()
        return await super().execute_all(args)

    async def execute(self, args: SwapExecuteArgs | None = None) -> str:
        if self.quote is None:
            raise QuoteNotLoadedError()
        return await super().execute(args)

    async def _build_swap_calldata(
        self, permit: PermitPayload, args: SwapExecuteArgs | None
    ) -> Calldata:
        quote = self.quote
        if quote is None:
            raise QuoteNotLoadedError()
        args = args or SwapExecuteArgs()
        params = quote.params
        built = self.sdk.build_swap_calldata(
            pool_key=params.pool_key,
            zero_for_one=params.zero_for_one,
            amount_in=params.amount_in,
            amount_out_minimum=quote.minimum_amount_out,
            recipient=args.recipient or self.owner,
            deadline=deadline(args.deadline_seconds or self.settings.deadline_seconds),
            batch_permit=permit,
        )
        value = params.amount_in if self.is_native_input else 0
        return Calldata(calldata=built.calldata, value=value)

    def reset(self) -> None:
        super().reset()
        self._resume.set()

    def start(self) -> None:
        """Start the background quote refresher (idempotent)."""
        if self._refresher is None or self._refresher.done():
            self._refresher = asyncio.create_task(self._refresh_loop())

    async def close(self) -> None:
        if self._refresher is None:
            return
        self._refresher.cancel()
        try:
            await self._refresher
        except asyncio.CancelledError:
            pass
        self._refresher = None

    async def __aenter__(self) -> SwapPipeline:
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _refresh_loop(self) -> None:
        interval = self.settings.quote_refresh_interval_s
        while True:
            if self.refresh_suspended:
                self.logger.debug("Swap confirmed; quote refresh suspended")
                self._resume.clear()
                await self._resume.wait()
                self.logger.debug("Quote refresh resumed")
                continue
            try:
                await self.fetch_quote()
            except Exception as exc:  # noqa: BLE001
                self.logger.error(f"Quote refresh failed: {exc}")
            await asyncio.sleep(interval)
