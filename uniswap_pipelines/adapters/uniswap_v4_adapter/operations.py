from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from loguru import logger

from uniswap_pipelines.core.config import PipelineSettings, get_pipeline_settings
from uniswap_pipelines.core.errors import (
    NoTransactionInFlightError,
    PoolNotLoadedError,
    PositionNotLoadedError,
    TickRangeUnresolvedError,
)
from uniswap_pipelines.core.interfaces import (
    Calldata,
    CalldataSDK,
    ChainReader,
    PoolKey,
    PoolState,
    PositionInfo,
    Wallet,
)
from uniswap_pipelines.core.utils.retry import retry_rpc
from uniswap_pipelines.core.utils.tokens import is_native_token
from uniswap_pipelines.core.utils.uniswap_v4_math import (
    MAX_TICK,
    MIN_TICK,
    amounts_for_liq_inrange,
    calculate_maximum_input,
    calculate_minimum_output,
    deadline,
    nearest_usable_tick,
    position_amounts,
    round_tick_to_spacing,
    sqrt_price_x96_from_tick,
    validate_slippage_bps,
)
from uniswap_pipelines.pipeline.orchestrator import PermitPayload, StepPipeline
from uniswap_pipelines.pipeline.transaction import TransactionTracker
from uniswap_pipelines.pipeline.types import (
    PermitToken,
    PipelineStep,
    TransactionStatus,
)


@dataclass(frozen=True)
class LiquidityAmounts:
    liquidity: int
    amount0: int
    amount1: int
    amount0_max: int
    amount1_max: int


@dataclass(frozen=True)
class PositionExecuteArgs:
    recipient: str | None = None
    deadline_seconds: int | None = None


def full_range_ticks(tick_spacing: int) -> tuple[int, int]:
    return (
        nearest_usable_tick(MIN_TICK, tick_spacing),
        nearest_usable_tick(MAX_TICK, tick_spacing),
    )


def size_liquidity(
    pool: PoolState,
    tick_lower: int,
    tick_upper: int,
    *,
    amount0: int | None,
    amount1: int | None,
    slippage_bps: int,
) -> LiquidityAmounts:
    liquidity, need0, need1 = position_amounts(
        sqrt_price_x96=pool.sqrt_price_x96,
        tick_lower=tick_lower,
        tick_upper=tick_upper,
        amount0=amount0,
        amount1=amount1,
    )
    return LiquidityAmounts(
        liquidity=liquidity,
        amount0=need0,
        amount1=need1,
        amount0_max=calculate_maximum_input(need0, slippage_bps),
        amount1_max=calculate_maximum_input(need1, slippage_bps),
    )


class _LiquidityPipeline(StepPipeline[PositionExecuteArgs | None], ABC):
    """Two-slot pipeline that adds liquidity through the PositionManager.

    Token amounts start at zero and are filled in once the data they depend on
    (pool state, position) has loaded.
    """

    def __init__(
        self,
        *,
        pool_key: PoolKey,
        amount0: int | None,
        amount1: int | None,
        slippage_bps: int | None,
        chain_id: int,
        reader: ChainReader,
        wallet: Wallet | None,
        sdk: CalldataSDK,
        position_manager: str,
        permit2_address: str,
        settings: PipelineSettings | None,
        name: str,
    ):
        settings = settings or get_pipeline_settings()
        if amount0 is None and amount1 is None:
            raise ValueError("amount0 or amount1 is required")
        self.sdk = sdk
        self.pool_key = pool_key
        self.amount0 = amount0
        self.amount1 = amount1
        self.slippage_bps = validate_slippage_bps(
            settings.slippage_bps if slippage_bps is None else slippage_bps
        )
        self.pool: PoolState | None = None
        self.amounts: LiquidityAmounts | None = None

        super().__init__(
            tokens=self._token_amounts(),
            spender=position_manager,
            target=position_manager,
            chain_id=chain_id,
            reader=reader,
            wallet=wallet,
            permit2_address=permit2_address,
            build_calldata=self._build_position_calldata,
            settings=settings,
            on_execute_success=self._on_position_updated,
            name=name,
        )

    @property
    @abstractmethod
    def tick_range(self) -> tuple[int, int] | None:
        """Resolved (lower, upper) ticks, or ``None`` while unresolved."""

    def _token_amounts(self) -> list[PermitToken]:
        amounts = self.amounts
        return [
            PermitToken(self.pool_key.currency0, amounts.amount0_max if amounts else 0),
            PermitToken(self.pool_key.currency1, amounts.amount1_max if amounts else 0),
        ]

    def update_amounts(
        self, *, amount0: int | None = None, amount1: int | None = None
    ) -> None:
        """Replace the desired amounts; ``None`` leaves that side unspecified."""
        if amount0 is None and amount1 is None:
            raise ValueError("amount0 or amount1 is required")
        self.amount0 = amount0
        self.amount1 = amount1
        self._resize()

    async def load_pool(self) -> PoolState:
        self.pool = await retry_rpc(
            lambda: self.reader.get_pool(self.pool_key),
            max_attempts=self.settings.max_rpc_attempts,
        )
        self.logger.debug(
            f"Loaded pool {self.pool_key.pool_id} at tick {self.pool.tick}"
        )
        self._resize()
        return self.pool

    def _resize(self) -> None:
        tick_range = self.tick_range
        if self.pool is None or tick_range is None:
            self.amounts = None
        else:
            self.amounts = size_liquidity(
                self.pool,
                *tick_range,
                amount0=self.amount0,
                amount1=self.amount1,
                slippage_bps=self.slippage_bps,
            )
        self.set_tokens(self._token_amounts())

    @abstractmethod
    def _require_ready(self) -> tuple[int, int]:
        """Return the tick range or raise if its inputs are not loaded."""

    def _token_id(self) -> int | None:
        return None

    async def _build_position_calldata(
        self, permit: PermitPayload, args: PositionExecuteArgs | None
    ) -> Calldata:
        tick_lower, tick_upper = self._require_ready()
        amounts = self.amounts
        if amounts is None:
            raise PoolNotLoadedError()
        args = args or PositionExecuteArgs()
        built = self.sdk.build_add_liquidity_calldata(
            pool_key=self.pool_key,
            token_id=self._token_id(),
            tick_lower=tick_lower,
            tick_upper=tick_upper,
            liquidity=amounts.liquidity,
            amount0_max=amounts.amount0_max,
            amount1_max=amounts.amount1_max,
            recipient=args.recipient or self.owner,
            deadline=deadline(args.deadline_seconds or self.settings.deadline_seconds),
            batch_permit=permit,
        )
        value = amounts.amount0_max if is_native_token(self.pool_key.currency0) else 0
        return Calldata(calldata=built.calldata, value=value)

    async def _on_position_updated(self, receipt: dict) -> None:
        pass


class CreatePositionPipeline(_LiquidityPipeline):
    """Mint a new position.

    A missing tick defaults to that end of the full usable range. Explicit ticks
    are floored to the spacing and clamped to the usable range. Pool state is
    loaded once and survives ``reset``.
    """

    def __init__(
        self,
        *,
        pool_key: PoolKey,
        amount0: int | None = None,
        amount1: int | None = None,
        tick_lower: int | None = None,
        tick_upper: int | None = None,
        slippage_bps: int | None = None,
        chain_id: int,
        reader: ChainReader,
        wallet: Wallet | None,
        sdk: CalldataSDK,
        position_manager: str,
        permit2_address: str,
        settings: PipelineSettings | None = None,
        name: str = "create-position",
    ):
        self.requested_ticks = (tick_lower, tick_upper)
        super().__init__(
            pool_key=pool_key,
            amount0=amount0,
            amount1=amount1,
            slippage_bps=slippage_bps,
            chain_id=chain_id,
            reader=reader,
            wallet=wallet,
            sdk=sdk,
            position_manager=position_manager,
            permit2_address=permit2_address,
            settings=settings,
            name=name,
        )

    @property
    def tick_range(self) -> tuple[int, int] | None:
        spacing = int(self.pool_key.tick_spacing)
        min_usable, max_usable = full_range_ticks(spacing)
        lower, upper = self.requested_ticks
        if lower is None:
            lower = min_usable
        if upper is None:
            upper = max_usable
        lower = max(round_tick_to_spacing(int(lower), spacing), min_usable)
        upper = min(round_tick_to_spacing(int(upper), spacing), max_usable)
        if lower >= upper:
            return None
        return lower, upper

    def set_tick_range(self, tick_lower: int | None, tick_upper: int | None) -> None:
        self.requested_ticks = (tick_lower, tick_upper)
        self._resize()

    def _require_ready(self) -> tuple[int, int]:
        if self.pool is None:
            raise PoolNotLoadedError()
        tick_range = self.tick_range
        if tick_range is None:
            raise TickRangeUnresolvedError()
        return tick_range


class IncreaseLiquidityPipeline(_LiquidityPipeline):
    """Add liquidity to an existing position.

    ``load`` fetches the position and its pool; until then the calldata builder
    raises ``PositionNotLoadedError``. The position is refetched after the
    transaction confirms.
    """

    def __init__(
        self,
        *,
        token_id: int,
        pool_key: PoolKey,
        amount0: int | None = None,
        amount1: int | None = None,
        slippage_bps: int | None = None,
        chain_id: int,
        reader: ChainReader,
        wallet: Wallet | None,
        sdk: CalldataSDK,
        position_manager: str,
        permit2_address: str,
        settings: PipelineSettings | None = None,
        name: str = "increase-liquidity",
    ):
        self.token_id = int(token_id)
        self.position: PositionInfo | None = None
        super().__init__(
            pool_key=pool_key,
            amount0=amount0,
            amount1=amount1,
            slippage_bps=slippage_bps,
            chain_id=chain_id,
            reader=reader,
            wallet=wallet,
            sdk=sdk,
            position_manager=position_manager,
            permit2_address=permit2_address,
            settings=settings,
            name=name,
        )

    @property
    def tick_range(self) -> tuple[int, int] | None:
        if self.position is None:
            return None
        return self.position.tick_lower, self.position.tick_upper

    async def load(self) -> PositionInfo:
        position = await self.refresh_position()
        await self.load_pool()
        return position

    async def refresh_position(self) -> PositionInfo:
        position = await retry_rpc(
            lambda: self.reader.get_position(self.token_id),
            max_attempts=self.settings.max_rpc_attempts,
        )
        if position.pool_key.pool_id != self.pool_key.pool_id:
            raise ValueError(
                f"Position {self.token_id} belongs to pool {position.pool_key.pool_id}"
            )
        self.position = position
        return position

    def _token_id(self) -> int | None:
        return self.token_id

    def _require_ready(self) -> tuple[int, int]:
        if self.position is None:
            raise PositionNotLoadedError(self.token_id)
        if self.pool is None:
            raise PoolNotLoadedError()
        return self.position.tick_lower, self.position.tick_upper

    async def _on_position_updated(self, receipt: dict) -> None:
        position = await self.refresh_position()
        self.logger.info(f"Position {self.token_id} liquidity now {position.liquidity}")


class PositionTransactionFlow(ABC):
    """One-transaction operation on an existing position (no approvals, no permit).

    The position is refetched once the transaction confirms.
    """

    def __init__(
        self,
        *,
        token_id: int,
        chain_id: int,
        reader: ChainReader,
        wallet: Wallet | None,
        sdk: CalldataSDK,
        position_manager: str,
        settings: PipelineSettings | None = None,
        name: str = "position-flow",
    ):
        self.token_id = int(token_id)
        self.chain_id = int(chain_id)
        self.reader = reader
        self.sdk = sdk
        self.target = position_manager
        self.settings = settings or get_pipeline_settings()
        self.name = name
        self.logger = logger.bind(pipeline=name)
        self.position: PositionInfo | None = None
        self.pool: PoolState | None = None
        self.transaction = TransactionTracker(
            wallet,
            confirmations=self.settings.confirmations,
            on_success=self._on_confirmed,
            name=f"{name}-tx",
        )

    @property
    def wallet(self) -> Wallet | None:
        return self.transaction.wallet

    @wallet.setter
    def wallet(self, wallet: Wallet | None) -> None:
        self.transaction.wallet = wallet

    @property
    def owner(self) -> str | None:
        wallet = self.wallet
        return wallet.address if wallet is not None else None

    @property
    def current_step(self) -> PipelineStep:
        if self.transaction.status == TransactionStatus.CONFIRMED:
            return PipelineStep.COMPLETED
        return PipelineStep.EXECUTE

    @property
    def error(self) -> BaseException | None:
        return self.transaction.error

    @property
    def display_error(self) -> BaseException | None:
        return self.transaction.display_error

    async def load(self) -> PositionInfo:
        self.position = await retry_rpc(
            lambda: self.reader.get_position(self.token_id),
            max_attempts=self.settings.max_rpc_attempts,
        )
        self.pool = await retry_rpc(
            lambda: self.reader.get_pool(self.position.pool_key),
            max_attempts=self.settings.max_rpc_attempts,
        )
        return self.position

    async def execute(self, args: PositionExecuteArgs | None = None) -> str:
        if self.position is None:
            raise PositionNotLoadedError(self.token_id)
        args = args or PositionExecuteArgs()
        calldata = self._build(
            self.position,
            recipient=args.recipient or self.owner,
            deadline=deadline(args.deadline_seconds or self.settings.deadline_seconds),
        )
        self.logger.info(f"Executing {self.name} for position {self.token_id}")
        return await self.transaction.send(
            self.target, calldata.calldata, calldata.value
        )

    async def execute_all(self, args: PositionExecuteArgs | None = None) -> str:
        return await self.execute(args)

    async def wait_for_confirmation(self) -> dict:
        if self.transaction.tx_hash is None:
            raise NoTransactionInFlightError()
        return await self.transaction.wait_for_confirmation()

    def reset(self) -> None:
        self.transaction.reset()

    @abstractmethod
    def _build(
        self, position: PositionInfo, *, recipient: str, deadline: int
    ) -> Calldata: ...

    async def _on_confirmed(self, receipt: dict) -> None:
        self.position = await retry_rpc(
            lambda: self.reader.get_position(self.token_id),
            max_attempts=self.settings.max_rpc_attempts,
        )


class CollectFeesFlow(PositionTransactionFlow):
    def _build(
        self, position: PositionInfo, *, recipient: str, deadline: int
    ) -> Calldata:
        return self.sdk.build_collect_fees_calldata(
            position=position, recipient=recipient, deadline=deadline
        )


class RemoveLiquidityFlow(PositionTransactionFlow):
    """Decrease (or fully withdraw and optionally burn) a position.

    Minimum amounts are the amounts the removed liquidity is worth at the
    loaded pool price, less slippage.
    """

    def __init__(
        self,
        *,
        liquidity: int | None = None,
        burn: bool = False,
        slippage_bps: int | None = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.liquidity = liquidity
        self.burn = burn
        self.slippage_bps = validate_slippage_bps(
            self.settings.slippage_bps if slippage_bps is None else slippage_bps
        )

    def liquidity_to_remove(self, position: PositionInfo) -> int:
        if self.liquidity is None:
            return int(position.liquidity)
        return min(int(self.liquidity), int(position.liquidity))

    def minimum_amounts(self, position: PositionInfo) -> tuple[int, int]:
        if self.pool is None:
            raise PoolNotLoadedError()
        amount0, amount1 = amounts_for_liq_inrange(
            self.pool.sqrt_price_x96,
            sqrt_price_x96_from_tick(position.tick_lower),
            sqrt_price_x96_from_tick(position.tick_upper),
            self.liquidity_to_remove(position),
        )
        return (
            calculate_minimum_output(amount0, self.slippage_bps),
            calculate_minimum_output(amount1, self.slippage_bps),
        )

    def _build(
        self, position: PositionInfo, *, recipient: str, deadline: int
    ) -> Calldata:
        amount0_min, amount1_min = self.minimum_amounts(position)
        return self.sdk.build_remove_liquidity_calldata(
            position=position,
            liquidity=self.liquidity_to_remove(position),
            amount0_min=amount0_min,
            amount1_min=amount1_min,
            recipient=recipient,
            deadline=deadline,
            burn=self.burn,
        )
