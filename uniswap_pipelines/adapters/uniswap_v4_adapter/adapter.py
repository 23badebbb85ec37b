from __future__ import annotations

from typing import Any

from eth_utils import to_checksum_address

from uniswap_pipelines.adapters.uniswap_v4_adapter.operations import (
    CollectFeesFlow,
    CreatePositionPipeline,
    IncreaseLiquidityPipeline,
    PositionExecuteArgs,
    RemoveLiquidityFlow,
)
from uniswap_pipelines.core.adapters.BaseAdapter import (
    BaseAdapter,
    require_wallet,
    status_tuple,
)
from uniswap_pipelines.core.config import PipelineSettings, get_pipeline_settings
from uniswap_pipelines.core.constants.base import ADAPTER_UNISWAP_V4
from uniswap_pipelines.core.constants.contracts import UNISWAP_V4_CONTRACTS
from uniswap_pipelines.core.interfaces import (
    CalldataSDK,
    PoolKey,
    PoolState,
    PositionInfo,
    TokenMetadata,
    Wallet,
)
from uniswap_pipelines.core.registry import ClientRegistry, default_registry
from uniswap_pipelines.core.utils.retry import retry_rpc
from uniswap_pipelines.core.wallet import LocalWallet
from uniswap_pipelines.pipeline.swap import SwapExecuteArgs, SwapParams, SwapPipeline

SUPPORTED_CHAIN_IDS = set(UNISWAP_V4_CONTRACTS.keys())


class UniswapV4Adapter(BaseAdapter):
    """Uniswap v4 operations on one chain.

    The ``*_pipeline`` / ``*_flow`` factories hand back step pipelines for
    callers that drive steps themselves. The remaining coroutines run an
    operation end to end and return ``(ok, result)``.
    """

    adapter_type = ADAPTER_UNISWAP_V4

    def __init__(
        self,
        config: dict[str, Any],
        *,
        sdk: CalldataSDK,
        wallet: Wallet | None = None,
        registry: ClientRegistry | None = None,
        settings: PipelineSettings | None = None,
    ) -> None:
        super().__init__("uniswap_v4_adapter", config)

        self.chain_id: int = int(config.get("chain_id", 8453))
        if self.chain_id not in SUPPORTED_CHAIN_IDS:
            raise ValueError(
                f"Unsupported chain_id {self.chain_id} for Uniswap v4. "
                f"Supported: {sorted(SUPPORTED_CHAIN_IDS)}"
            )

        self.sdk = sdk
        self.registry = registry or default_registry()
        self.settings = settings or get_pipeline_settings()
        self.reader = self.registry.reader(self.chain_id)
        self.permit2_address = self.registry.contract_address(self.chain_id, "permit2")
        self.universal_router = self.registry.contract_address(
            self.chain_id, "universal_router"
        )
        self.position_manager = self.registry.contract_address(
            self.chain_id, "position_manager"
        )

        if wallet is None and config.get("private_key_hex"):
            wallet = LocalWallet(
                self.chain_id,
                config["private_key_hex"],
                confirmations=self.settings.confirmations,
            )
        self.wallet = wallet

    @property
    def wallet_address(self) -> str | None:
        if self.wallet is None or not self.wallet.address:
            return None
        return to_checksum_address(self.wallet.address)

    def _common(self) -> dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "reader": self.reader,
            "wallet": self.wallet,
            "sdk": self.sdk,
            "settings": self.settings,
        }

    def swap_pipeline(
        self,
        pool_key: PoolKey,
        *,
        zero_for_one: bool,
        amount_in: int,
        slippage_bps: int | None = None,
    ) -> SwapPipeline:
        return SwapPipeline(
            params=SwapParams(
                pool_key=pool_key,
                zero_for_one=zero_for_one,
                amount_in=int(amount_in),
                slippage_bps=slippage_bps,
            ),
            universal_router=self.universal_router,
            permit2_address=self.permit2_address,
            **self._common(),
        )

    def create_position_pipeline(
        self,
        pool_key: PoolKey,
        *,
        amount0: int | None = None,
        amount1: int | None = None,
        tick_lower: int | None = None,
        tick_upper: int | None = None,
        slippage_bps: int | None = None,
    ) -> CreatePositionPipeline:
        return CreatePositionPipeline(
            pool_key=pool_key,
            amount0=amount0,
            amount1=amount1,
            tick_lower=tick_lower,
            tick_upper=tick_upper,
            slippage_bps=slippage_bps,
            position_manager=self.position_manager,
            permit2_address=self.permit2_address,
            **self._common(),
        )

    def increase_liquidity_pipeline(
        self,
        token_id: int,
        pool_key: PoolKey,
        *,
        amount0: int | None = None,
        amount1: int | None = None,
        slippage_bps: int | None = None,
    ) -> IncreaseLiquidityPipeline:
        return IncreaseLiquidityPipeline(
            token_id=token_id,
            pool_key=pool_key,
            amount0=amount0,
            amount1=amount1,
            slippage_bps=slippage_bps,
            position_manager=self.position_manager,
            permit2_address=self.permit2_address,
            **self._common(),
        )

    def collect_fees_flow(self, token_id: int) -> CollectFeesFlow:
        return CollectFeesFlow(
            token_id=token_id,
            position_manager=self.position_manager,
            **self._common(),
        )

    def remove_liquidity_flow(
        self,
        token_id: int,
        *,
        liquidity: int | None = None,
        burn: bool = False,
        slippage_bps: int | None = None,
    ) -> RemoveLiquidityFlow:
        return RemoveLiquidityFlow(
            token_id=token_id,
            liquidity=liquidity,
            burn=burn,
            slippage_bps=slippage_bps,
            position_manager=self.position_manager,
            **self._common(),
        )

    @require_wallet
    @status_tuple
    async def swap(
        self,
        pool_key: PoolKey,
        *,
        zero_for_one: bool,
        amount_in: int,
        slippage_bps: int | None = None,
        recipient: str | None = None,
    ) -> tuple[bool, Any]:
        pipeline = self.swap_pipeline(
            pool_key,
            zero_for_one=zero_for_one,
            amount_in=amount_in,
            slippage_bps=slippage_bps,
        )
        quote = await pipeline.fetch_quote()
        await pipeline.refresh_approvals()
        tx_hash = await pipeline.execute_all(SwapExecuteArgs(recipient=recipient))
        await pipeline.wait_for_confirmation()
        return True, {
            "tx_hash": tx_hash,
            "amount_in": quote.params.amount_in,
            "amount_out": quote.amount_out,
            "minimum_amount_out": quote.minimum_amount_out,
        }

    @require_wallet
    @status_tuple
    async def create_position(
        self,
        pool_key: PoolKey,
        *,
        amount0: int | None = None,
        amount1: int | None = None,
        tick_lower: int | None = None,
        tick_upper: int | None = None,
        slippage_bps: int | None = None,
        recipient: str | None = None,
    ) -> tuple[bool, Any]:
        pipeline = self.create_position_pipeline(
            pool_key,
            amount0=amount0,
            amount1=amount1,
            tick_lower=tick_lower,
            tick_upper=tick_upper,
            slippage_bps=slippage_bps,
        )
        await pipeline.load_pool()
        await pipeline.refresh_approvals()
        tx_hash = await pipeline.execute_all(PositionExecuteArgs(recipient=recipient))
        await pipeline.wait_for_confirmation()
        amounts = pipeline.amounts
        return True, {
            "tx_hash": tx_hash,
            "tick_lower": pipeline.tick_range[0],
            "tick_upper": pipeline.tick_range[1],
            "liquidity": amounts.liquidity,
            "amount0_max": amounts.amount0_max,
            "amount1_max": amounts.amount1_max,
        }

    @require_wallet
    @status_tuple
    async def increase_liquidity(
        self,
        token_id: int,
        pool_key: PoolKey,
        *,
        amount0: int | None = None,
        amount1: int | None = None,
        slippage_bps: int | None = None,
    ) -> tuple[bool, Any]:
        pipeline = self.increase_liquidity_pipeline(
            token_id,
            pool_key,
            amount0=amount0,
            amount1=amount1,
            slippage_bps=slippage_bps,
        )
        await pipeline.load()
        await pipeline.refresh_approvals()
        tx_hash = await pipeline.execute_all(None)
        await pipeline.wait_for_confirmation()
        return True, {"tx_hash": tx_hash, "liquidity": pipeline.position.liquidity}

    @require_wallet
    @status_tuple
    async def collect_fees(
        self, token_id: int, *, recipient: str | None = None
    ) -> tuple[bool, Any]:
        flow = self.collect_fees_flow(token_id)
        await flow.load()
        tx_hash = await flow.execute(PositionExecuteArgs(recipient=recipient))
        await flow.wait_for_confirmation()
        return True, tx_hash

    @require_wallet
    @status_tuple
    async def remove_liquidity(
        self,
        token_id: int,
        *,
        liquidity: int | None = None,
        burn: bool = False,
        slippage_bps: int | None = None,
        recipient: str | None = None,
    ) -> tuple[bool, Any]:
        flow = self.remove_liquidity_flow(
            token_id, liquidity=liquidity, burn=burn, slippage_bps=slippage_bps
        )
        position = await flow.load()
        if flow.liquidity_to_remove(position) <= 0 and not burn:
            return True, None
        tx_hash = await flow.execute(PositionExecuteArgs(recipient=recipient))
        await flow.wait_for_confirmation()
        return True, tx_hash

    @status_tuple
    async def get_pool(self, pool_key: PoolKey) -> tuple[bool, PoolState]:
        pool = await retry_rpc(
            lambda: self.reader.get_pool(pool_key),
            max_attempts=self.settings.max_rpc_attempts,
        )
        return True, pool

    @status_tuple
    async def get_position(self, token_id: int) -> tuple[bool, PositionInfo]:
        position = await retry_rpc(
            lambda: self.reader.get_position(int(token_id)),
            max_attempts=self.settings.max_rpc_attempts,
        )
        return True, position

    @status_tuple
    async def get_token_metadata(self, token: str) -> tuple[bool, TokenMetadata]:
        return True, await self.registry.token_metadata(self.chain_id, token)
