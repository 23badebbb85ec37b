from __future__ import annotations

import pytest

from uniswap_pipelines.adapters.uniswap_v4_adapter.operations import (
    CollectFeesFlow,
    CreatePositionPipeline,
    IncreaseLiquidityPipeline,
    PositionExecuteArgs,
    PositionTransactionFlow,
    RemoveLiquidityFlow,
    full_range_ticks,
    size_liquidity,
)
from uniswap_pipelines.core.config import PipelineSettings
from uniswap_pipelines.core.errors import (
    NoTransactionInFlightError,
    PoolNotLoadedError,
    PositionNotLoadedError,
    TickRangeUnresolvedError,
)
from uniswap_pipelines.core.interfaces import PositionInfo
from uniswap_pipelines.core.utils.permit2 import BatchPermit
from uniswap_pipelines.core.utils.uniswap_v4_math import (
    MAX_TICK,
    MIN_TICK,
    amounts_for_liq_inrange,
    calculate_maximum_input,
    calculate_minimum_output,
    sqrt_price_x96_from_tick,
)
from uniswap_pipelines.pipeline.types import PipelineStep
from uniswap_pipelines.testing.fakes import (
    NATIVE,
    OWNER,
    PERMIT2,
    POSITION_MANAGER,
    TOKEN_A,
    TOKEN_B,
    pool_key,
)


def _create(reader, wallet, sdk, key=None, **kwargs) -> CreatePositionPipeline:
    kwargs.setdefault("amount0", 10**18)
    kwargs.setdefault("amount1", 10**18)
    return CreatePositionPipeline(
        pool_key=key or pool_key(),
        chain_id=8453,
        reader=reader,
        wallet=wallet,
        sdk=sdk,
        position_manager=POSITION_MANAGER,
        permit2_address=PERMIT2,
        settings=PipelineSettings(),
        **kwargs,
    )


def _increase(reader, wallet, sdk, key=None, token_id=7) -> IncreaseLiquidityPipeline:
    return IncreaseLiquidityPipeline(
        token_id=token_id,
        pool_key=key or pool_key(),
        amount0=10**15,
        chain_id=8453,
        reader=reader,
        wallet=wallet,
        sdk=sdk,
        position_manager=POSITION_MANAGER,
        permit2_address=PERMIT2,
        settings=PipelineSettings(),
    )


def _flow(cls, reader, wallet, sdk, token_id=7, **kwargs):
    return cls(
        token_id=token_id,
        chain_id=8453,
        reader=reader,
        wallet=wallet,
        sdk=sdk,
        position_manager=POSITION_MANAGER,
        settings=PipelineSettings(),
        **kwargs,
    )


def test_full_range_ticks():
    assert full_range_ticks(60) == (-887_220, 887_220)
    assert full_range_ticks(10) == (-887_270, 887_270)


def test_size_liquidity_adds_slippage_to_maximums(fake_reader):
    pool = fake_reader.add_pool(pool_key())
    amounts = size_liquidity(
        pool, -120, 120, amount0=10**18, amount1=None, slippage_bps=50
    )
    assert amounts.liquidity > 0
    assert amounts.amount0_max == calculate_maximum_input(amounts.amount0, 50)
    assert amounts.amount1_max == calculate_maximum_input(amounts.amount1, 50)
    assert amounts.amount0_max > amounts.amount0


def test_flows_must_build_their_calldata(fake_reader, fake_wallet, fake_sdk):
    class NoCalldataFlow(PositionTransactionFlow):
        pass

    with pytest.raises(TypeError):
        _flow(PositionTransactionFlow, fake_reader, fake_wallet, fake_sdk)
    with pytest.raises(TypeError, match="_build"):
        _flow(NoCalldataFlow, fake_reader, fake_wallet, fake_sdk)


class TestCreatePosition:
    def test_requires_an_amount(self, fake_reader, fake_wallet, fake_sdk):
        with pytest.raises(ValueError):
            _create(fake_reader, fake_wallet, fake_sdk, amount0=None, amount1=None)

    @pytest.mark.asyncio
    async def test_execute_before_pool_loads(self, fake_reader, fake_wallet, fake_sdk):
        pipeline = _create(fake_reader, fake_wallet, fake_sdk)
        assert pipeline.amounts is None
        assert [t.amount for t in pipeline.tokens] == [0, 0]

        with pytest.raises(PoolNotLoadedError):
            await pipeline.execute(None)
        assert fake_wallet.sent == []

    def test_tick_range_resolution(self, fake_reader, fake_wallet, fake_sdk):
        pipeline = _create(fake_reader, fake_wallet, fake_sdk)
        assert pipeline.tick_range == (-887_220, 887_220)

        pipeline.set_tick_range(-100, 130)
        assert pipeline.tick_range == (-120, 120)

        pipeline.set_tick_range(120, -120)
        assert pipeline.tick_range is None

    def test_missing_tick_defaults_to_full_range_end(
        self, fake_reader, fake_wallet, fake_sdk
    ):
        pipeline = _create(fake_reader, fake_wallet, fake_sdk, tick_lower=-100)
        assert pipeline.tick_range == (-120, 887_220)

        pipeline.set_tick_range(None, 130)
        assert pipeline.tick_range == (-887_220, 120)

    @pytest.mark.parametrize(
        "spacing,ticks,expected",
        [
            (60, (MIN_TICK, MAX_TICK), (-887_220, 887_220)),
            (60, (-900_000, 900_000), (-887_220, 887_220)),
            (10, (MIN_TICK, 600), (-887_270, 600)),
            (1, (MIN_TICK, MAX_TICK), (MIN_TICK, MAX_TICK)),
        ],
    )
    def test_out_of_range_ticks_clamp_to_usable_ticks(
        self, fake_reader, fake_wallet, fake_sdk, spacing, ticks, expected
    ):
        key = pool_key(fee=100, tick_spacing=spacing)
        pipeline = _create(fake_reader, fake_wallet, fake_sdk, key=key)
        pipeline.set_tick_range(*ticks)

        assert pipeline.tick_range == expected
        assert all(tick % spacing == 0 for tick in pipeline.tick_range)

    @pytest.mark.asyncio
    async def test_one_sided_range_mints(self, fake_reader, fake_wallet, fake_sdk):
        fake_reader.add_pool(pool_key())
        pipeline = _create(fake_reader, fake_wallet, fake_sdk, tick_lower=-120)
        await pipeline.load_pool()
        await pipeline.refresh_approvals()
        assert pipeline.amounts is not None

        await pipeline.execute_all(None)

        kwargs = fake_sdk.calls[0][1]
        assert (kwargs["tick_lower"], kwargs["tick_upper"]) == (-120, 887_220)

    @pytest.mark.asyncio
    async def test_unresolved_range_blocks_execute(
        self, fake_reader, fake_wallet, fake_sdk
    ):
        fake_reader.add_pool(pool_key())
        pipeline = _create(
            fake_reader, fake_wallet, fake_sdk, tick_lower=120, tick_upper=-120
        )
        await pipeline.load_pool()
        assert pipeline.amounts is None

        with pytest.raises(TickRangeUnresolvedError):
            await pipeline.execute(None)

    @pytest.mark.asyncio
    async def test_mint_runs_both_approvals_then_permit(
        self, fake_reader, fake_wallet, fake_sdk
    ):
        fake_reader.add_pool(pool_key())
        pipeline = _create(
            fake_reader, fake_wallet, fake_sdk, tick_lower=-120, tick_upper=120
        )
        await pipeline.load_pool()
        await pipeline.refresh_approvals()
        assert pipeline.current_step == PipelineStep.APPROVAL0

        await pipeline.execute_all(PositionExecuteArgs(deadline_seconds=60))
        await pipeline.wait_for_confirmation()

        assert [tx["to"] for tx in fake_wallet.sent] == [
            TOKEN_A,
            TOKEN_B,
            POSITION_MANAGER,
        ]
        assert fake_wallet.signatures[0]["message"]["spender"] == POSITION_MANAGER
        name, kwargs = fake_sdk.calls[0]
        assert name == "add_liquidity"
        assert kwargs["token_id"] is None
        assert (kwargs["tick_lower"], kwargs["tick_upper"]) == (-120, 120)
        assert kwargs["liquidity"] == pipeline.amounts.liquidity
        assert kwargs["amount0_max"] == pipeline.amounts.amount0_max
        assert kwargs["recipient"] == OWNER
        assert isinstance(kwargs["batch_permit"], BatchPermit)
        assert pipeline.current_step == PipelineStep.COMPLETED

    @pytest.mark.asyncio
    async def test_native_currency_is_sent_as_value(
        self, fake_reader, fake_wallet, fake_sdk
    ):
        key = pool_key(NATIVE, TOKEN_B)
        fake_reader.add_pool(key)
        pipeline = _create(fake_reader, fake_wallet, fake_sdk, key=key)
        await pipeline.load_pool()
        await pipeline.refresh_approvals()

        await pipeline.execute_all(None)

        assert [tx["to"] for tx in fake_wallet.sent] == [TOKEN_B, POSITION_MANAGER]
        assert fake_wallet.sent[-1]["value"] == pipeline.amounts.amount0_max
        details = fake_wallet.signatures[0]["message"]["details"]
        assert [d["token"] for d in details] == [TOKEN_B]

    @pytest.mark.asyncio
    async def test_pool_survives_reset(self, fake_reader, fake_wallet, fake_sdk):
        fake_reader.add_pool(pool_key())
        pipeline = _create(fake_reader, fake_wallet, fake_sdk)
        await pipeline.load_pool()
        amounts = pipeline.amounts

        pipeline.reset()
        assert pipeline.pool is not None
        assert pipeline.amounts == amounts
        assert fake_reader.count("get_pool") == 1

    @pytest.mark.asyncio
    async def test_amount_change_resizes(self, fake_reader, fake_wallet, fake_sdk):
        fake_reader.add_pool(pool_key())
        pipeline = _create(fake_reader, fake_wallet, fake_sdk)
        await pipeline.load_pool()
        before = pipeline.amounts

        pipeline.update_amounts(amount0=10**17)
        assert pipeline.amounts.liquidity < before.liquidity
        assert pipeline.tokens[0].amount == pipeline.amounts.amount0_max
        with pytest.raises(ValueError):
            pipeline.update_amounts()


class TestIncreaseLiquidity:
    @pytest.mark.asyncio
    async def test_execute_before_load(self, fake_reader, fake_wallet, fake_sdk):
        pipeline = _increase(fake_reader, fake_wallet, fake_sdk)
        with pytest.raises(PositionNotLoadedError) as exc:
            await pipeline.execute(None)
        assert exc.value.token_id == 7

    @pytest.mark.asyncio
    async def test_position_from_other_pool_rejected(
        self, fake_reader, fake_wallet, fake_sdk
    ):
        fake_reader.add_position(7, pool_key(fee=500))
        pipeline = _increase(fake_reader, fake_wallet, fake_sdk)
        with pytest.raises(ValueError, match="belongs to pool"):
            await pipeline.load()
        assert pipeline.position is None

    @pytest.mark.asyncio
    async def test_increase_uses_position_ticks_and_refetches(
        self, fake_reader, fake_wallet, fake_sdk
    ):
        key = pool_key()
        fake_reader.add_pool(key)
        fake_reader.add_position(7, key, tick_lower=-60, tick_upper=60)
        pipeline = _increase(fake_reader, fake_wallet, fake_sdk)
        await pipeline.load()
        await pipeline.refresh_approvals()

        def bump_liquidity(tx):
            if tx["to"] == POSITION_MANAGER:
                fake_reader.add_position(
                    7, key, tick_lower=-60, tick_upper=60, liquidity=2 * 10**12
                )

        fake_wallet.on_confirm = bump_liquidity
        await pipeline.execute_all(None)
        await pipeline.wait_for_confirmation()

        kwargs = fake_sdk.calls[0][1]
        assert kwargs["token_id"] == 7
        assert (kwargs["tick_lower"], kwargs["tick_upper"]) == (-60, 60)
        assert pipeline.position.liquidity == 2 * 10**12
        assert fake_reader.count("get_position") == 2


class TestCollectFees:
    @pytest.mark.asyncio
    async def test_single_transaction_flow(self, fake_reader, fake_wallet, fake_sdk):
        key = pool_key()
        fake_reader.add_pool(key)
        position = fake_reader.add_position(7, key)
        flow = _flow(CollectFeesFlow, fake_reader, fake_wallet, fake_sdk)
        assert flow.current_step == PipelineStep.EXECUTE

        with pytest.raises(PositionNotLoadedError):
            await flow.execute()
        with pytest.raises(NoTransactionInFlightError):
            await flow.wait_for_confirmation()

        await flow.load()
        await flow.execute_all()
        await flow.wait_for_confirmation()

        name, kwargs = fake_sdk.calls[0]
        assert name == "collect_fees"
        assert kwargs["position"] == position
        assert kwargs["recipient"] == OWNER
        assert fake_wallet.sent[0]["to"] == POSITION_MANAGER
        assert fake_wallet.sent[0]["value"] == 0
        assert fake_wallet.signatures == []
        assert flow.current_step == PipelineStep.COMPLETED
        assert fake_reader.count("get_position") == 2

        flow.reset()
        assert flow.current_step == PipelineStep.EXECUTE

    @pytest.mark.asyncio
    async def test_send_failure_surfaces(self, fake_reader, fake_wallet, fake_sdk):
        key = pool_key()
        fake_reader.add_pool(key)
        fake_reader.add_position(7, key)
        fake_wallet.send_error = RuntimeError("nonce too low")
        flow = _flow(CollectFeesFlow, fake_reader, fake_wallet, fake_sdk)
        await flow.load()

        with pytest.raises(RuntimeError):
            await flow.execute()
        assert flow.display_error is flow.error
        assert flow.current_step == PipelineStep.EXECUTE


class TestRemoveLiquidity:
    @pytest.mark.asyncio
    async def test_full_removal_with_minimums(
        self, fake_reader, fake_wallet, fake_sdk
    ):
        key = pool_key()
        fake_reader.add_pool(key)
        position = fake_reader.add_position(7, key)
        flow = _flow(RemoveLiquidityFlow, fake_reader, fake_wallet, fake_sdk, burn=True)
        await flow.load()
        await flow.execute()

        name, kwargs = fake_sdk.calls[0]
        assert name == "remove_liquidity"
        assert kwargs["liquidity"] == position.liquidity
        assert kwargs["burn"] is True

        raw0, raw1 = amounts_for_liq_inrange(
            flow.pool.sqrt_price_x96,
            sqrt_price_x96_from_tick(-120),
            sqrt_price_x96_from_tick(120),
            position.liquidity,
        )
        assert kwargs["amount0_min"] == calculate_minimum_output(raw0, 50)
        assert kwargs["amount1_min"] == calculate_minimum_output(raw1, 50)
        assert 0 < kwargs["amount0_min"] < raw0

    def test_partial_removal_is_capped(self, fake_reader, fake_wallet, fake_sdk):
        position = PositionInfo(7, pool_key(), -120, 120, 1_000)
        flow = _flow(
            RemoveLiquidityFlow, fake_reader, fake_wallet, fake_sdk, liquidity=400
        )
        assert flow.liquidity_to_remove(position) == 400
        flow.liquidity = 5_000
        assert flow.liquidity_to_remove(position) == 1_000

    def test_minimums_need_the_pool(self, fake_reader, fake_wallet, fake_sdk):
        flow = _flow(RemoveLiquidityFlow, fake_reader, fake_wallet, fake_sdk)
        with pytest.raises(PoolNotLoadedError):
            flow.minimum_amounts(PositionInfo(7, pool_key(), -120, 120, 1_000))
