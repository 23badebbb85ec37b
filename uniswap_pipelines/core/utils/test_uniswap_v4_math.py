from __future__ import annotations

from unittest.mock import patch

import pytest

from uniswap_pipelines.core.errors import InvalidSlippageError
from uniswap_pipelines.core.utils.uniswap_v4_math import (
    MAX_TICK,
    MIN_TICK,
    Q96,
    calculate_maximum_input,
    calculate_minimum_output,
    deadline,
    decode_position_info,
    nearest_usable_tick,
    pool_id,
    position_amounts,
    round_tick_to_spacing,
    sort_currencies,
    sqrt_price_x96_from_tick,
    validate_slippage_bps,
)

MOCK_TOKEN0 = "0x1111111111111111111111111111111111111111"
MOCK_TOKEN1 = "0x3333333333333333333333333333333333333333"
ZERO = "0x0000000000000000000000000000000000000000"


def test_minimum_output_floors():
    assert calculate_minimum_output(1_000_000, 50) == 995_000
    assert calculate_minimum_output(999, 50) == 994
    assert calculate_minimum_output(1_000_000, 0) == 1_000_000
    assert calculate_minimum_output(1_000_000, 10_000) == 0


def test_maximum_input_rounds_up():
    assert calculate_maximum_input(1_000_000, 50) == 1_005_000
    assert calculate_maximum_input(999, 50) == 1004


@pytest.mark.parametrize("bad", [-1, 10_001, 12.5, "50", None, True])
def test_invalid_slippage_rejected(bad):
    with pytest.raises(InvalidSlippageError):
        validate_slippage_bps(bad)


def test_whole_float_slippage_accepted():
    assert validate_slippage_bps(50.0) == 50


def test_invalid_slippage_is_a_value_error():
    with pytest.raises(ValueError):
        calculate_minimum_output(1, 20_000)


def test_deadline():
    with patch(
        "uniswap_pipelines.core.utils.uniswap_v4_math.time.time", return_value=1000.7
    ):
        assert deadline(600) == 1600


def test_round_tick_to_spacing_floors():
    assert round_tick_to_spacing(61, 60) == 60
    assert round_tick_to_spacing(-61, 60) == -120
    assert round_tick_to_spacing(61, 0) == 61


@pytest.mark.parametrize(
    ("tick", "expected"),
    [
        (0, 0),
        (29, 0),
        (30, 60),
        (89, 60),
        (-29, 0),
        (-91, -120),
        (MAX_TICK, 887_220),
        (MIN_TICK, -887_220),
    ],
)
def test_nearest_usable_tick(tick, expected):
    assert nearest_usable_tick(tick, 60) == expected


def test_nearest_usable_tick_rejects_bad_input():
    with pytest.raises(ValueError):
        nearest_usable_tick(0, 0)
    with pytest.raises(ValueError):
        nearest_usable_tick(MAX_TICK + 1, 60)


def test_sqrt_price_at_known_ticks():
    assert sqrt_price_x96_from_tick(0) == Q96
    assert sqrt_price_x96_from_tick(MIN_TICK) == 4295128739
    assert (
        sqrt_price_x96_from_tick(MAX_TICK)
        == 1461446703485210103287273052203988822378723970342
    )
    assert sqrt_price_x96_from_tick(-60) < Q96 < sqrt_price_x96_from_tick(60)
    with pytest.raises(ValueError):
        sqrt_price_x96_from_tick(MIN_TICK - 1)


class TestPositionAmounts:
    def test_both_amounts_in_range(self):
        liquidity, amount0, amount1 = position_amounts(
            sqrt_price_x96=Q96,
            tick_lower=-60,
            tick_upper=60,
            amount0=10**18,
            amount1=10**18,
        )
        assert liquidity > 0
        assert abs(amount0 - amount1) <= 1
        assert max(amount0, amount1) <= 10**18 + 1

    def test_token0_only_above_price(self):
        liquidity, amount0, amount1 = position_amounts(
            sqrt_price_x96=Q96, tick_lower=60, tick_upper=120, amount0=10**6
        )
        assert liquidity > 0
        assert 0 < amount0 <= 10**6 + 1
        assert amount1 == 0

    def test_token1_only_below_price(self):
        _, amount0, amount1 = position_amounts(
            sqrt_price_x96=Q96, tick_lower=-120, tick_upper=-60, amount1=10**6
        )
        assert amount0 == 0
        assert 0 < amount1 <= 10**6 + 1

    def test_single_sided_range_on_wrong_side(self):
        with pytest.raises(ValueError, match="token0 cannot fund"):
            position_amounts(
                sqrt_price_x96=Q96, tick_lower=-120, tick_upper=-60, amount0=10**6
            )
        with pytest.raises(ValueError, match="token1 cannot fund"):
            position_amounts(
                sqrt_price_x96=Q96, tick_lower=60, tick_upper=120, amount1=10**6
            )

    def test_requires_an_amount_and_ordered_ticks(self):
        with pytest.raises(ValueError):
            position_amounts(sqrt_price_x96=Q96, tick_lower=-60, tick_upper=60)
        with pytest.raises(ValueError):
            position_amounts(
                sqrt_price_x96=Q96, tick_lower=60, tick_upper=60, amount0=1
            )


def test_sort_currencies():
    assert sort_currencies(MOCK_TOKEN1, MOCK_TOKEN0) == (MOCK_TOKEN0, MOCK_TOKEN1)
    assert sort_currencies(MOCK_TOKEN0, ZERO)[0] == ZERO


def test_pool_id_depends_on_every_key_field():
    key = (MOCK_TOKEN0, MOCK_TOKEN1, 3000, 60, ZERO)
    base = pool_id(key)
    assert base.startswith("0x") and len(base) == 66
    assert pool_id(key) == base
    assert pool_id((MOCK_TOKEN0, MOCK_TOKEN1, 500, 60, ZERO)) != base
    assert pool_id((MOCK_TOKEN0, MOCK_TOKEN1, 3000, 10, ZERO)) != base


def test_decode_position_info():
    prefix = 0xABCDEF
    info = (
        (prefix << 56)
        | ((120 & 0xFFFFFF) << 32)
        | ((-120 & 0xFFFFFF) << 8)
        | 1
    )
    decoded = decode_position_info(info)
    assert decoded == {
        "has_subscriber": True,
        "tick_lower": -120,
        "tick_upper": 120,
        "pool_id_prefix": prefix,
    }
