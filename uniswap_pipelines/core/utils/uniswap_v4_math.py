"""Uniswap v4 integer math helpers.

Slippage, tick and liquidity conversions used by the swap and position
pipelines. Everything here is pure integer arithmetic so that amounts shown to
the user match what the contracts compute.
"""

from __future__ import annotations

import time
from typing import Any

from eth_abi import encode as abi_encode
from eth_utils import keccak, to_checksum_address

from uniswap_pipelines.core.config import BIPS_BASE
from uniswap_pipelines.core.errors import InvalidSlippageError

MIN_TICK = -887272
MAX_TICK = 887272
Q32 = 1 << 32
Q96 = 1 << 96

PoolKeyTuple = tuple[str, str, int, int, str]


def validate_slippage_bps(slippage_bps: Any) -> int:
    if isinstance(slippage_bps, bool):
        raise InvalidSlippageError(slippage_bps)
    if isinstance(slippage_bps, float):
        if not slippage_bps.is_integer():
            raise InvalidSlippageError(slippage_bps)
        slippage_bps = int(slippage_bps)
    if not isinstance(slippage_bps, int) or not 0 <= slippage_bps <= BIPS_BASE:
        raise InvalidSlippageError(slippage_bps)
    return slippage_bps


def calculate_minimum_output(amount_out: int, slippage_bps: int) -> int:
    bps = validate_slippage_bps(slippage_bps)
    return (int(amount_out) * (BIPS_BASE - bps)) // BIPS_BASE


def calculate_maximum_input(amount_in: int, slippage_bps: int) -> int:
    bps = validate_slippage_bps(slippage_bps)
    return _div_round_up(int(amount_in) * (BIPS_BASE + bps), BIPS_BASE)


def deadline(seconds: int = 600) -> int:
    return int(time.time()) + int(seconds)


def round_tick_to_spacing(tick: int, spacing: int) -> int:
    if spacing <= 0:
        return tick
    return tick - (tick % spacing)


def nearest_usable_tick(tick: int, tick_spacing: int) -> int:
    if tick_spacing <= 0:
        raise ValueError("tick_spacing must be positive")
    if not MIN_TICK <= tick <= MAX_TICK:
        raise ValueError(f"tick {tick} out of range [{MIN_TICK}, {MAX_TICK}]")
    # halves round up
    quotient, remainder = divmod(tick, tick_spacing)
    if remainder * 2 >= tick_spacing:
        quotient += 1
    rounded = quotient * tick_spacing
    if rounded < MIN_TICK:
        return rounded + tick_spacing
    if rounded > MAX_TICK:
        return rounded - tick_spacing
    return rounded


def sqrt_price_x96_from_tick(tick: int) -> int:
    if tick < MIN_TICK or tick > MAX_TICK:
        raise ValueError(f"tick {tick} out of range [{MIN_TICK}, {MAX_TICK}]")

    abs_tick = tick if tick >= 0 else -tick
    ratio = 0x100000000000000000000000000000000

    if abs_tick & 0x1:
        ratio = (ratio * 0xFFFCB933BD6FAD37AA2D162D1A594001) >> 128
    if abs_tick & 0x2:
        ratio = (ratio * 0xFFF97272373D413259A46990580E213A) >> 128
    if abs_tick & 0x4:
        ratio = (ratio * 0xFFF2E50F5F656932EF12357CF3C7FDCC) >> 128
    if abs_tick & 0x8:
        ratio = (ratio * 0xFFE5CACA7E10E4E61C3624EAA0941CD0) >> 128
    if abs_tick & 0x10:
        ratio = (ratio * 0xFFCB9843D60F6159C9DB58835C926644) >> 128
    if abs_tick & 0x20:
        ratio = (ratio * 0xFF973B41FA98C081472E6896DFB254C0) >> 128
    if abs_tick & 0x40:
        ratio = (ratio * 0xFF2EA16466C96A3843EC78B326B52861) >> 128
    if abs_tick & 0x80:
        ratio = (ratio * 0xFE5DEE046A99A2A811C461F1969C3053) >> 128
    if abs_tick & 0x100:
        ratio = (ratio * 0xFCBE86C7900A88AEDCFFC83B479AA3A4) >> 128
    if abs_tick & 0x200:
        ratio = (ratio * 0xF987A7253AC413176F2B074CF7815E54) >> 128
    if abs_tick & 0x400:
        ratio = (ratio * 0xF3392B0822B70005940C7A398E4B70F3) >> 128
    if abs_tick & 0x800:
        ratio = (ratio * 0xE7159475A2C29B7443B29C7FA6E889D9) >> 128
    if abs_tick & 0x1000:
        ratio = (ratio * 0xD097F3BDFD2022B8845AD8F792AA5825) >> 128
    if abs_tick & 0x2000:
        ratio = (ratio * 0xA9F746462D870FDF8A65DC1F90E061E5) >> 128
    if abs_tick & 0x4000:
        ratio = (ratio * 0x70D869A156D2A1B890BB3DF62BAF32F7) >> 128
    if abs_tick & 0x8000:
        ratio = (ratio * 0x31BE135F97D08FD981231505542FCFA6) >> 128
    if abs_tick & 0x10000:
        ratio = (ratio * 0x9AA508B5B7A84E1C677DE54F3E99BC9) >> 128
    if abs_tick & 0x20000:
        ratio = (ratio * 0x5D6AF8DEDB81196699C329225EE604) >> 128
    if abs_tick & 0x40000:
        ratio = (ratio * 0x2216E584F5FA1EA926041BEDFE98) >> 128
    if abs_tick & 0x80000:
        ratio = (ratio * 0x48A170391F7DC42444E8FA2) >> 128

    if tick > 0:
        ratio = (1 << 256) // ratio

    sqrt_price_x96 = ratio >> 32
    if ratio & (Q32 - 1):
        sqrt_price_x96 += 1
    return int(sqrt_price_x96)


def _div_round_up(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def _sorted_bounds(sqrt_a: int, sqrt_b: int) -> tuple[int, int]:
    a, b = sorted((int(sqrt_a), int(sqrt_b)))
    if a == b:
        raise ValueError("sqrt price bounds must differ")
    return a, b


def liq_for_amt0(sqrt_a: int, sqrt_b: int, amount0: int) -> int:
    a, b = _sorted_bounds(sqrt_a, sqrt_b)
    return (int(amount0) * a * b // Q96) // (b - a)


def liq_for_amt1(sqrt_a: int, sqrt_b: int, amount1: int) -> int:
    a, b = _sorted_bounds(sqrt_a, sqrt_b)
    return int(amount1) * Q96 // (b - a)


def amt0_for_liq(
    sqrt_a: int, sqrt_b: int, liquidity: int, *, round_up: bool = False
) -> int:
    a, b = _sorted_bounds(sqrt_a, sqrt_b)
    numerator = int(liquidity) * Q96 * (b - a)
    if round_up:
        return _div_round_up(_div_round_up(numerator, b), a)
    return numerator // b // a


def amt1_for_liq(
    sqrt_a: int, sqrt_b: int, liquidity: int, *, round_up: bool = False
) -> int:
    a, b = _sorted_bounds(sqrt_a, sqrt_b)
    numerator = int(liquidity) * (b - a)
    if round_up:
        return _div_round_up(numerator, Q96)
    return numerator // Q96


def liq_for_amounts(
    sqrt_p: int, sqrt_a: int, sqrt_b: int, amount0: int, amount1: int
) -> int:
    a, b = _sorted_bounds(sqrt_a, sqrt_b)
    p = int(sqrt_p)
    if p <= a:
        return liq_for_amt0(a, b, amount0)
    if p >= b:
        return liq_for_amt1(a, b, amount1)
    return min(liq_for_amt0(p, b, amount0), liq_for_amt1(a, p, amount1))


def amounts_for_liq_inrange(
    sqrt_p: int,
    sqrt_a: int,
    sqrt_b: int,
    liquidity: int,
    *,
    round_up: bool = False,
) -> tuple[int, int]:
    a, b = _sorted_bounds(sqrt_a, sqrt_b)
    p = int(sqrt_p)
    if p <= a:
        return amt0_for_liq(a, b, liquidity, round_up=round_up), 0
    if p < b:
        return (
            amt0_for_liq(p, b, liquidity, round_up=round_up),
            amt1_for_liq(a, p, liquidity, round_up=round_up),
        )
    return 0, amt1_for_liq(a, b, liquidity, round_up=round_up)


def position_amounts(
    *,
    sqrt_price_x96: int,
    tick_lower: int,
    tick_upper: int,
    amount0: int | None = None,
    amount1: int | None = None,
) -> tuple[int, int, int]:
    """Size a position from one or both desired token amounts.

    Returns ``(liquidity, amount0, amount1)`` where the amounts are what a mint
    with that liquidity pulls (rounded up).
    """
    if amount0 is None and amount1 is None:
        raise ValueError("amount0 or amount1 is required")
    if tick_lower >= tick_upper:
        raise ValueError("tick_lower must be below tick_upper")

    sqrt_a = sqrt_price_x96_from_tick(tick_lower)
    sqrt_b = sqrt_price_x96_from_tick(tick_upper)
    p = int(sqrt_price_x96)

    if amount0 is not None and amount1 is not None:
        liquidity = liq_for_amounts(p, sqrt_a, sqrt_b, amount0, amount1)
    elif amount0 is not None:
        if p >= sqrt_b:
            raise ValueError("range is below the current price; token0 cannot fund it")
        liquidity = liq_for_amt0(max(p, sqrt_a), sqrt_b, amount0)
    else:
        if p <= sqrt_a:
            raise ValueError("range is above the current price; token1 cannot fund it")
        liquidity = liq_for_amt1(sqrt_a, min(p, sqrt_b), int(amount1 or 0))

    need0, need1 = amounts_for_liq_inrange(
        p, sqrt_a, sqrt_b, liquidity, round_up=True
    )
    return liquidity, need0, need1


def sort_currencies(currency_a: str, currency_b: str) -> tuple[str, str]:
    a = to_checksum_address(currency_a)
    b = to_checksum_address(currency_b)
    return (a, b) if int(a, 16) < int(b, 16) else (b, a)


def pool_id(key: PoolKeyTuple) -> str:
    currency0, currency1, fee, tick_spacing, hooks = key
    encoded = abi_encode(
        ["address", "address", "uint24", "int24", "address"],
        [
            to_checksum_address(currency0),
            to_checksum_address(currency1),
            int(fee),
            int(tick_spacing),
            to_checksum_address(hooks),
        ],
    )
    return "0x" + keccak(encoded).hex()


def _int24(raw: int) -> int:
    raw &= 0xFFFFFF
    return raw - (1 << 24) if raw & 0x800000 else raw


def decode_position_info(info: int) -> dict[str, Any]:
    """Unpack the PositionManager ``PositionInfo`` word.

    Layout (low to high bits): hasSubscriber (8), tickLower (24),
    tickUpper (24), truncated poolId (200).
    """
    info = int(info)
    return {
        "has_subscriber": bool(info & 0xFF),
        "tick_lower": _int24(info >> 8),
        "tick_upper": _int24(info >> 32),
        "pool_id_prefix": info >> 56,
    }
