from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NamedTuple, Protocol, runtime_checkable

from uniswap_pipelines.core.utils.uniswap_v4_math import PoolKeyTuple, pool_id


@dataclass(frozen=True)
class PoolKey:
    currency0: str
    currency1: str
    fee: int
    tick_spacing: int
    hooks: str

    def as_tuple(self) -> PoolKeyTuple:
        return (
            self.currency0,
            self.currency1,
            int(self.fee),
            int(self.tick_spacing),
            self.hooks,
        )

    @property
    def pool_id(self) -> str:
        return pool_id(self.as_tuple())


@dataclass(frozen=True)
class PoolState:
    pool_key: PoolKey
    sqrt_price_x96: int
    tick: int
    liquidity: int


@dataclass(frozen=True)
class PositionInfo:
    token_id: int
    pool_key: PoolKey
    tick_lower: int
    tick_upper: int
    liquidity: int


@dataclass(frozen=True)
class TokenMetadata:
    chain_id: int
    address: str
    symbol: str
    name: str
    decimals: int


@dataclass(frozen=True)
class Calldata:
    calldata: str
    value: int = 0


class Permit2Allowance(NamedTuple):
    amount: int
    expiration: int
    nonce: int


@runtime_checkable
class ChainReader(Protocol):
    chain_id: int

    async def read_allowance(self, owner: str, token: str, spender: str) -> int: ...

    async def read_balance(self, owner: str, token: str) -> int: ...

    async def read_permit2_allowance(
        self, owner: str, token: str, spender: str
    ) -> Permit2Allowance: ...

    async def get_block_timestamp(self) -> int: ...

    async def simulate_quote(
        self, pool_key: PoolKey, amount_in: int, zero_for_one: bool
    ) -> int: ...

    async def get_pool(self, pool_key: PoolKey) -> PoolState: ...

    async def get_position(self, token_id: int) -> PositionInfo: ...


@runtime_checkable
class Wallet(Protocol):
    @property
    def address(self) -> str | None: ...

    async def sign_typed_data(
        self,
        domain: dict[str, Any],
        types: dict[str, list[dict[str, str]]],
        primary_type: str,
        message: dict[str, Any],
    ) -> str: ...

    async def send_transaction(self, to: str, data: str, value: int = 0) -> str: ...

    async def wait_for_receipt(
        self, txn_hash: str, confirmations: int = 1
    ) -> dict[str, Any]: ...


class CalldataSDK(Protocol):
    """Operation encoders. Implementations must not sign or read chain state."""

    def build_swap_calldata(
        self,
        *,
        pool_key: PoolKey,
        zero_for_one: bool,
        amount_in: int,
        amount_out_minimum: int,
        recipient: str,
        deadline: int,
        batch_permit: Any | None,
    ) -> Calldata: ...

    def build_add_liquidity_calldata(
        self,
        *,
        pool_key: PoolKey,
        token_id: int | None,
        tick_lower: int,
        tick_upper: int,
        liquidity: int,
        amount0_max: int,
        amount1_max: int,
        recipient: str,
        deadline: int,
        batch_permit: Any | None,
    ) -> Calldata: ...

    def build_collect_fees_calldata(
        self, *, position: PositionInfo, recipient: str, deadline: int
    ) -> Calldata: ...

    def build_remove_liquidity_calldata(
        self,
        *,
        position: PositionInfo,
        liquidity: int,
        amount0_min: int,
        amount1_min: int,
        recipient: str,
        deadline: int,
        burn: bool,
    ) -> Calldata: ...
