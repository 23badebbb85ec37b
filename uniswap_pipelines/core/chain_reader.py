from __future__ import annotations

import asyncio

from eth_utils import to_checksum_address
from loguru import logger
from web3 import AsyncWeb3

from uniswap_pipelines.core.constants.uniswap_v4_abi import (
    PERMIT2_ABI,
    POSITION_MANAGER_ABI,
    STATE_VIEW_ABI,
    V4_QUOTER_ABI,
)
from uniswap_pipelines.core.errors import SimulationFailureError, TransientRPCError
from uniswap_pipelines.core.interfaces import (
    Permit2Allowance,
    PoolKey,
    PoolState,
    PositionInfo,
)
from uniswap_pipelines.core.utils.retry import (
    is_simulation_failure,
    is_transient_rpc_error,
)
from uniswap_pipelines.core.utils.tokens import get_token_allowance, get_token_balance
from uniswap_pipelines.core.utils.uniswap_v4_math import decode_position_info
from uniswap_pipelines.core.utils.web3 import web3_from_chain_id


def _raise_classified(exc: Exception, what: str) -> None:
    if isinstance(exc, (SimulationFailureError, TransientRPCError)):
        return
    if is_simulation_failure(exc):
        raise SimulationFailureError(f"{what} failed: {exc}", reason=str(exc)) from exc
    if is_transient_rpc_error(exc):
        raise TransientRPCError(f"{what} failed: {exc}") from exc


def _pool_key_from_raw(raw) -> PoolKey:
    return PoolKey(
        currency0=to_checksum_address(raw[0]),
        currency1=to_checksum_address(raw[1]),
        fee=int(raw[2]),
        tick_spacing=int(raw[3]),
        hooks=to_checksum_address(raw[4]),
    )


class Web3ChainReader:
    """AsyncWeb3 reads against the Uniswap v4 periphery and Permit2."""

    def __init__(self, chain_id: int, contracts: dict[str, str]):
        self.chain_id = int(chain_id)
        self.contracts = dict(contracts)
        self.logger = logger.bind(reader=self.__class__.__name__, chain=self.chain_id)

    def _contract(self, web3: AsyncWeb3, name: str, abi: list):
        address = self.contracts.get(name)
        if not address:
            raise ValueError(
                f"No {name} contract configured for chain {self.chain_id}"
            )
        return web3.eth.contract(address=web3.to_checksum_address(address), abi=abi)

    async def read_allowance(self, owner: str, token: str, spender: str) -> int:
        async with web3_from_chain_id(self.chain_id) as web3:
            try:
                return await get_token_allowance(
                    token, self.chain_id, owner, spender, web3=web3
                )
            except Exception as exc:
                _raise_classified(exc, "allowance read")
                raise

    async def read_balance(self, owner: str, token: str) -> int:
        async with web3_from_chain_id(self.chain_id) as web3:
            try:
                return await get_token_balance(token, self.chain_id, owner, web3=web3)
            except Exception as exc:
                _raise_classified(exc, "balance read")
                raise

    async def read_permit2_allowance(
        self, owner: str, token: str, spender: str
    ) -> Permit2Allowance:
        async with web3_from_chain_id(self.chain_id) as web3:
            permit2 = self._contract(web3, "permit2", PERMIT2_ABI)
            try:
                amount, expiration, nonce = await permit2.functions.allowance(
                    web3.to_checksum_address(owner),
                    web3.to_checksum_address(token),
                    web3.to_checksum_address(spender),
                ).call(block_identifier="latest")
            except Exception as exc:
                _raise_classified(exc, "permit2 allowance read")
                raise
        return Permit2Allowance(int(amount), int(expiration), int(nonce))

    async def get_block_timestamp(self) -> int:
        async with web3_from_chain_id(self.chain_id) as web3:
            try:
                block = await web3.eth.get_block("latest")
            except Exception as exc:
                _raise_classified(exc, "block read")
                raise
        return int(block["timestamp"])

    async def simulate_quote(
        self, pool_key: PoolKey, amount_in: int, zero_for_one: bool
    ) -> int:
        async with web3_from_chain_id(self.chain_id) as web3:
            quoter = self._contract(web3, "quoter", V4_QUOTER_ABI)
            params = (pool_key.as_tuple(), bool(zero_for_one), int(amount_in), b"")
            try:
                amount_out, _gas = await quoter.functions.quoteExactInputSingle(
                    params
                ).call()
            except Exception as exc:
                _raise_classified(exc, "quote simulation")
                raise
        self.logger.debug(f"Quoted {amount_in} -> {amount_out} on {pool_key.pool_id}")
        return int(amount_out)

    async def get_pool(self, pool_key: PoolKey) -> PoolState:
        async with web3_from_chain_id(self.chain_id) as web3:
            state_view = self._contract(web3, "state_view", STATE_VIEW_ABI)
            pid = bytes.fromhex(pool_key.pool_id[2:])
            try:
                slot0, liquidity = await asyncio.gather(
                    state_view.functions.getSlot0(pid).call(block_identifier="latest"),
                    state_view.functions.getLiquidity(pid).call(
                        block_identifier="latest"
                    ),
                )
            except Exception as exc:
                _raise_classified(exc, "pool read")
                raise
        sqrt_price_x96, tick = int(slot0[0]), int(slot0[1])
        if sqrt_price_x96 == 0:
            raise SimulationFailureError(
                f"Pool {pool_key.pool_id} is not initialized", reason="uninitialized"
            )
        return PoolState(
            pool_key=pool_key,
            sqrt_price_x96=sqrt_price_x96,
            tick=tick,
            liquidity=int(liquidity),
        )

    async def get_position(self, token_id: int) -> PositionInfo:
        async with web3_from_chain_id(self.chain_id) as web3:
            posm = self._contract(web3, "position_manager", POSITION_MANAGER_ABI)
            try:
                (raw_key, info), liquidity = await asyncio.gather(
                    posm.functions.getPoolAndPositionInfo(int(token_id)).call(
                        block_identifier="latest"
                    ),
                    posm.functions.getPositionLiquidity(int(token_id)).call(
                        block_identifier="latest"
                    ),
                )
            except Exception as exc:
                _raise_classified(exc, "position read")
                raise
        decoded = decode_position_info(info)
        return PositionInfo(
            token_id=int(token_id),
            pool_key=_pool_key_from_raw(raw_key),
            tick_lower=decoded["tick_lower"],
            tick_upper=decoded["tick_upper"],
            liquidity=int(liquidity),
        )
