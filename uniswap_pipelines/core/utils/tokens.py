import asyncio
from typing import Any

from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector, to_checksum_address
from web3 import AsyncWeb3
from web3.exceptions import BadFunctionCallOutput

from uniswap_pipelines.core.constants.erc20_abi import ERC20_ABI
from uniswap_pipelines.core.utils.web3 import web3_from_chain_id

NATIVE_TOKEN_ADDRESSES: set = {
    "0x0000000000000000000000000000000000000000",
    "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee",
}

_APPROVE_SELECTOR = function_signature_to_4byte_selector("approve(address,uint256)")


def is_native_token(token_address: str | None) -> bool:
    if token_address is None:
        return True
    normalized = str(token_address).strip().lower()
    if normalized in ("", "native"):
        return True
    return normalized in NATIVE_TOKEN_ADDRESSES


def encode_approve_calldata(spender_address: str, amount: int) -> str:
    data = _APPROVE_SELECTOR + encode(
        ["address", "uint256"], [to_checksum_address(spender_address), int(amount)]
    )
    return "0x" + data.hex()


def _coerce_bytes32_str(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).rstrip(b"\x00").decode("utf-8", errors="ignore")
    return str(value)


async def _erc20_string(web3: AsyncWeb3, token_address: str, field: str) -> str:
    checksum_token = web3.to_checksum_address(token_address)
    contract = web3.eth.contract(address=checksum_token, abi=ERC20_ABI)
    try:
        value = await getattr(contract.functions, field)().call()
        return _coerce_bytes32_str(value)
    except (BadFunctionCallOutput, ValueError):
        # Some ERC20s use bytes32 for name/symbol (non-standard).
        bytes32_abi = [
            {
                "constant": True,
                "inputs": [],
                "name": field,
                "outputs": [{"name": "", "type": "bytes32"}],
                "type": "function",
            }
        ]
        contract32 = web3.eth.contract(address=checksum_token, abi=bytes32_abi)
        value = await getattr(contract32.functions, field)().call()
        return _coerce_bytes32_str(value)


async def get_erc20_metadata(
    token_address: str, chain_id: int, *, web3: AsyncWeb3 | None = None
) -> tuple[str, str, int]:
    async def _read_with_web3(w3: AsyncWeb3) -> tuple[str, str, int]:
        checksum_token = w3.to_checksum_address(token_address)
        contract = w3.eth.contract(address=checksum_token, abi=ERC20_ABI)
        symbol, name, decimals = await asyncio.gather(
            _erc20_string(w3, checksum_token, "symbol"),
            _erc20_string(w3, checksum_token, "name"),
            contract.functions.decimals().call(),
        )
        return str(symbol), str(name), int(decimals)

    if web3 is None:
        async with web3_from_chain_id(chain_id) as w3:
            return await _read_with_web3(w3)
    return await _read_with_web3(web3)


async def get_token_balance(
    token_address: str | None,
    chain_id: int,
    wallet_address: str,
    *,
    web3: AsyncWeb3 | None = None,
    block_identifier: str | int = "pending",
) -> int:
    async def _read_with_web3(w3: AsyncWeb3) -> int:
        checksum_wallet = w3.to_checksum_address(wallet_address)

        if is_native_token(token_address):
            balance = await w3.eth.get_balance(
                checksum_wallet, block_identifier=block_identifier
            )
            return int(balance)

        checksum_token = w3.to_checksum_address(str(token_address))
        contract = w3.eth.contract(address=checksum_token, abi=ERC20_ABI)
        balance = await contract.functions.balanceOf(checksum_wallet).call(
            block_identifier=block_identifier
        )
        return int(balance)

    if web3 is None:
        async with web3_from_chain_id(chain_id) as w3:
            return await _read_with_web3(w3)
    return await _read_with_web3(web3)


async def get_token_allowance(
    token_address: str,
    chain_id: int,
    owner_address: str,
    spender_address: str,
    *,
    web3: AsyncWeb3 | None = None,
) -> int:
    async def _read_with_web3(w3: AsyncWeb3) -> int:
        contract = w3.eth.contract(
            address=w3.to_checksum_address(token_address), abi=ERC20_ABI
        )
        allowance = await contract.functions.allowance(
            w3.to_checksum_address(owner_address),
            w3.to_checksum_address(spender_address),
        ).call(block_identifier="pending")
        return int(allowance)

    if web3 is None:
        async with web3_from_chain_id(chain_id) as w3:
            return await _read_with_web3(w3)
    return await _read_with_web3(web3)
