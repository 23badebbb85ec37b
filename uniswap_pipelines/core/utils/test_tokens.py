from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_abi import decode as abi_decode

from uniswap_pipelines.core.constants import MAX_UINT256
from uniswap_pipelines.core.utils.tokens import (
    _coerce_bytes32_str,
    encode_approve_calldata,
    get_token_allowance,
    get_token_balance,
    is_native_token,
)

MOCK_OWNER = "0xaAaAaAaaAaAaAaaAaAAAAAAAAaaaAaAaAaaAaaAa"
MOCK_TOKEN = "0x1111111111111111111111111111111111111111"
MOCK_SPENDER = "0x000000000022D473030F116dDEE9F6B43aC78BA3"


@pytest.mark.parametrize(
    "token",
    [
        None,
        "",
        "native",
        "0x0000000000000000000000000000000000000000",
        "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE",
    ],
)
def test_native_tokens(token):
    assert is_native_token(token)


def test_erc20_is_not_native():
    assert not is_native_token(MOCK_TOKEN)


def test_encode_approve_calldata():
    data = encode_approve_calldata(MOCK_SPENDER.lower(), MAX_UINT256)
    assert data.startswith("0x095ea7b3")
    spender, amount = abi_decode(["address", "uint256"], bytes.fromhex(data[10:]))
    assert spender.lower() == MOCK_SPENDER.lower()
    assert amount == MAX_UINT256


def test_coerce_bytes32_str():
    assert _coerce_bytes32_str(b"MKR" + b"\x00" * 29) == "MKR"
    assert _coerce_bytes32_str("USDC") == "USDC"


def _w3_with_contract(contract: MagicMock) -> MagicMock:
    w3 = MagicMock()
    w3.to_checksum_address.side_effect = lambda a: a
    w3.eth.contract.return_value = contract
    return w3


@pytest.mark.asyncio
async def test_native_balance_uses_get_balance():
    w3 = _w3_with_contract(MagicMock())
    w3.eth.get_balance = AsyncMock(return_value=42)

    balance = await get_token_balance(None, 8453, MOCK_OWNER, web3=w3)

    assert balance == 42
    w3.eth.contract.assert_not_called()


@pytest.mark.asyncio
async def test_erc20_balance_reads_balance_of():
    contract = MagicMock()
    contract.functions.balanceOf.return_value.call = AsyncMock(return_value=1_000)
    w3 = _w3_with_contract(contract)

    assert await get_token_balance(MOCK_TOKEN, 8453, MOCK_OWNER, web3=w3) == 1_000
    contract.functions.balanceOf.assert_called_once_with(MOCK_OWNER)


@pytest.mark.asyncio
async def test_allowance_reads_pending_block():
    contract = MagicMock()
    contract.functions.allowance.return_value.call = AsyncMock(return_value=5)
    w3 = _w3_with_contract(contract)

    allowance = await get_token_allowance(
        MOCK_TOKEN, 8453, MOCK_OWNER, MOCK_SPENDER, web3=w3
    )

    assert allowance == 5
    contract.functions.allowance.assert_called_once_with(MOCK_OWNER, MOCK_SPENDER)
    contract.functions.allowance.return_value.call.assert_awaited_once_with(
        block_identifier="pending"
    )
