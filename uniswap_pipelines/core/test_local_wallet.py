from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from eth_account import Account
from eth_account.messages import encode_typed_data

from uniswap_pipelines.core.config import set_config
from uniswap_pipelines.core.wallet import LocalWallet, _domain_type

TEST_KEY = "11" * 32
TEST_ADDRESS = Account.from_key("0x" + TEST_KEY).address

MAIL_TYPES = {
    "Mail": [
        {"name": "to", "type": "address"},
        {"name": "contents", "type": "string"},
    ]
}


def test_accepts_unprefixed_key():
    wallet = LocalWallet(8453, TEST_KEY)
    assert wallet.address == TEST_ADDRESS


def test_from_config():
    set_config({"wallet": {"private_key_hex": "0x" + TEST_KEY}})
    assert LocalWallet.from_config(1).address == TEST_ADDRESS


def test_from_config_requires_key():
    with pytest.raises(ValueError, match="No private key"):
        LocalWallet.from_config(1)


def test_domain_type_only_lists_present_fields():
    domain = {"name": "Permit2", "chainId": 1, "verifyingContract": TEST_ADDRESS}
    assert [f["name"] for f in _domain_type(domain)] == [
        "name",
        "chainId",
        "verifyingContract",
    ]


@pytest.mark.asyncio
async def test_typed_data_signature_recovers():
    wallet = LocalWallet(8453, TEST_KEY)
    domain = {"name": "Mailer", "version": "1", "chainId": 8453}
    message = {"to": TEST_ADDRESS, "contents": "hello"}

    signature = await wallet.sign_typed_data(domain, MAIL_TYPES, "Mail", message)

    signable = encode_typed_data(
        full_message={
            "types": {"EIP712Domain": _domain_type(domain), **MAIL_TYPES},
            "primaryType": "Mail",
            "domain": domain,
            "message": message,
        }
    )
    assert signature.startswith("0x")
    assert Account.recover_message(signable, signature=signature) == TEST_ADDRESS


@pytest.mark.asyncio
async def test_send_transaction_builds_and_delegates():
    wallet = LocalWallet(8453, TEST_KEY)
    with patch(
        "uniswap_pipelines.core.wallet.send_transaction",
        new=AsyncMock(return_value="0xabc"),
    ) as send:
        tx_hash = await wallet.send_transaction("0x" + "22" * 20, "0x1234", 5)

    assert tx_hash == "0xabc"
    transaction, sign_callback = send.await_args.args
    assert transaction == {
        "chainId": 8453,
        "from": TEST_ADDRESS,
        "to": "0x" + "22" * 20,
        "data": "0x1234",
        "value": 5,
    }
    assert sign_callback == wallet._sign_transaction


@pytest.mark.asyncio
async def test_wait_for_receipt_uses_default_confirmations():
    wallet = LocalWallet(8453, TEST_KEY, confirmations=3)
    with patch(
        "uniswap_pipelines.core.wallet.wait_for_transaction_receipt",
        new=AsyncMock(return_value={"status": 1}),
    ) as wait:
        await wallet.wait_for_receipt("0xabc")
        await wallet.wait_for_receipt("0xabc", confirmations=1)

    assert wait.await_args_list[0].kwargs["confirmations"] == 3
    assert wait.await_args_list[1].kwargs["confirmations"] == 1
