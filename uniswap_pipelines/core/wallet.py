from __future__ import annotations

from typing import Any

from eth_account import Account
from eth_account.messages import encode_typed_data
from loguru import logger

from uniswap_pipelines.core.config import get_wallet_config
from uniswap_pipelines.core.utils.transaction import (
    send_transaction,
    wait_for_transaction_receipt,
)

_DOMAIN_FIELD_TYPES = {
    "name": "string",
    "version": "string",
    "chainId": "uint256",
    "verifyingContract": "address",
    "salt": "bytes32",
}


def _domain_type(domain: dict[str, Any]) -> list[dict[str, str]]:
    return [
        {"name": field, "type": field_type}
        for field, field_type in _DOMAIN_FIELD_TYPES.items()
        if field in domain
    ]


def _normalize_private_key(private_key: str) -> str:
    private_key = private_key.strip()
    return private_key if private_key.startswith("0x") else "0x" + private_key


class LocalWallet:
    """Signs and sends with a local ``eth_account`` key over the configured RPCs."""

    def __init__(self, chain_id: int, private_key: str, *, confirmations: int = 1):
        self.chain_id = int(chain_id)
        self.confirmations = int(confirmations)
        self._account = Account.from_key(_normalize_private_key(private_key))
        self.logger = logger.bind(wallet=self._account.address, chain=self.chain_id)

    @classmethod
    def from_config(cls, chain_id: int, **kwargs: Any) -> LocalWallet:
        wallet = get_wallet_config()
        private_key = wallet.get("private_key_hex") or wallet.get("private_key")
        if not private_key:
            raise ValueError(
                "No private key found in config. Provide wallet.private_key_hex"
            )
        return cls(chain_id, private_key, **kwargs)

    @property
    def address(self) -> str | None:
        return self._account.address

    async def sign_typed_data(
        self,
        domain: dict[str, Any],
        types: dict[str, list[dict[str, str]]],
        primary_type: str,
        message: dict[str, Any],
    ) -> str:
        full_message = {
            "types": {"EIP712Domain": _domain_type(domain), **types},
            "primaryType": primary_type,
            "domain": domain,
            "message": message,
        }
        signed = self._account.sign_message(encode_typed_data(full_message=full_message))
        self.logger.info(f"Signed {primary_type} typed data")
        return "0x" + bytes(signed.signature).hex()

    async def _sign_transaction(self, transaction: dict[str, Any]) -> bytes:
        signed = self._account.sign_transaction(transaction)
        return signed.raw_transaction

    async def send_transaction(self, to: str, data: str, value: int = 0) -> str:
        transaction = {
            "chainId": self.chain_id,
            "from": self._account.address,
            "to": to,
            "data": data,
            "value": int(value),
        }
        return await send_transaction(transaction, self._sign_transaction)

    async def wait_for_receipt(
        self, txn_hash: str, confirmations: int | None = None
    ) -> dict[str, Any]:
        return await wait_for_transaction_receipt(
            self.chain_id,
            txn_hash,
            confirmations=confirmations or self.confirmations,
        )
