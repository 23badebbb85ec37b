"""Permit2 typed-data preparation.

Builds the EIP-712 payloads for ``PermitBatch`` (one or more tokens) and
``PermitSingle`` signatures. The on-chain (expiration, nonce) of each token is
read through a chain reader; the permitted amount is always the uint160 max.

Native tokens never go through Permit2: the batch builder drops them and the
single builder rejects them.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any

from eth_utils import to_checksum_address
from pydantic import BaseModel, ConfigDict

from uniswap_pipelines.core.constants import MAX_UINT160
from uniswap_pipelines.core.interfaces import ChainReader
from uniswap_pipelines.core.utils.tokens import is_native_token

DEFAULT_SIG_DEADLINE_SECONDS = 60 * 60

PERMIT_DETAILS_TYPE = [
    {"name": "token", "type": "address"},
    {"name": "amount", "type": "uint160"},
    {"name": "expiration", "type": "uint48"},
    {"name": "nonce", "type": "uint48"},
]

PERMIT_BATCH_TYPES = {
    "PermitBatch": [
        {"name": "details", "type": "PermitDetails[]"},
        {"name": "spender", "type": "address"},
        {"name": "sigDeadline", "type": "uint256"},
    ],
    "PermitDetails": PERMIT_DETAILS_TYPE,
}

PERMIT_SINGLE_TYPES = {
    "PermitSingle": [
        {"name": "details", "type": "PermitDetails"},
        {"name": "spender", "type": "address"},
        {"name": "sigDeadline", "type": "uint256"},
    ],
    "PermitDetails": PERMIT_DETAILS_TYPE,
}


class PermitDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    amount: int
    expiration: int
    nonce: int


class PermitBatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    details: list[PermitDetails]
    spender: str
    sigDeadline: int


class PermitSingle(BaseModel):
    model_config = ConfigDict(frozen=True)

    details: PermitDetails
    spender: str
    sigDeadline: int


class BatchPermit(BaseModel):
    """A signed ``PermitBatch`` ready to be embedded in calldata."""

    model_config = ConfigDict(frozen=True)

    owner: str
    permit_batch: PermitBatch
    signature: str


class SinglePermit(BaseModel):
    model_config = ConfigDict(frozen=True)

    owner: str
    permit: PermitSingle
    signature: str


class TypedDataRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    domain: dict[str, Any]
    types: dict[str, list[dict[str, str]]]
    primary_type: str
    message: dict[str, Any]


class PreparedPermitBatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    owner: str
    permit_batch: PermitBatch
    to_sign: TypedDataRequest

    def with_signature(self, signature: str) -> BatchPermit:
        return BatchPermit(
            owner=self.owner, permit_batch=self.permit_batch, signature=signature
        )


class PreparedPermitSingle(BaseModel):
    model_config = ConfigDict(frozen=True)

    owner: str
    permit: PermitSingle
    to_sign: TypedDataRequest

    def with_signature(self, signature: str) -> SinglePermit:
        return SinglePermit(owner=self.owner, permit=self.permit, signature=signature)


def permit2_domain(chain_id: int, permit2_address: str) -> dict[str, Any]:
    # Permit2's domain has no version field.
    return {
        "name": "Permit2",
        "chainId": int(chain_id),
        "verifyingContract": to_checksum_address(permit2_address),
    }


async def _resolve_sig_deadline(
    reader: ChainReader, sig_deadline: int | None, sig_deadline_seconds: int
) -> int:
    if sig_deadline:
        return int(sig_deadline)
    return await reader.get_block_timestamp() + int(sig_deadline_seconds)


async def _permit_details(
    reader: ChainReader, owner: str, token: str, spender: str
) -> PermitDetails:
    allowance = await reader.read_permit2_allowance(owner, token, spender)
    return PermitDetails(
        token=to_checksum_address(token),
        amount=MAX_UINT160,
        expiration=int(allowance.expiration),
        nonce=int(allowance.nonce),
    )


async def prepare_permit2_batch_data(
    *,
    tokens: Sequence[str],
    spender: str,
    owner: str,
    chain_id: int,
    reader: ChainReader,
    permit2_address: str,
    sig_deadline: int | None = None,
    sig_deadline_seconds: int = DEFAULT_SIG_DEADLINE_SECONDS,
) -> PreparedPermitBatch:
    erc20_tokens = [t for t in tokens if not is_native_token(t)]
    if not erc20_tokens:
        raise ValueError("No ERC20 tokens to permit; native tokens skip Permit2")

    spender = to_checksum_address(spender)
    owner = to_checksum_address(owner)
    deadline, details = await asyncio.gather(
        _resolve_sig_deadline(reader, sig_deadline, sig_deadline_seconds),
        asyncio.gather(
            *[_permit_details(reader, owner, t, spender) for t in erc20_tokens]
        ),
    )
    permit_batch = PermitBatch(
        details=list(details), spender=spender, sigDeadline=deadline
    )
    return PreparedPermitBatch(
        owner=owner,
        permit_batch=permit_batch,
        to_sign=TypedDataRequest(
            domain=permit2_domain(chain_id, permit2_address),
            types=PERMIT_BATCH_TYPES,
            primary_type="PermitBatch",
            message=permit_batch.model_dump(),
        ),
    )


async def prepare_permit2_data(
    *,
    token: str,
    spender: str,
    owner: str,
    chain_id: int,
    reader: ChainReader,
    permit2_address: str,
    sig_deadline: int | None = None,
    sig_deadline_seconds: int = DEFAULT_SIG_DEADLINE_SECONDS,
) -> PreparedPermitSingle:
    if is_native_token(token):
        raise ValueError("Native tokens are not supported for permit2")

    spender = to_checksum_address(spender)
    owner = to_checksum_address(owner)
    deadline, details = await asyncio.gather(
        _resolve_sig_deadline(reader, sig_deadline, sig_deadline_seconds),
        _permit_details(reader, owner, token, spender),
    )
    permit = PermitSingle(details=details, spender=spender, sigDeadline=deadline)
    return PreparedPermitSingle(
        owner=owner,
        permit=permit,
        to_sign=TypedDataRequest(
            domain=permit2_domain(chain_id, permit2_address),
            types=PERMIT_SINGLE_TYPES,
            primary_type="PermitSingle",
            message=permit.model_dump(),
        ),
    )
