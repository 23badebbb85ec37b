"""Permit2 signature step with a fingerprint-keyed cache.

The fingerprint covers everything a signature depends on: chain, connected
account, spender, and each token with its amount. A cached signature or a
signing error only applies while the fingerprint of the current inputs matches
the one it was stored under, so changing any input invalidates it without any
explicit bookkeeping.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

from eth_utils import keccak, to_checksum_address
from loguru import logger

from uniswap_pipelines.core.errors import WalletNotConnectedError, user_facing_error
from uniswap_pipelines.core.interfaces import ChainReader, Wallet
from uniswap_pipelines.core.utils.permit2 import (
    DEFAULT_SIG_DEADLINE_SECONDS,
    prepare_permit2_batch_data,
    prepare_permit2_data,
)
from uniswap_pipelines.core.utils.tokens import is_native_token
from uniswap_pipelines.pipeline.types import (
    PermitKind,
    PermitSignatureResult,
    PermitToken,
    Requirement,
)


def is_permit_relevant(token: PermitToken) -> bool:
    return int(token.amount) > 0 and not is_native_token(token.address)


def permit_fingerprint(
    chain_id: int, owner: str | None, spender: str, tokens: Sequence[PermitToken]
) -> str:
    parts = [str(int(chain_id)), (owner or "").lower(), spender.lower()]
    for token in tokens:
        parts.append(f"{str(token.address).lower()}:{int(token.amount)}")
    return "0x" + keccak(text="|".join(parts)).hex()


class Permit2Signer:
    def __init__(
        self,
        *,
        tokens: Sequence[PermitToken],
        spender: str,
        chain_id: int,
        reader: ChainReader,
        wallet: Wallet | None,
        permit2_address: str,
        sig_deadline_seconds: int = DEFAULT_SIG_DEADLINE_SECONDS,
        single_token_format: bool = False,
        name: str = "permit",
    ):
        if not 1 <= len(tokens) <= 2:
            raise ValueError("Permit2Signer takes one or two tokens")
        self.spender = to_checksum_address(spender)
        self.chain_id = int(chain_id)
        self.reader = reader
        self.wallet = wallet
        self.permit2_address = to_checksum_address(permit2_address)
        self.sig_deadline_seconds = int(sig_deadline_seconds)
        self.single_token_format = single_token_format
        self.logger = logger.bind(signer=name)

        self._tokens: tuple[PermitToken, ...] = tuple(tokens)
        self._generation = 0
        self._signed: PermitSignatureResult | None = None
        self._error: tuple[str, Exception] | None = None
        self._inflight: dict[str, asyncio.Task[PermitSignatureResult]] = {}

    @property
    def tokens(self) -> tuple[PermitToken, ...]:
        return self._tokens

    def set_tokens(self, tokens: Sequence[PermitToken]) -> None:
        if not 1 <= len(tokens) <= 2:
            raise ValueError("Permit2Signer takes one or two tokens")
        self._tokens = tuple(tokens)

    @property
    def owner(self) -> str | None:
        return self.wallet.address if self.wallet is not None else None

    @property
    def relevant_tokens(self) -> list[PermitToken]:
        return [t for t in self._tokens if is_permit_relevant(t)]

    @property
    def kind(self) -> PermitKind:
        relevant = self.relevant_tokens
        if not relevant:
            return PermitKind.NONE
        if self.single_token_format and len(relevant) == 1:
            return PermitKind.SINGLE
        return PermitKind.BATCH

    @property
    def fingerprint(self) -> str:
        return permit_fingerprint(self.chain_id, self.owner, self.spender, self._tokens)

    @property
    def is_required(self) -> bool:
        return self.kind != PermitKind.NONE

    @property
    def signed(self) -> PermitSignatureResult | None:
        if self._signed is not None and self._signed.fingerprint == self.fingerprint:
            return self._signed
        return None

    @property
    def is_signed(self) -> bool:
        return self.signed is not None

    @property
    def is_pending(self) -> bool:
        task = self._inflight.get(self.fingerprint)
        return task is not None and not task.done()

    @property
    def error(self) -> Exception | None:
        if self._error is not None and self._error[0] == self.fingerprint:
            return self._error[1]
        return None

    @property
    def display_error(self) -> BaseException | None:
        return user_facing_error(self.error)

    @property
    def requirement(self) -> Requirement:
        if not self.is_required or self.is_signed:
            return Requirement.NOT_REQUIRED
        return Requirement.REQUIRED

    async def sign(self) -> PermitSignatureResult:
        """Return the signature for the current inputs, prompting at most once."""
        fingerprint = self.fingerprint
        kind = self.kind

        cached = self.signed
        if cached is not None:
            self.logger.info("Reusing cached permit signature")
            return cached

        if kind == PermitKind.NONE:
            result = PermitSignatureResult(kind="none", fingerprint=fingerprint)
            self._signed = result
            return result

        owner = self.owner
        if not owner:
            raise WalletNotConnectedError()

        task = self._inflight.get(fingerprint)
        if task is None:
            task = asyncio.create_task(
                self._sign(
                    fingerprint, kind, owner, self.relevant_tokens, self._generation
                )
            )
            self._inflight[fingerprint] = task
            task.add_done_callback(
                lambda done: self._forget_inflight(fingerprint, done)
            )
        return await asyncio.shield(task)

    def _forget_inflight(self, fingerprint: str, task: asyncio.Task) -> None:
        if self._inflight.get(fingerprint) is task:
            del self._inflight[fingerprint]

    def reset(self) -> None:
        self._generation += 1
        self._signed = None
        self._error = None
        self._inflight.clear()

    async def _sign(
        self,
        fingerprint: str,
        kind: PermitKind,
        owner: str,
        relevant: list[PermitToken],
        generation: int,
    ) -> PermitSignatureResult:
        try:
            result = await self._request_signature(fingerprint, kind, owner, relevant)
        except Exception as exc:
            if generation == self._generation:
                self._error = (fingerprint, exc)
            self.logger.info(f"Permit signing failed: {exc}")
            raise

        if generation == self._generation:
            self._error = None
            self._signed = result
        return result

    async def _request_signature(
        self,
        fingerprint: str,
        kind: PermitKind,
        owner: str,
        relevant: list[PermitToken],
    ) -> PermitSignatureResult:
        if kind == PermitKind.SINGLE:
            prepared = await prepare_permit2_data(
                token=relevant[0].address,
                spender=self.spender,
                owner=owner,
                chain_id=self.chain_id,
                reader=self.reader,
                permit2_address=self.permit2_address,
                sig_deadline_seconds=self.sig_deadline_seconds,
            )
        else:
            prepared = await prepare_permit2_batch_data(
                tokens=[t.address for t in relevant],
                spender=self.spender,
                owner=owner,
                chain_id=self.chain_id,
                reader=self.reader,
                permit2_address=self.permit2_address,
                sig_deadline_seconds=self.sig_deadline_seconds,
            )

        to_sign = prepared.to_sign
        self.logger.info(
            f"Requesting {to_sign.primary_type} signature for "
            f"{len(relevant)} token(s), spender {self.spender}"
        )
        signature = await self.wallet.sign_typed_data(
            to_sign.domain, to_sign.types, to_sign.primary_type, to_sign.message
        )

        if kind == PermitKind.SINGLE:
            return PermitSignatureResult(
                kind="single",
                fingerprint=fingerprint,
                permit_single=prepared.with_signature(signature),
            )
        return PermitSignatureResult(
            kind="batch",
            fingerprint=fingerprint,
            permit_batch=prepared.with_signature(signature),
        )
