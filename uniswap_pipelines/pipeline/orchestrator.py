"""Step pipeline: approvals -> Permit2 signature -> execute.

``StepPipeline`` composes one or two ``TokenApproval`` slots (each approving
the Permit2 contract), a ``Permit2Signer`` authorizing the operation's spender,
and a ``TransactionTracker`` for the final call. ``current_step`` is derived on
every access from those components.

Manual control (``approve`` per slot, ``sign``, ``execute``) and
``execute_all`` run the same sequence; ``execute_all`` only automates it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Generic, TypeVar

from eth_utils import to_checksum_address
from loguru import logger

from uniswap_pipelines.core.config import PipelineSettings, get_pipeline_settings
from uniswap_pipelines.core.errors import (
    InsufficientBalanceError,
    PermitRequiredError,
    PipelineBusyError,
    user_facing_error,
)
from uniswap_pipelines.core.interfaces import Calldata, ChainReader, Wallet
from uniswap_pipelines.core.utils.permit2 import BatchPermit, SinglePermit
from uniswap_pipelines.core.utils.retry import retry_rpc
from uniswap_pipelines.pipeline.approval import TokenApproval
from uniswap_pipelines.pipeline.permit import Permit2Signer
from uniswap_pipelines.pipeline.steps import approvals_to_run, derive_step
from uniswap_pipelines.pipeline.transaction import TransactionTracker
from uniswap_pipelines.pipeline.types import (
    PermitSignatureResult,
    PermitToken,
    PipelineStep,
)

PermitPayload = BatchPermit | SinglePermit | None

TArgs = TypeVar("TArgs")


class StepPipeline(Generic[TArgs]):
    def __init__(
        self,
        *,
        tokens: Sequence[PermitToken],
        spender: str,
        target: str,
        chain_id: int,
        reader: ChainReader,
        wallet: Wallet | None,
        permit2_address: str,
        build_calldata: Callable[[PermitPayload, TArgs], Awaitable[Calldata]],
        settings: PipelineSettings | None = None,
        single_token_format: bool = False,
        check_balances: bool = True,
        on_execute_success: Callable[[dict], Awaitable[None] | None] | None = None,
        name: str = "pipeline",
    ):
        if not 1 <= len(tokens) <= 2:
            raise ValueError("A step pipeline takes one or two tokens")
        self.settings = settings or get_pipeline_settings()
        self.chain_id = int(chain_id)
        self.reader = reader
        self.target = to_checksum_address(target)
        self.build_calldata = build_calldata
        self.check_balances = check_balances
        self.name = name
        self.logger = logger.bind(pipeline=name)

        self._wallet = wallet
        self._tokens = tuple(tokens)
        self._busy = False

        self.approvals = [
            TokenApproval(
                token=token.address,
                spender=permit2_address,
                required_amount=token.amount,
                reader=reader,
                wallet=wallet,
                confirmations=self.settings.confirmations,
                max_rpc_attempts=self.settings.max_rpc_attempts,
                name=f"{name}-approval{slot}",
            )
            for slot, token in enumerate(self._tokens)
        ]
        self.permit = Permit2Signer(
            tokens=self._tokens,
            spender=spender,
            chain_id=self.chain_id,
            reader=reader,
            wallet=wallet,
            permit2_address=permit2_address,
            sig_deadline_seconds=self.settings.permit_sig_deadline_seconds,
            single_token_format=single_token_format,
            name=f"{name}-permit",
        )
        self.execute_transaction = TransactionTracker(
            wallet,
            confirmations=self.settings.confirmations,
            on_success=on_execute_success,
            name=f"{name}-execute",
        )

    @property
    def wallet(self) -> Wallet | None:
        return self._wallet

    @wallet.setter
    def wallet(self, wallet: Wallet | None) -> None:
        self._wallet = wallet
        for approval in self.approvals:
            approval.wallet = wallet
            approval.transaction.wallet = wallet
        self.permit.wallet = wallet
        self.execute_transaction.wallet = wallet

    @property
    def owner(self) -> str | None:
        return self._wallet.address if self._wallet is not None else None

    @property
    def tokens(self) -> tuple[PermitToken, ...]:
        return self._tokens

    def set_tokens(self, tokens: Sequence[PermitToken]) -> None:
        if len(tokens) != len(self._tokens):
            raise ValueError(f"Expected {len(self._tokens)} token(s)")
        self._tokens = tuple(tokens)
        for approval, token in zip(self.approvals, self._tokens, strict=True):
            approval.set_token(token.address)
            approval.set_amount(token.amount)
        self.permit.set_tokens(self._tokens)

    @property
    def current_step(self) -> PipelineStep:
        step = derive_step(
            [approval.requirement for approval in self.approvals],
            self.permit.requirement,
            self.execute_transaction.status,
            quote_ready=self._quote_ready(),
        )
        self.logger.debug(f"Current step: {step}")
        return step

    def _quote_ready(self) -> bool:
        return True

    @property
    def is_executing(self) -> bool:
        return self._busy

    @property
    def error(self) -> BaseException | None:
        """First error across the pipeline's steps, in step order."""
        for approval in self.approvals:
            if approval.transaction.error is not None:
                return approval.transaction.error
        if self.permit.error is not None:
            return self.permit.error
        return self.execute_transaction.error

    @property
    def display_error(self) -> BaseException | None:
        return user_facing_error(self.error)

    async def refresh_approvals(self) -> None:
        await asyncio.gather(*[approval.refresh() for approval in self.approvals])

    async def approve(self, slot: int, amount: int | None = None) -> str:
        return await self.approvals[slot].approve(amount)

    async def sign(self) -> PermitSignatureResult:
        return await self.permit.sign()

    async def execute(self, args: TArgs) -> str:
        """Build calldata with the cached signature and broadcast the call."""
        signed = self.permit.signed
        if self.permit.is_required and signed is None:
            raise PermitRequiredError()

        if self.check_balances:
            await self._check_balances()

        calldata = await self.build_calldata(
            signed.payload if signed is not None else None, args
        )
        self.logger.info(f"Executing {self.name} against {self.target}")
        return await self.execute_transaction.send(
            self.target, calldata.calldata, calldata.value
        )

    async def execute_all(self, args: TArgs) -> str:
        """Run every remaining step and return the execute hash once broadcast."""
        if self._busy:
            raise PipelineBusyError()
        self._busy = True
        try:
            for approval in approvals_to_run(self.approvals):
                await approval.approve()
                await approval.wait_for_confirmation()
            await self.permit.sign()
            return await self.execute(args)
        finally:
            self._busy = False

    async def wait_for_confirmation(self) -> dict:
        return await self.execute_transaction.wait_for_confirmation()

    def reset(self) -> None:
        for approval in self.approvals:
            approval.reset()
        self.permit.reset()
        self.execute_transaction.reset()
        self.logger.debug("Pipeline reset")

    async def _check_balances(self) -> None:
        owner = self.owner
        if not owner:
            return
        for token in self._tokens:
            if token.amount <= 0:
                continue
            balance = await retry_rpc(
                lambda token=token: self.reader.read_balance(owner, token.address),
                max_attempts=self.settings.max_rpc_attempts,
            )
            if balance < token.amount:
                raise InsufficientBalanceError(token.address, token.amount, balance)
