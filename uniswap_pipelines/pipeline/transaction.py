"""Lifecycle tracking for a single on-chain transaction.

A ``TransactionTracker`` owns one send -> broadcast -> confirm cycle at a time.
``send`` returns as soon as the wallet hands back a hash; a background watcher
then waits for the receipt and settles the tracker's confirmation future.

``reset`` bumps a generation counter. Any wallet call or receipt wait started
under an older generation is abandoned: when it eventually returns it sees the
mismatch and leaves the tracker alone. Callers still waiting for confirmation
when the reset happens get ``TransactionAbandonedError``.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from uniswap_pipelines.core.errors import (
    NoTransactionInFlightError,
    TransactionAbandonedError,
    WalletNotConnectedError,
    user_facing_error,
)
from uniswap_pipelines.core.interfaces import Wallet
from uniswap_pipelines.pipeline.types import TransactionState, TransactionStatus

Receipt = dict[str, Any]
OnSuccess = Callable[[Receipt], Awaitable[None] | None]


def _consume_exception(fut: asyncio.Future) -> None:
    if not fut.cancelled():
        fut.exception()


class TransactionTracker:
    def __init__(
        self,
        wallet: Wallet | None,
        *,
        confirmations: int = 1,
        on_success: OnSuccess | None = None,
        name: str = "transaction",
    ):
        if confirmations < 1:
            raise ValueError("confirmations must be >= 1")
        self.wallet = wallet
        self.confirmations = int(confirmations)
        self.on_success = on_success
        self.name = name
        self.logger = logger.bind(tracker=name)

        self._generation = 0
        self._sending = False
        self._tx_hash: str | None = None
        self._receipt: Receipt | None = None
        self._error: BaseException | None = None
        self._confirmation: asyncio.Future[Receipt] | None = None
        self._watchers: set[asyncio.Task] = set()

    @property
    def status(self) -> TransactionStatus:
        if self._error is not None:
            return TransactionStatus.ERROR
        if self._receipt is not None:
            return TransactionStatus.CONFIRMED
        if self._tx_hash is not None:
            return TransactionStatus.CONFIRMING
        if self._sending:
            return TransactionStatus.PENDING
        return TransactionStatus.IDLE

    @property
    def state(self) -> TransactionState:
        return TransactionState(
            status=self.status,
            tx_hash=self._tx_hash,
            receipt=self._receipt,
            error=self._error,
        )

    @property
    def tx_hash(self) -> str | None:
        return self._tx_hash

    @property
    def receipt(self) -> Receipt | None:
        return self._receipt

    @property
    def error(self) -> BaseException | None:
        return self._error

    @property
    def display_error(self) -> BaseException | None:
        return user_facing_error(self._error)

    @property
    def is_confirmed(self) -> bool:
        return self.status == TransactionStatus.CONFIRMED

    async def send(self, to: str, data: str, value: int = 0) -> str:
        """Broadcast a transaction and return its hash without waiting for it."""
        if self.wallet is None or not self.wallet.address:
            raise WalletNotConnectedError()

        self._clear()
        generation = self._generation
        self._sending = True
        try:
            tx_hash = await self.wallet.send_transaction(to, data, int(value))
        except Exception as exc:
            if generation == self._generation:
                self._sending = False
                self._error = exc
                self.logger.info(f"{self.name} failed before broadcast: {exc}")
            raise

        if generation != self._generation:
            self.logger.debug(f"{self.name} {tx_hash} broadcast after reset; ignored")
            return tx_hash

        self._sending = False
        self._tx_hash = tx_hash
        fut: asyncio.Future[Receipt] = asyncio.get_running_loop().create_future()
        fut.add_done_callback(_consume_exception)
        self._confirmation = fut
        watcher = asyncio.create_task(self._watch(generation, tx_hash, fut))
        self._watchers.add(watcher)
        watcher.add_done_callback(self._watchers.discard)
        self.logger.info(f"{self.name} broadcast: {tx_hash}")
        return tx_hash

    async def wait_for_confirmation(self) -> Receipt:
        """Wait for the tracked transaction's receipt.

        Returns immediately once the receipt has been observed. Raises the
        transaction's error if it failed, and ``NoTransactionInFlightError`` if
        nothing has been broadcast.
        """
        fut = self._confirmation
        if fut is None:
            raise NoTransactionInFlightError()
        return await asyncio.shield(fut)

    def reset(self) -> None:
        self._clear()
        self.logger.debug(f"{self.name} reset")

    def _clear(self) -> None:
        self._generation += 1
        if self._confirmation is not None and not self._confirmation.done():
            self._confirmation.set_exception(TransactionAbandonedError(self._tx_hash))
        self._confirmation = None
        self._sending = False
        self._tx_hash = None
        self._receipt = None
        self._error = None

    async def _watch(
        self, generation: int, tx_hash: str, fut: asyncio.Future[Receipt]
    ) -> None:
        try:
            receipt = await self.wallet.wait_for_receipt(tx_hash, self.confirmations)
        except Exception as exc:  # noqa: BLE001
            if generation != self._generation:
                return
            self._error = exc
            self.logger.error(f"{self.name} {tx_hash} failed: {exc}")
            if not fut.done():
                fut.set_exception(exc)
            return

        if generation != self._generation:
            return
        self._receipt = receipt
        self.logger.info(f"{self.name} confirmed: {tx_hash}")

        if self.on_success is not None:
            try:
                result = self.on_success(receipt)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # noqa: BLE001
                self.logger.error(f"{self.name} success callback failed: {exc}")
                if not fut.done():
                    fut.set_exception(exc)
                return

        if not fut.done():
            fut.set_result(receipt)
