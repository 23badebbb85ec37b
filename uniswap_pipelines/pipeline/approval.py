from __future__ import annotations

from eth_utils import to_checksum_address
from loguru import logger

from uniswap_pipelines.core.constants import MAX_UINT256
from uniswap_pipelines.core.errors import NativeTokenNotApprovableError, NoOwnerError
from uniswap_pipelines.core.interfaces import ChainReader, Wallet
from uniswap_pipelines.core.utils.retry import retry_rpc
from uniswap_pipelines.core.utils.tokens import (
    encode_approve_calldata,
    is_native_token,
)
from uniswap_pipelines.pipeline.transaction import TransactionTracker
from uniswap_pipelines.pipeline.types import ApprovalState, Requirement


class TokenApproval:
    """ERC-20 allowance check for one (token, spender, amount) triple.

    The requirement is derived on every access from the last allowance read;
    nothing derived is stored. Native tokens never need approval and are never
    read.
    """

    def __init__(
        self,
        *,
        token: str,
        spender: str,
        required_amount: int,
        reader: ChainReader,
        wallet: Wallet | None,
        confirmations: int = 1,
        max_rpc_attempts: int = 3,
        name: str = "approval",
    ):
        self.spender = to_checksum_address(spender)
        self.reader = reader
        self.wallet = wallet
        self.max_rpc_attempts = int(max_rpc_attempts)
        self.name = name
        self.logger = logger.bind(approval=name)

        self._token = token
        self._required_amount = int(required_amount)
        self._allowance: int | None = None
        self._allowance_key: tuple[str | None, str] | None = None
        self.read_error: Exception | None = None
        self.transaction = TransactionTracker(
            wallet,
            confirmations=confirmations,
            on_success=self._on_approved,
            name=f"{name}-tx",
        )

    @property
    def token(self) -> str:
        return self._token

    @property
    def owner(self) -> str | None:
        return self.wallet.address if self.wallet is not None else None

    @property
    def required_amount(self) -> int:
        return self._required_amount

    @property
    def is_native(self) -> bool:
        return is_native_token(self._token)

    @property
    def current_allowance(self) -> int | None:
        if self._allowance_key != self._key():
            return None
        return self._allowance

    @property
    def requirement(self) -> Requirement:
        if self.is_native or self._required_amount <= 0:
            return Requirement.NOT_REQUIRED
        if not self.owner:
            return Requirement.UNKNOWN
        allowance = self.current_allowance
        if allowance is None:
            return Requirement.UNKNOWN
        if allowance < self._required_amount:
            return Requirement.REQUIRED
        return Requirement.NOT_REQUIRED

    @property
    def state(self) -> ApprovalState:
        return ApprovalState(
            token=self._token,
            spender=self.spender,
            required_amount=self._required_amount,
            current_allowance=self.current_allowance,
            requirement=self.requirement,
            transaction=self.transaction.state,
        )

    def set_amount(self, required_amount: int) -> None:
        self._required_amount = int(required_amount)

    def set_token(self, token: str) -> None:
        if str(token).lower() != str(self._token).lower():
            self._token = token
            self._allowance = None
            self._allowance_key = None

    async def refresh(self) -> int | None:
        """Read the current allowance. Returns None when no read is needed."""
        if self.is_native or not self.owner:
            return None

        key = self._key()
        owner, token = self.owner, self._token
        try:
            allowance = await retry_rpc(
                lambda: self.reader.read_allowance(owner, token, self.spender),
                max_attempts=self.max_rpc_attempts,
                on_retry=lambda attempt, exc, delay: self.logger.warning(
                    f"Allowance read failed (attempt {attempt + 1}), retrying in "
                    f"{delay:.2f}s: {exc}"
                ),
            )
        except Exception as exc:
            self.read_error = exc
            raise

        if key != self._key():
            # token or owner changed while the read was in flight
            return None
        self.read_error = None
        self._allowance = int(allowance)
        self._allowance_key = key
        self.logger.debug(
            f"Allowance {self._token} -> {self.spender}: {allowance} "
            f"(required {self._required_amount})"
        )
        return self._allowance

    async def approve(self, amount: int | None = None) -> str:
        """Send an approval transaction; defaults to an unlimited allowance."""
        if self.is_native:
            raise NativeTokenNotApprovableError(self._token)
        if not self.owner:
            raise NoOwnerError()

        approval_amount = MAX_UINT256 if amount is None else int(amount)
        self.logger.info(
            f"Approving {self.spender} to spend {approval_amount} of {self._token}"
        )
        return await self.transaction.send(
            to_checksum_address(self._token),
            encode_approve_calldata(self.spender, approval_amount),
            0,
        )

    async def wait_for_confirmation(self) -> dict:
        return await self.transaction.wait_for_confirmation()

    def reset(self) -> None:
        self.transaction.reset()

    def _key(self) -> tuple[str | None, str]:
        owner = self.owner
        return (owner.lower() if owner else None, str(self._token).lower())

    async def _on_approved(self, receipt: dict) -> None:
        await self.refresh()
