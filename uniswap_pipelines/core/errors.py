from __future__ import annotations

from typing import Any

_USER_REJECTION_CODES = {4001, "ACTION_REJECTED"}
_USER_REJECTION_MARKERS = (
    "user rejected",
    "user denied",
    "rejected by user",
    "request rejected",
)


class PipelineError(RuntimeError):
    """Base class for every error raised by a step pipeline or its primitives."""


class WalletRejectedError(PipelineError):
    def __init__(self, message: str = "User rejected the wallet request"):
        super().__init__(message)


class WalletNotConnectedError(PipelineError):
    def __init__(self, message: str | None = None):
        super().__init__(
            message
            or "No wallet connected. Connect a wallet before executing transactions."
        )


class NoOwnerError(PipelineError):
    def __init__(self, message: str = "No owner account available for approval"):
        super().__init__(message)


class NativeTokenNotApprovableError(PipelineError):
    def __init__(self, token: str):
        self.token = token
        super().__init__(f"Cannot approve native token {token}")


class InsufficientBalanceError(PipelineError):
    def __init__(self, token: str, required: int, available: int):
        self.token = token
        self.required = int(required)
        self.available = int(available)
        super().__init__(
            f"Insufficient balance for {token}: required {self.required}, "
            f"available {self.available}"
        )


class PermitRequiredError(PipelineError):
    def __init__(self, message: str = "Permit2 signature required"):
        super().__init__(message)


class AwaitingApprovalStatusError(PipelineError):
    def __init__(self, slot: int, token: str):
        self.slot = int(slot)
        self.token = token
        super().__init__(f"Awaiting approval status for token{slot} ({token})")


class PipelineBusyError(PipelineError):
    def __init__(self, message: str = "Pipeline is already executing"):
        super().__init__(message)


class NoTransactionInFlightError(PipelineError):
    def __init__(self, message: str = "No transaction to wait for"):
        super().__init__(message)


class TransactionAbandonedError(PipelineError):
    """The tracker was reset while a caller was waiting for confirmation."""

    def __init__(self, txn_hash: str | None = None):
        self.txn_hash = txn_hash
        super().__init__(f"Stopped tracking transaction {txn_hash} after reset")


class DependencyNotReadyError(PipelineError):
    """Data the execute step depends on has not been loaded yet."""


class PoolNotLoadedError(DependencyNotReadyError):
    def __init__(self, message: str | None = None):
        super().__init__(
            message
            or "Pool not loaded. Wait for the pool to load before creating a position."
        )


class TickRangeUnresolvedError(DependencyNotReadyError):
    def __init__(self, message: str | None = None):
        super().__init__(
            message or "Tick range not resolved. Wait for the pool to load."
        )


class PositionNotLoadedError(DependencyNotReadyError):
    def __init__(self, token_id: int | str | None = None):
        self.token_id = token_id
        suffix = f" {token_id}" if token_id is not None else ""
        super().__init__(
            f"Position{suffix} not loaded. Wait for the position to load first."
        )


class QuoteNotLoadedError(DependencyNotReadyError):
    def __init__(self, message: str = "Quote not available"):
        super().__init__(message)


class SimulationFailureError(PipelineError):
    """A read-only simulation reverted, e.g. a quote with insufficient liquidity."""

    def __init__(self, message: str, *, reason: str | None = None):
        self.reason = reason
        super().__init__(message)


class TransientRPCError(PipelineError):
    """A retryable RPC failure (timeouts, rate limits, 5xx)."""


class InvalidSlippageError(PipelineError, ValueError):
    def __init__(self, slippage_bps: Any):
        self.slippage_bps = slippage_bps
        super().__init__(
            f"Invalid slippage {slippage_bps!r}: expected basis points in [0, 10000]"
        )


class TransactionRevertedError(PipelineError):
    def __init__(
        self,
        txn_hash: str,
        receipt: dict[str, Any] | None = None,
        message: str | None = None,
    ):
        self.txn_hash = txn_hash
        self.receipt = receipt or {}
        super().__init__(message or f"Transaction reverted: {txn_hash}")


def is_user_rejection(exc: BaseException) -> bool:
    if isinstance(exc, WalletRejectedError):
        return True
    code = getattr(exc, "code", None)
    if code in _USER_REJECTION_CODES:
        return True
    text = str(exc).lower()
    return any(marker in text for marker in _USER_REJECTION_MARKERS)


def user_facing_error(exc: BaseException | None) -> BaseException | None:
    """Return the error a caller should display, or None for wallet rejections."""
    if exc is None or is_user_rejection(exc):
        return None
    return exc
