from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from uniswap_pipelines.core.utils.permit2 import BatchPermit, SinglePermit


class TransactionStatus(StrEnum):
    IDLE = "idle"
    PENDING = "pending"
    CONFIRMING = "confirming"
    CONFIRMED = "confirmed"
    ERROR = "error"


class Requirement(StrEnum):
    """Whether a step still has to run. ``UNKNOWN`` must never be read as no."""

    UNKNOWN = "unknown"
    NOT_REQUIRED = "not_required"
    REQUIRED = "required"


class PipelineStep(StrEnum):
    QUOTE = "quote"
    APPROVAL0 = "approval0"
    APPROVAL1 = "approval1"
    PERMIT = "permit"
    EXECUTE = "execute"
    COMPLETED = "completed"


class PermitKind(StrEnum):
    NONE = "none"
    SINGLE = "single"
    BATCH = "batch"


@dataclass(frozen=True)
class TransactionState:
    status: TransactionStatus = TransactionStatus.IDLE
    tx_hash: str | None = None
    receipt: dict[str, Any] | None = None
    error: BaseException | None = None


@dataclass(frozen=True)
class PermitToken:
    address: str
    amount: int


@dataclass(frozen=True)
class ApprovalState:
    token: str
    spender: str
    required_amount: int
    current_allowance: int | None
    requirement: Requirement
    transaction: TransactionState = field(default_factory=TransactionState)


class PermitSignatureResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["none", "single", "batch"]
    fingerprint: str
    permit_batch: BatchPermit | None = None
    permit_single: SinglePermit | None = None

    @property
    def payload(self) -> BatchPermit | SinglePermit | None:
        if self.kind == PermitKind.BATCH:
            return self.permit_batch
        if self.kind == PermitKind.SINGLE:
            return self.permit_single
        return None
