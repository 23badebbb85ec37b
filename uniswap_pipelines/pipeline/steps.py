from __future__ import annotations

from collections.abc import Sequence

from uniswap_pipelines.core.errors import AwaitingApprovalStatusError
from uniswap_pipelines.pipeline.approval import TokenApproval
from uniswap_pipelines.pipeline.types import (
    PipelineStep,
    Requirement,
    TransactionStatus,
)

APPROVAL_STEPS = (PipelineStep.APPROVAL0, PipelineStep.APPROVAL1)


def derive_step(
    approvals: Sequence[Requirement],
    permit: Requirement,
    execute_status: TransactionStatus,
    *,
    quote_ready: bool = True,
) -> PipelineStep:
    """Return the first unmet step; the order is fixed and first match wins."""
    if len(approvals) > len(APPROVAL_STEPS):
        raise ValueError(f"At most {len(APPROVAL_STEPS)} approval slots supported")
    if not quote_ready:
        return PipelineStep.QUOTE
    for slot, requirement in enumerate(approvals):
        if requirement != Requirement.NOT_REQUIRED:
            return APPROVAL_STEPS[slot]
    if permit != Requirement.NOT_REQUIRED:
        return PipelineStep.PERMIT
    if execute_status != TransactionStatus.CONFIRMED:
        return PipelineStep.EXECUTE
    return PipelineStep.COMPLETED


def approvals_to_run(approvals: Sequence[TokenApproval]) -> list[TokenApproval]:
    """Approvals that still need a transaction, in slot order.

    Raises ``AwaitingApprovalStatusError`` if any slot's requirement is still
    unknown; callers must load allowances before running the pipeline.
    """
    for slot, approval in enumerate(approvals):
        if approval.requirement == Requirement.UNKNOWN:
            raise AwaitingApprovalStatusError(slot, approval.token)
    return [
        approval
        for approval in approvals
        if approval.requirement == Requirement.REQUIRED
        and approval.transaction.status != TransactionStatus.CONFIRMED
    ]
