"""
Workflow State Resolver

Derives the canonical workflow state of a loan application from its
persisted (status, contract_status) pair.
"""

import logging
from typing import Optional

from .schema import (
    LOCKED_STATUSES,
    RECALLABLE_STAGES,
    LoanApplicationRecord,
    ProgressStatus,
    WorkflowStage,
    WorkflowState,
    next_stage,
)
from .store import RecordStore

logger = logging.getLogger(__name__)


# status -> stage; "approved" additionally depends on contract_status
STATUS_STAGE: dict[str, WorkflowStage] = {
    "submitted": WorkflowStage.SUBMITTED,
    "under_review": WorkflowStage.ASSESSMENT,
    "pending_committee_review": WorkflowStage.ASSESSMENT,
    "contract_generated": WorkflowStage.CONTRACT_UPLOAD,
    "contract_uploaded": WorkflowStage.VERIFICATION,
    "verified": WorkflowStage.DISBURSEMENT,
    "disbursed": WorkflowStage.COMPLETED,
    # rejected loans hold no stage position
    "rejected": WorkflowStage.SUBMITTED,
}


def determine_stage(status: str, contract_status: Optional[str] = None) -> Optional[WorkflowStage]:
    """Map a persisted status to a stage. Returns None for unmapped statuses."""
    if status == "approved":
        if contract_status == "generated":
            return WorkflowStage.CONTRACT_GENERATION
        return WorkflowStage.ASSESSMENT
    return STATUS_STAGE.get(status)


def is_locked(status: str) -> bool:
    return status in LOCKED_STATUSES


def can_be_recalled(stage: WorkflowStage, status: str) -> bool:
    # recalled and rejected loans wait for resubmission
    if is_locked(status) or status in ("recalled", "rejected"):
        return False
    return stage in RECALLABLE_STAGES


def progress_status(status: str) -> ProgressStatus:
    if status == "recalled":
        return ProgressStatus.RECALLED
    if status == "rejected":
        return ProgressStatus.REJECTED
    if is_locked(status):
        return ProgressStatus.COMPLETED
    if status == "submitted":
        return ProgressStatus.PENDING
    return ProgressStatus.IN_PROGRESS


class WorkflowStateResolver:
    """
    Resolves WorkflowState for a loan application. Read-only.

    A recalled loan keeps the stage it was recalled from; that stage comes
    from the latest recall record since the persisted status no longer
    carries it.
    """

    def __init__(self, store: RecordStore):
        self.store = store

    def resolve(self, loan_id: str) -> Optional[WorkflowState]:
        """Get the workflow state of a loan, or None if it does not exist."""
        loan = self.store.fetch_loan(loan_id)
        if loan is None:
            return None
        return self.resolve_record(loan)

    def resolve_record(self, loan: LoanApplicationRecord) -> WorkflowState:
        """Derive the workflow state of an already fetched record."""
        recall = None
        stage = determine_stage(loan.status, loan.contract_status)

        if loan.status == "recalled":
            recall = self.store.latest_recall_record(loan.id)
            if recall is not None:
                stage = recall.recalled_from_stage

        if stage is None:
            logger.warning(
                f"Unrecognized status '{loan.status}' for loan {loan.id}, "
                f"treating as '{WorkflowStage.SUBMITTED.value}'"
            )
            stage = WorkflowStage.SUBMITTED

        return WorkflowState(
            loan_application_id=loan.id,
            current_stage=stage,
            status=progress_status(loan.status),
            can_be_recalled=can_be_recalled(stage, loan.status),
            next_stage=next_stage(stage),
            is_locked=is_locked(loan.status),
            persisted_status=loan.status,
            submitted_at=loan.submitted_at or loan.created_at,
            recalled_by=recall.recalled_by if recall else None,
            recalled_at=recall.recalled_at if recall else None,
            recall_reason=recall.reason if recall else None,
        )
