"""
Recall Coordinator

Operator-initiated rollback. A recall flags the loan as recalled and records
where it came from and where it should go back to; it does not move the
stage. The loan stays put until an operator resubmits it, which restores the
status of the recall target. From there the ordinary forward rules apply.

The recall status is written with one direct update rather than through the
resilient writer.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from .audit import AuditRecorder
from .errors import RecordStoreError
from .resolver import WorkflowStateResolver
from .schema import (
    ENTRY_STATUS,
    ErrorKind,
    OperationResult,
    RecallRecord,
    parse_stage,
    previous_stage,
    stage_index,
)
from .store import RecordStore
from .writer import ResilientStatusWriter

logger = logging.getLogger(__name__)


class RecallCoordinator:
    """Orchestrates rollback and resubmission of loan applications."""

    def __init__(
        self,
        store: RecordStore,
        resolver: WorkflowStateResolver,
        writer: ResilientStatusWriter,
        audit: AuditRecorder,
    ):
        self.store = store
        self.resolver = resolver
        self.writer = writer
        self.audit = audit

    def recall_loan(
        self,
        loan_id: str,
        user_id: str,
        reason: str,
        target_stage: Optional[str] = None,
    ) -> OperationResult:
        """
        Recall a loan application from its current stage.

        Args:
            loan_id: The loan application
            user_id: Operator performing the recall
            reason: Why the loan is recalled (required)
            target_stage: Stage to return to (default: the previous stage)
        """
        try:
            state = self.resolver.resolve(loan_id)
        except RecordStoreError as e:
            logger.error(f"Error recalling loan {loan_id}: {e}")
            return OperationResult(
                success=False,
                message="Error recalling loan",
                error_kind=ErrorKind.STORE_UNAVAILABLE,
            )

        if state is None:
            return OperationResult(
                success=False,
                message="Loan application not found",
                error_kind=ErrorKind.NOT_FOUND,
            )

        if not state.can_be_recalled:
            return OperationResult(
                success=False,
                message=f"Loan cannot be recalled from current stage ({state.current_stage.value})",
                error_kind=ErrorKind.INVALID_TRANSITION,
            )

        if not reason or not reason.strip():
            return OperationResult(
                success=False,
                message="A reason is required to recall a loan",
                error_kind=ErrorKind.INVALID_TRANSITION,
            )

        if target_stage is None:
            recalled_to = previous_stage(state.current_stage)
        else:
            recalled_to = parse_stage(target_stage)
            if recalled_to is None or stage_index(recalled_to) >= stage_index(state.current_stage):
                return OperationResult(
                    success=False,
                    message=f"Cannot recall from {state.current_stage.value} to {target_stage}",
                    error_kind=ErrorKind.INVALID_TRANSITION,
                )

        record = RecallRecord(
            loan_application_id=loan_id,
            recalled_from_stage=state.current_stage,
            recalled_to_stage=recalled_to,
            recalled_by=user_id,
            reason=reason,
        )
        try:
            self.store.insert_recall_record(record)
        except RecordStoreError as e:
            logger.error(f"Error creating recall record for {loan_id}: {e}")
            return OperationResult(
                success=False,
                message="Failed to create recall record",
                error_kind=ErrorKind.STORE_UNAVAILABLE,
            )

        try:
            self.store.update_loan(loan_id, {
                "status": "recalled",
                "updated_at": datetime.now(timezone.utc),
            })
        except RecordStoreError as e:
            logger.error(f"Error updating loan status for {loan_id}: {e}")
            return OperationResult(
                success=False,
                message="Failed to update loan status",
                error_kind=ErrorKind.PERSISTENCE_EXHAUSTED,
            )

        self.audit.record_step(loan_id, "recalled", "completed", user_id, reason)

        logger.info(
            f"Loan {loan_id} recalled from {state.current_stage.value} "
            f"to {recalled_to.value} by {user_id}"
        )
        return OperationResult(
            success=True,
            message="Loan successfully recalled",
            details={
                "recalled_from_stage": state.current_stage.value,
                "recalled_to_stage": recalled_to.value,
            },
        )

    def resubmit_recalled_loan(
        self,
        loan_id: str,
        user_id: str,
        notes: Optional[str] = None,
    ) -> OperationResult:
        """
        Resubmit a recalled loan into the stage it was recalled to.

        The status of that stage is restored through the resilient writer.
        """
        try:
            state = self.resolver.resolve(loan_id)
            recall = self.store.latest_recall_record(loan_id) if state else None
        except RecordStoreError as e:
            logger.error(f"Error resubmitting loan {loan_id}: {e}")
            return OperationResult(
                success=False,
                message="Error resubmitting loan",
                error_kind=ErrorKind.STORE_UNAVAILABLE,
            )

        if state is None:
            return OperationResult(
                success=False,
                message="Loan application not found",
                error_kind=ErrorKind.NOT_FOUND,
            )

        if state.persisted_status != "recalled":
            return OperationResult(
                success=False,
                message="Loan has not been recalled",
                error_kind=ErrorKind.INVALID_TRANSITION,
            )

        if recall is None:
            return OperationResult(
                success=False,
                message="No recall record found for loan",
                error_kind=ErrorKind.NOT_FOUND,
            )

        stage = recall.recalled_to_stage
        new_status = ENTRY_STATUS[stage]
        write = self.writer.update_loan_status(loan_id, new_status, user_id)
        if not write.success:
            return OperationResult(
                success=False,
                message=write.message,
                error_kind=ErrorKind.PERSISTENCE_EXHAUSTED,
                details={"attempted": write.attempted},
            )

        self.audit.record_step(loan_id, f"resubmitted_to_{stage.value}", "completed", user_id, notes)

        message = f"Loan resubmitted to {stage.value} stage"
        details = {"status": new_status, "strategy": write.strategy}
        if write.new_application_id:
            message = f"{message}. {write.message}"
            details["new_loan_id"] = write.new_loan_id
            details["new_application_id"] = write.new_application_id

        logger.info(f"Loan {loan_id} resubmitted to {stage.value} by {user_id}")
        return OperationResult(success=True, message=message, details=details)
