"""
Submission Coordinator

Moves a loan application forward: guard, submission intent, status write,
audit step. The steps are not atomic. A crash after the status write can
leave the audit entry missing; the audit trail is advisory and no decision
reads it.

There is no lock between the guard's read and the status write, so two
concurrent submissions of the same loan to the same stage can both pass the
guard and both succeed.
"""

import logging
from typing import Optional

from .advisory import AdvisoryFailureLog, AdvisoryPolicy
from .audit import AuditRecorder
from .errors import RecordStoreError
from .guard import TransitionGuard
from .schema import (
    TARGET_STATUS,
    ErrorKind,
    IntentStatus,
    OperationResult,
    SubmissionIntent,
    WorkflowStage,
    WorkflowState,
    parse_stage,
)
from .store import RecordStore
from .writer import ResilientStatusWriter

logger = logging.getLogger(__name__)


class SubmissionCoordinator:
    """Orchestrates forward progress of a loan application."""

    def __init__(
        self,
        store: RecordStore,
        guard: TransitionGuard,
        writer: ResilientStatusWriter,
        audit: AuditRecorder,
        policy: Optional[AdvisoryPolicy] = None,
        failure_log: Optional[AdvisoryFailureLog] = None,
    ):
        self.store = store
        self.guard = guard
        self.writer = writer
        self.audit = audit
        self.policy = policy if policy is not None else AdvisoryPolicy()
        self.failure_log = failure_log if failure_log is not None else AdvisoryFailureLog()

    def submit_to_next_stage(
        self,
        loan_id: str,
        target_stage: str,
        user_id: str,
        notes: Optional[str] = None,
    ) -> OperationResult:
        """
        Submit a loan application to target_stage.

        Returns:
            OperationResult; guard rejections are returned with their reason
        """
        check = self.guard.can_submit_to_next_stage(loan_id, target_stage, user_id)
        if not check.allowed:
            return OperationResult(
                success=False,
                message=check.reason or "Submission not allowed",
                error_kind=check.error_kind,
            )

        target = parse_stage(target_stage)
        intent_id = None
        if self.policy.intent_store_enabled:
            try:
                intent_id = self._record_intent(loan_id, check.current_state, target, user_id, notes)
            except RecordStoreError as e:
                if self.policy.strict_intents:
                    logger.error(f"Could not record submission of {loan_id} to {target.value}: {e}")
                    return OperationResult(
                        success=False,
                        message="Failed to create submission record",
                        error_kind=ErrorKind.ADVISORY_FAILURE,
                    )
                self.failure_log.record("intent", "insert_submission_intent", loan_id, e)

        new_status = TARGET_STATUS[target]
        write = self.writer.update_loan_status(loan_id, new_status, user_id)

        if not write.success:
            logger.error(f"Error updating loan status for {loan_id}: {write.message}")
            self._close_intent(loan_id, intent_id, IntentStatus.FAILED)
            return OperationResult(
                success=False,
                message=write.message,
                error_kind=ErrorKind.PERSISTENCE_EXHAUSTED,
                details={"attempted": write.attempted},
            )

        self.audit.record_step(loan_id, f"submitted_to_{target.value}", "completed", user_id, notes)
        self._close_intent(loan_id, intent_id, IntentStatus.COMPLETED)

        message = f"Loan successfully submitted to {target.value} stage"
        details = {"status": new_status, "strategy": write.strategy}
        if write.new_application_id:
            message = f"{message}. {write.message}"
            details["new_loan_id"] = write.new_loan_id
            details["new_application_id"] = write.new_application_id

        logger.info(f"Loan {loan_id} submitted to {target.value} by {user_id}")
        return OperationResult(success=True, message=message, details=details)

    def _record_intent(
        self,
        loan_id: str,
        state: WorkflowState,
        target: WorkflowStage,
        user_id: str,
        notes: Optional[str],
    ) -> str:
        intent = SubmissionIntent(
            loan_application_id=loan_id,
            current_stage=state.current_stage if state else WorkflowStage.SUBMITTED,
            target_stage=target,
            submitted_by=user_id,
            status=IntentStatus.PENDING,
            notes=notes,
        )
        return self.store.insert_submission_intent(intent)

    def _close_intent(self, loan_id: str, intent_id: Optional[str], status: IntentStatus) -> None:
        if intent_id is None:
            return
        try:
            self.store.update_submission_intent_status(intent_id, status)
        except RecordStoreError as e:
            self.failure_log.record("intent", "update_submission_intent_status", loan_id, e)
