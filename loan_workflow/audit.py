"""
Workflow audit trail.

Append-only log of workflow steps per loan application. Writes are best
effort: a failed append is logged and recorded in the advisory failure log
but never reaches the caller of the operation that produced it.
"""

import logging
from typing import List, Optional

from .advisory import AdvisoryFailureLog, AdvisoryPolicy
from .errors import RecordStoreError
from .schema import WorkflowStepRecord
from .store import RecordStore

logger = logging.getLogger(__name__)


class AuditRecorder:
    """Appends workflow steps to the record store."""

    def __init__(
        self,
        store: RecordStore,
        policy: Optional[AdvisoryPolicy] = None,
        failure_log: Optional[AdvisoryFailureLog] = None,
    ):
        self.store = store
        self.policy = policy if policy is not None else AdvisoryPolicy()
        self.failure_log = failure_log if failure_log is not None else AdvisoryFailureLog()

    def record_step(
        self,
        loan_id: str,
        step_name: str,
        status: str = "completed",
        user_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> bool:
        """
        Append a workflow step.

        Returns:
            True if the step was stored, False if it was skipped or failed
        """
        if not self.policy.audit_store_enabled:
            logger.debug(f"Audit store disabled, not recording {step_name} for {loan_id}")
            return False

        step = WorkflowStepRecord(
            loan_application_id=loan_id,
            step_name=step_name,
            status=status,
            user_id=user_id,
            notes=notes,
        )
        try:
            self.store.insert_audit_step(step)
        except RecordStoreError as e:
            self.failure_log.record("audit", "insert_audit_step", loan_id, e)
            return False

        logger.debug(f"Recorded workflow step {step_name} for {loan_id}")
        return True


class WorkflowHistoryReader:
    """Reads the workflow steps of a loan, most recent first."""

    def __init__(self, store: RecordStore, policy: Optional[AdvisoryPolicy] = None):
        self.store = store
        self.policy = policy if policy is not None else AdvisoryPolicy()

    def get_history(self, loan_id: str) -> List[WorkflowStepRecord]:
        if not self.policy.audit_store_enabled:
            return []
        try:
            return self.store.query_audit_steps(loan_id)
        except RecordStoreError as e:
            logger.warning(f"Workflow history unavailable for {loan_id}, returning empty history: {e}")
            return []
