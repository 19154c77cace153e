"""
Transition Guard

Validates a proposed forward transition without changing anything.
Checks run in a fixed order and stop at the first failure:

1. the loan exists
2. it is not locked
3. it is not recalled or rejected
4. it is not completed
5. the target is a known stage past the current one
6. no submission to the target is already pending
7. approval-gated targets have been approved
"""

import logging
from typing import Optional, Tuple

from .advisory import AdvisoryFailureLog, AdvisoryPolicy
from .approval import ApprovalGate
from .errors import ApprovalGateError, RecordStoreError
from .resolver import WorkflowStateResolver
from .schema import (
    APPROVAL_GATED_STAGES,
    ErrorKind,
    ProgressStatus,
    TransitionCheck,
    parse_stage,
    stage_index,
)
from .store import RecordStore

logger = logging.getLogger(__name__)


class TransitionGuard:
    """Decides whether a loan may be submitted to a target stage."""

    def __init__(
        self,
        resolver: WorkflowStateResolver,
        store: RecordStore,
        approval_gate: Optional[ApprovalGate] = None,
        policy: Optional[AdvisoryPolicy] = None,
        failure_log: Optional[AdvisoryFailureLog] = None,
        approval_gated_stages=APPROVAL_GATED_STAGES,
    ):
        self.resolver = resolver
        self.store = store
        self.approval_gate = approval_gate
        self.policy = policy if policy is not None else AdvisoryPolicy()
        self.failure_log = failure_log if failure_log is not None else AdvisoryFailureLog()
        self.approval_gated_stages = frozenset(approval_gated_stages)

    def can_submit_to_next_stage(
        self,
        loan_id: str,
        target_stage: str,
        user_id: Optional[str] = None,
    ) -> TransitionCheck:
        """
        Check whether loan_id may move to target_stage.

        Returns:
            TransitionCheck with allowed, reason and the resolved state
        """
        try:
            state = self.resolver.resolve(loan_id)
        except RecordStoreError as e:
            logger.error(f"Error checking submission eligibility for {loan_id}: {e}")
            return TransitionCheck(
                allowed=False,
                reason="Error checking submission eligibility",
                error_kind=ErrorKind.STORE_UNAVAILABLE,
            )

        if state is None:
            return TransitionCheck(
                allowed=False,
                reason="Loan application not found",
                error_kind=ErrorKind.NOT_FOUND,
            )

        def reject(reason: str, kind: ErrorKind = ErrorKind.INVALID_TRANSITION) -> TransitionCheck:
            logger.info(f"Rejected submission of {loan_id} to {target_stage} by {user_id}: {reason}")
            return TransitionCheck(allowed=False, reason=reason, current_state=state, error_kind=kind)

        if state.is_locked:
            return reject("Loan is currently locked and cannot be moved")

        if state.status == ProgressStatus.RECALLED:
            return reject("Loan has been recalled and needs to be resubmitted from previous stage")

        if state.status == ProgressStatus.REJECTED:
            return reject("Loan has been rejected and needs operator resubmission")

        if state.status == ProgressStatus.COMPLETED:
            return reject("Loan processing is already completed")

        target = parse_stage(target_stage)
        if target is None:
            return reject(f"Unknown workflow stage: {target_stage}")

        if stage_index(target) <= stage_index(state.current_stage):
            return reject(f"Loan is already at or beyond {target.value} stage")

        if self.policy.intent_store_enabled:
            try:
                pending = self.store.find_pending_submission_intent(loan_id, target)
            except RecordStoreError as e:
                if self.policy.strict_intents:
                    return reject(
                        "Submission records are unavailable; cannot confirm no pending submission",
                        ErrorKind.ADVISORY_FAILURE,
                    )
                self.failure_log.record("intent", "find_pending_submission_intent", loan_id, e)
                pending = None

            if pending is not None:
                return reject(f"Loan has already been submitted to {target.value} stage")

        if target in self.approval_gated_stages:
            can_proceed, reason = self.can_proceed_to_next_stage(loan_id, target.value)
            if not can_proceed:
                return reject(reason, ErrorKind.APPROVAL_REQUIRED)

        return TransitionCheck(allowed=True, current_state=state)

    def can_proceed_to_next_stage(self, loan_id: str, target_stage: str) -> Tuple[bool, Optional[str]]:
        """
        Check the approval gate for a target stage.

        Ungated targets always pass. Gated targets pass only when the gate
        reports the loan as approved; a missing approval record, a missing
        gate or a gate error all count as denial.

        Returns:
            (can_proceed, reason)
        """
        target = parse_stage(target_stage)
        if target not in self.approval_gated_stages:
            return True, None

        if self.approval_gate is None:
            return False, f"No approval gate configured for {target_stage}"

        try:
            approval_state = self.approval_gate.get_approval_workflow_state(loan_id)
        except (ApprovalGateError, RecordStoreError) as e:
            logger.error(f"Error checking stage progression for {loan_id}: {e}")
            return False, "Error checking stage progression"

        if approval_state is None:
            return False, "Approval workflow state not found"

        if not approval_state.is_approved:
            return False, f"Loan must be approved before proceeding to {target_stage}"

        return True, None
