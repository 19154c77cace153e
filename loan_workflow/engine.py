"""
Loan Workflow Engine

Caller-facing facade over the workflow components. The record store and the
approval gate are injected at construction; everything else is built from
them unless passed in explicitly.
"""

import logging
from pathlib import Path
from typing import List, Optional, Tuple

from .advisory import AdvisoryFailureLog, AdvisoryPolicy
from .approval import ApprovalGate, SQLiteApprovalGate
from .audit import AuditRecorder, WorkflowHistoryReader
from .config import EngineConfig
from .errors import ApprovalGateError, RecordStoreError
from .guard import TransitionGuard
from .recall import RecallCoordinator
from .resolver import WorkflowStateResolver
from .schema import (
    APPROVAL_GATED_STAGES,
    ComprehensiveWorkflowStatus,
    ErrorKind,
    OperationResult,
    TransitionCheck,
    WorkflowState,
    WorkflowStepRecord,
    parse_stage,
)
from .store import RecordStore, SQLiteRecordStore
from .submission import SubmissionCoordinator
from .writer import ResilientStatusWriter, StatusWriteResult

logger = logging.getLogger(__name__)


class LoanWorkflowEngine:
    """
    Stage-ordered workflow for loan applications.

    Operations return result values for expected rejections; only a status
    write that exhausts every persistence strategy is reported as
    persistence_exhausted.
    """

    def __init__(
        self,
        store: RecordStore,
        approval_gate: Optional[ApprovalGate] = None,
        policy: Optional[AdvisoryPolicy] = None,
        writer: Optional[ResilientStatusWriter] = None,
        failure_log: Optional[AdvisoryFailureLog] = None,
        approval_gated_stages=APPROVAL_GATED_STAGES,
    ):
        self.store = store
        self.approval_gate = approval_gate
        self.policy = policy if policy is not None else AdvisoryPolicy()
        self.failure_log = failure_log if failure_log is not None else AdvisoryFailureLog()

        self.resolver = WorkflowStateResolver(store)
        self.guard = TransitionGuard(
            self.resolver,
            store,
            approval_gate=approval_gate,
            policy=self.policy,
            failure_log=self.failure_log,
            approval_gated_stages=approval_gated_stages,
        )
        self.writer = writer or ResilientStatusWriter(store)
        self.audit = AuditRecorder(store, self.policy, self.failure_log)
        self.history = WorkflowHistoryReader(store, self.policy)
        self.submissions = SubmissionCoordinator(
            store, self.guard, self.writer, self.audit, self.policy, self.failure_log
        )
        self.recalls = RecallCoordinator(store, self.resolver, self.writer, self.audit)

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        store: Optional[RecordStore] = None,
        approval_gate: Optional[ApprovalGate] = None,
    ) -> "LoanWorkflowEngine":
        """Create an engine from configuration, defaulting to the SQLite backends."""
        store = store or SQLiteRecordStore(
            Path(config.store.db_path), busy_timeout_ms=config.store.busy_timeout_ms
        )
        approval_gate = approval_gate or SQLiteApprovalGate(Path(config.approval.db_path))
        policy = AdvisoryPolicy(
            intent_store_enabled=config.advisory.intent_store_enabled,
            audit_store_enabled=config.advisory.audit_store_enabled,
            strict_intents=config.advisory.strict_intents,
        )
        writer = ResilientStatusWriter.from_names(
            store,
            config.writer.strategies,
            application_id_prefix=config.writer.application_id_prefix,
        )
        gated = [parse_stage(s) for s in config.approval.gated_stages]
        return cls(
            store,
            approval_gate,
            policy=policy,
            writer=writer,
            failure_log=AdvisoryFailureLog(config.advisory.max_recorded_failures),
            approval_gated_stages=[s for s in gated if s is not None],
        )

    # ========================================================================
    # State
    # ========================================================================

    def get_workflow_state(self, loan_id: str) -> Optional[WorkflowState]:
        """Get the workflow state of a loan, or None if it does not exist."""
        return self.resolver.resolve(loan_id)

    def get_workflow_history(self, loan_id: str) -> List[WorkflowStepRecord]:
        """Get the workflow steps of a loan, most recent first."""
        return self.history.get_history(loan_id)

    def get_comprehensive_workflow_status(self, loan_id: str) -> ComprehensiveWorkflowStatus:
        """Workflow state, approval state and what should happen next."""
        try:
            workflow_state = self.resolver.resolve(loan_id)
            approval_state = (
                self.approval_gate.get_approval_workflow_state(loan_id)
                if self.approval_gate else None
            )
        except (RecordStoreError, ApprovalGateError) as e:
            logger.error(f"Error getting comprehensive workflow status for {loan_id}: {e}")
            return ComprehensiveWorkflowStatus(next_steps=["Fix workflow errors"])

        approved = approval_state is not None and approval_state.is_approved
        next_steps = []
        if workflow_state is not None and not workflow_state.is_locked:
            if approved:
                next_steps.append(f"Proceed to {workflow_state.next_stage.value}")
            else:
                next_steps.append("Complete approval process")

        return ComprehensiveWorkflowStatus(
            workflow_state=workflow_state,
            approval_state=approval_state,
            can_proceed=approved,
            next_steps=next_steps,
        )

    # ========================================================================
    # Transitions
    # ========================================================================

    def can_submit_to_next_stage(
        self, loan_id: str, target_stage: str, user_id: Optional[str] = None
    ) -> TransitionCheck:
        return self.guard.can_submit_to_next_stage(loan_id, target_stage, user_id)

    def can_proceed_to_next_stage(self, loan_id: str, target_stage: str) -> Tuple[bool, Optional[str]]:
        return self.guard.can_proceed_to_next_stage(loan_id, target_stage)

    def submit_to_next_stage(
        self,
        loan_id: str,
        target_stage: str,
        user_id: str,
        notes: Optional[str] = None,
    ) -> OperationResult:
        return self.submissions.submit_to_next_stage(loan_id, target_stage, user_id, notes)

    def recall_loan(
        self,
        loan_id: str,
        user_id: str,
        reason: str,
        target_stage: Optional[str] = None,
    ) -> OperationResult:
        return self.recalls.recall_loan(loan_id, user_id, reason, target_stage)

    def resubmit_recalled_loan(
        self, loan_id: str, user_id: str, notes: Optional[str] = None
    ) -> OperationResult:
        return self.recalls.resubmit_recalled_loan(loan_id, user_id, notes)

    def update_loan_status(
        self, loan_id: str, new_status: str, user_id: Optional[str] = None
    ) -> StatusWriteResult:
        return self.writer.update_loan_status(loan_id, new_status, user_id)

    # ========================================================================
    # Approval
    # ========================================================================

    def initialize_approval_workflow(self, loan_id: str, user_id: str) -> OperationResult:
        """Assign a loan to the approval level covering its requested amount."""
        if self.approval_gate is None:
            return OperationResult(success=False, message="No approval gate configured")

        try:
            loan = self.store.fetch_loan(loan_id)
            if loan is None:
                return OperationResult(
                    success=False,
                    message="Loan application not found",
                    error_kind=ErrorKind.NOT_FOUND,
                )

            level = self.approval_gate.determine_approval_level(
                loan.requested_amount or 0, loan.client_type
            )
            if level is None:
                return OperationResult(success=False, message="No appropriate approval level found")

            assignment = self.approval_gate.create_approval_assignment(
                loan_id, level.id, None, user_id, requested_amount=loan.requested_amount
            )
        except (RecordStoreError, ApprovalGateError) as e:
            logger.error(f"Error initializing approval workflow for {loan_id}: {e}")
            return OperationResult(success=False, message=f"Failed to initialize approval workflow: {e}")

        logger.info(f"Initialized approval workflow for {loan_id} at level {level.level_name}")
        return OperationResult(
            success=True,
            message="Approval workflow initialized successfully",
            details={"approval_level_id": level.id, "assignment_id": assignment.id},
        )
