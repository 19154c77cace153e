"""
Loan Workflow Schema Definitions using Pydantic

This module defines the persisted records, the derived workflow state and the
result values exchanged by the loan application workflow engine.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Optional
from datetime import datetime, timezone
from enum import Enum


class WorkflowStage(str, Enum):
    """The seven ordered phases of a loan application."""
    SUBMITTED = "submitted"
    ASSESSMENT = "assessment"
    CONTRACT_GENERATION = "contract_generation"
    CONTRACT_UPLOAD = "contract_upload"
    VERIFICATION = "verification"
    DISBURSEMENT = "disbursement"
    COMPLETED = "completed"


class ProgressStatus(str, Enum):
    """Status flag orthogonal to the stage."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    RECALLED = "recalled"
    REJECTED = "rejected"


class IntentStatus(str, Enum):
    """Status of a submission intent."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ErrorKind(str, Enum):
    """Failure taxonomy carried on result values."""
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"
    APPROVAL_REQUIRED = "approval_required"
    PERSISTENCE_EXHAUSTED = "persistence_exhausted"
    ADVISORY_FAILURE = "advisory_failure"
    STORE_UNAVAILABLE = "store_unavailable"


# ============================================================================
# Stage Ordering
# ============================================================================

STAGE_ORDER: list[WorkflowStage] = list(WorkflowStage)

RECALLABLE_STAGES = frozenset({
    WorkflowStage.ASSESSMENT,
    WorkflowStage.CONTRACT_GENERATION,
    WorkflowStage.CONTRACT_UPLOAD,
    WorkflowStage.VERIFICATION,
})

LOCKED_STATUSES = frozenset({"disbursed", "completed"})

APPROVAL_GATED_STAGES = frozenset({
    WorkflowStage.CONTRACT_GENERATION,
    WorkflowStage.DISBURSEMENT,
})

# Persisted status written when a loan is submitted into a stage
TARGET_STATUS: dict[WorkflowStage, str] = {
    WorkflowStage.ASSESSMENT: "under_review",
    WorkflowStage.CONTRACT_GENERATION: "approved",
    WorkflowStage.CONTRACT_UPLOAD: "contract_generated",
    WorkflowStage.VERIFICATION: "contract_uploaded",
    WorkflowStage.DISBURSEMENT: "verified",
    WorkflowStage.COMPLETED: "disbursed",
}

# Status restored when a recalled loan is resubmitted into a stage
ENTRY_STATUS: dict[WorkflowStage, str] = {
    WorkflowStage.SUBMITTED: "submitted",
    **TARGET_STATUS,
}


def parse_stage(value) -> Optional[WorkflowStage]:
    """Return the stage named by value, or None if it is not a stage."""
    if isinstance(value, WorkflowStage):
        return value
    try:
        return WorkflowStage(value)
    except ValueError:
        return None


def stage_index(stage) -> int:
    """Get the position of a stage in the stage order (-1 if unknown)."""
    parsed = parse_stage(stage)
    if parsed is None:
        return -1
    return STAGE_ORDER.index(parsed)


def next_stage(stage: WorkflowStage) -> WorkflowStage:
    """Get the successor stage; completed loops to itself."""
    idx = stage_index(stage)
    if 0 <= idx < len(STAGE_ORDER) - 1:
        return STAGE_ORDER[idx + 1]
    return WorkflowStage.COMPLETED


def previous_stage(stage: WorkflowStage) -> WorkflowStage:
    """Get the predecessor stage; submitted loops to itself."""
    idx = stage_index(stage)
    if idx > 0:
        return STAGE_ORDER[idx - 1]
    return WorkflowStage.SUBMITTED


def _utc_now():
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


# ============================================================================
# Persisted Records
# ============================================================================

class LoanApplicationRecord(BaseModel):
    """A loan application row as held by the record store.

    Columns the engine does not know about are kept as extra fields so that
    record replacement copies them across.
    """
    model_config = ConfigDict(extra="allow")

    id: str
    application_id: Optional[str] = None
    status: str = "submitted"
    contract_status: Optional[str] = None
    requested_amount: Optional[float] = None
    client_type: Optional[str] = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None


class SubmissionIntent(BaseModel):
    """Advisory record of a requested forward transition."""
    id: Optional[str] = None
    loan_application_id: str
    current_stage: WorkflowStage
    target_stage: WorkflowStage
    submitted_by: str
    status: IntentStatus = IntentStatus.PENDING
    notes: Optional[str] = None
    submitted_at: datetime = Field(default_factory=_utc_now)


class RecallRecord(BaseModel):
    """Operator-initiated rollback of a loan application."""
    loan_application_id: str
    recalled_from_stage: WorkflowStage
    recalled_to_stage: WorkflowStage
    recalled_by: str
    reason: str
    recalled_at: datetime = Field(default_factory=_utc_now)

    @field_validator('reason')
    @classmethod
    def reason_must_not_be_blank(cls, v):
        if not v or not v.strip():
            raise ValueError('recall reason is required')
        return v


class WorkflowStepRecord(BaseModel):
    """A single append-only audit entry."""
    loan_application_id: str
    step_name: str
    status: str = "completed"
    user_id: Optional[str] = None
    notes: Optional[str] = None
    completed_at: datetime = Field(default_factory=_utc_now)


# ============================================================================
# Derived State
# ============================================================================

class WorkflowState(BaseModel):
    """Canonical workflow view of a loan application. Never persisted."""
    loan_application_id: str
    current_stage: WorkflowStage
    status: ProgressStatus
    can_be_recalled: bool
    next_stage: WorkflowStage
    is_locked: bool
    persisted_status: str
    submitted_at: Optional[datetime] = None
    recalled_by: Optional[str] = None
    recalled_at: Optional[datetime] = None
    recall_reason: Optional[str] = None


# ============================================================================
# Approval Gate Shapes
# ============================================================================

class ApprovalLevel(BaseModel):
    """An approval authority band keyed by requested amount."""
    id: str
    level_name: str
    min_amount: float
    max_amount: float
    requires_committee_approval: bool = False
    committee_threshold: Optional[float] = None
    approval_authority: str = "MANAGER"
    is_active: bool = True


class ApprovalAssignment(BaseModel):
    """Assignment of a loan application to an approval level."""
    id: str
    loan_application_id: str
    approval_level_id: str
    assigned_to_user_id: Optional[str] = None
    status: str = "pending"
    comments: Optional[str] = None
    approved_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utc_now)
    created_by_user_id: str


class ApprovalWorkflowState(BaseModel):
    """Approval view of a loan application as reported by the gate."""
    loan_application_id: str
    approval_status: str
    current_approval_level: Optional[ApprovalLevel] = None
    current_assignment: Optional[ApprovalAssignment] = None
    is_committee_required: bool = False
    workflow_progress: int = 0

    @property
    def is_approved(self) -> bool:
        return self.approval_status == "approved"


# ============================================================================
# Results
# ============================================================================

class TransitionCheck(BaseModel):
    """Outcome of validating a proposed forward transition."""
    allowed: bool
    reason: Optional[str] = None
    current_state: Optional[WorkflowState] = None
    error_kind: Optional[ErrorKind] = None


class OperationResult(BaseModel):
    """Outcome of a caller-facing workflow operation."""
    success: bool
    message: str
    error_kind: Optional[ErrorKind] = None
    details: dict[str, Any] = Field(default_factory=dict)


class ComprehensiveWorkflowStatus(BaseModel):
    """Workflow state joined with the approval view."""
    workflow_state: Optional[WorkflowState] = None
    approval_state: Optional[ApprovalWorkflowState] = None
    can_proceed: bool = False
    next_steps: list[str] = Field(default_factory=list)
