"""
Loan Workflow - stage-ordered processing of loan applications

Moves loan applications through seven ordered stages, with approval-gated
transitions, operator recall, an advisory audit trail and a resilient
status writer for backends with opaque constraint rules.
"""

__version__ = "1.0.0"

from .schema import (
    WorkflowStage,
    ProgressStatus,
    IntentStatus,
    ErrorKind,
    STAGE_ORDER,
    LoanApplicationRecord,
    SubmissionIntent,
    RecallRecord,
    WorkflowStepRecord,
    WorkflowState,
    ApprovalLevel,
    ApprovalAssignment,
    ApprovalWorkflowState,
    TransitionCheck,
    OperationResult,
    ComprehensiveWorkflowStatus,
)

from .errors import (
    LoanWorkflowError,
    RecordStoreError,
    ApprovalGateError,
    ConfigurationError,
    PersistenceExhaustedError,
)

from .advisory import AdvisoryPolicy, AdvisoryFailureLog
from .store import RecordStore, SQLiteRecordStore, SupabaseRecordStore
from .approval import ApprovalGate, SQLiteApprovalGate
from .resolver import WorkflowStateResolver
from .guard import TransitionGuard
from .writer import (
    PersistenceStrategy,
    DEFAULT_STRATEGIES,
    ResilientStatusWriter,
    StatusWriteResult,
)
from .audit import AuditRecorder, WorkflowHistoryReader
from .submission import SubmissionCoordinator
from .recall import RecallCoordinator
from .config import ConfigManager, EngineConfig
from .engine import LoanWorkflowEngine

__all__ = [
    # Schema
    "WorkflowStage",
    "ProgressStatus",
    "IntentStatus",
    "ErrorKind",
    "STAGE_ORDER",
    "LoanApplicationRecord",
    "SubmissionIntent",
    "RecallRecord",
    "WorkflowStepRecord",
    "WorkflowState",
    "ApprovalLevel",
    "ApprovalAssignment",
    "ApprovalWorkflowState",
    "TransitionCheck",
    "OperationResult",
    "ComprehensiveWorkflowStatus",
    # Errors
    "LoanWorkflowError",
    "RecordStoreError",
    "ApprovalGateError",
    "ConfigurationError",
    "PersistenceExhaustedError",
    # Components
    "AdvisoryPolicy",
    "AdvisoryFailureLog",
    "RecordStore",
    "SQLiteRecordStore",
    "SupabaseRecordStore",
    "ApprovalGate",
    "SQLiteApprovalGate",
    "WorkflowStateResolver",
    "TransitionGuard",
    "PersistenceStrategy",
    "DEFAULT_STRATEGIES",
    "ResilientStatusWriter",
    "StatusWriteResult",
    "AuditRecorder",
    "WorkflowHistoryReader",
    "SubmissionCoordinator",
    "RecallCoordinator",
    "ConfigManager",
    "EngineConfig",
    "LoanWorkflowEngine",
]
