"""
Approval Gate - yes/no sign-off on stage-sensitive transitions.

The workflow engine treats the gate as opaque: it only asks whether a loan's
approval status is "approved" before moving into contract generation or
disbursement. SQLiteApprovalGate is a self-contained implementation:

- Approval levels are amount bands with an optional committee threshold
- Assignments link a loan to the level that must sign it off
- Decisions move the loan's approval status and close the assignment

Usage:
    gate = SQLiteApprovalGate("approvals.db")
    gate.add_approval_level(ApprovalLevel(id="L1", level_name="Branch",
                                          min_amount=0, max_amount=500_000))

    level = gate.determine_approval_level(250_000, "individual")
    gate.create_approval_assignment("loan-1", level.id, None, "officer-7")
    gate.record_decision("loan-1", "approved", "manager-2", "Looks good")

    gate.get_approval_workflow_state("loan-1").approval_status  # "approved"
"""

import sqlite3
import uuid
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, List

from .errors import ApprovalGateError
from .schema import ApprovalAssignment, ApprovalLevel, ApprovalWorkflowState

logger = logging.getLogger(__name__)


APPROVAL_STATUSES = (
    "pending_initial_review",
    "pending_supervisor_approval",
    "pending_manager_approval",
    "pending_committee_review",
    "approved",
    "rejected",
)


def calculate_workflow_progress(approval_status: str, is_committee_required: bool) -> int:
    """Percentage of the approval path completed for a status."""
    status_progress = {
        "pending_initial_review": 20,
        "pending_supervisor_approval": 40,
        "pending_manager_approval": 60,
        "pending_committee_review": 80 if is_committee_required else 100,
        "approved": 100,
        "rejected": 0,
    }
    return status_progress.get(approval_status, 0)


class ApprovalGate(ABC):
    """Approval subsystem consumed by the workflow engine."""

    @abstractmethod
    def determine_approval_level(self, amount: float, client_type: Optional[str]) -> Optional[ApprovalLevel]:
        """Find the level whose amount band covers the requested amount."""

    @abstractmethod
    def create_approval_assignment(
        self,
        loan_id: str,
        level_id: str,
        assigned_user_id: Optional[str],
        initiated_by: str,
        requested_amount: Optional[float] = None,
    ) -> ApprovalAssignment:
        """Assign a loan application to an approval level."""

    @abstractmethod
    def get_approval_workflow_state(self, loan_id: str) -> Optional[ApprovalWorkflowState]:
        """Get the approval view of a loan, or None if none is on file."""


class SQLiteApprovalGate(ApprovalGate):
    """
    SQLite-backed approval gate.

    Features:
    - Amount-band approval levels with committee thresholds
    - One open assignment per decision round
    - Per-loan approval status with decision history
    """

    DEFAULT_PATH = "loan_approvals.db"
    SCHEMA_VERSION = 1

    def __init__(self, db_path: Optional[Path] = None):
        """
        Initialize the approval gate.

        Args:
            db_path: Path to SQLite database (default: loan_approvals.db)
        """
        self.db_path = Path(db_path) if db_path else Path(self.DEFAULT_PATH)
        self._init_db()

    def _init_db(self):
        """Initialize database schema."""
        with self._connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA busy_timeout=5000")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS approval_levels (
                    id TEXT PRIMARY KEY,
                    level_name TEXT NOT NULL,
                    min_amount REAL NOT NULL,
                    max_amount REAL NOT NULL,
                    requires_committee_approval INTEGER NOT NULL DEFAULT 0,
                    committee_threshold REAL,
                    approval_authority TEXT NOT NULL DEFAULT 'MANAGER',
                    is_active INTEGER NOT NULL DEFAULT 1
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS approval_level_assignments (
                    id TEXT PRIMARY KEY,
                    loan_application_id TEXT NOT NULL,
                    approval_level_id TEXT NOT NULL,
                    assigned_to_user_id TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    comments TEXT,
                    approved_at TEXT,
                    created_at TEXT NOT NULL,
                    created_by_user_id TEXT NOT NULL,

                    CHECK (status IN ('pending', 'approved', 'rejected'))
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS loan_approvals (
                    loan_application_id TEXT PRIMARY KEY,
                    approval_status TEXT NOT NULL,
                    requested_amount REAL,
                    committee_review_required INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS loan_approval_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    loan_application_id TEXT NOT NULL,
                    previous_status TEXT,
                    new_status TEXT NOT NULL,
                    decided_by TEXT,
                    comments TEXT,
                    decided_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """)

            conn.execute("""
                INSERT OR IGNORE INTO schema_version (version) VALUES (?)
            """, (self.SCHEMA_VERSION,))

            conn.commit()

    @contextmanager
    def _connection(self):
        """Get a database connection with row factory."""
        conn = sqlite3.connect(self.db_path, timeout=10.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.Error as e:
            raise ApprovalGateError(f"Approval store error: {e}") from e
        finally:
            conn.close()

    @staticmethod
    def _level_from_row(row: sqlite3.Row) -> ApprovalLevel:
        return ApprovalLevel(
            id=row["id"],
            level_name=row["level_name"],
            min_amount=row["min_amount"],
            max_amount=row["max_amount"],
            requires_committee_approval=bool(row["requires_committee_approval"]),
            committee_threshold=row["committee_threshold"],
            approval_authority=row["approval_authority"],
            is_active=bool(row["is_active"]),
        )

    @staticmethod
    def _assignment_from_row(row: sqlite3.Row) -> ApprovalAssignment:
        return ApprovalAssignment(
            id=row["id"],
            loan_application_id=row["loan_application_id"],
            approval_level_id=row["approval_level_id"],
            assigned_to_user_id=row["assigned_to_user_id"],
            status=row["status"],
            comments=row["comments"],
            approved_at=row["approved_at"],
            created_at=row["created_at"],
            created_by_user_id=row["created_by_user_id"],
        )

    # =========================================================================
    # Approval Levels
    # =========================================================================

    def add_approval_level(self, level: ApprovalLevel) -> None:
        """Add or replace an approval level."""
        with self._connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO approval_levels
                (id, level_name, min_amount, max_amount, requires_committee_approval,
                 committee_threshold, approval_authority, is_active)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                level.id,
                level.level_name,
                level.min_amount,
                level.max_amount,
                int(level.requires_committee_approval),
                level.committee_threshold,
                level.approval_authority,
                int(level.is_active),
            ))
            conn.commit()

    def get_approval_levels(self) -> List[ApprovalLevel]:
        """Get all active approval levels, smallest band first."""
        with self._connection() as conn:
            rows = conn.execute("""
                SELECT * FROM approval_levels
                WHERE is_active = 1
                ORDER BY min_amount ASC
            """).fetchall()
            return [self._level_from_row(row) for row in rows]

    def _get_level(self, level_id: str) -> Optional[ApprovalLevel]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM approval_levels WHERE id = ?",
                (level_id,)
            ).fetchone()
            return self._level_from_row(row) if row else None

    def determine_approval_level(self, amount: float, client_type: Optional[str]) -> Optional[ApprovalLevel]:
        for level in self.get_approval_levels():
            if level.min_amount <= amount <= level.max_amount:
                return level
        logger.info(f"No approval level covers amount {amount} (client_type={client_type})")
        return None

    # =========================================================================
    # Assignments
    # =========================================================================

    def create_approval_assignment(
        self,
        loan_id: str,
        level_id: str,
        assigned_user_id: Optional[str],
        initiated_by: str,
        requested_amount: Optional[float] = None,
    ) -> ApprovalAssignment:
        level = self._get_level(level_id)
        if level is None:
            raise ApprovalGateError(f"Unknown approval level: {level_id}")

        now = datetime.now(timezone.utc).isoformat()
        assignment = ApprovalAssignment(
            id=uuid.uuid4().hex,
            loan_application_id=loan_id,
            approval_level_id=level_id,
            assigned_to_user_id=assigned_user_id,
            status="pending",
            created_at=now,
            created_by_user_id=initiated_by,
        )
        committee_required = bool(
            level.requires_committee_approval
            and requested_amount is not None
            and requested_amount >= (level.committee_threshold or 0)
        )

        with self._connection() as conn:
            conn.execute("""
                INSERT INTO approval_level_assignments
                (id, loan_application_id, approval_level_id, assigned_to_user_id,
                 status, created_at, created_by_user_id)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                assignment.id,
                loan_id,
                level_id,
                assigned_user_id,
                assignment.status,
                now,
                initiated_by,
            ))
            conn.execute("""
                INSERT INTO loan_approvals
                (loan_application_id, approval_status, requested_amount,
                 committee_review_required, updated_at)
                VALUES (?, 'pending_initial_review', ?, ?, ?)
                ON CONFLICT(loan_application_id) DO UPDATE SET
                    requested_amount = COALESCE(excluded.requested_amount, requested_amount),
                    committee_review_required = excluded.committee_review_required,
                    updated_at = excluded.updated_at
            """, (loan_id, requested_amount, int(committee_required), now))
            conn.commit()

        logger.info(f"Assigned loan {loan_id} to approval level {level.level_name}")
        return assignment

    def get_approval_assignments(self, loan_id: str) -> List[ApprovalAssignment]:
        """Get every assignment of a loan, newest first."""
        with self._connection() as conn:
            rows = conn.execute("""
                SELECT * FROM approval_level_assignments
                WHERE loan_application_id = ?
                ORDER BY created_at DESC
            """, (loan_id,)).fetchall()
            return [self._assignment_from_row(row) for row in rows]

    # =========================================================================
    # Decisions
    # =========================================================================

    def record_decision(
        self,
        loan_id: str,
        status: str,
        user_id: Optional[str] = None,
        comments: str = "",
    ) -> bool:
        """
        Record an approval decision or intermediate approval status.

        Args:
            loan_id: The loan application
            status: One of APPROVAL_STATUSES
            user_id: Who decided
            comments: Optional reason for the decision

        Returns:
            True if recorded
        """
        if status not in APPROVAL_STATUSES:
            raise ValueError(f"Invalid approval status: {status}")

        now = datetime.now(timezone.utc).isoformat()
        with self._connection() as conn:
            row = conn.execute(
                "SELECT approval_status FROM loan_approvals WHERE loan_application_id = ?",
                (loan_id,)
            ).fetchone()
            previous = row["approval_status"] if row else None

            conn.execute("""
                INSERT INTO loan_approvals (loan_application_id, approval_status, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(loan_application_id) DO UPDATE SET
                    approval_status = excluded.approval_status,
                    updated_at = excluded.updated_at
            """, (loan_id, status, now))

            if status in ("approved", "rejected"):
                conn.execute("""
                    UPDATE approval_level_assignments
                    SET status = ?, comments = ?, approved_at = ?
                    WHERE loan_application_id = ? AND status = 'pending'
                """, (status, comments, now if status == "approved" else None, loan_id))

            conn.execute("""
                INSERT INTO loan_approval_history
                (loan_application_id, previous_status, new_status, decided_by, comments, decided_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (loan_id, previous, status, user_id, comments, now))
            conn.commit()

        logger.info(f"Approval decision for {loan_id}: {previous} -> {status}")
        return True

    def get_approval_history(self, loan_id: str) -> List[dict]:
        """Get the approval decisions of a loan, newest first."""
        with self._connection() as conn:
            rows = conn.execute("""
                SELECT * FROM loan_approval_history
                WHERE loan_application_id = ?
                ORDER BY decided_at DESC, id DESC
            """, (loan_id,)).fetchall()
            return [dict(row) for row in rows]

    def get_approval_workflow_state(self, loan_id: str) -> Optional[ApprovalWorkflowState]:
        with self._connection() as conn:
            loan = conn.execute(
                "SELECT * FROM loan_approvals WHERE loan_application_id = ?",
                (loan_id,)
            ).fetchone()
            if loan is None:
                return None

            assignment_row = conn.execute("""
                SELECT * FROM approval_level_assignments
                WHERE loan_application_id = ? AND status = 'pending'
                ORDER BY created_at DESC
                LIMIT 1
            """, (loan_id,)).fetchone()

        assignment = self._assignment_from_row(assignment_row) if assignment_row else None
        level = self._get_level(assignment.approval_level_id) if assignment else None

        is_committee_required = bool(loan["committee_review_required"]) or bool(
            level
            and level.requires_committee_approval
            and (loan["requested_amount"] or 0) >= (level.committee_threshold or 0)
        )

        return ApprovalWorkflowState(
            loan_application_id=loan_id,
            approval_status=loan["approval_status"],
            current_approval_level=level,
            current_assignment=assignment,
            is_committee_required=is_committee_required,
            workflow_progress=calculate_workflow_progress(
                loan["approval_status"], is_committee_required
            ),
        )
