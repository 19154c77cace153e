"""
Record Store - narrow repository interface over the loan database.

The engine never talks to the backing database directly. It goes through
RecordStore, which has two implementations:

- SQLiteRecordStore: SQLite with WAL mode, one connection per operation so a
  single store can be shared across threads.
- SupabaseRecordStore: adapter over an injected supabase-py client, for the
  hosted relational store the console runs against.

Usage:
    store = SQLiteRecordStore("loans.db")
    store.insert_loan(LoanApplicationRecord(id="loan-1", application_id="LA-1"))
    loan = store.fetch_loan("loan-1")
    store.update_loan("loan-1", {"status": "under_review"})
"""

import json
import sqlite3
import uuid
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, List

from .errors import RecordStoreError
from .schema import (
    IntentStatus,
    LoanApplicationRecord,
    RecallRecord,
    SubmissionIntent,
    WorkflowStage,
    WorkflowStepRecord,
)

logger = logging.getLogger(__name__)

LOAN_COLUMNS = (
    "id",
    "application_id",
    "status",
    "contract_status",
    "requested_amount",
    "client_type",
    "created_at",
    "updated_at",
    "submitted_at",
)


def _to_db(value: Any) -> Any:
    """Convert a python value to its stored representation."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, WorkflowStage) or isinstance(value, IntentStatus):
        return value.value
    return value


class RecordStore(ABC):
    """Repository operations the workflow engine consumes.

    Implementations raise RecordStoreError when the backend rejects or
    cannot complete an operation.
    """

    @abstractmethod
    def fetch_loan(self, loan_id: str) -> Optional[LoanApplicationRecord]:
        """Get a loan application, or None if there is no such record."""

    @abstractmethod
    def update_loan(self, loan_id: str, fields: dict) -> None:
        """Update the given columns of an existing loan application."""

    @abstractmethod
    def insert_loan(self, record: LoanApplicationRecord) -> LoanApplicationRecord:
        """Insert a loan application and return it as stored."""

    @abstractmethod
    def insert_audit_step(self, step: WorkflowStepRecord) -> None:
        """Append a workflow step."""

    @abstractmethod
    def query_audit_steps(self, loan_id: str) -> List[WorkflowStepRecord]:
        """Get the workflow steps of a loan, most recent first."""

    @abstractmethod
    def insert_submission_intent(self, intent: SubmissionIntent) -> str:
        """Insert a submission intent and return its id."""

    @abstractmethod
    def find_pending_submission_intent(
        self, loan_id: str, target_stage: WorkflowStage
    ) -> Optional[SubmissionIntent]:
        """Get a pending intent for (loan, target stage), if any."""

    @abstractmethod
    def update_submission_intent_status(self, intent_id: str, status: IntentStatus) -> None:
        """Close a submission intent."""

    @abstractmethod
    def list_submission_intents(self, loan_id: str) -> List[SubmissionIntent]:
        """Get all submission intents of a loan, oldest first."""

    @abstractmethod
    def insert_recall_record(self, record: RecallRecord) -> None:
        """Insert a recall record."""

    @abstractmethod
    def latest_recall_record(self, loan_id: str) -> Optional[RecallRecord]:
        """Get the most recent recall of a loan, if any."""


# ============================================================================
# SQLite
# ============================================================================

class SQLiteRecordStore(RecordStore):
    """
    SQLite-backed record store.

    Features:
    - WAL mode for concurrent read/write access
    - Unknown loan columns kept in a JSON column and restored on fetch
    - Schema version tracking
    """

    DEFAULT_PATH = "loan_workflow.db"
    SCHEMA_VERSION = 1

    def __init__(self, db_path: Optional[Path] = None, busy_timeout_ms: int = 5000):
        """
        Initialize the record store.

        Args:
            db_path: Path to SQLite database (default: loan_workflow.db)
            busy_timeout_ms: How long to wait on a locked database
        """
        self.db_path = Path(db_path) if db_path else Path(self.DEFAULT_PATH)
        self.busy_timeout_ms = busy_timeout_ms
        self._init_db()

    def _init_db(self):
        """Initialize database schema."""
        with self._connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS loan_applications (
                    id TEXT PRIMARY KEY,
                    application_id TEXT,
                    status TEXT NOT NULL DEFAULT 'submitted',
                    contract_status TEXT,
                    requested_amount REAL,
                    client_type TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT,
                    submitted_at TEXT,
                    extra TEXT
                )
            """)

            conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_loans_application_id
                ON loan_applications(application_id)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS loan_workflow_submissions (
                    id TEXT PRIMARY KEY,
                    loan_application_id TEXT NOT NULL,
                    current_stage TEXT NOT NULL,
                    target_stage TEXT NOT NULL,
                    submitted_by TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    notes TEXT,
                    submitted_at TEXT NOT NULL,

                    CHECK (status IN ('pending', 'completed', 'failed'))
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_submissions_pending
                ON loan_workflow_submissions(loan_application_id, target_stage, status)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS loan_workflow_recalls (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    loan_application_id TEXT NOT NULL,
                    recalled_from_stage TEXT NOT NULL,
                    recalled_to_stage TEXT NOT NULL,
                    recalled_by TEXT NOT NULL,
                    reason TEXT NOT NULL,
                    recalled_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS loan_workflow_steps (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    loan_application_id TEXT NOT NULL,
                    step_name TEXT NOT NULL,
                    status TEXT NOT NULL,
                    user_id TEXT,
                    notes TEXT,
                    completed_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_steps_loan
                ON loan_workflow_steps(loan_application_id, completed_at)
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
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout_ms / 1000)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
            yield conn
        finally:
            conn.close()

    def _execute(self, operation: str, sql: str, params: tuple = ()) -> int:
        """Run a write statement, translating backend errors."""
        try:
            with self._connection() as conn:
                cursor = conn.execute(sql, params)
                conn.commit()
                return cursor.rowcount
        except sqlite3.Error as e:
            raise RecordStoreError(f"{operation} failed: {e}", operation=operation) from e

    def _query(self, operation: str, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        try:
            with self._connection() as conn:
                return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise RecordStoreError(f"{operation} failed: {e}", operation=operation) from e

    @staticmethod
    def _loan_from_row(row: sqlite3.Row) -> LoanApplicationRecord:
        data = {col: row[col] for col in LOAN_COLUMNS}
        extra = json.loads(row["extra"]) if row["extra"] else {}
        return LoanApplicationRecord(**extra, **data)

    # =========================================================================
    # Loan Applications
    # =========================================================================

    def fetch_loan(self, loan_id: str) -> Optional[LoanApplicationRecord]:
        rows = self._query(
            "fetch_loan",
            "SELECT * FROM loan_applications WHERE id = ?",
            (loan_id,),
        )
        return self._loan_from_row(rows[0]) if rows else None

    def update_loan(self, loan_id: str, fields: dict) -> None:
        unknown = [key for key in fields if key not in LOAN_COLUMNS or key == "id"]
        if unknown:
            raise ValueError(f"Cannot update loan columns: {', '.join(unknown)}")
        if not fields:
            raise ValueError("No fields to update")

        assignments = ", ".join(f"{key} = ?" for key in fields)
        params = tuple(_to_db(value) for value in fields.values()) + (loan_id,)
        count = self._execute(
            "update_loan",
            f"UPDATE loan_applications SET {assignments} WHERE id = ?",
            params,
        )
        if count == 0:
            raise RecordStoreError(f"Loan application {loan_id} not found", operation="update_loan")
        logger.debug(f"Updated loan {loan_id}: {sorted(fields)}")

    def insert_loan(self, record: LoanApplicationRecord) -> LoanApplicationRecord:
        data = record.model_dump(mode="json")
        extra = {key: value for key, value in data.items() if key not in LOAN_COLUMNS}
        columns = LOAN_COLUMNS + ("extra",)
        params = tuple(data.get(col) for col in LOAN_COLUMNS) + (
            json.dumps(extra) if extra else None,
        )
        self._execute(
            "insert_loan",
            f"INSERT INTO loan_applications ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})",
            params,
        )
        logger.info(f"Inserted loan application {record.id} ({record.application_id})")
        return record

    # =========================================================================
    # Audit Steps
    # =========================================================================

    def insert_audit_step(self, step: WorkflowStepRecord) -> None:
        self._execute(
            "insert_audit_step",
            """
            INSERT INTO loan_workflow_steps
            (loan_application_id, step_name, status, user_id, notes, completed_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                step.loan_application_id,
                step.step_name,
                step.status,
                step.user_id,
                step.notes,
                _to_db(step.completed_at),
            ),
        )

    def query_audit_steps(self, loan_id: str) -> List[WorkflowStepRecord]:
        rows = self._query(
            "query_audit_steps",
            """
            SELECT * FROM loan_workflow_steps
            WHERE loan_application_id = ?
            ORDER BY completed_at DESC, id DESC
            """,
            (loan_id,),
        )
        return [
            WorkflowStepRecord(
                loan_application_id=row["loan_application_id"],
                step_name=row["step_name"],
                status=row["status"],
                user_id=row["user_id"],
                notes=row["notes"],
                completed_at=row["completed_at"],
            )
            for row in rows
        ]

    # =========================================================================
    # Submission Intents
    # =========================================================================

    @staticmethod
    def _intent_from_row(row: sqlite3.Row) -> SubmissionIntent:
        return SubmissionIntent(
            id=row["id"],
            loan_application_id=row["loan_application_id"],
            current_stage=row["current_stage"],
            target_stage=row["target_stage"],
            submitted_by=row["submitted_by"],
            status=row["status"],
            notes=row["notes"],
            submitted_at=row["submitted_at"],
        )

    def insert_submission_intent(self, intent: SubmissionIntent) -> str:
        intent_id = intent.id or uuid.uuid4().hex
        self._execute(
            "insert_submission_intent",
            """
            INSERT INTO loan_workflow_submissions
            (id, loan_application_id, current_stage, target_stage,
             submitted_by, status, notes, submitted_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                intent_id,
                intent.loan_application_id,
                _to_db(intent.current_stage),
                _to_db(intent.target_stage),
                intent.submitted_by,
                _to_db(intent.status),
                intent.notes,
                _to_db(intent.submitted_at),
            ),
        )
        return intent_id

    def find_pending_submission_intent(
        self, loan_id: str, target_stage: WorkflowStage
    ) -> Optional[SubmissionIntent]:
        rows = self._query(
            "find_pending_submission_intent",
            """
            SELECT * FROM loan_workflow_submissions
            WHERE loan_application_id = ? AND target_stage = ? AND status = 'pending'
            ORDER BY submitted_at DESC
            LIMIT 1
            """,
            (loan_id, _to_db(target_stage)),
        )
        return self._intent_from_row(rows[0]) if rows else None

    def update_submission_intent_status(self, intent_id: str, status: IntentStatus) -> None:
        self._execute(
            "update_submission_intent_status",
            "UPDATE loan_workflow_submissions SET status = ? WHERE id = ?",
            (_to_db(status), intent_id),
        )

    def list_submission_intents(self, loan_id: str) -> List[SubmissionIntent]:
        rows = self._query(
            "list_submission_intents",
            """
            SELECT * FROM loan_workflow_submissions
            WHERE loan_application_id = ?
            ORDER BY submitted_at ASC
            """,
            (loan_id,),
        )
        return [self._intent_from_row(row) for row in rows]

    # =========================================================================
    # Recalls
    # =========================================================================

    def insert_recall_record(self, record: RecallRecord) -> None:
        self._execute(
            "insert_recall_record",
            """
            INSERT INTO loan_workflow_recalls
            (loan_application_id, recalled_from_stage, recalled_to_stage,
             recalled_by, reason, recalled_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                record.loan_application_id,
                _to_db(record.recalled_from_stage),
                _to_db(record.recalled_to_stage),
                record.recalled_by,
                record.reason,
                _to_db(record.recalled_at),
            ),
        )

    def latest_recall_record(self, loan_id: str) -> Optional[RecallRecord]:
        rows = self._query(
            "latest_recall_record",
            """
            SELECT * FROM loan_workflow_recalls
            WHERE loan_application_id = ?
            ORDER BY recalled_at DESC, id DESC
            LIMIT 1
            """,
            (loan_id,),
        )
        if not rows:
            return None
        row = rows[0]
        return RecallRecord(
            loan_application_id=row["loan_application_id"],
            recalled_from_stage=row["recalled_from_stage"],
            recalled_to_stage=row["recalled_to_stage"],
            recalled_by=row["recalled_by"],
            reason=row["reason"],
            recalled_at=row["recalled_at"],
        )


# ============================================================================
# Supabase
# ============================================================================

class SupabaseRecordStore(RecordStore):
    """Record store over the hosted Supabase tables.

    The client is injected (a supabase-py ``Client``); this module does not
    import supabase itself. Every backend error is re-raised as
    RecordStoreError so the engine's cascade and advisory handling see one
    exception type.
    """

    LOANS = "loan_applications"
    SUBMISSIONS = "loan_workflow_submissions"
    RECALLS = "loan_workflow_recalls"
    STEPS = "loan_workflow_steps"

    def __init__(self, client: Any):
        """
        Args:
            client: A supabase-py client instance
        """
        self.client = client

    def _run(self, operation: str, query) -> list[dict]:
        try:
            result = query.execute()
        except Exception as e:
            logger.warning(f"Supabase {operation} failed: {e}")
            raise RecordStoreError(f"{operation} failed: {e}", operation=operation) from e
        return result.data or []

    def fetch_loan(self, loan_id: str) -> Optional[LoanApplicationRecord]:
        rows = self._run(
            "fetch_loan",
            self.client.table(self.LOANS).select("*").eq("id", loan_id).limit(1),
        )
        return LoanApplicationRecord(**rows[0]) if rows else None

    def update_loan(self, loan_id: str, fields: dict) -> None:
        payload = {key: _to_db(value) for key, value in fields.items()}
        rows = self._run(
            "update_loan",
            self.client.table(self.LOANS).update(payload).eq("id", loan_id),
        )
        if not rows:
            raise RecordStoreError(f"Loan application {loan_id} not found", operation="update_loan")

    def insert_loan(self, record: LoanApplicationRecord) -> LoanApplicationRecord:
        rows = self._run(
            "insert_loan",
            self.client.table(self.LOANS).insert(record.model_dump(mode="json")),
        )
        return LoanApplicationRecord(**rows[0]) if rows else record

    def insert_audit_step(self, step: WorkflowStepRecord) -> None:
        self._run(
            "insert_audit_step",
            self.client.table(self.STEPS).insert(step.model_dump(mode="json")),
        )

    def query_audit_steps(self, loan_id: str) -> List[WorkflowStepRecord]:
        rows = self._run(
            "query_audit_steps",
            self.client.table(self.STEPS)
            .select("*")
            .eq("loan_application_id", loan_id)
            .order("completed_at", desc=True),
        )
        return [WorkflowStepRecord(**row) for row in rows]

    def insert_submission_intent(self, intent: SubmissionIntent) -> str:
        payload = intent.model_dump(mode="json", exclude_none=True)
        payload.setdefault("id", uuid.uuid4().hex)
        self._run(
            "insert_submission_intent",
            self.client.table(self.SUBMISSIONS).insert(payload),
        )
        return payload["id"]

    def find_pending_submission_intent(
        self, loan_id: str, target_stage: WorkflowStage
    ) -> Optional[SubmissionIntent]:
        rows = self._run(
            "find_pending_submission_intent",
            self.client.table(self.SUBMISSIONS)
            .select("*")
            .eq("loan_application_id", loan_id)
            .eq("target_stage", _to_db(target_stage))
            .eq("status", IntentStatus.PENDING.value)
            .limit(1),
        )
        return SubmissionIntent(**rows[0]) if rows else None

    def update_submission_intent_status(self, intent_id: str, status: IntentStatus) -> None:
        self._run(
            "update_submission_intent_status",
            self.client.table(self.SUBMISSIONS).update({"status": _to_db(status)}).eq("id", intent_id),
        )

    def list_submission_intents(self, loan_id: str) -> List[SubmissionIntent]:
        rows = self._run(
            "list_submission_intents",
            self.client.table(self.SUBMISSIONS)
            .select("*")
            .eq("loan_application_id", loan_id)
            .order("submitted_at"),
        )
        return [SubmissionIntent(**row) for row in rows]

    def insert_recall_record(self, record: RecallRecord) -> None:
        self._run(
            "insert_recall_record",
            self.client.table(self.RECALLS).insert(record.model_dump(mode="json")),
        )

    def latest_recall_record(self, loan_id: str) -> Optional[RecallRecord]:
        rows = self._run(
            "latest_recall_record",
            self.client.table(self.RECALLS)
            .select("*")
            .eq("loan_application_id", loan_id)
            .order("recalled_at", desc=True)
            .limit(1),
        )
        return RecallRecord(**rows[0]) if rows else None
