"""Shared fixtures for the loan workflow tests."""

import pytest

from loan_workflow.advisory import AdvisoryFailureLog, AdvisoryPolicy
from loan_workflow.approval import SQLiteApprovalGate
from loan_workflow.engine import LoanWorkflowEngine
from loan_workflow.schema import ApprovalLevel, LoanApplicationRecord
from loan_workflow.store import SQLiteRecordStore


@pytest.fixture
def store(tmp_path):
    """Record store backed by a temp database."""
    return SQLiteRecordStore(tmp_path / "loans.db")


@pytest.fixture
def gate(tmp_path):
    """Approval gate with a single level covering every amount."""
    gate = SQLiteApprovalGate(tmp_path / "approvals.db")
    gate.add_approval_level(ApprovalLevel(
        id="L1",
        level_name="Branch",
        min_amount=0,
        max_amount=10_000_000,
    ))
    return gate


@pytest.fixture
def failure_log():
    return AdvisoryFailureLog()


@pytest.fixture
def engine(store, gate, failure_log):
    """Engine over the temp store and gate with default policy."""
    return LoanWorkflowEngine(store, gate, policy=AdvisoryPolicy(), failure_log=failure_log)


@pytest.fixture
def seed_loan(store):
    """Insert a loan application and return it."""
    def _seed(loan_id="loan-1", status="submitted", contract_status=None, **extra):
        record = LoanApplicationRecord(
            id=loan_id,
            application_id=f"LA-{loan_id}",
            status=status,
            contract_status=contract_status,
            requested_amount=extra.pop("requested_amount", 250_000),
            client_type=extra.pop("client_type", "individual"),
            **extra,
        )
        return store.insert_loan(record)
    return _seed


@pytest.fixture
def approve(gate):
    """Mark a loan as approved in the approval gate."""
    def _approve(loan_id="loan-1"):
        gate.create_approval_assignment(loan_id, "L1", None, "officer-1")
        gate.record_decision(loan_id, "approved", "manager-1", "ok")
    return _approve
