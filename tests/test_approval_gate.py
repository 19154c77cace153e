"""
Tests for the SQLite approval gate and the engine's approval operations.
"""

from unittest.mock import MagicMock

import pytest

from loan_workflow.approval import SQLiteApprovalGate, calculate_workflow_progress
from loan_workflow.engine import LoanWorkflowEngine
from loan_workflow.errors import ApprovalGateError
from loan_workflow.schema import ApprovalLevel, ErrorKind


@pytest.fixture
def banded_gate(tmp_path):
    """Gate with branch, regional and head-office bands."""
    gate = SQLiteApprovalGate(tmp_path / "bands.db")
    gate.add_approval_level(ApprovalLevel(
        id="branch", level_name="Branch", min_amount=0, max_amount=100_000,
    ))
    gate.add_approval_level(ApprovalLevel(
        id="regional", level_name="Regional", min_amount=100_001, max_amount=1_000_000,
    ))
    gate.add_approval_level(ApprovalLevel(
        id="head_office",
        level_name="Head Office",
        min_amount=1_000_001,
        max_amount=50_000_000,
        requires_committee_approval=True,
        committee_threshold=5_000_000,
        approval_authority="CREDIT_COMMITTEE",
    ))
    return gate


class TestWorkflowProgress:
    """Tests for the progress percentages."""

    @pytest.mark.parametrize("status,committee,expected", [
        ("pending_initial_review", False, 20),
        ("pending_supervisor_approval", False, 40),
        ("pending_manager_approval", False, 60),
        ("pending_committee_review", True, 80),
        ("pending_committee_review", False, 100),
        ("approved", False, 100),
        ("rejected", True, 0),
        ("unknown", False, 0),
    ])
    def test_progress(self, status, committee, expected):
        assert calculate_workflow_progress(status, committee) == expected


class TestApprovalLevels:
    """Tests for level selection."""

    @pytest.mark.parametrize("amount,level_id", [
        (50_000, "branch"),
        (100_000, "branch"),
        (750_000, "regional"),
        (20_000_000, "head_office"),
    ])
    def test_determine_approval_level(self, banded_gate, amount, level_id):
        assert banded_gate.determine_approval_level(amount, "individual").id == level_id

    def test_no_level_covers_amount(self, banded_gate):
        assert banded_gate.determine_approval_level(90_000_000, "corporate") is None

    def test_inactive_levels_ignored(self, banded_gate):
        banded_gate.add_approval_level(ApprovalLevel(
            id="branch", level_name="Branch", min_amount=0, max_amount=100_000, is_active=False,
        ))
        assert banded_gate.determine_approval_level(50_000, None) is None
        assert [l.id for l in banded_gate.get_approval_levels()] == ["regional", "head_office"]


class TestDecisions:
    """Tests for assignments and decisions."""

    def test_no_state_before_assignment(self, banded_gate):
        assert banded_gate.get_approval_workflow_state("loan-1") is None

    def test_assignment_starts_initial_review(self, banded_gate):
        assignment = banded_gate.create_approval_assignment("loan-1", "regional", None, "officer-1")
        state = banded_gate.get_approval_workflow_state("loan-1")

        assert state.approval_status == "pending_initial_review"
        assert state.workflow_progress == 20
        assert state.current_assignment.id == assignment.id
        assert state.current_approval_level.id == "regional"
        assert state.is_approved is False

    def test_unknown_level(self, banded_gate):
        with pytest.raises(ApprovalGateError, match="Unknown approval level"):
            banded_gate.create_approval_assignment("loan-1", "board", None, "officer-1")

    def test_committee_required_above_threshold(self, banded_gate):
        banded_gate.create_approval_assignment(
            "loan-1", "head_office", None, "officer-1", requested_amount=8_000_000
        )
        assert banded_gate.get_approval_workflow_state("loan-1").is_committee_required is True

    def test_committee_not_required_below_threshold(self, banded_gate):
        banded_gate.create_approval_assignment(
            "loan-1", "head_office", None, "officer-1", requested_amount=2_000_000
        )
        assert banded_gate.get_approval_workflow_state("loan-1").is_committee_required is False

    def test_approval_closes_assignment(self, banded_gate):
        banded_gate.create_approval_assignment("loan-1", "branch", "manager-1", "officer-1")
        banded_gate.record_decision("loan-1", "approved", "manager-1", "Within policy")

        state = banded_gate.get_approval_workflow_state("loan-1")
        assert state.is_approved is True
        assert state.workflow_progress == 100
        assert state.current_assignment is None

        assignment = banded_gate.get_approval_assignments("loan-1")[0]
        assert assignment.status == "approved"
        assert assignment.approved_at is not None

    def test_history(self, banded_gate):
        banded_gate.create_approval_assignment("loan-1", "branch", None, "officer-1")
        banded_gate.record_decision("loan-1", "pending_manager_approval", "supervisor-1")
        banded_gate.record_decision("loan-1", "rejected", "manager-1", "Affordability")

        history = banded_gate.get_approval_history("loan-1")
        assert [h["new_status"] for h in history] == ["rejected", "pending_manager_approval"]
        assert history[0]["previous_status"] == "pending_manager_approval"

    def test_invalid_decision(self, banded_gate):
        with pytest.raises(ValueError, match="Invalid approval status"):
            banded_gate.record_decision("loan-1", "maybe")


class TestEngineApproval:
    """Approval operations on the engine."""

    def test_initialize_approval_workflow(self, store, banded_gate, seed_loan):
        seed_loan(requested_amount=750_000)
        engine = LoanWorkflowEngine(store, banded_gate)

        result = engine.initialize_approval_workflow("loan-1", "officer-1")

        assert result.success is True
        assert result.details["approval_level_id"] == "regional"
        state = banded_gate.get_approval_workflow_state("loan-1")
        assert state.current_assignment.id == result.details["assignment_id"]
        assert state.current_assignment.assigned_to_user_id is None

    def test_initialize_passes_amount_for_committee(self, store, banded_gate, seed_loan):
        seed_loan(requested_amount=8_000_000)
        LoanWorkflowEngine(store, banded_gate).initialize_approval_workflow("loan-1", "officer-1")

        assert banded_gate.get_approval_workflow_state("loan-1").is_committee_required is True

    def test_initialize_without_level(self, store, banded_gate, seed_loan):
        seed_loan(requested_amount=90_000_000)
        result = LoanWorkflowEngine(store, banded_gate).initialize_approval_workflow("loan-1", "officer-1")

        assert result.success is False
        assert result.message == "No appropriate approval level found"

    def test_initialize_missing_loan(self, store, banded_gate):
        result = LoanWorkflowEngine(store, banded_gate).initialize_approval_workflow("ghost", "officer-1")
        assert result.error_kind == ErrorKind.NOT_FOUND

    def test_initialize_without_gate(self, store, seed_loan):
        seed_loan()
        result = LoanWorkflowEngine(store).initialize_approval_workflow("loan-1", "officer-1")
        assert result.success is False


class TestComprehensiveStatus:
    """Tests for get_comprehensive_workflow_status."""

    def test_not_approved(self, engine, seed_loan):
        seed_loan(status="under_review")
        status = engine.get_comprehensive_workflow_status("loan-1")

        assert status.can_proceed is False
        assert status.approval_state is None
        assert status.next_steps == ["Complete approval process"]

    def test_approved(self, engine, seed_loan, approve):
        seed_loan(status="under_review")
        approve()
        status = engine.get_comprehensive_workflow_status("loan-1")

        assert status.can_proceed is True
        assert status.approval_state.is_approved is True
        assert status.next_steps == ["Proceed to contract_generation"]

    def test_locked_has_no_next_steps(self, engine, seed_loan, approve):
        seed_loan(status="disbursed")
        approve()
        assert engine.get_comprehensive_workflow_status("loan-1").next_steps == []

    def test_missing_loan_has_no_next_steps(self, engine):
        status = engine.get_comprehensive_workflow_status("ghost")

        assert status.workflow_state is None
        assert status.next_steps == []

    def test_gate_error(self, store, seed_loan):
        seed_loan()
        gate = MagicMock()
        gate.get_approval_workflow_state.side_effect = ApprovalGateError("down")

        status = LoanWorkflowEngine(store, gate).get_comprehensive_workflow_status("loan-1")

        assert status.workflow_state is None
        assert status.next_steps == ["Fix workflow errors"]
