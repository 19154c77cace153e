"""
Tests for forward submission through the engine.
"""

import threading
from unittest.mock import MagicMock

from loan_workflow.advisory import AdvisoryFailureLog, AdvisoryPolicy
from loan_workflow.engine import LoanWorkflowEngine
from loan_workflow.errors import RecordStoreError
from loan_workflow.schema import ErrorKind, IntentStatus, WorkflowStage


class TestSubmitToNextStage:
    """Tests for submit_to_next_stage."""

    def test_submit_to_assessment(self, engine, store, seed_loan):
        seed_loan()
        result = engine.submit_to_next_stage("loan-1", "assessment", "officer-1", "Docs complete")

        assert result.success is True
        assert result.message == "Loan successfully submitted to assessment stage"
        assert result.details["status"] == "under_review"
        assert result.details["strategy"] == "status_only"
        assert store.fetch_loan("loan-1").status == "under_review"

    def test_contract_upload_scenario(self, engine, store, seed_loan, approve):
        """approved + generated, gate approved: submit to contract_upload."""
        seed_loan(status="approved", contract_status="generated")
        approve()

        state = engine.get_workflow_state("loan-1")
        assert state.current_stage == WorkflowStage.CONTRACT_GENERATION

        can_proceed, _ = engine.can_proceed_to_next_stage("loan-1", "contract_upload")
        assert can_proceed is True

        result = engine.submit_to_next_stage("loan-1", "contract_upload", "officer-1")

        assert result.success is True
        assert store.fetch_loan("loan-1").status == "contract_generated"
        steps = [s.step_name for s in engine.get_workflow_history("loan-1")]
        assert steps == ["submitted_to_contract_upload"]

    def test_guard_rejection_returned_verbatim(self, engine, store, seed_loan):
        seed_loan(status="contract_uploaded")
        result = engine.submit_to_next_stage("loan-1", "assessment", "officer-1")

        assert result.success is False
        assert result.message == "Loan is already at or beyond assessment stage"
        assert result.error_kind == ErrorKind.INVALID_TRANSITION
        assert store.list_submission_intents("loan-1") == []

    def test_approval_required(self, engine, seed_loan):
        seed_loan(status="contract_uploaded")
        result = engine.submit_to_next_stage("loan-1", "disbursement", "officer-1")

        assert result.success is False
        assert result.error_kind == ErrorKind.APPROVAL_REQUIRED

    def test_intent_closed_on_success(self, engine, store, seed_loan):
        seed_loan()
        engine.submit_to_next_stage("loan-1", "assessment", "officer-1", "first pass")

        intents = store.list_submission_intents("loan-1")
        assert len(intents) == 1
        assert intents[0].status == IntentStatus.COMPLETED
        assert intents[0].current_stage == WorkflowStage.SUBMITTED
        assert intents[0].target_stage == WorkflowStage.ASSESSMENT
        assert intents[0].notes == "first pass"

    def test_walks_every_stage(self, engine, store, seed_loan, approve):
        """A loan can be walked from submitted to completed."""
        seed_loan()
        approve()

        for stage in ("assessment", "contract_generation"):
            assert engine.submit_to_next_stage("loan-1", stage, "officer-1").success

        # contract generation is confirmed by the documents service
        store.update_loan("loan-1", {"contract_status": "generated"})

        for stage in ("contract_upload", "verification", "disbursement", "completed"):
            result = engine.submit_to_next_stage("loan-1", stage, "officer-1")
            assert result.success, result.message

        state = engine.get_workflow_state("loan-1")
        assert state.current_stage == WorkflowStage.COMPLETED
        assert state.is_locked is True
        assert len(engine.get_workflow_history("loan-1")) == 6


class TestPersistenceFailure:
    """Tests for exhausted status writes."""

    def test_exhausted_write(self, store, gate, seed_loan):
        seed_loan()
        store.update_loan = MagicMock(side_effect=RecordStoreError("rejected"))
        store.insert_loan = MagicMock(side_effect=RecordStoreError("rejected"))
        engine = LoanWorkflowEngine(store, gate)

        result = engine.submit_to_next_stage("loan-1", "assessment", "officer-1")

        assert result.success is False
        assert result.error_kind == ErrorKind.PERSISTENCE_EXHAUSTED
        assert len(result.details["attempted"]) == 4
        assert engine.get_workflow_history("loan-1") == []

    def test_failed_intent_allows_retry(self, store, gate, seed_loan):
        """A failed write closes its intent so the loan can be resubmitted."""
        seed_loan()
        real_update = store.update_loan
        store.update_loan = MagicMock(side_effect=RecordStoreError("rejected"))
        store.insert_loan = MagicMock(side_effect=RecordStoreError("rejected"))
        engine = LoanWorkflowEngine(store, gate)
        engine.submit_to_next_stage("loan-1", "assessment", "officer-1")

        assert store.list_submission_intents("loan-1")[0].status == IntentStatus.FAILED

        store.update_loan = real_update
        assert engine.submit_to_next_stage("loan-1", "assessment", "officer-1").success

    def test_replacement_reported(self, store, gate, seed_loan):
        seed_loan()
        store.update_loan = MagicMock(side_effect=RecordStoreError("rejected"))
        engine = LoanWorkflowEngine(store, gate)

        result = engine.submit_to_next_stage("loan-1", "assessment", "officer-1")

        assert result.success is True
        assert result.details["strategy"] == "record_replacement"
        assert result.details["new_application_id"] in result.message


class TestAdvisoryStores:
    """Tests for degraded intent and audit stores."""

    def test_audit_failure_does_not_fail_submission(self, engine, store, seed_loan, failure_log):
        seed_loan()
        store.insert_audit_step = MagicMock(side_effect=RecordStoreError("audit table missing"))

        result = engine.submit_to_next_stage("loan-1", "assessment", "officer-1")

        assert result.success is True
        assert store.fetch_loan("loan-1").status == "under_review"
        assert [f.operation for f in failure_log.failures("audit")] == ["insert_audit_step"]

    def test_intent_failure_tolerated(self, engine, store, seed_loan, failure_log):
        seed_loan()
        store.insert_submission_intent = MagicMock(side_effect=RecordStoreError("no table"))

        result = engine.submit_to_next_stage("loan-1", "assessment", "officer-1")

        assert result.success is True
        assert len(failure_log.failures("intent")) == 1

    def test_injected_failure_log_is_shared(self, store, gate, seed_loan):
        """Every component records into the log passed to the engine."""
        seed_loan()
        log = AdvisoryFailureLog(max_entries=5)
        engine = LoanWorkflowEngine(store, gate, failure_log=log)
        store.insert_audit_step = MagicMock(side_effect=RecordStoreError("audit table missing"))
        store.find_pending_submission_intent = MagicMock(side_effect=RecordStoreError("no table"))

        engine.submit_to_next_stage("loan-1", "assessment", "officer-1")

        assert engine.failure_log is log
        assert engine.guard.failure_log is log
        assert engine.audit.failure_log is log
        assert engine.submissions.failure_log is log
        assert sorted(f.operation for f in log.failures()) == [
            "find_pending_submission_intent",
            "insert_audit_step",
        ]

    def test_injected_policy_is_shared(self, store, gate):
        policy = AdvisoryPolicy()
        engine = LoanWorkflowEngine(store, gate, policy=policy)

        assert engine.guard.policy is policy
        assert engine.audit.policy is policy
        assert engine.history.policy is policy

    def test_intent_failure_strict(self, store, gate, seed_loan):
        seed_loan()
        store.insert_submission_intent = MagicMock(side_effect=RecordStoreError("no table"))
        engine = LoanWorkflowEngine(store, gate, policy=AdvisoryPolicy(strict_intents=True))

        result = engine.submit_to_next_stage("loan-1", "assessment", "officer-1")

        assert result.success is False
        assert result.message == "Failed to create submission record"
        assert result.error_kind == ErrorKind.ADVISORY_FAILURE
        assert store.fetch_loan("loan-1").status == "submitted"

    def test_stores_disabled(self, store, gate, seed_loan):
        seed_loan()
        policy = AdvisoryPolicy(intent_store_enabled=False, audit_store_enabled=False)
        engine = LoanWorkflowEngine(store, gate, policy=policy)

        assert engine.submit_to_next_stage("loan-1", "assessment", "officer-1").success
        assert store.list_submission_intents("loan-1") == []
        assert store.query_audit_steps("loan-1") == []


class TestConcurrentSubmission:
    """The guard and the write are not atomic."""

    def test_duplicate_submissions_can_both_succeed(self, store, gate, seed_loan):
        """Two submissions that pass the guard together both succeed."""
        seed_loan()
        engine = LoanWorkflowEngine(store, gate)

        # hold both callers between the pending-intent read and the write
        barrier = threading.Barrier(2, timeout=10)
        find_pending = store.find_pending_submission_intent

        def synchronized_find(loan_id, target_stage):
            found = find_pending(loan_id, target_stage)
            barrier.wait()
            return found

        store.find_pending_submission_intent = synchronized_find

        results = []

        def submit(user):
            results.append(engine.submit_to_next_stage("loan-1", "assessment", user))

        threads = [threading.Thread(target=submit, args=(f"officer-{i}",)) for i in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert [r.success for r in results] == [True, True]
        intents = store.list_submission_intents("loan-1")
        assert len(intents) == 2
        assert {i.submitted_by for i in intents} == {"officer-0", "officer-1"}
        assert len(engine.get_workflow_history("loan-1")) == 2
