"""
Tests for the audit trail and the advisory failure log.
"""

import threading
from unittest.mock import MagicMock

from loan_workflow.advisory import AdvisoryFailureLog, AdvisoryPolicy
from loan_workflow.audit import AuditRecorder, WorkflowHistoryReader
from loan_workflow.errors import RecordStoreError


class TestAuditRecorder:
    """Tests for best-effort step recording."""

    def test_record_step(self, store):
        recorder = AuditRecorder(store)
        assert recorder.record_step("loan-1", "recalled", "completed", "officer-1", "reason") is True

        step = store.query_audit_steps("loan-1")[0]
        assert step.step_name == "recalled"
        assert step.user_id == "officer-1"
        assert step.notes == "reason"

    def test_failure_is_swallowed_and_recorded(self):
        store = MagicMock()
        store.insert_audit_step.side_effect = RecordStoreError("permission denied")
        log = AdvisoryFailureLog()

        ok = AuditRecorder(store, failure_log=log).record_step("loan-1", "recalled")

        assert ok is False
        failure = log.failures("audit")[0]
        assert failure.loan_application_id == "loan-1"
        assert failure.error == "permission denied"

    def test_disabled(self):
        store = MagicMock()
        recorder = AuditRecorder(store, AdvisoryPolicy(audit_store_enabled=False))

        assert recorder.record_step("loan-1", "recalled") is False
        store.insert_audit_step.assert_not_called()


class TestWorkflowHistoryReader:
    """Tests for reading history."""

    def test_unreachable_store_gives_empty_history(self):
        store = MagicMock()
        store.query_audit_steps.side_effect = RecordStoreError("timeout")
        assert WorkflowHistoryReader(store).get_history("loan-1") == []

    def test_disabled(self):
        store = MagicMock()
        reader = WorkflowHistoryReader(store, AdvisoryPolicy(audit_store_enabled=False))

        assert reader.get_history("loan-1") == []
        store.query_audit_steps.assert_not_called()


class TestAdvisoryFailureLog:
    """Tests for the in-memory failure log."""

    def test_filter_by_store(self):
        log = AdvisoryFailureLog()
        log.record("intent", "insert_submission_intent", "loan-1", RecordStoreError("a"))
        log.record("audit", "insert_audit_step", "loan-1", RecordStoreError("b"))

        assert len(log) == 2
        assert [f.store for f in log.failures("intent")] == ["intent"]

    def test_bounded(self):
        log = AdvisoryFailureLog(max_entries=3)
        for i in range(5):
            log.record("audit", "insert_audit_step", f"loan-{i}", RecordStoreError("x"))

        assert [f.loan_application_id for f in log.failures()] == ["loan-2", "loan-3", "loan-4"]

    def test_clear(self):
        log = AdvisoryFailureLog()
        log.record("audit", "insert_audit_step", "loan-1", RecordStoreError("x"))
        log.clear()
        assert len(log) == 0

    def test_concurrent_records(self):
        log = AdvisoryFailureLog()

        def worker():
            for _ in range(50):
                log.record("audit", "insert_audit_step", "loan-1", RecordStoreError("x"))

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(log) == 200
