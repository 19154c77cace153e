"""
Tests for the loan-workflow command line.
"""

import json
import os

import pytest

from loan_workflow import cli


@pytest.fixture
def run(tmp_path, monkeypatch):
    """Run the CLI against temp databases and return its exit code."""
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith("LOAN_WORKFLOW_"):
            monkeypatch.delenv(key)
    monkeypatch.setattr(cli, "configure_logging", lambda config: None)

    def _run(*args):
        argv = ["--db", str(tmp_path / "loans.db"), "--approval-db", str(tmp_path / "approvals.db")]
        try:
            cli.main(argv + list(args))
        except SystemExit as e:
            return e.code
        return 0
    return _run


class TestCLI:
    """Smoke paths through the CLI."""

    def test_no_command(self, run):
        assert run() == 1

    def test_create_and_status(self, run, capsys):
        assert run("create", "loan-1", "--amount", "250000") == 0
        assert run("status", "loan-1") == 0

        out = capsys.readouterr().out
        assert "✓ Created loan loan-1" in out
        assert "Stage:       submitted" in out
        assert "Complete approval process" in out

    def test_status_missing_loan(self, run, capsys):
        assert run("status", "ghost") == 1
        assert "not found" in capsys.readouterr().out

    def test_submit_and_history(self, run, capsys):
        run("create", "loan-1")
        assert run("submit", "loan-1", "assessment", "--user", "officer-1", "--notes", "Docs in") == 0
        assert run("history", "loan-1") == 0

        out = capsys.readouterr().out
        assert "✓ Loan successfully submitted to assessment stage" in out
        assert "submitted_to_assessment [completed] by officer-1 - Docs in" in out

    def test_rejected_submit_exits_nonzero(self, run, capsys):
        run("create", "loan-1")
        assert run("submit", "loan-1", "submitted", "--user", "officer-1") == 1
        assert "✗ Loan is already at or beyond submitted stage" in capsys.readouterr().out

    def test_approval_flow(self, run, capsys):
        run("create", "loan-1", "--amount", "50000", "--status", "under_review")
        assert run("add-level", "L1", "--name", "Branch", "--min-amount", "0", "--max-amount", "100000") == 0
        assert run("init-approval", "loan-1", "--user", "officer-1") == 0
        assert run("submit", "loan-1", "contract_generation", "--user", "officer-1") == 1
        assert run("approve", "loan-1", "--user", "manager-1") == 0
        assert run("submit", "loan-1", "contract_generation", "--user", "officer-1") == 0

        out = capsys.readouterr().out
        assert "Loan must be approved before proceeding to contract_generation" in out
        assert "✓ Recorded approved for loan loan-1" in out

    def test_invalid_decision(self, run, capsys):
        assert run("approve", "loan-1", "--user", "manager-1", "--decision", "maybe") == 1
        assert "Invalid approval status" in capsys.readouterr().out

    def test_recall_and_resubmit(self, run, capsys):
        run("create", "loan-1", "--status", "contract_uploaded")
        assert run("recall", "loan-1", "--user", "officer-1", "--reason", "Signature missing") == 0
        assert run("resubmit", "loan-1", "--user", "officer-1") == 0

        out = capsys.readouterr().out
        assert "✓ Loan successfully recalled" in out
        assert "✓ Loan resubmitted to contract_upload stage" in out

    def test_recall_locked_loan(self, run, capsys):
        run("create", "loan-1", "--status", "disbursed")
        assert run("recall", "loan-1", "--user", "officer-1", "--reason", "Complaint") == 1
        assert "cannot be recalled" in capsys.readouterr().out

    def test_json_output(self, run, capsys):
        run("create", "loan-1")
        capsys.readouterr()

        assert run("--json", "status", "loan-1") == 0
        status = json.loads(capsys.readouterr().out)

        assert status["workflow_state"]["current_stage"] == "submitted"
        assert status["can_proceed"] is False

    def test_invalid_config(self, run, tmp_path, capsys):
        config = tmp_path / "bad.yaml"
        config.write_text("writer:\n  strategies: [bulk_upsert]\n")

        assert run("--config", str(config), "status", "loan-1") == 1
        assert "Unknown persistence strategies: bulk_upsert" in capsys.readouterr().out
