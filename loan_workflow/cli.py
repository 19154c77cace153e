#!/usr/bin/env python3
"""
Loan Workflow CLI

Operator console over the loan workflow engine.

Usage:
    loan-workflow create LOAN_ID --amount 250000
    loan-workflow status LOAN_ID
    loan-workflow submit LOAN_ID assessment --user officer-7
    loan-workflow recall LOAN_ID --user officer-7 --reason "Missing payslips"
    loan-workflow resubmit LOAN_ID --user officer-7
    loan-workflow approve LOAN_ID --user manager-2
    loan-workflow history LOAN_ID
"""

import argparse
import json
import sys
import uuid

from . import __version__
from .approval import SQLiteApprovalGate
from .config import ConfigManager, configure_logging
from .engine import LoanWorkflowEngine
from .errors import LoanWorkflowError
from .schema import ApprovalLevel, LoanApplicationRecord, OperationResult


def get_engine(args) -> LoanWorkflowEngine:
    """Build an engine from --config, --db and --approval-db."""
    try:
        manager = ConfigManager(args.config)
    except LoanWorkflowError as e:
        print(f"✗ {e}")
        sys.exit(1)

    config = manager.get()
    if args.db:
        config.store.db_path = args.db
    if args.approval_db:
        config.approval.db_path = args.approval_db

    is_valid, errors = manager.validate()
    if not is_valid:
        print("✗ Invalid configuration:")
        for error in errors:
            print(f"  - {error}")
        sys.exit(1)

    configure_logging(config.logging)
    return LoanWorkflowEngine.from_config(config)


def _print_result(args, result: OperationResult):
    if args.json:
        print(json.dumps(result.model_dump(mode="json"), indent=2))
    elif result.success:
        print(f"✓ {result.message}")
    else:
        print(f"✗ {result.message}")

    if not result.success:
        sys.exit(1)


def cmd_create(args):
    """Register a loan application."""
    engine = get_engine(args)
    record = LoanApplicationRecord(
        id=args.loan_id,
        application_id=args.application_id or f"LA-{uuid.uuid4().hex[:8]}",
        status=args.status,
        contract_status=args.contract_status,
        requested_amount=args.amount,
        client_type=args.client_type,
    )
    try:
        engine.store.insert_loan(record)
    except LoanWorkflowError as e:
        print(f"✗ {e}")
        sys.exit(1)
    print(f"✓ Created loan {record.id} ({record.application_id})")


def cmd_status(args):
    """Show the workflow and approval status of a loan."""
    engine = get_engine(args)
    status = engine.get_comprehensive_workflow_status(args.loan_id)

    if args.json:
        print(json.dumps(status.model_dump(mode="json"), indent=2))
        return

    state = status.workflow_state
    if state is None:
        print(f"✗ Loan application not found: {args.loan_id}")
        sys.exit(1)

    print(f"Loan:        {state.loan_application_id}")
    print(f"Stage:       {state.current_stage.value}")
    print(f"Status:      {state.status.value} ({state.persisted_status})")
    print(f"Locked:      {'yes' if state.is_locked else 'no'}")
    print(f"Recallable:  {'yes' if state.can_be_recalled else 'no'}")
    if state.recall_reason:
        print(f"Recalled:    by {state.recalled_by}: {state.recall_reason}")
    if status.approval_state:
        approval = status.approval_state
        print(f"Approval:    {approval.approval_status} ({approval.workflow_progress}%)")
    else:
        print("Approval:    none on file")
    for step in status.next_steps:
        print(f"  → {step}")


def cmd_history(args):
    """Show the workflow steps of a loan."""
    engine = get_engine(args)
    steps = engine.get_workflow_history(args.loan_id)

    if args.json:
        print(json.dumps([s.model_dump(mode="json") for s in steps], indent=2))
        return

    if not steps:
        print("No workflow history")
        return

    for step in steps:
        who = f" by {step.user_id}" if step.user_id else ""
        notes = f" - {step.notes}" if step.notes else ""
        print(f"{step.completed_at:%Y-%m-%d %H:%M:%S}  {step.step_name} [{step.status}]{who}{notes}")


def cmd_submit(args):
    """Submit a loan to a later stage."""
    engine = get_engine(args)
    result = engine.submit_to_next_stage(args.loan_id, args.stage, args.user, args.notes)
    _print_result(args, result)


def cmd_recall(args):
    """Recall a loan from its current stage."""
    engine = get_engine(args)
    result = engine.recall_loan(args.loan_id, args.user, args.reason, args.to)
    _print_result(args, result)


def cmd_resubmit(args):
    """Resubmit a recalled loan."""
    engine = get_engine(args)
    result = engine.resubmit_recalled_loan(args.loan_id, args.user, args.notes)
    _print_result(args, result)


def cmd_add_level(args):
    """Add an approval level."""
    engine = get_engine(args)
    level = ApprovalLevel(
        id=args.level_id,
        level_name=args.name,
        min_amount=args.min_amount,
        max_amount=args.max_amount,
        requires_committee_approval=args.committee_threshold is not None,
        committee_threshold=args.committee_threshold,
        approval_authority=args.authority,
    )
    try:
        engine.approval_gate.add_approval_level(level)
    except LoanWorkflowError as e:
        print(f"✗ {e}")
        sys.exit(1)
    print(f"✓ Added approval level {level.level_name} ({level.min_amount:,.0f}-{level.max_amount:,.0f})")


def cmd_init_approval(args):
    """Assign a loan to the approval level covering its amount."""
    engine = get_engine(args)
    result = engine.initialize_approval_workflow(args.loan_id, args.user)
    _print_result(args, result)


def cmd_approve(args):
    """Record an approval decision."""
    engine = get_engine(args)
    gate = engine.approval_gate
    if not isinstance(gate, SQLiteApprovalGate):
        print("✗ Approval decisions require the SQLite approval gate")
        sys.exit(1)

    try:
        gate.record_decision(args.loan_id, args.decision, args.user, args.comments or "")
    except (ValueError, LoanWorkflowError) as e:
        print(f"✗ {e}")
        sys.exit(1)
    print(f"✓ Recorded {args.decision} for loan {args.loan_id}")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Loan Workflow - stage-ordered processing of loan applications",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  loan-workflow create loan-1 --amount 250000
  loan-workflow init-approval loan-1 --user officer-7
  loan-workflow submit loan-1 assessment --user officer-7
  loan-workflow approve loan-1 --user manager-2
  loan-workflow submit loan-1 contract_generation --user officer-7
  loan-workflow recall loan-1 --user officer-7 --reason "Wrong rate"
  loan-workflow status loan-1
        """
    )

    parser.add_argument('--config', '-c', help='Configuration file (default: loan_workflow.yaml)')
    parser.add_argument('--db', help='Loan database path (overrides config)')
    parser.add_argument('--approval-db', help='Approval database path (overrides config)')
    parser.add_argument('--json', action='store_true', help='Output as JSON')
    parser.add_argument('--version', '-v', action='version', version=f'%(prog)s {__version__}')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Create command
    create_parser = subparsers.add_parser('create', help='Register a loan application')
    create_parser.add_argument('loan_id', help='Loan application id')
    create_parser.add_argument('--application-id', help='Business identifier (default: generated)')
    create_parser.add_argument('--amount', type=float, help='Requested amount')
    create_parser.add_argument('--client-type', help='Client type')
    create_parser.add_argument('--status', default='submitted', help='Initial status (default: submitted)')
    create_parser.add_argument('--contract-status', help='Initial contract status')
    create_parser.set_defaults(func=cmd_create)

    # Status command
    status_parser = subparsers.add_parser('status', help='Show workflow status')
    status_parser.add_argument('loan_id', help='Loan application id')
    status_parser.set_defaults(func=cmd_status)

    # History command
    history_parser = subparsers.add_parser('history', help='Show workflow history')
    history_parser.add_argument('loan_id', help='Loan application id')
    history_parser.set_defaults(func=cmd_history)

    # Submit command
    submit_parser = subparsers.add_parser('submit', help='Submit a loan to a later stage')
    submit_parser.add_argument('loan_id', help='Loan application id')
    submit_parser.add_argument('stage', help='Target stage')
    submit_parser.add_argument('--user', '-u', required=True, help='Submitting user')
    submit_parser.add_argument('--notes', '-n', help='Submission notes')
    submit_parser.set_defaults(func=cmd_submit)

    # Recall command
    recall_parser = subparsers.add_parser('recall', help='Recall a loan from its current stage')
    recall_parser.add_argument('loan_id', help='Loan application id')
    recall_parser.add_argument('--user', '-u', required=True, help='Recalling user')
    recall_parser.add_argument('--reason', '-r', required=True, help='Reason for the recall')
    recall_parser.add_argument('--to', help='Stage to recall to (default: previous stage)')
    recall_parser.set_defaults(func=cmd_recall)

    # Resubmit command
    resubmit_parser = subparsers.add_parser('resubmit', help='Resubmit a recalled loan')
    resubmit_parser.add_argument('loan_id', help='Loan application id')
    resubmit_parser.add_argument('--user', '-u', required=True, help='Resubmitting user')
    resubmit_parser.add_argument('--notes', '-n', help='Resubmission notes')
    resubmit_parser.set_defaults(func=cmd_resubmit)

    # Add-level command
    level_parser = subparsers.add_parser('add-level', help='Add an approval level')
    level_parser.add_argument('level_id', help='Approval level id')
    level_parser.add_argument('--name', required=True, help='Level name')
    level_parser.add_argument('--min-amount', type=float, required=True, help='Smallest amount covered')
    level_parser.add_argument('--max-amount', type=float, required=True, help='Largest amount covered')
    level_parser.add_argument('--committee-threshold', type=float,
                              help='Amount from which committee review is required')
    level_parser.add_argument('--authority', default='MANAGER', help='Approval authority (default: MANAGER)')
    level_parser.set_defaults(func=cmd_add_level)

    # Init-approval command
    init_parser = subparsers.add_parser('init-approval', help='Assign a loan to its approval level')
    init_parser.add_argument('loan_id', help='Loan application id')
    init_parser.add_argument('--user', '-u', required=True, help='Initiating user')
    init_parser.set_defaults(func=cmd_init_approval)

    # Approve command
    approve_parser = subparsers.add_parser('approve', help='Record an approval decision')
    approve_parser.add_argument('loan_id', help='Loan application id')
    approve_parser.add_argument('--user', '-u', required=True, help='Deciding user')
    approve_parser.add_argument('--decision', default='approved',
                                help='Approval status to record (default: approved)')
    approve_parser.add_argument('--comments', help='Decision comments')
    approve_parser.set_defaults(func=cmd_approve)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == '__main__':
    main()
