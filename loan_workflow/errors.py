"""
Error Handling

Exception hierarchy for the loan workflow engine. Expected rejections
(guard and approval denials) are returned as result values; these
exceptions cover backend failures and misconfiguration.
"""

from typing import Optional


class LoanWorkflowError(Exception):
    """Base exception for loan workflow errors"""
    pass


class RecordStoreError(LoanWorkflowError):
    """The record store rejected or could not complete an operation"""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation


class ApprovalGateError(LoanWorkflowError):
    """The approval gate could not answer"""
    pass


class ConfigurationError(LoanWorkflowError):
    """Configuration is invalid"""
    pass


class PersistenceExhaustedError(LoanWorkflowError):
    """Every persistence strategy failed to write a status change"""

    def __init__(self, loan_id: str, status: str, attempted: list[str]):
        super().__init__(
            f"Could not persist status '{status}' for loan {loan_id}; "
            f"attempted: {', '.join(attempted) or 'none'}"
        )
        self.loan_id = loan_id
        self.status = status
        self.attempted = attempted
