"""
Resilient Status Writer

Persists a loan status change through a backend whose constraint and trigger
layer rejects some field combinations for undocumented reasons.

Strategies are tried in order, least invasive first, stopping at the first
success. Each is attempted once; there is no retry or backoff inside a
strategy. The last default strategy, record replacement, inserts a copy of
the loan under a new identifier and leaves the original row untouched.
"""

import time
import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from pydantic import BaseModel, Field

from .errors import PersistenceExhaustedError, RecordStoreError
from .schema import ErrorKind
from .store import RecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PersistenceStrategy:
    """One way of writing a status change."""
    name: str
    fields: tuple[str, ...]  # timestamp columns written alongside status
    description: str
    replaces_record: bool = False


DEFAULT_STRATEGIES: tuple[PersistenceStrategy, ...] = (
    PersistenceStrategy(
        name="status_only",
        fields=(),
        description="Update the status column alone",
    ),
    PersistenceStrategy(
        name="status_with_submitted_at",
        fields=("submitted_at",),
        description="Update status together with submitted_at",
    ),
    PersistenceStrategy(
        name="status_with_timestamps",
        fields=("updated_at", "submitted_at"),
        description="Update status together with updated_at and submitted_at",
    ),
    PersistenceStrategy(
        name="record_replacement",
        fields=("created_at", "updated_at"),
        description="Insert a copy of the loan with a new identifier and the new status",
        replaces_record=True,
    ),
)

STRATEGIES_BY_NAME = {strategy.name: strategy for strategy in DEFAULT_STRATEGIES}


def generate_application_id(prefix: str = "LA") -> str:
    """Business identifier for a replacement record."""
    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


class StatusWriteResult(BaseModel):
    """Outcome of a status write."""
    success: bool
    message: str
    strategy: Optional[str] = None
    attempted: list[str] = Field(default_factory=list)
    new_loan_id: Optional[str] = None
    new_application_id: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    def raise_for_status(self, loan_id: str, status: str) -> None:
        """Raise PersistenceExhaustedError if the write failed."""
        if not self.success:
            raise PersistenceExhaustedError(loan_id, status, self.attempted)


class ResilientStatusWriter:
    """Writes status changes through an ordered list of strategies."""

    def __init__(
        self,
        store: RecordStore,
        strategies: Optional[Sequence[PersistenceStrategy]] = None,
        application_id_prefix: str = "LA",
        id_factory: Optional[Callable[[str], str]] = None,
    ):
        """
        Args:
            store: Record store to write to
            strategies: Strategies in the order to try them (default: DEFAULT_STRATEGIES)
            application_id_prefix: Prefix of replacement business identifiers
            id_factory: Generates a business identifier from the prefix
        """
        self.store = store
        self.strategies = tuple(strategies) if strategies is not None else DEFAULT_STRATEGIES
        self.application_id_prefix = application_id_prefix
        self.id_factory = id_factory or generate_application_id

    @classmethod
    def from_names(cls, store: RecordStore, names: Sequence[str], **kwargs) -> "ResilientStatusWriter":
        """Build a writer from strategy names, keeping the given order."""
        unknown = [name for name in names if name not in STRATEGIES_BY_NAME]
        if unknown:
            raise ValueError(f"Unknown persistence strategies: {', '.join(unknown)}")
        return cls(store, [STRATEGIES_BY_NAME[name] for name in names], **kwargs)

    def update_loan_status(
        self,
        loan_id: str,
        new_status: str,
        user_id: Optional[str] = None,
    ) -> StatusWriteResult:
        """
        Persist new_status for loan_id.

        Returns:
            StatusWriteResult naming the strategy that succeeded. A record
            replacement reports the new identifiers in the result and the
            message.
        """
        logger.info(f"Updating loan {loan_id} status to {new_status} (user={user_id})")
        attempted = []

        for strategy in self.strategies:
            attempted.append(strategy.name)
            try:
                if strategy.replaces_record:
                    result = self._replace_record(loan_id, new_status, strategy)
                else:
                    self._update_fields(loan_id, new_status, strategy)
                    result = StatusWriteResult(
                        success=True,
                        message="Status updated successfully",
                        strategy=strategy.name,
                    )
            except RecordStoreError as e:
                logger.warning(f"Strategy {strategy.name} failed for loan {loan_id}: {e}")
                continue

            result.attempted = list(attempted)
            logger.info(f"Status of loan {loan_id} written by strategy {strategy.name}")
            return result

        logger.error(f"All persistence strategies failed for loan {loan_id} ({new_status})")
        return StatusWriteResult(
            success=False,
            message=f"Failed to update loan status to {new_status} after {len(attempted)} strategies",
            attempted=attempted,
            error_kind=ErrorKind.PERSISTENCE_EXHAUSTED,
        )

    def _update_fields(self, loan_id: str, new_status: str, strategy: PersistenceStrategy) -> None:
        now = datetime.now(timezone.utc)
        fields = {"status": new_status}
        for name in strategy.fields:
            fields[name] = now
        self.store.update_loan(loan_id, fields)

    def _replace_record(
        self, loan_id: str, new_status: str, strategy: PersistenceStrategy
    ) -> StatusWriteResult:
        current = self.store.fetch_loan(loan_id)
        if current is None:
            raise RecordStoreError(f"Could not fetch current loan data for {loan_id}", operation="fetch_loan")

        now = datetime.now(timezone.utc)
        new_application_id = self.id_factory(self.application_id_prefix)
        update = {
            "id": uuid.uuid4().hex,
            "application_id": new_application_id,
            "status": new_status,
        }
        for name in strategy.fields:
            update[name] = now
        replacement = current.model_copy(update=update)

        stored = self.store.insert_loan(replacement)
        logger.warning(
            f"Loan {loan_id} replaced by {stored.id} ({new_application_id}); "
            f"original record left unchanged"
        )
        return StatusWriteResult(
            success=True,
            message=f"Status updated successfully (new application ID: {new_application_id})",
            strategy=strategy.name,
            new_loan_id=stored.id,
            new_application_id=new_application_id,
        )
