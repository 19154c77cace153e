"""
Advisory store policy.

Submission intents and audit steps are advisory: the workflow does not read
them to decide correctness (except the guard's pending-intent check). This
module makes their degradation explicit instead of an implicit
catch-and-continue:

- AdvisoryPolicy says which advisory stores are in use and whether a broken
  intent store should block submissions (strict) or be tolerated.
- AdvisoryFailureLog keeps every tolerated failure so operators and tests can
  see what was skipped.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

logger = logging.getLogger(__name__)


@dataclass
class AdvisoryPolicy:
    """Capability flags for the advisory stores."""
    intent_store_enabled: bool = True
    audit_store_enabled: bool = True
    # Availability over consistency unless set
    strict_intents: bool = False


@dataclass
class AdvisoryFailure:
    """A tolerated failure of an advisory write or read."""
    store: str  # "intent" or "audit"
    operation: str
    loan_application_id: str
    error: str
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AdvisoryFailureLog:
    """Thread-safe, in-memory record of tolerated advisory failures."""

    def __init__(self, max_entries: int = 1000):
        self.max_entries = max_entries
        self._entries: List[AdvisoryFailure] = []
        self._lock = threading.Lock()

    def record(
        self,
        store: str,
        operation: str,
        loan_application_id: str,
        error: Exception,
    ) -> AdvisoryFailure:
        failure = AdvisoryFailure(
            store=store,
            operation=operation,
            loan_application_id=loan_application_id,
            error=str(error),
        )
        with self._lock:
            self._entries.append(failure)
            if len(self._entries) > self.max_entries:
                self._entries = self._entries[-self.max_entries:]
        logger.warning(
            f"Advisory {store} store unavailable during {operation} "
            f"for loan {loan_application_id}, continuing: {error}"
        )
        return failure

    def failures(self, store: Optional[str] = None) -> List[AdvisoryFailure]:
        """Get recorded failures, optionally only for one store."""
        with self._lock:
            if store is None:
                return list(self._entries)
            return [f for f in self._entries if f.store == store]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
