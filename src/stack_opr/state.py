"""Per-stack execution state for a single orchestrator run.

States live only for the duration of one run; the remote provider is the
durable record of what is deployed.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class StackStatus(str, Enum):
    PENDING = 'pending'
    VALIDATING = 'validating'
    APPLYING = 'applying'
    DEPLOYED = 'deployed'
    DELETING = 'deleting'
    DELETED = 'deleted'
    FAILED = 'failed'
    ABORTED = 'aborted'
    SKIPPED = 'skipped'


TERMINAL_STATUSES = frozenset({
    StackStatus.DEPLOYED,
    StackStatus.DELETED,
    StackStatus.FAILED,
    StackStatus.ABORTED,
    StackStatus.SKIPPED,
})

# Destroy runs start from DEPLOYED, so it doubles as a starting state
_TRANSITIONS: dict[StackStatus, frozenset[StackStatus]] = {
    StackStatus.PENDING: frozenset({
        StackStatus.VALIDATING, StackStatus.APPLYING,
        StackStatus.ABORTED, StackStatus.SKIPPED,
    }),
    StackStatus.VALIDATING: frozenset({StackStatus.APPLYING, StackStatus.FAILED}),
    StackStatus.APPLYING: frozenset({StackStatus.DEPLOYED, StackStatus.FAILED}),
    StackStatus.DEPLOYED: frozenset({
        StackStatus.DELETING, StackStatus.ABORTED, StackStatus.SKIPPED,
    }),
    StackStatus.DELETING: frozenset({StackStatus.DELETED, StackStatus.FAILED}),
}


@dataclass
class StackState:
    """State machine for one stack.

    Attributes:
        name: Stack name (matches StackDescriptor.name)
        status: Current status
        started_at: Timestamp of the first transition out of the initial state
        completed_at: Timestamp when a terminal state was reached
        error: Error detail if failed
    """
    name: str
    status: StackStatus = StackStatus.PENDING
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    error: Optional[str] = None

    def transition(self, new: StackStatus, error: Optional[str] = None) -> None:
        """Move to a new status.

        Raises:
            ValueError: If the transition is not allowed from the current status
        """
        allowed = _TRANSITIONS.get(self.status, frozenset())
        if new not in allowed:
            raise ValueError(
                f"Illegal transition for stack '{self.name}': "
                f"{self.status.value} -> {new.value}"
            )
        logger.debug(f"{self.name}: {self.status.value} -> {new.value}")
        now = time.time()
        if self.started_at is None:
            self.started_at = now
        self.status = new
        if new in TERMINAL_STATUSES:
            self.completed_at = now
        if error is not None:
            self.error = error

    def fail(self, error: str) -> None:
        self.transition(StackStatus.FAILED, error=error)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def duration(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return self.completed_at - self.started_at
        return None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'name': self.name,
            'status': self.status.value,
        }
        if self.duration is not None:
            d['duration'] = round(self.duration, 2)
        if self.error is not None:
            d['error'] = self.error
        return d
