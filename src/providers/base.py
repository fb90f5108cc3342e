"""Stack provider capability and remote operation errors.

A StackProvider realizes stacks against a remote provisioning service. The
orchestrator only ever talks to this protocol, so the same engine drives the
CloudFormation provider in production and the fake provider in tests.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol, runtime_checkable

from stackset import StackDescriptor


class Phase(str, Enum):
    """Lifecycle phase a remote operation belongs to."""
    VALIDATE = 'validate'
    APPLY = 'apply'
    DELETE = 'delete'


class ApplyOutcome(str, Enum):
    """Result of a successful apply."""
    CREATED = 'created'
    UPDATED = 'updated'
    UNCHANGED = 'unchanged'


@dataclass
class StackDescription:
    """Current remote state of a stack as reported by the provider."""
    name: str
    status: str
    outputs: dict[str, str] = field(default_factory=dict)


class StackOperationError(Exception):
    """A remote operation failed for one stack.

    Attributes:
        stack_name: Stack the operation targeted
        phase: Phase the failure occurred in
        detail: Provider error message
    """
    phase: Phase = Phase.APPLY

    def __init__(self, stack_name: str, detail: str, phase: Optional[Phase] = None):
        if phase is not None:
            self.phase = phase
        self.stack_name = stack_name
        self.detail = detail
        super().__init__(f"[{self.phase.value}] {stack_name}: {detail}")


class ValidationError(StackOperationError):
    """Template validation failed."""
    phase = Phase.VALIDATE


class ApplyError(StackOperationError):
    """Create or update failed."""
    phase = Phase.APPLY


class DeleteError(StackOperationError):
    """Deletion failed or ended in a failed state."""
    phase = Phase.DELETE


class WaitTimeoutError(DeleteError):
    """Deletion did not reach a terminal state within the timeout."""


ERRORS_BY_PHASE: dict[Phase, type[StackOperationError]] = {
    Phase.VALIDATE: ValidationError,
    Phase.APPLY: ApplyError,
    Phase.DELETE: DeleteError,
}


def wrap_error(exc: Exception, stack_name: str, phase: Phase) -> StackOperationError:
    """Tag an arbitrary provider exception with stack name and phase.

    A StackOperationError already tagged with this stack and phase passes
    through unchanged. One tagged for another stack or phase is re-wrapped,
    keeping the original as __cause__.
    """
    if isinstance(exc, StackOperationError):
        if exc.stack_name == stack_name and exc.phase == phase:
            return exc
        detail = exc.detail if exc.stack_name == stack_name else str(exc)
    else:
        detail = f"{type(exc).__name__}: {exc}"
    error_cls = ERRORS_BY_PHASE[phase]
    wrapped = error_cls(stack_name, detail)
    wrapped.__cause__ = exc
    return wrapped


@runtime_checkable
class StackProvider(Protocol):
    """Protocol for providers that realize stacks remotely."""

    def validate(self, descriptor: StackDescriptor) -> None:
        """Validate the stack's template. Raises ValidationError."""

    def apply(self, descriptor: StackDescriptor) -> ApplyOutcome:
        """Create or update the stack idempotently. Raises ApplyError."""

    def delete(self, descriptor: StackDescriptor) -> None:
        """Request stack deletion. Raises DeleteError."""

    def wait_until_deleted(self, descriptor: StackDescriptor, timeout: float) -> None:
        """Block until the stack is gone. Raises WaitTimeoutError or DeleteError."""

    def describe(self, descriptor: StackDescriptor) -> Optional[StackDescription]:
        """Return the stack's current state, or None if it does not exist."""
