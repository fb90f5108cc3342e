"""Stack providers: the remote side of the orchestrator."""

from providers.base import (
    ApplyError,
    ApplyOutcome,
    DeleteError,
    Phase,
    StackDescription,
    StackOperationError,
    StackProvider,
    ValidationError,
    WaitTimeoutError,
    ERRORS_BY_PHASE,
    wrap_error,
)
from providers.cloudformation import CloudFormationProvider
from providers.fake import FakeStackProvider

__all__ = [
    'ApplyError',
    'ApplyOutcome',
    'DeleteError',
    'Phase',
    'StackDescription',
    'StackOperationError',
    'StackProvider',
    'ValidationError',
    'WaitTimeoutError',
    'ERRORS_BY_PHASE',
    'wrap_error',
    'CloudFormationProvider',
    'FakeStackProvider',
]
