"""In-memory stack provider for tests and rehearsals.

Keeps a dict of "remote" stacks and records every call. Failures are
scripted per stack and operation:

    provider = FakeStackProvider(fail={('apply', 'lz-iam-sso'): 'quota exceeded'})
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from providers.base import (
    ApplyError,
    ApplyOutcome,
    DeleteError,
    StackDescription,
    ValidationError,
    WaitTimeoutError,
)
from stackset import StackDescriptor

logger = logging.getLogger(__name__)


@dataclass
class FakeStackProvider:
    """Scriptable StackProvider.

    Attributes:
        fail: Maps (operation, stack_name) to an error message. Operations are
              validate, apply, delete and wait.
        outcomes: Forced apply outcome per stack (overrides the idempotent default)
        outputs: Outputs reported by describe() per stack
        deployed: Names of stacks currently "deployed" remotely
        calls: Every call made, as (operation, stack_name)
    """
    fail: dict[tuple[str, str], str] = field(default_factory=dict)
    outcomes: dict[str, ApplyOutcome] = field(default_factory=dict)
    outputs: dict[str, dict[str, str]] = field(default_factory=dict)
    deployed: set[str] = field(default_factory=set)
    calls: list[tuple[str, str]] = field(default_factory=list)

    def _record(self, operation: str, descriptor: StackDescriptor) -> Optional[str]:
        self.calls.append((operation, descriptor.name))
        return self.fail.get((operation, descriptor.name))

    def calls_for(self, operation: str) -> list[str]:
        """Stack names passed to the given operation, in call order."""
        return [name for op, name in self.calls if op == operation]

    def validate(self, descriptor: StackDescriptor) -> None:
        if error := self._record('validate', descriptor):
            raise ValidationError(descriptor.name, error)

    def apply(self, descriptor: StackDescriptor) -> ApplyOutcome:
        if error := self._record('apply', descriptor):
            raise ApplyError(descriptor.name, error)
        if descriptor.name in self.outcomes:
            outcome = self.outcomes[descriptor.name]
        elif descriptor.name in self.deployed:
            outcome = ApplyOutcome.UNCHANGED
        else:
            outcome = ApplyOutcome.CREATED
        self.deployed.add(descriptor.name)
        return outcome

    def delete(self, descriptor: StackDescriptor) -> None:
        if error := self._record('delete', descriptor):
            raise DeleteError(descriptor.name, error)

    def wait_until_deleted(self, descriptor: StackDescriptor, timeout: float) -> None:
        if error := self._record('wait', descriptor):
            raise WaitTimeoutError(descriptor.name, error)
        self.deployed.discard(descriptor.name)

    def describe(self, descriptor: StackDescriptor) -> Optional[StackDescription]:
        self.calls.append(('describe', descriptor.name))
        if descriptor.name not in self.deployed:
            return None
        return StackDescription(
            name=descriptor.name,
            status='CREATE_COMPLETE',
            outputs=dict(self.outputs.get(descriptor.name, {})),
        )
