"""Lifecycle orchestrator for stack-based deployments.

Walks a resolved stack order and drives each stack through a StackProvider:

- deploy: validate, then apply, stopping at the first failure. Later stacks
  may need resources the failed stack should have created.
- destroy: delete and wait, continuing past failures so independent stacks
  still get torn down.

Destroy only runs with explicit confirmation. Cancellation is honored at
stack boundaries; a provider call in flight always runs to completion.
"""

import logging
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Optional

from config import RunConfig
from providers.base import (
    ApplyOutcome,
    Phase,
    StackOperationError,
    StackProvider,
    wrap_error,
)
from reporting.report import RunReport, StackOutcome
from stack_opr.state import StackState, StackStatus
from stackset import StackDescriptor

logger = logging.getLogger(__name__)


class ConfirmationRequiredError(Exception):
    """Destroy was requested without explicit confirmation."""


class CancellationToken:
    """Cooperative cancellation flag shared between a run and its caller.

    Safe to set from a signal handler or another thread.
    """

    def __init__(self):
        self._event = threading.Event()
        self.reason = ''

    def cancel(self, reason: str = 'cancelled') -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class LifecycleOrchestrator:
    """Runs deploy and destroy sequences through a stack provider.

    Attributes:
        config: Settings for this run (timeouts, validation toggle, etc.)
        cancel_token: Checked before each stack; None means not cancellable
    """
    config: RunConfig
    cancel_token: Optional[CancellationToken] = None
    _states: dict[str, StackState] = field(default_factory=dict, init=False, repr=False)

    @property
    def states(self) -> dict[str, StackState]:
        """Stack states of the most recent run."""
        return dict(self._states)

    def _cancelled(self) -> bool:
        return self.cancel_token is not None and self.cancel_token.cancelled

    def _new_report(self, action: str, ordered: Sequence[StackDescriptor],
                    initial: StackStatus) -> RunReport:
        self._states = {d.name: StackState(name=d.name, status=initial) for d in ordered}
        report = RunReport(action=action, environment=self.config.environment)
        report.start()
        return report

    def _skip_remaining(self, report: RunReport, remaining: Sequence[StackDescriptor]) -> None:
        reason = self.cancel_token.reason if self.cancel_token else 'cancelled'
        logger.warning(f"Run cancelled ({reason}); skipping {len(remaining)} remaining stack(s)")
        report.cancelled = True
        for desc in remaining:
            state = self._states[desc.name]
            state.transition(StackStatus.SKIPPED, error=f"not attempted: {reason}")
            report.record(StackOutcome(stack_name=desc.name, state=state.status, error=state.error))

    def deploy_all(self, ordered: Sequence[StackDescriptor],
                   provider: StackProvider) -> RunReport:
        """Validate and apply each stack in order, stopping at the first failure.

        Returns:
            RunReport; stacks after a failure have no entry
        """
        report = self._new_report('deploy', ordered, StackStatus.PENDING)
        logger.info(f"[deploy] {len(ordered)} stack(s) in '{self.config.environment}': "
                    f"{', '.join(d.name for d in ordered)}")

        for i, desc in enumerate(ordered):
            if self._cancelled():
                self._skip_remaining(report, ordered[i:])
                break

            outcome = self._deploy_stack(desc, provider)
            report.record(outcome)
            if outcome.state == StackStatus.FAILED:
                not_attempted = len(ordered) - i - 1
                if not_attempted:
                    logger.error(f"[deploy] Aborting: {not_attempted} later stack(s) not attempted")
                break

        report.close()
        return report

    def _deploy_stack(self, desc: StackDescriptor, provider: StackProvider) -> StackOutcome:
        state = self._states[desc.name]
        start = time.time()

        if self.config.validate_before_apply:
            state.transition(StackStatus.VALIDATING)
            try:
                provider.validate(desc)
            except Exception as e:
                return self._failed(state, wrap_error(e, desc.name, Phase.VALIDATE), start)

        state.transition(StackStatus.APPLYING)
        logger.info(f"[deploy] Applying stack {desc.name}...")
        try:
            change = provider.apply(desc)
        except Exception as e:
            return self._failed(state, wrap_error(e, desc.name, Phase.APPLY), start)

        state.transition(StackStatus.DEPLOYED)
        if change == ApplyOutcome.UNCHANGED:
            logger.info(f"[deploy] Stack {desc.name} is up to date (no changes)")
        else:
            logger.info(f"[deploy] Stack {desc.name} {change.value} successfully")

        return StackOutcome(
            stack_name=desc.name,
            state=state.status,
            change=change,
            outputs=self._outputs(desc, provider),
            duration=time.time() - start,
        )

    def _outputs(self, desc: StackDescriptor, provider: StackProvider) -> dict[str, str]:
        """Fetch stack outputs for the report. Failures only warn."""
        if not self.config.show_outputs:
            return {}
        try:
            description = provider.describe(desc)
        except Exception as e:
            logger.warning(f"[deploy] Could not describe {desc.name}: {e}")
            return {}
        if description is None:
            return {}
        for key, value in description.outputs.items():
            logger.info(f"[deploy]   {desc.name} output {key} = {value}")
        return dict(description.outputs)

    def destroy_all(self, ordered_reverse: Sequence[StackDescriptor],
                    provider: StackProvider, confirmed: bool) -> RunReport:
        """Delete each stack in teardown order, continuing past failures.

        Args:
            ordered_reverse: Stacks in reverse dependency order
            provider: Stack provider
            confirmed: Must be exactly True; anything else aborts without
                       issuing any provider call

        Returns:
            RunReport with an entry for every stack
        """
        report = self._new_report('destroy', ordered_reverse, StackStatus.DEPLOYED)

        if confirmed is not True:
            logger.info("[destroy] Destroy not confirmed; no stacks touched")
            report.aborted = True
            for desc in ordered_reverse:
                state = self._states[desc.name]
                state.transition(StackStatus.ABORTED, error='destroy not confirmed')
                report.record(StackOutcome(stack_name=desc.name, state=state.status, error=state.error))
            report.close()
            return report

        logger.warning(f"[destroy] Deleting {len(ordered_reverse)} stack(s) in "
                       f"'{self.config.environment}': {', '.join(d.name for d in ordered_reverse)}")

        for i, desc in enumerate(ordered_reverse):
            if self._cancelled():
                self._skip_remaining(report, ordered_reverse[i:])
                break
            report.record(self._destroy_stack(desc, provider))

        report.close()
        return report

    def _destroy_stack(self, desc: StackDescriptor, provider: StackProvider) -> StackOutcome:
        state = self._states[desc.name]
        start = time.time()

        state.transition(StackStatus.DELETING)
        try:
            provider.delete(desc)
            provider.wait_until_deleted(desc, self.config.delete_timeout)
        except Exception as e:
            outcome = self._failed(state, wrap_error(e, desc.name, Phase.DELETE), start)
            logger.warning(f"[destroy] Continuing with remaining stacks after {desc.name} failure")
            return outcome

        state.transition(StackStatus.DELETED)
        logger.info(f"[destroy] Stack {desc.name} deleted.")
        return StackOutcome(stack_name=desc.name, state=state.status, duration=time.time() - start)

    def _failed(self, state: StackState, error: StackOperationError, start: float) -> StackOutcome:
        state.fail(str(error))
        logger.error(f"{error.phase.value.capitalize()} failed for stack '{error.stack_name}': {error.detail}")
        return StackOutcome(
            stack_name=state.name,
            state=state.status,
            error=str(error),
            phase=error.phase,
            duration=time.time() - start,
        )

    def preview(self, ordered: Sequence[StackDescriptor], action: str) -> None:
        """Print the plan for an action without touching the provider."""
        print("")
        print("=" * 65)
        print(f"  DRY-RUN {action.upper()}: {self.config.environment}")
        print(f"  Region: {self.config.region}")
        print("=" * 65)
        print("")
        for i, desc in enumerate(ordered, start=1):
            if action == 'deploy':
                deps = f" (after: {', '.join(desc.depends_on)})" if desc.depends_on else " (no dependencies)"
                steps = 'validate, apply' if self.config.validate_before_apply else 'apply'
                print(f"  [{i}] {desc.name}{deps}")
                print(f"      template={desc.template_ref}")
                print(f"      parameters={desc.params_ref}")
                print(f"      steps: {steps}")
            else:
                print(f"  [{i}] {desc.name}: delete, wait (timeout {self.config.delete_timeout:.0f}s)")
        print("")
