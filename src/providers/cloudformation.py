"""CloudFormation stack provider backed by the AWS CLI v2."""

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from common import poll_until, run_command
from config import RunConfig
from providers.base import (
    ApplyError,
    ApplyOutcome,
    DeleteError,
    Phase,
    StackDescription,
    StackOperationError,
    ValidationError,
    WaitTimeoutError,
)
from stackset import StackDescriptor

logger = logging.getLogger(__name__)

NO_CHANGES_MARKER = 'No changes to deploy'
NOT_FOUND_MARKER = 'does not exist'
DELETE_FAILED_STATUS = 'DELETE_FAILED'
DELETE_COMPLETE_STATUS = 'DELETE_COMPLETE'


def _error_detail(out: str, err: str) -> str:
    """Pick the most useful part of a failed command's output."""
    detail = err.strip() or out.strip() or 'unknown error'
    if len(detail) > 500:
        detail = detail[:500] + '...'
    return detail


@dataclass
class CloudFormationProvider:
    """Realize stacks with `aws cloudformation` commands.

    Each operation is one CLI call (two for apply: existence check, then
    deploy). Template and parameter references are passed to the CLI as
    file paths.
    """
    config: RunConfig
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def _cfn(self, *args: str) -> list[str]:
        return [self.config.aws_cli, 'cloudformation', *args, '--region', self.config.region]

    def _run(self, cmd: list[str]) -> tuple[int, str, str]:
        # Own session: a terminal Ctrl-C must not kill an in-flight CLI call
        return run_command(cmd, timeout=self.config.command_timeout, new_session=True)

    def _tags(self) -> list[str]:
        deployed_at = datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')
        tags = {
            'Environment': self.config.environment,
            'ManagedBy': 'CloudFormation',
            'DeployedAt': deployed_at,
        }
        tags.update(self.config.tags)
        return [f'{key}={value}' for key, value in tags.items()]

    def validate(self, descriptor: StackDescriptor) -> None:
        """Run validate-template against the stack's template file."""
        template = Path(descriptor.template_ref)
        if not template.exists():
            raise ValidationError(descriptor.name, f"Template not found: {template}")

        logger.info(f"[validate] Validating template {template} for {descriptor.name}...")
        rc, out, err = self._run(
            self._cfn('validate-template', '--template-body', f'file://{template}'))
        if rc != 0:
            raise ValidationError(descriptor.name, _error_detail(out, err))
        logger.info(f"[validate] Template {template} validated.")

    def apply(self, descriptor: StackDescriptor) -> ApplyOutcome:
        """Create or update the stack with `cloudformation deploy`.

        An empty change set is reported as UNCHANGED rather than an error.
        """
        try:
            existed = self._describe(descriptor, Phase.APPLY) is not None
        except StackOperationError as e:
            raise ApplyError(descriptor.name, f"Could not check stack existence: {e.detail}")

        cmd = self._cfn(
            'deploy',
            '--stack-name', descriptor.name,
            '--template-file', descriptor.template_ref,
            '--parameter-overrides', f'file://{descriptor.params_ref}',
            '--capabilities', *self.config.capabilities,
            '--tags', *self._tags(),
            '--no-fail-on-empty-changeset',
        )
        logger.info(f"[deploy] Deploying stack {descriptor.name}...")
        rc, out, err = self._run(cmd)
        if rc != 0:
            raise ApplyError(descriptor.name, _error_detail(out, err))

        if NO_CHANGES_MARKER in out or NO_CHANGES_MARKER in err:
            return ApplyOutcome.UNCHANGED
        return ApplyOutcome.UPDATED if existed else ApplyOutcome.CREATED

    def delete(self, descriptor: StackDescriptor) -> None:
        """Request deletion with `cloudformation delete-stack`."""
        logger.info(f"[destroy] Deleting stack {descriptor.name}...")
        rc, out, err = self._run(self._cfn('delete-stack', '--stack-name', descriptor.name))
        if rc != 0:
            raise DeleteError(descriptor.name, _error_detail(out, err))

    def wait_until_deleted(self, descriptor: StackDescriptor, timeout: float) -> None:
        """Poll describe-stacks with backoff until the stack is gone.

        Raises:
            DeleteError: If the stack lands in DELETE_FAILED
            WaitTimeoutError: If the stack is still present after timeout seconds
        """
        def _gone() -> Optional[bool]:
            desc = self._describe(descriptor, Phase.DELETE)
            if desc is None or desc.status == DELETE_COMPLETE_STATUS:
                return True
            if desc.status == DELETE_FAILED_STATUS:
                raise DeleteError(descriptor.name, f"Stack deletion ended in {desc.status}")
            logger.debug(f"[destroy] {descriptor.name} status: {desc.status}")
            return None

        done = poll_until(
            _gone,
            timeout=timeout,
            interval=self.config.poll_interval,
            max_interval=self.config.max_poll_interval,
            sleep=self.sleep,
        )
        if done is None:
            raise WaitTimeoutError(
                descriptor.name, f"Deletion not complete after {timeout:.0f}s")

    def describe(self, descriptor: StackDescriptor) -> Optional[StackDescription]:
        """Return status and outputs, or None if the stack does not exist."""
        return self._describe(descriptor, Phase.APPLY)

    def _describe(self, descriptor: StackDescriptor, phase: Phase) -> Optional[StackDescription]:
        rc, out, err = self._run(
            self._cfn('describe-stacks', '--stack-name', descriptor.name, '--output', 'json'))
        if rc != 0:
            if NOT_FOUND_MARKER in err:
                return None
            raise StackOperationError(descriptor.name, _error_detail(out, err), phase=phase)

        try:
            stacks = json.loads(out).get('Stacks') or []
        except json.JSONDecodeError as e:
            raise StackOperationError(
                descriptor.name, f"Unparseable describe-stacks output: {e}", phase=phase)
        if not stacks:
            return None

        stack = stacks[0]
        outputs = {
            o['OutputKey']: o.get('OutputValue', '')
            for o in stack.get('Outputs') or []
            if 'OutputKey' in o
        }
        return StackDescription(
            name=stack.get('StackName', descriptor.name),
            status=stack.get('StackStatus', 'UNKNOWN'),
            outputs=outputs,
        )
