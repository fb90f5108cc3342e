"""Pre-flight validation checks for stack runs.

Readiness checks run before any stack is touched, catching missing tools,
bad credentials and dangling file references early with actionable error
messages. Each check returns a list of error strings (empty if valid).
"""

import logging
import re
import shutil
from pathlib import Path
from typing import Optional

from common import run_command
from config import RunConfig
from stackset import StackSet

logger = logging.getLogger(__name__)

MIN_AWS_CLI_MAJOR = 2


def parse_aws_cli_version(output: str) -> Optional[tuple[int, ...]]:
    """Parse the version from `aws --version` output.

    Example: 'aws-cli/2.15.30 Python/3.11.8 Linux/6.5.0 exe/x86_64' -> (2, 15, 30)
    """
    match = re.search(r'aws-cli/(\d+(?:\.\d+)*)', output)
    if not match:
        return None
    return tuple(int(part) for part in match.group(1).split('.'))


# -----------------------------------------------------------------------------
# Tooling
# -----------------------------------------------------------------------------

def validate_aws_cli(aws_cli: str = 'aws') -> list[str]:
    """Check the AWS CLI is installed and is version 2 or later."""
    if shutil.which(aws_cli) is None:
        return [
            f"AWS CLI not found: '{aws_cli}'\n"
            f"  Install from https://docs.aws.amazon.com/cli/latest/userguide/install-cliv2.html"
        ]

    rc, out, err = run_command([aws_cli, '--version'], timeout=30)
    if rc != 0:
        return [f"Could not run '{aws_cli} --version': {err.strip() or out.strip()}"]

    # AWS CLI v1 printed its version on stderr
    version = parse_aws_cli_version(out or err)
    if version is None:
        return [f"Could not parse AWS CLI version from: {(out or err).strip()[:80]}"]
    if version[0] < MIN_AWS_CLI_MAJOR:
        return [
            f"AWS CLI v{MIN_AWS_CLI_MAJOR} is required. Found: {'.'.join(map(str, version))}\n"
            f"  Upgrade: https://docs.aws.amazon.com/cli/latest/userguide/install-cliv2.html"
        ]
    logger.debug(f"AWS CLI version {'.'.join(map(str, version))}")
    return []


# -----------------------------------------------------------------------------
# Credentials
# -----------------------------------------------------------------------------

def validate_credentials(config: RunConfig) -> list[str]:
    """Check credentials resolve to an account via sts get-caller-identity."""
    rc, out, err = run_command(
        [config.aws_cli, 'sts', 'get-caller-identity',
         '--query', 'Account', '--output', 'text', '--region', config.region],
        timeout=60,
    )
    if rc != 0:
        return [
            f"Could not authenticate with AWS in region {config.region}\n"
            f"  Check your credentials (aws configure / AWS_PROFILE)\n"
            f"  Error: {err.strip()[:200]}"
        ]
    account = out.strip()
    logger.info(f"Authenticated as account: {account} in region: {config.region}")
    return []


# -----------------------------------------------------------------------------
# Stack references
# -----------------------------------------------------------------------------

def validate_stack_refs(stackset: StackSet) -> list[str]:
    """Check each stack's template and parameter files exist."""
    errors = []
    for stack in stackset.stacks:
        for label, ref in (('template', stack.template_ref), ('parameters', stack.params_ref)):
            if not Path(ref).exists():
                errors.append(f"Stack '{stack.name}' references missing {label} file: {ref}")
            else:
                logger.debug(f"Stack '{stack.name}' {label} -> {ref}")
    return errors


def validate_readiness(config: RunConfig, stackset: StackSet,
                       check_refs: bool = True, check_remote: bool = True) -> list[str]:
    """Run all pre-flight checks for a run.

    Args:
        config: Run configuration
        stackset: Stacks the run will touch
        check_refs: Check template and parameter files (not needed for destroy)
        check_remote: Also check the AWS CLI and credentials

    Returns:
        List of validation error messages (empty if ready)
    """
    errors = validate_stack_refs(stackset) if check_refs else []
    if check_remote:
        cli_errors = validate_aws_cli(config.aws_cli)
        errors.extend(cli_errors)
        # Credential check needs a working CLI
        if not cli_errors:
            errors.extend(validate_credentials(config))
    return errors


def format_errors(errors: list[str]) -> str:
    """Format validation errors as an indented checklist."""
    lines = []
    for error in errors:
        for i, line in enumerate(error.split('\n')):
            prefix = "  ✗ " if i == 0 else "    "
            lines.append(f"{prefix}{line}")
    return '\n'.join(lines)
