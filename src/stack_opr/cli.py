"""CLI handlers for stack verb commands (deploy, destroy, plan, validate, preflight).

Usage:
    stack-driver deploy [-E <env>] [-R <region>] [-C <stacks.yaml>] [--dry-run] [--json-output]
    stack-driver destroy [-E <env>] [-R <region>] [-C <stacks.yaml>] [--dry-run] [--yes]
    stack-driver plan [-E <env>] [-C <stacks.yaml>]
    stack-driver validate [-E <env>] [-C <stacks.yaml>] [--verbose]
    stack-driver preflight [-E <env>] [-R <region>] [-C <stacks.yaml>]
"""

import argparse
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from config import ConfigError, RunConfig, discover_config_file, load_run_config
from providers.cloudformation import CloudFormationProvider
from reporting.report import RunReport
from stack_opr.graph import DependencyResolver, ResolutionError
from stack_opr.orchestrator import (
    CancellationToken,
    ConfirmationRequiredError,
    LifecycleOrchestrator,
)
from stackset import StackDescriptor, StackSet, load_stackset
from validation import format_errors, validate_readiness

logger = logging.getLogger(__name__)

EXIT_CANCELLED = 130


def _common_parser(verb: str) -> argparse.ArgumentParser:
    """Build argument parser with common options for all verbs."""
    parser = argparse.ArgumentParser(
        prog=f'stack-driver {verb}',
        description=f'{verb.capitalize()} the stacks of one environment',
    )
    parser.add_argument(
        '--env', '-E',
        help='Environment name, used as stack name prefix (override: ENV_NAME env var)',
    )
    parser.add_argument(
        '--region', '-R',
        help='Target region (override: AWS_REGION env var)',
    )
    parser.add_argument(
        '--config', '-C',
        help='Path to stack file (default: $STACK_DRIVER_CONFIG or ./stacks.yaml)',
    )
    parser.add_argument(
        '--templates-dir',
        help='Base directory for template files',
    )
    parser.add_argument(
        '--params-dir',
        help='Base directory for parameter files',
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging',
    )
    return parser


def _run_parser(verb: str) -> argparse.ArgumentParser:
    """Parser for verbs that touch the provider (deploy, destroy)."""
    parser = _common_parser(verb)
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Preview operations without executing',
    )
    parser.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs to stderr)',
    )
    parser.add_argument(
        '--skip-preflight',
        action='store_true',
        help='Skip pre-flight validation checks',
    )
    parser.add_argument(
        '--report-dir',
        type=Path,
        help='Write JSON and markdown run reports to this directory',
    )
    return parser


def _setup_logging(verbose: bool, json_output: bool) -> None:
    """Configure logging based on flags."""
    if json_output:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
        ))
        root_logger.addHandler(stderr_handler)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _load(args) -> tuple[RunConfig, StackSet]:
    """Load run config and stack set from parsed args.

    Raises:
        SystemExit: On configuration errors
    """
    try:
        config_file = discover_config_file(args.config)
        config = load_run_config(
            config_file,
            environment=args.env,
            region=args.region,
            templates_dir=args.templates_dir,
            params_dir=args.params_dir,
        )
        stackset = load_stackset(config)
    except ConfigError as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)
    return config, stackset


def _resolve(stackset: StackSet) -> list[StackDescriptor]:
    """Resolve deployment order.

    Raises:
        SystemExit: On structural errors (cycle, unknown or duplicate stack)
    """
    try:
        return DependencyResolver().resolve(stackset.stacks)
    except ResolutionError as e:
        print(f"Error resolving stack order: {e}", file=sys.stderr)
        sys.exit(1)


def _run_preflight(args, config: RunConfig, stackset: StackSet, check_refs: bool) -> Optional[int]:
    """Run preflight checks.

    Returns:
        None if checks pass, exit code (1) if checks fail.
    """
    if args.skip_preflight or args.dry_run:
        return None

    errors = validate_readiness(config, stackset, check_refs=check_refs)
    if errors:
        print("\nPre-flight validation failed:")
        print(format_errors(errors))
        print("\nUse --skip-preflight to bypass these checks")
        print()
        return 1
    logger.info("Pre-flight validation passed")
    return None


def _make_provider(config: RunConfig) -> CloudFormationProvider:
    return CloudFormationProvider(config=config)


def _install_cancel_handler(token: CancellationToken):
    """Route the first Ctrl-C to the cancellation token.

    The in-flight stack finishes and remaining stacks are skipped. A second
    Ctrl-C interrupts immediately.

    Returns:
        The previous SIGINT handler, for restoring afterwards
    """
    def _handle_sigint(signum, frame):
        logger.warning("Interrupt received: finishing current stack, then stopping "
                       "(press Ctrl-C again to abort immediately)")
        token.cancel('interrupted by operator')
        signal.signal(signal.SIGINT, signal.default_int_handler)

    return signal.signal(signal.SIGINT, _handle_sigint)


def _write_report(args, report: RunReport) -> None:
    if args.report_dir:
        paths = report.write(args.report_dir)
        logger.info(f"Report written: {', '.join(str(p) for p in paths)}")


def _finish(args, report: RunReport) -> int:
    """Print or emit the report and map it to an exit code."""
    if args.json_output:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print("")
        print(report.render_summary())

    _write_report(args, report)

    if report.cancelled:
        return EXIT_CANCELLED
    return 0 if report.succeeded else 1


def _confirm_destroy(args, config: RunConfig, ordered: list[StackDescriptor]) -> bool:
    """Ask the operator to type 'yes' before a destroy.

    Raises:
        ConfirmationRequiredError: If stdin is not interactive and --yes was not given
    """
    if args.yes:
        return True
    if not sys.stdin.isatty():
        raise ConfirmationRequiredError(
            "Destroy requires confirmation; pass --yes when running non-interactively")

    print(f"\nWARNING: This will DELETE all stacks in environment '{config.environment}' "
          f"({config.region}). This cannot be undone.")
    for desc in ordered:
        print(f"  - {desc.name}")
    response = input("Type 'yes' to confirm: ").strip()
    return response == 'yes'


def deploy_main(argv: list) -> int:
    """Handle 'deploy' verb."""
    parser = _run_parser('deploy')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    config, stackset = _load(args)
    ordered = _resolve(stackset)

    orchestrator = LifecycleOrchestrator(config=config, cancel_token=CancellationToken())
    if args.dry_run:
        orchestrator.preview(ordered, 'deploy')
        return 0

    preflight_rc = _run_preflight(args, config, stackset, check_refs=True)
    if preflight_rc is not None:
        return preflight_rc

    logger.info(f"Deploying {len(ordered)} stack(s) to '{config.environment}' in {config.region}")

    previous = _install_cancel_handler(orchestrator.cancel_token)
    try:
        report = orchestrator.deploy_all(ordered, _make_provider(config))
    finally:
        signal.signal(signal.SIGINT, previous)

    return _finish(args, report)


def destroy_main(argv: list) -> int:
    """Handle 'destroy' verb."""
    parser = _run_parser('destroy')
    parser.add_argument(
        '--yes', '-y',
        action='store_true',
        help='Skip confirmation prompt',
    )
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    config, stackset = _load(args)
    resolver = DependencyResolver()
    ordered_reverse = resolver.reverse(_resolve(stackset))

    orchestrator = LifecycleOrchestrator(config=config, cancel_token=CancellationToken())
    if args.dry_run:
        orchestrator.preview(ordered_reverse, 'destroy')
        return 0

    preflight_rc = _run_preflight(args, config, stackset, check_refs=False)
    if preflight_rc is not None:
        return preflight_rc

    try:
        confirmed = _confirm_destroy(args, config, ordered_reverse)
    except ConfirmationRequiredError as e:
        logger.error(str(e))
        confirmed = False

    previous = _install_cancel_handler(orchestrator.cancel_token)
    try:
        report = orchestrator.destroy_all(ordered_reverse, _make_provider(config), confirmed=confirmed)
    finally:
        signal.signal(signal.SIGINT, previous)

    if report.aborted and not args.json_output:
        _write_report(args, report)
        print("Aborted.")
        return 0
    return _finish(args, report)


def plan_main(argv: list) -> int:
    """Handle 'plan' verb: show deploy and destroy order."""
    parser = _common_parser('plan')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, False)

    config, stackset = _load(args)
    resolver = DependencyResolver()
    ordered = _resolve(stackset)

    print(f"Environment: {config.environment} ({config.region})")
    print(f"Source: {stackset.source_path or 'built-in landing zone'}")
    print("\nDeploy order:")
    for i, desc in enumerate(ordered, start=1):
        deps = f"  <- {', '.join(desc.depends_on)}" if desc.depends_on else ''
        print(f"  {i}. {desc.name}{deps}")
    print("\nDestroy order:")
    for i, desc in enumerate(resolver.reverse(ordered), start=1):
        print(f"  {i}. {desc.name}")
    return 0


def validate_main(argv: list) -> int:
    """Handle 'validate' verb.

    Validates the stack set without contacting the provider:
    - Stack file schema
    - Dependency graph (duplicates, unknown references, cycles)
    - Template and parameter files exist
    """
    parser = _common_parser('validate')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, False)

    config, stackset = _load(args)

    try:
        DependencyResolver().resolve(stackset.stacks)
    except ResolutionError as e:
        print(f"Stack set for '{config.environment}' is invalid:", file=sys.stderr)
        print(f"  ✗ {e}", file=sys.stderr)
        return 1

    errors = validate_readiness(config, stackset, check_remote=False)
    if errors:
        print(f"Stack set for '{config.environment}' has {len(errors)} validation error(s):",
              file=sys.stderr)
        print(format_errors(errors), file=sys.stderr)
        return 1

    count = len(stackset.stacks)
    print(f"Stack set for '{config.environment}' is valid ({count} stack{'s' if count != 1 else ''})")
    return 0


def preflight_main(argv: list) -> int:
    """Handle 'preflight' verb: run all readiness checks and report."""
    parser = _common_parser('preflight')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, False)

    config, stackset = _load(args)
    logger.info(f"Running preflight checks for '{config.environment}' in {config.region}")
    errors = validate_readiness(config, stackset)
    if errors:
        print("\nPre-flight validation failed:")
        print(format_errors(errors))
        return 1
    print("Pre-flight checks passed")
    return 0
