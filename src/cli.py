#!/usr/bin/env python3
"""CLI entry point for stack-driver.

Verbs:
- deploy: Validate and apply all stacks in dependency order
- destroy: Delete all stacks in reverse dependency order (confirmation required)
- plan: Show deploy and destroy order
- validate: Check the stack set without contacting the provider
- preflight: Check AWS CLI, credentials and stack file references
"""

import logging
import sys
from typing import Optional

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)

VERBS = {
    "deploy": "Validate and apply all stacks in dependency order",
    "destroy": "Delete all stacks in reverse dependency order",
    "plan": "Show deploy and destroy order",
    "validate": "Validate stack file, dependency graph and file references",
    "preflight": "Check AWS CLI, credentials and file references",
}


def _usage() -> None:
    print("Usage: stack-driver <verb> [options]")
    print()
    print("Verbs:")
    for verb, desc in VERBS.items():
        print(f"  {verb:<10} {desc}")
    print()
    print("Run 'stack-driver <verb> --help' for verb-specific options.")


def main(argv: Optional[list] = None) -> int:
    """CLI entry point: dispatch to verb handlers."""
    argv = list(sys.argv[1:] if argv is None else argv)

    if not argv or argv[0] in ('-h', '--help'):
        _usage()
        return 0 if argv else 1

    verb, rest = argv[0], argv[1:]

    if verb == "deploy":
        from stack_opr.cli import deploy_main
        rc: int = deploy_main(rest)
        return rc
    if verb == "destroy":
        from stack_opr.cli import destroy_main
        rc = destroy_main(rest)
        return rc
    if verb == "plan":
        from stack_opr.cli import plan_main
        rc = plan_main(rest)
        return rc
    if verb == "validate":
        from stack_opr.cli import validate_main
        rc = validate_main(rest)
        return rc
    if verb == "preflight":
        from stack_opr.cli import preflight_main
        rc = preflight_main(rest)
        return rc

    print(f"Unknown verb: {verb}. Use one of: {', '.join(VERBS)}", file=sys.stderr)
    return 1


if __name__ == '__main__':
    sys.exit(main())
