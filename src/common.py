"""Common utilities for stack orchestration."""

import logging
import subprocess
import time
from pathlib import Path
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


def run_command(
    cmd: list[str],
    cwd: Optional[Path] = None,
    timeout: int = 600,
    capture: bool = True,
    env: Optional[dict] = None,
    new_session: bool = False,
) -> tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr).

    With new_session, the child runs in its own session so signals sent to
    the terminal's foreground process group (Ctrl-C) do not reach it.
    """
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=capture,
            text=True,
            timeout=timeout,
            env=env,
            start_new_session=new_session,
            check=False  # We handle return codes explicitly
        )
        return result.returncode, result.stdout or '', result.stderr or ''
    except subprocess.TimeoutExpired:
        return -1, '', f'Command timed out after {timeout}s'
    except FileNotFoundError:
        return 127, '', f"Command not found: {cmd[0]}"
    except OSError as e:
        return -1, '', str(e)


def poll_until(
    check: Callable[[], Optional[T]],
    timeout: float,
    interval: float = 5.0,
    max_interval: float = 30.0,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Optional[T]:
    """Call check() until it returns a non-None value or timeout expires.

    The interval doubles after each attempt up to max_interval, and the last
    sleep is clipped so the deadline is not overshot.

    Args:
        check: Callable returning None while the condition is not met
        timeout: Max seconds to wait
        interval: Initial delay between attempts
        max_interval: Upper bound for the delay
        sleep: Sleep function (injectable for tests)
        clock: Monotonic clock (injectable for tests)

    Returns:
        The first non-None value from check(), or None on timeout
    """
    deadline = clock() + timeout
    delay = interval
    while True:
        result = check()
        if result is not None:
            return result
        remaining = deadline - clock()
        if remaining <= 0:
            return None
        logger.debug(f"Condition not met, retrying in {min(delay, remaining):.1f}s...")
        sleep(min(delay, remaining))
        delay = min(delay * 2, max_interval)
