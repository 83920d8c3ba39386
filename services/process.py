"""
Process Runner
===============
External command invocation (tar, mysqldump, openssl, certbot, dig, install
scripts) with a bounded timeout and captured exit code and stderr.
"""

import logging
import subprocess
from typing import List, Optional

from flask import current_app, has_app_context

from errors import ProcessError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 600


def default_timeout() -> int:
    if has_app_context():
        return current_app.config.get('PROCESS_TIMEOUT', DEFAULT_TIMEOUT)
    return DEFAULT_TIMEOUT


def run_command(
    command: List[str],
    timeout: Optional[int] = None,
    provider: str = 'process',
    check: bool = True,
    **kwargs
) -> subprocess.CompletedProcess:
    """
    Run an external command and capture its output.

    Args:
        command: Argument list, never a shell string
        timeout: Seconds before the process is killed
        provider: Subsystem name reported on failure
        check: Raise on a non-zero exit code
        **kwargs: Passed to subprocess.run (cwd, env, stdin)

    Returns:
        subprocess.CompletedProcess

    Raises:
        ProcessError: on timeout, missing binary or non-zero exit
    """
    if timeout is None:
        timeout = default_timeout()

    logger.debug(f"Running {' '.join(command)} (timeout {timeout}s)")
    try:
        result = subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=timeout,
            **kwargs
        )
    except subprocess.TimeoutExpired as e:
        stderr = e.stderr if isinstance(e.stderr, str) else ''
        raise ProcessError(command, stderr=stderr or '', timed_out=True, provider=provider) from e
    except FileNotFoundError as e:
        raise ProcessError(
            command, exit_code=127, stderr=f'{command[0]} is not installed', provider=provider
        ) from e

    if check and result.returncode != 0:
        raise ProcessError(
            command,
            exit_code=result.returncode,
            stderr=result.stderr or result.stdout or '',
            provider=provider
        )
    return result
