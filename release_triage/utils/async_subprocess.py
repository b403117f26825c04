"""Async subprocess utilities.

Runs git and build tooling without blocking the event loop. Commands are
always executed from an argument list, never through a shell.

Example:
    >>> from release_triage.utils.async_subprocess import run_command
    >>> stdout, stderr, code = await run_command("git", "status", cwd="/repo")
    >>> if code == 0:
    ...     print(stdout)
"""

import asyncio
import subprocess
from collections.abc import Mapping
from pathlib import Path


async def run_command(
    *args: str,
    cwd: Path | str | None = None,
    check: bool = True,
    timeout: float | None = None,
    capture_output: bool = True,
    env: Mapping[str, str] | None = None,
) -> tuple[str, str, int]:
    """Run a command asynchronously without shell interpolation.

    Args:
        *args: Executable followed by its arguments
        cwd: Working directory, defaults to the current one
        check: Raise CalledProcessError on a non-zero exit code
        timeout: Seconds before the process is killed and TimeoutError raised
        capture_output: Capture stdout/stderr; when False the child inherits
            the parent's streams and empty strings are returned
        env: Full environment for the child process, defaults to the parent's

    Returns:
        Tuple of (stdout, stderr, return_code), decoded as UTF-8 with
        replacement of invalid bytes.

    Raises:
        subprocess.CalledProcessError: If check=True and the command failed
        TimeoutError: If the timeout is exceeded
        FileNotFoundError: If the executable is not found
    """
    process = await asyncio.create_subprocess_exec(
        *args,
        cwd=cwd,
        env=dict(env) if env is not None else None,
        stdout=asyncio.subprocess.PIPE if capture_output else None,
        stderr=asyncio.subprocess.PIPE if capture_output else None,
    )

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            process.communicate(),
            timeout=timeout,
        )
    except TimeoutError:
        process.kill()
        await process.wait()
        raise

    stdout = (stdout_bytes or b"").decode("utf-8", errors="replace")
    stderr = (stderr_bytes or b"").decode("utf-8", errors="replace")

    if check and process.returncode != 0:
        raise subprocess.CalledProcessError(
            process.returncode,
            args,
            stdout,
            stderr,
        )

    return stdout, stderr, process.returncode or 0
