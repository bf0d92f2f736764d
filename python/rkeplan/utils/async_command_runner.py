"""
rkeplan/utils/async_command_runner.py

Provides a reusable asynchronous command runner (used for every kubectl call)
with optional retry logic. A custom error_parser callback can inspect stderr
for known errors and return a short message, which is how callers recognise
conditions such as a missing object even when the command is sensitive and
its output is withheld from the error.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Callable, Dict, List, Optional

from rkeplan.utils.async_retry import async_retry

logger = logging.getLogger(__name__)


class CommandError(Exception):
    """Represents a failure when executing a shell command.

    Attributes:
        message (str): The error message describing the command failure.
        return_code (Optional[int]): The exit code if available.
    """

    def __init__(self, message: str, return_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.return_code = return_code


async def run_command(
    command: List[str],
    *,
    sensitive: bool = True,
    env: Optional[Dict[str, str]] = None,
    input_data: Optional[str] = None,
    successful_return_codes: Optional[List[int]] = None,
    retries: int = 0,
    retry_delay: float = 1.0,
    error_parser: Optional[Callable[[str], Optional[str]]] = None,
) -> str:
    """
    Executes a local command in a subprocess, asynchronously, with optional retries
    and an optional error parser callback.

    If the command fails (return code not in successful_return_codes), we raise
    CommandError. If `error_parser` is given, we pass stderr to it, and if it
    returns a non-None string, we raise that as the message. Otherwise we raise
    the usual "Command failed" message.

    If the awaiting task is cancelled, the child process is killed and reaped
    before the cancellation propagates.

    When `sensitive=True`, we omit the command, stdout, and stderr from the final
    error message and from debug logging.

    Args:
        command (List[str]):
            The command and arguments to execute.
        sensitive (bool):
            If True, hides command details in the raised error.
        env (Optional[Dict[str, str]]):
            Additional environment variables to add or override.
        input_data (Optional[str]):
            If provided, passed to stdin.
        successful_return_codes (Optional[List[int]]):
            Which return codes won't be treated as errors. Defaults to [0].
        retries (int):
            Total attempts; 0 or 1 means a single attempt. Defaults to 0.
        retry_delay (float):
            Delay in seconds between retries. Defaults to 1.0.
        error_parser (Optional[Callable[[str], Optional[str]]]):
            Receives stderr; a non-None return becomes the CommandError message.

    Returns:
        str: The captured stdout of the command on success.

    Raises:
        CommandError: If the command fails after all retries.
    """
    ok_codes = successful_return_codes if successful_return_codes is not None else [0]

    @async_retry(retries=retries, delay=retry_delay, retry_on=(CommandError,))
    async def _inner_run_command() -> str:
        proc_env = None
        if env:
            proc_env = os.environ.copy()
            proc_env.update(env)

        if not sensitive:
            logger.debug("Running: %s", " ".join(command))

        stdin = asyncio.subprocess.PIPE if input_data else asyncio.subprocess.DEVNULL
        proc = await asyncio.create_subprocess_exec(
            *command,
            stdin=stdin,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=proc_env,
        )

        try:
            stdout_bytes, stderr_bytes = await proc.communicate(
                input=input_data.encode() if input_data else None
            )
        except asyncio.CancelledError:
            # A cancelled caller (e.g. a timed-out reconcile) must not leave a
            # write in flight.
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise
        stdout_str = stdout_bytes.decode(errors="replace").strip()
        stderr_str = stderr_bytes.decode(errors="replace").strip()

        if proc.returncode not in ok_codes:
            short_message = error_parser(stderr_str) if error_parser else None
            if short_message is not None:
                raise CommandError(short_message, proc.returncode)

            detail = ""
            if not sensitive:
                detail = (
                    f"\nCommand: {' '.join(command)}"
                    f"\nStdout: {stdout_str}"
                    f"\nStderr: {stderr_str}"
                )

            raise CommandError(
                f"Command failed with return code {proc.returncode}.{detail}",
                proc.returncode,
            )

        return stdout_str

    return await _inner_run_command()
