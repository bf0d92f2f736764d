"""Tests for the subprocess runner and the retry decorator."""
from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import List

import pytest

from rkeplan.utils.async_command_runner import CommandError, run_command
from rkeplan.utils.async_retry import async_retry


def test_run_command_returns_stdout() -> None:
    out = asyncio.run(run_command(["sh", "-c", "echo hello"]))
    assert out == "hello"


def test_run_command_passes_stdin() -> None:
    out = asyncio.run(run_command(["cat"], input_data="piped"))
    assert out == "piped"


def test_run_command_error_parser_sets_message() -> None:
    def parser(stderr: str) -> str | None:
        return "NotFound" if "NotFound" in stderr else None

    with pytest.raises(CommandError) as info:
        asyncio.run(
            run_command(["sh", "-c", "echo NotFound >&2; exit 1"], error_parser=parser)
        )
    assert str(info.value) == "NotFound"
    assert info.value.return_code == 1


def test_sensitive_failure_hides_output() -> None:
    with pytest.raises(CommandError) as info:
        asyncio.run(run_command(["sh", "-c", "echo s3cret >&2; exit 2"]))
    assert "s3cret" not in str(info.value)

    with pytest.raises(CommandError) as info:
        asyncio.run(run_command(["sh", "-c", "echo visible >&2; exit 2"], sensitive=False))
    assert "visible" in str(info.value)


def test_async_retry_only_retries_matching_errors() -> None:
    calls: List[int] = []

    @async_retry(retries=3, delay=0.001, retry_on=(KeyError,))
    async def flaky() -> str:
        calls.append(1)
        if len(calls) < 3:
            raise KeyError("again")
        return "ok"

    assert asyncio.run(flaky()) == "ok"
    assert len(calls) == 3

    @async_retry(retries=3, delay=0.001, retry_on=(KeyError,))
    async def broken() -> None:
        calls.append(1)
        raise ValueError("no retry")

    calls.clear()
    with pytest.raises(ValueError):
        asyncio.run(broken())
    assert len(calls) == 1


def test_cancelled_command_kills_child(tmp_path: Path) -> None:
    """A timed-out caller leaves no child process running behind it."""
    pid_file = tmp_path / "pid"

    async def scenario() -> None:
        await asyncio.wait_for(
            run_command(["sh", "-c", f"echo $$ > {pid_file}; exec sleep 30"]),
            timeout=0.5,
        )

    with pytest.raises(asyncio.TimeoutError):
        asyncio.run(scenario())

    pid = int(pid_file.read_text().strip())
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)
