"""Tests for core/process.py against real local processes."""

import time

import pytest

from fleetmux.core.process import ProcessRunner


@pytest.mark.asyncio
async def test_run_captures_both_streams():
    result = await ProcessRunner().run(["sh", "-c", "echo out; echo err >&2; exit 3"], timeout=5)

    assert result.returncode == 3
    assert result.stdout == "out\n"
    assert result.stderr == "err\n"


@pytest.mark.asyncio
async def test_backgrounded_child_does_not_hold_stdout():
    # Like `ssh -f`: the parent exits while a forked child keeps running
    started = time.monotonic()

    result = await ProcessRunner().run(
        ["sh", "-c", "sleep 3 2>/dev/null & echo forked"],
        timeout=2,
        capture_stdout=False,
    )

    assert result.ok
    assert result.stdout == ""
    assert time.monotonic() - started < 2


@pytest.mark.asyncio
async def test_timeout_kills_child():
    with pytest.raises(TimeoutError):
        await ProcessRunner().run(["sleep", "5"], timeout=0.2)
