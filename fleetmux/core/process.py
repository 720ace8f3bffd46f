"""Async subprocess execution with bounded waits.

Every remote operation ends up as exactly one local ``ssh`` process.  Components
receive a :class:`ProcessRunner` through their constructor so tests can swap in a
fake that simulates OpenSSH behaviour.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from dataclasses import dataclass

from fleetmux.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of one finished local process."""

    returncode: int
    stdout: str
    stderr: str
    elapsed: float

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ProcessRunner:
    """Runs argv lists without a local shell."""

    async def run(
        self,
        argv: Sequence[str],
        *,
        input: str | None = None,
        timeout: float | None = None,
        capture_stdout: bool = True,
    ) -> ProcessResult:
        """Run *argv* to completion.

        With ``capture_stdout=False`` the child writes stdout to /dev/null, so a
        process that forks into the background cannot hold the pipe open.

        Raises ``TimeoutError`` (after killing the child) when *timeout* expires and
        ``FileNotFoundError`` when the executable does not exist.
        """
        started = time.monotonic()
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE if capture_stdout else asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        payload = input.encode() if input is not None else None

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(payload), timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Process timed out, killing", program=argv[0], timeout=timeout)
            process.kill()
            await process.wait()
            raise TimeoutError(f"{argv[0]} did not finish within {timeout}s") from None

        return ProcessResult(
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode(errors="replace") if stdout is not None else "",
            stderr=stderr.decode(errors="replace"),
            elapsed=time.monotonic() - started,
        )
