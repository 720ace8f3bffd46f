"""Schemas for remote command results."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ExecutionResult(BaseModel):
    """Outcome of one remote command or script; never mutated once built.

    A non-zero remote exit is data (``success=False``), not an exception.
    """

    model_config = ConfigDict(frozen=True)

    alias: str
    success: bool
    stdout: str = ""
    stderr: str = ""
    exit_code: int
    elapsed: float = 0.0
    dry_run: bool = False

    @property
    def output(self) -> str:
        return self.stdout.strip()

    @property
    def error(self) -> str | None:
        if self.success:
            return None
        return self.stderr.strip() or f"Command failed with exit code {self.exit_code}"


class SequenceResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    results: list[ExecutionResult]
    success: bool
    completed: int
    total: int
