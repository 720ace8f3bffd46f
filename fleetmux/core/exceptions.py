"""Error taxonomy shared by the remote execution and tunnel layers.

Remote commands that exit non-zero are *not* errors: they come back as
``ExecutionResult(success=False)``.  Only problems that stop us from talking to the
host at all, or that leave state the operator has to reconcile, are raised.
"""

from __future__ import annotations


class FleetMuxError(Exception):
    """Base class for every error raised by fleetmux."""


class ConfigurationError(FleetMuxError):
    """Unknown or inactive alias, missing identity file, missing ssh binary."""


class RemoteConnectionError(FleetMuxError, ConnectionError):
    """The transport could not be established or died (ssh exit 255, auth failure)."""

    def __init__(self, message: str, alias: str | None = None) -> None:
        super().__init__(message)
        self.alias = alias


class RemoteTimeoutError(RemoteConnectionError, TimeoutError):
    """A bounded wait on the transport expired."""


class PartialProvisionError(FleetMuxError):
    """One side of a credential dual-write succeeded and the other did not."""

    def __init__(
        self,
        message: str,
        *,
        identity: str,
        alias: str,
        remote_written: bool,
        local_written: bool,
    ) -> None:
        super().__init__(message)
        self.identity = identity
        self.alias = alias
        self.remote_written = remote_written
        self.local_written = local_written


class PortConflictError(FleetMuxError):
    """The local port for a tunnel is held by something that is not our tunnel."""

    def __init__(self, port: int, detail: str | None = None) -> None:
        self.port = port
        self.suggestion = (
            f"Local port {port} is already in use; retry with an explicit local port override"
        )
        message = self.suggestion if not detail else f"{detail.strip()} ({self.suggestion})"
        super().__init__(message)
