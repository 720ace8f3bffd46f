"""Connection multiplexer: one reusable OpenSSH master connection per alias.

Each master is addressed through a control socket in the mux directory
(``<alias>.ctl``).  The socket file is the only state: a connection is "up" exactly
when ``ssh -O check`` against its socket succeeds, so separate controller processes
share masters without coordinating.

Tunnels are masters too (one per ``<alias>_<port>`` socket); :meth:`spawn` and
:meth:`control` are shared with the tunnel manager for that reason.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path

from fleetmux.core.config import Settings, get_settings
from fleetmux.core.exceptions import (
    ConfigurationError,
    RemoteConnectionError,
    RemoteTimeoutError,
)
from fleetmux.core.logging import get_logger
from fleetmux.core.process import ProcessRunner
from fleetmux.core.sockets import SocketArena, master_name
from fleetmux.remote.registry import HostRegistry
from fleetmux.schemas.host import HostDescriptor

logger = get_logger(__name__)

_SOCKET_POLL_INTERVAL = 0.1

Sleeper = Callable[[float], Awaitable[None]]


class ConnectionMultiplexer:
    def __init__(
        self,
        registry: HostRegistry,
        runner: ProcessRunner,
        arena: SocketArena,
        settings: Settings | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.registry = registry
        self.runner = runner
        self.arena = arena
        self.settings = settings or get_settings()
        self._sleep = sleep

    # ── Paths and arguments ──────────────────────────────────────────────────

    def socket_path(self, alias: str) -> Path:
        return self.arena.path(master_name(alias))

    async def ssh_args(self, host: HostDescriptor) -> list[str]:
        """Connection options for *host* (everything except the destination)."""
        args = [
            "-p", str(host.port),
            "-l", host.user,
            "-o", "BatchMode=yes",
            "-o", f"ConnectTimeout={self.settings.ssh_connect_timeout}",
            "-o", f"StrictHostKeyChecking={self.settings.strict_host_key_checking}",
        ]

        if host.identity_file:
            identity = Path(host.identity_file).expanduser()
            if not identity.exists():
                raise ConfigurationError(
                    f"SSH identity file not found for {host.alias}: {identity}"
                )
            args += ["-i", str(identity), "-o", "IdentitiesOnly=yes"]

        if host.jump_host:
            if host.jump_host == host.alias:
                raise ConfigurationError(f"Host {host.alias} cannot jump through itself")
            jump = await self.registry.resolve(host.jump_host)
            args += ["-J", f"{jump.user}@{jump.hostname}:{jump.port}"]

        return args

    # ── Control channel ──────────────────────────────────────────────────────

    async def control(self, name: str, alias: str, operation: str) -> bool:
        """Send ``-O <operation>`` to the socket *name*.

        Never raises: a missing socket file, a non-zero control exit, a timeout or a
        missing ssh binary all mean ``False``.
        """
        if not self.arena.exists(name):
            return False

        argv = [
            self.settings.ssh_binary,
            "-S", str(self.arena.path(name)),
            "-O", operation,
            "--", alias,
        ]
        try:
            result = await self.runner.run(argv, timeout=self.settings.probe_timeout)
        except (TimeoutError, OSError) as exc:
            logger.debug("Control request failed", socket=name, operation=operation, error=str(exc))
            return False
        return result.ok

    async def probe(self, alias: str) -> bool:
        """True only if the alias master answers a control-channel check."""
        return await self.control(master_name(alias), alias, "check")

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def spawn(self, alias: str, name: str, extra_args: Sequence[str] = ()) -> Path:
        """Start a backgrounded master connection bound to the socket *name*.

        Returns the socket path once the socket file exists.  If another process
        already holds a live master on *name*, that one is reused.
        """
        host = await self.registry.resolve(alias)
        base_args = await self.ssh_args(host)
        path = self.arena.path(name)

        self.arena.ensure_root()
        if self.arena.exists(name):
            if await self.control(name, alias, "check"):
                logger.debug("Socket already live, reusing", alias=alias, socket=name)
                return path
            # OpenSSH refuses to become master over a leftover socket
            self.arena.remove(name)

        argv = [
            self.settings.ssh_binary,
            "-M", "-N", "-f",
            "-S", str(path),
            *extra_args,
            *base_args,
            "--", host.hostname,
        ]
        logger.info("Starting master connection", alias=alias, socket=name, hostname=host.hostname)

        try:
            # -f keeps the forked master attached to stdout on older clients
            result = await self.runner.run(
                argv, timeout=self.settings.master_wait_timeout, capture_stdout=False
            )
        except TimeoutError as exc:
            raise RemoteTimeoutError(
                f"Timed out connecting to {alias} ({host.hostname})", alias=alias
            ) from exc
        except FileNotFoundError as exc:
            raise ConfigurationError(f"SSH client not found: {self.settings.ssh_binary}") from exc

        if not result.ok:
            detail = result.stderr.strip() or f"ssh exited with status {result.returncode}"
            raise RemoteConnectionError(f"Cannot connect to {alias}: {detail}", alias=alias)

        await self._wait_for_socket(name, alias)
        return path

    async def _wait_for_socket(self, name: str, alias: str) -> None:
        polls = max(1, math.ceil(self.settings.master_wait_timeout / _SOCKET_POLL_INTERVAL))
        for _ in range(polls):
            if self.arena.exists(name):
                return
            await self._sleep(_SOCKET_POLL_INTERVAL)
        if self.arena.exists(name):
            return
        raise RemoteTimeoutError(
            f"Control socket {name} did not appear within {self.settings.master_wait_timeout}s",
            alias=alias,
        )

    async def ensure_master(self, alias: str, retries: int | None = None) -> Path:
        """Return the control socket of a live master for *alias*, starting one if needed.

        *retries* extra attempts are made on ``RemoteConnectionError`` only;
        ``ConfigurationError`` is never retried.
        """
        if await self.probe(alias):
            return self.socket_path(alias)

        attempts = 1 + (self.settings.connect_retries if retries is None else retries)
        last_error: RemoteConnectionError | None = None
        for attempt in range(1, attempts + 1):
            try:
                return await self.spawn(
                    alias,
                    master_name(alias),
                    ["-o", f"ControlPersist={self.settings.control_persist}"],
                )
            except RemoteConnectionError as exc:
                last_error = exc
                logger.warning(
                    "Master connection attempt failed",
                    alias=alias,
                    attempt=attempt,
                    attempts=attempts,
                    error=str(exc),
                )

        assert last_error is not None
        raise last_error

    async def close_socket(self, name: str, alias: str) -> bool:
        """Ask the master on *name* to exit and remove its socket file.

        Idempotent; returns whether a live connection was actually stopped.
        """
        stopped = await self.control(name, alias, "exit")
        self.arena.remove(name)
        if stopped:
            logger.info("Master connection closed", alias=alias, socket=name)
        return stopped

    async def teardown(self, alias: str) -> None:
        await self.close_socket(master_name(alias), alias)
