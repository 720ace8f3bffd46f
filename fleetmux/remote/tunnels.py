"""SSH local-forward tunnels, one per (alias, service).

Every tunnel is its own backgrounded ssh master with a ``-L`` forward, bound to the
control socket ``<alias>_<local_port>``.  Whether a tunnel is up is always answered
by a fresh ``-O check`` on that socket; nothing is remembered between calls.

Local ports are derived from the alias so the same service on the same host lands
on the same port on every controller, across restarts.
"""

from __future__ import annotations

import asyncio
import hashlib
import re
import socket
from collections.abc import Callable
from enum import Enum

from fleetmux.core.config import Settings
from fleetmux.core.exceptions import PortConflictError, RemoteConnectionError
from fleetmux.core.logging import get_logger
from fleetmux.core.sockets import (
    MASTER_SUFFIX,
    SocketArena,
    parse_tunnel_name,
    tunnel_name,
)
from fleetmux.remote.multiplexer import ConnectionMultiplexer
from fleetmux.schemas.tunnel import (
    TunnelClosed,
    TunnelFailed,
    TunnelHandle,
    TunnelInfo,
    TunnelOpened,
    TunnelResult,
    TunnelState,
)

logger = get_logger(__name__)

_PORT_IN_USE = re.compile(r"address already in use|cannot listen to port", re.IGNORECASE)


class Service(str, Enum):
    POWERDNS = "powerdns"
    MYSQL = "mysql"
    REDIS = "redis"
    API = "api"

    @classmethod
    def from_name(cls, name: str | None) -> Service:
        """Normalise a service name or alias; anything unrecognised is ``API``."""
        return SERVICE_ALIASES.get((name or "").strip().lower(), cls.API)


SERVICE_ALIASES: dict[str, Service] = {
    "powerdns": Service.POWERDNS,
    "pdns": Service.POWERDNS,
    "mysql": Service.MYSQL,
    "db": Service.MYSQL,
    "redis": Service.REDIS,
    "api": Service.API,
}

PORT_SUFFIXES: dict[Service, int] = {
    Service.POWERDNS: 1,
    Service.MYSQL: 6,
    Service.REDIS: 9,
    Service.API: 0,
}

REMOTE_PORTS: dict[Service, int] = {
    Service.POWERDNS: 8081,
    Service.MYSQL: 3306,
    Service.REDIS: 6379,
    Service.API: 8080,
}


def calculate_local_port(alias: str, service: str = Service.API.value) -> int:
    """Deterministic local port for (*alias*, *service*).

    ``"1"`` + the first three hex digits of md5("<alias>\\n") with a-f folded onto
    0-5 + the service suffix digit.  ``calculate_local_port("markc", "powerdns")``
    is ``18371``.
    """
    digest = hashlib.md5(f"{alias}\n".encode(), usedforsecurity=False).hexdigest()[:3]
    digits = "".join(str(int(char, 16) % 10) for char in digest)
    return int(f"1{digits}{PORT_SUFFIXES[Service.from_name(service)]}")


def remote_port(service: str) -> int:
    return REMOTE_PORTS[Service.from_name(service)]


def local_port_available(port: int, host: str = "127.0.0.1") -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


class TunnelManager:
    def __init__(
        self,
        multiplexer: ConnectionMultiplexer,
        arena: SocketArena | None = None,
        settings: Settings | None = None,
        port_available: Callable[[int], bool] = local_port_available,
    ) -> None:
        self.multiplexer = multiplexer
        self.arena = arena or multiplexer.arena
        self.settings = settings or multiplexer.settings
        self._port_available = port_available

    def handle(
        self,
        alias: str,
        service: str = Service.API.value,
        local_port: int | None = None,
        remote_port_override: int | None = None,
    ) -> TunnelHandle:
        """Resolve ports (explicit values win) into a fresh, inactive handle."""
        port = local_port if local_port is not None else calculate_local_port(alias, service)
        return TunnelHandle(
            alias=alias,
            service=service,
            local_port=port,
            remote_port=remote_port_override if remote_port_override is not None else remote_port(service),
            socket_path=self.arena.path(tunnel_name(alias, port)),
        )

    def _advance(self, handle: TunnelHandle, target: TunnelState) -> None:
        previous = handle.state
        handle.advance(target)
        logger.debug(
            "Tunnel state changed",
            alias=handle.alias,
            local_port=handle.local_port,
            previous=previous.value,
            state=target.value,
        )

    def _opened(self, handle: TunnelHandle, created: bool, message: str | None = None) -> TunnelOpened:
        return TunnelOpened(
            alias=handle.alias,
            service=handle.service,
            local_port=handle.local_port,
            remote_port=handle.remote_port,
            endpoint=handle.endpoint,
            created=created,
            message=message,
            handle=handle,
        )

    async def check(self, alias: str, local_port: int) -> bool:
        return await self.multiplexer.control(tunnel_name(alias, local_port), alias, "check")

    def _reused(self, handle: TunnelHandle) -> TunnelOpened:
        self._advance(handle, TunnelState.ACTIVE)
        logger.debug("Tunnel already active", alias=handle.alias, local_port=handle.local_port)
        return self._opened(handle, created=False, message="Tunnel already active")

    async def _open(self, handle: TunnelHandle, remote_host: str) -> TunnelResult:
        alias, port = handle.alias, handle.local_port

        if not self._port_available(port):
            # Lost a concurrent create for the same tunnel
            if await self.check(alias, port):
                return self._reused(handle)
            raise PortConflictError(port)

        self._advance(handle, TunnelState.CREATING)
        try:
            await self.multiplexer.spawn(
                alias,
                tunnel_name(alias, port),
                [
                    "-o", "ExitOnForwardFailure=yes",
                    "-L", f"{port}:{remote_host}:{handle.remote_port}",
                ],
            )
        except RemoteConnectionError as exc:
            self._advance(handle, TunnelState.INACTIVE)
            if _PORT_IN_USE.search(str(exc)):
                if await self.check(alias, port):
                    return self._reused(handle)
                raise PortConflictError(port, str(exc)) from exc
            logger.warning("Tunnel creation failed", alias=alias, local_port=port, error=str(exc))
            return TunnelFailed(alias=alias, service=handle.service, local_port=port, error=str(exc))

        self._advance(handle, TunnelState.ACTIVE)
        logger.info(
            "Tunnel created",
            alias=alias,
            service=handle.service,
            local_port=port,
            remote_port=handle.remote_port,
        )
        return self._opened(handle, created=True)

    def _dry_run(self, handle: TunnelHandle, remote_host: str) -> TunnelOpened:
        message = (
            f"[DRY RUN] Would forward localhost:{handle.local_port} to "
            f"{remote_host}:{handle.remote_port} on {handle.alias}"
        )
        logger.info(message)
        return self._opened(handle, created=False, message=message)

    async def create(
        self,
        alias: str,
        service: str = Service.API.value,
        local_port: int | None = None,
        remote_port: int | None = None,
        remote_host: str = "localhost",
        dry_run: bool = False,
    ) -> TunnelResult:
        """Start the tunnel for (*alias*, *service*).

        Connection problems come back as :class:`TunnelFailed`; a local port held by
        some other process raises :class:`PortConflictError`.
        """
        handle = self.handle(alias, service, local_port, remote_port)
        if dry_run:
            return self._dry_run(handle, remote_host)
        if await self.check(alias, handle.local_port):
            return self._reused(handle)
        return await self._open(handle, remote_host)

    async def ensure(
        self,
        alias: str,
        service: str = Service.API.value,
        local_port: int | None = None,
        remote_port: int | None = None,
        dry_run: bool = False,
    ) -> TunnelResult:
        """Return the live tunnel, creating it first if needed (``created`` tells which).

        Two concurrent calls for the same pair may both try to create; the loser
        sees the port bound, finds the winner's tunnel alive and reports reuse.
        """
        handle = self.handle(alias, service, local_port, remote_port)
        if await self.check(alias, handle.local_port):
            return self._reused(handle)
        if dry_run:
            return self._dry_run(handle, "localhost")
        return await self._open(handle, "localhost")

    async def get_endpoint(
        self,
        alias: str,
        service: str = Service.API.value,
        local_port: int | None = None,
    ) -> TunnelResult:
        """Endpoint of an already-running tunnel; never starts one."""
        handle = self.handle(alias, service, local_port)
        if not await self.check(alias, handle.local_port):
            return TunnelFailed(
                alias=alias,
                service=service,
                local_port=handle.local_port,
                error=f"No active {service} tunnel for {alias} on port {handle.local_port}",
            )
        self._advance(handle, TunnelState.ACTIVE)
        return self._opened(handle, created=False)

    def _tunnel_names(self) -> list[tuple[str, int]]:
        return [parsed for parsed in map(parse_tunnel_name, self.arena.names()) if parsed]

    async def close(self, alias: str, local_port: int | None = None) -> TunnelClosed:
        """Close one tunnel, or every tunnel of *alias* when no port is given.

        Closing something that is not running succeeds with ``closed=0``.
        """
        if local_port is not None:
            ports = [local_port]
        else:
            ports = [port for owner, port in self._tunnel_names() if owner == alias]

        handles: list[TunnelHandle] = []
        for port in ports:
            name = tunnel_name(alias, port)
            if not await self.check(alias, port):
                self.arena.remove(name)
                continue

            handle = self.handle(alias, local_port=port)
            self._advance(handle, TunnelState.ACTIVE)
            self._advance(handle, TunnelState.CLOSING)
            await self.multiplexer.close_socket(name, alias)
            self._advance(handle, TunnelState.CLOSED)
            handles.append(handle)
            logger.info("Tunnel closed", alias=alias, local_port=port)

        if handles:
            message = f"Closed {len(handles)} tunnel(s) for {alias}"
        else:
            message = f"No active tunnel for {alias}"
        return TunnelClosed(alias=alias, closed=len(handles), message=message, handles=handles)

    async def list(self) -> list[TunnelInfo]:
        """Every tunnel socket on disk with a fresh liveness probe; dead ones stay listed."""
        entries = self._tunnel_names()
        states = await asyncio.gather(*(self.check(alias, port) for alias, port in entries))
        return [
            TunnelInfo(alias=alias, local_port=port, active=active)
            for (alias, port), active in zip(entries, states)
        ]

    async def cleanup(self) -> int:
        """Remove socket files (tunnels and alias masters) nobody answers on."""
        removed = 0
        for name in self.arena.names():
            parsed = parse_tunnel_name(name)
            if parsed is not None:
                alias = parsed[0]
            elif name.endswith(MASTER_SUFFIX):
                alias = name[: -len(MASTER_SUFFIX)]
            else:
                continue

            if not await self.multiplexer.control(name, alias, "check"):
                self.arena.remove(name)
                removed += 1
                logger.info("Removed stale socket", socket=name)
        return removed

