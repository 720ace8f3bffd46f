"""Explicit wiring of the remote-execution components.

Nothing in fleetmux reaches for a global runner or registry; everything is built
here (or by a test) and handed down through constructors.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleetmux.core.config import Settings, get_settings
from fleetmux.core.database import get_session_factory
from fleetmux.core.process import ProcessRunner
from fleetmux.core.sockets import DirectoryArena, SocketArena
from fleetmux.remote.executor import RemoteExecutor
from fleetmux.remote.multiplexer import ConnectionMultiplexer
from fleetmux.remote.osinfo import OsProber
from fleetmux.remote.registry import DatabaseHostRegistry, HostRegistry
from fleetmux.remote.tunnels import TunnelManager
from fleetmux.remote.vault import CredentialStore, CredentialVault


@dataclass
class Services:
    settings: Settings
    registry: HostRegistry
    multiplexer: ConnectionMultiplexer
    executor: RemoteExecutor
    prober: OsProber
    tunnels: TunnelManager
    credentials: CredentialStore
    vault: CredentialVault


def build_services(
    settings: Settings | None = None,
    *,
    registry: HostRegistry | None = None,
    runner: ProcessRunner | None = None,
    arena: SocketArena | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> Services:
    settings = settings or get_settings()
    session_factory = session_factory or get_session_factory()
    registry = registry or DatabaseHostRegistry(session_factory)
    arena = arena or DirectoryArena(settings.mux_dir)

    multiplexer = ConnectionMultiplexer(registry, runner or ProcessRunner(), arena, settings)
    executor = RemoteExecutor(multiplexer)
    credentials = CredentialStore(session_factory, settings.secret_key)

    return Services(
        settings=settings,
        registry=registry,
        multiplexer=multiplexer,
        executor=executor,
        prober=OsProber(executor),
        tunnels=TunnelManager(multiplexer),
        credentials=credentials,
        vault=CredentialVault(executor, credentials, settings=settings),
    )
