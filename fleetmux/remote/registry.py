"""Host registry: resolves an alias to connection parameters.

The core only needs :meth:`HostRegistry.resolve`; how aliases are stored is up to
whoever owns the host table.  Two implementations ship here: an in-memory one for
scripts and tests, and one on top of the ``ssh_hosts`` table.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Protocol

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleetmux.core.exceptions import ConfigurationError
from fleetmux.core.logging import get_logger
from fleetmux.models.ssh_host import SshHost
from fleetmux.schemas.host import HostDescriptor, HostOut

logger = get_logger(__name__)


class HostRegistry(Protocol):
    async def resolve(self, alias: str) -> HostDescriptor:
        """Return the descriptor for *alias* or raise ``ConfigurationError``."""
        ...


def _require_active(alias: str, host: HostDescriptor | None) -> HostDescriptor:
    if host is None:
        raise ConfigurationError(f"Unknown host alias: {alias}")
    if not host.is_active:
        raise ConfigurationError(f"Host alias is deactivated: {alias}")
    return host


class StaticHostRegistry:
    """In-memory registry, mostly for tests and one-off scripts."""

    def __init__(self, hosts: Iterable[HostDescriptor] = ()) -> None:
        self._hosts: dict[str, HostDescriptor] = {}
        for host in hosts:
            self.add(host)

    def add(self, host: HostDescriptor) -> None:
        self._hosts[host.alias] = host

    async def resolve(self, alias: str) -> HostDescriptor:
        return _require_active(alias, self._hosts.get(alias))


class DatabaseHostRegistry:
    """Registry backed by the ``ssh_hosts`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def resolve(self, alias: str) -> HostDescriptor:
        async with self._session_factory() as session:
            row = (
                await session.execute(select(SshHost).where(SshHost.alias == alias))
            ).scalar_one_or_none()
        if row is None:
            return _require_active(alias, None)
        try:
            host = HostDescriptor.model_validate(row)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid host record for {alias}: {exc.errors()[0]['msg']}") from exc
        return _require_active(alias, host)

    async def add(self, host: HostDescriptor, description: str | None = None) -> HostOut:
        async with self._session_factory() as session:
            existing = (
                await session.execute(select(SshHost).where(SshHost.alias == host.alias))
            ).scalar_one_or_none()
            if existing is not None:
                raise ConfigurationError(f"Host alias already exists: {host.alias}")

            row = SshHost(
                alias=host.alias,
                hostname=host.hostname,
                port=host.port,
                user=host.user,
                identity_file=host.identity_file,
                jump_host=host.jump_host,
                is_active=host.is_active,
                description=description,
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            logger.info("Host registered", alias=host.alias, hostname=host.hostname)
            return HostOut.model_validate(row)

    async def list(self) -> list[HostOut]:
        async with self._session_factory() as session:
            rows = (await session.execute(select(SshHost).order_by(SshHost.alias))).scalars()
            return [HostOut.model_validate(row) for row in rows]

    async def remove(self, alias: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(delete(SshHost).where(SshHost.alias == alias))
            await session.commit()
        removed = bool(result.rowcount)
        if removed:
            logger.info("Host removed", alias=alias)
        return removed

    async def mark_reachable(self, alias: str, reachable: bool, error: str | None = None) -> None:
        """Record the outcome of a connection test on the host row."""
        async with self._session_factory() as session:
            row = (
                await session.execute(select(SshHost).where(SshHost.alias == alias))
            ).scalar_one_or_none()
            if row is None:
                raise ConfigurationError(f"Unknown host alias: {alias}")
            row.is_reachable = reachable
            row.last_tested_at = datetime.now(timezone.utc)
            row.last_error = None if reachable else (error or "Connection test failed")
            await session.commit()
