"""CLI commands for the host registry."""

from __future__ import annotations

import click
from rich.markup import escape

from fleetmux.cli.output import console, hosts_table
from fleetmux.cli.runtime import run
from fleetmux.core.exceptions import ConfigurationError
from fleetmux.core.services import Services
from fleetmux.remote.registry import DatabaseHostRegistry
from fleetmux.schemas.host import HostDescriptor


def _database_registry(services: Services) -> DatabaseHostRegistry:
    if not isinstance(services.registry, DatabaseHostRegistry):
        raise ConfigurationError("Host management needs the database-backed registry")
    return services.registry


@click.group("hosts")
def hosts_cmd() -> None:
    """Manage SSH host aliases."""


@hosts_cmd.command("add")
@click.argument("alias")
@click.argument("hostname")
@click.option("--port", default=22, show_default=True, type=click.IntRange(1, 65535))
@click.option("--user", default="root", show_default=True, help="Login user")
@click.option("--identity-file", default=None, help="Private key (default: agent / ssh config)")
@click.option("--jump-host", default=None, help="Alias of a host to jump through")
@click.option("--description", default=None)
@click.pass_context
def hosts_add(
    ctx: click.Context,
    alias: str,
    hostname: str,
    port: int,
    user: str,
    identity_file: str | None,
    jump_host: str | None,
    description: str | None,
) -> None:
    """Register ALIAS for HOSTNAME."""
    try:
        host = HostDescriptor(
            alias=alias,
            hostname=hostname,
            port=port,
            user=user,
            identity_file=identity_file,
            jump_host=jump_host,
        )
    except ValueError as e:
        console.print(f"[red]Invalid host:[/red] {escape(str(e))}", highlight=False)
        raise SystemExit(1)

    async def _add(services: Services):
        return await _database_registry(services).add(host, description)

    added = run(ctx, _add)
    console.print(f"[green]Added[/green] [bold]{added.alias}[/bold] -> {added.user}@{added.hostname}:{added.port}")


@hosts_cmd.command("list")
@click.pass_context
def hosts_list(ctx: click.Context) -> None:
    """List registered hosts."""

    async def _list(services: Services):
        return await _database_registry(services).list()

    console.print(hosts_table(run(ctx, _list)))


@hosts_cmd.command("remove")
@click.argument("alias")
@click.pass_context
def hosts_remove(ctx: click.Context, alias: str) -> None:
    """Remove ALIAS from the registry."""

    async def _remove(services: Services) -> bool:
        return await _database_registry(services).remove(alias)

    if run(ctx, _remove):
        console.print(f"[green]Removed[/green] {alias}")
    else:
        console.print(f"[yellow]Host {alias!r} not found.[/yellow]")
        raise SystemExit(1)
