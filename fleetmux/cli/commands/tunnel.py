"""CLI commands for SSH local-forward tunnels."""

from __future__ import annotations

import click
from rich.markup import escape

from fleetmux.cli.output import console, tunnels_table
from fleetmux.cli.runtime import run
from fleetmux.core.services import Services
from fleetmux.remote.tunnels import calculate_local_port, remote_port
from fleetmux.schemas.tunnel import TunnelOpened, TunnelResult

_port_option = click.option("--local-port", type=click.IntRange(1, 65535), default=None, help="Override the computed local port")
_remote_port_option = click.option("--remote-port", type=click.IntRange(1, 65535), default=None, help="Override the service's remote port")


def _report(result: TunnelResult) -> None:
    if not isinstance(result, TunnelOpened):
        console.print(f"[red]✗ {escape(result.error)}[/red]")
        raise SystemExit(1)
    if result.message and result.message.startswith("[DRY RUN]"):
        console.print(result.message, style="yellow", markup=False)
        return
    verb = "Created" if result.created else "Active"
    console.print(
        f"[green]✓ {verb}[/green] {result.alias}/{result.service} "
        f"localhost:{result.local_port} -> remote:{result.remote_port}"
    )
    console.print(result.endpoint, highlight=False)


@click.group("tunnel")
def tunnel_cmd() -> None:
    """Local-forward tunnels to services on fleet nodes."""


@tunnel_cmd.command("port")
@click.argument("alias")
@click.argument("service", default="api")
def tunnel_port(alias: str, service: str) -> None:
    """Print the deterministic local port for ALIAS / SERVICE."""
    console.print(f"{calculate_local_port(alias, service)} [dim](remote {remote_port(service)})[/dim]")


@tunnel_cmd.command("create")
@click.argument("alias")
@click.argument("service", default="api")
@_port_option
@_remote_port_option
@click.option("--remote-host", default="localhost", show_default=True, help="Forward target as seen from ALIAS")
@click.option("--dry-run", is_flag=True, default=False)
@click.pass_context
def tunnel_create(
    ctx: click.Context,
    alias: str,
    service: str,
    local_port: int | None,
    remote_port: int | None,
    remote_host: str,
    dry_run: bool,
) -> None:
    """Start a tunnel to SERVICE on ALIAS."""

    async def _create(services: Services) -> TunnelResult:
        return await services.tunnels.create(
            alias, service, local_port, remote_port, remote_host=remote_host, dry_run=dry_run
        )

    _report(run(ctx, _create))


@tunnel_cmd.command("ensure")
@click.argument("alias")
@click.argument("service", default="api")
@_port_option
@_remote_port_option
@click.option("--dry-run", is_flag=True, default=False)
@click.pass_context
def tunnel_ensure(
    ctx: click.Context,
    alias: str,
    service: str,
    local_port: int | None,
    remote_port: int | None,
    dry_run: bool,
) -> None:
    """Reuse the tunnel to SERVICE on ALIAS, starting it if needed."""

    async def _ensure(services: Services) -> TunnelResult:
        return await services.tunnels.ensure(alias, service, local_port, remote_port, dry_run=dry_run)

    _report(run(ctx, _ensure))


@tunnel_cmd.command("endpoint")
@click.argument("alias")
@click.argument("service", default="api")
@_port_option
@click.pass_context
def tunnel_endpoint(ctx: click.Context, alias: str, service: str, local_port: int | None) -> None:
    """Print the endpoint of a running tunnel (never starts one)."""

    async def _endpoint(services: Services) -> TunnelResult:
        return await services.tunnels.get_endpoint(alias, service, local_port)

    result = run(ctx, _endpoint)
    if not isinstance(result, TunnelOpened):
        console.print(f"[yellow]{escape(result.error)}[/yellow]")
        raise SystemExit(1)
    console.print(result.endpoint, highlight=False)


@tunnel_cmd.command("close")
@click.argument("alias")
@click.option("--port", "local_port", type=int, default=None, help="Only this tunnel (default: all for ALIAS)")
@click.pass_context
def tunnel_close(ctx: click.Context, alias: str, local_port: int | None) -> None:
    """Close tunnels for ALIAS."""

    async def _close(services: Services):
        return await services.tunnels.close(alias, local_port)

    result = run(ctx, _close)
    style = "green" if result.closed else "dim"
    console.print(f"[{style}]{escape(result.message)}[/{style}]")


@tunnel_cmd.command("list")
@click.pass_context
def tunnel_list(ctx: click.Context) -> None:
    """List tunnel sockets with a live probe of each."""

    async def _list(services: Services):
        return await services.tunnels.list()

    console.print(tunnels_table(run(ctx, _list)))


@tunnel_cmd.command("cleanup")
@click.pass_context
def tunnel_cleanup(ctx: click.Context) -> None:
    """Remove control sockets nobody answers on."""

    async def _cleanup(services: Services) -> int:
        return await services.tunnels.cleanup()

    removed = run(ctx, _cleanup)
    console.print(f"Removed {removed} stale socket(s)")
