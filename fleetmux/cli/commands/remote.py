"""CLI commands for running things on fleet nodes."""

from __future__ import annotations

import click

from fleetmux.cli.output import console, print_execution, print_os_identity
from fleetmux.cli.runtime import run
from fleetmux.core.services import Services
from fleetmux.remote.registry import DatabaseHostRegistry
from fleetmux.schemas.execution import ExecutionResult


def _finish(result: ExecutionResult) -> None:
    print_execution(result)
    if not result.success:
        raise SystemExit(result.exit_code or 1)


@click.group("remote")
def remote_cmd() -> None:
    """Remote command execution over multiplexed SSH."""


@remote_cmd.command("exec")
@click.argument("alias")
@click.argument("command")
@click.option("--root", "as_root", is_flag=True, default=False, help="Run through sudo unless logged in as root")
@click.option("--timeout", type=float, default=None, help="Seconds before giving up (default from settings)")
@click.option("--retries", type=click.IntRange(min=0), default=None, help="Extra connection attempts")
@click.option("--dry-run", is_flag=True, default=False)
@click.pass_context
def remote_exec(
    ctx: click.Context,
    alias: str,
    command: str,
    as_root: bool,
    timeout: float | None,
    retries: int | None,
    dry_run: bool,
) -> None:
    """Run COMMAND on ALIAS; exits with the remote exit code."""

    async def _exec(services: Services) -> ExecutionResult:
        return await services.executor.exec(
            alias, command, as_root=as_root, timeout=timeout, retries=retries, dry_run=dry_run
        )

    _finish(run(ctx, _exec))


@remote_cmd.command("script")
@click.argument("alias")
@click.argument("script_file", type=click.File("r"))
@click.argument("args", nargs=-1)
@click.option("--root", "as_root", is_flag=True, default=False)
@click.option("--timeout", type=float, default=None)
@click.option("--no-strict", is_flag=True, default=False, help="Do not prepend set -euo pipefail")
@click.option("--dry-run", is_flag=True, default=False)
@click.pass_context
def remote_script(
    ctx: click.Context,
    alias: str,
    script_file,
    args: tuple[str, ...],
    as_root: bool,
    timeout: float | None,
    no_strict: bool,
    dry_run: bool,
) -> None:
    """Run SCRIPT_FILE on ALIAS with ARGS as $1, $2, ...

    Example:

        fleetmux remote script web1 ./add-vhost.sh example.com --root
    """
    script = script_file.read()

    async def _script(services: Services) -> ExecutionResult:
        return await services.executor.execute_script(
            alias,
            script,
            list(args),
            as_root=as_root,
            timeout=timeout,
            strict=not no_strict,
            dry_run=dry_run,
        )

    _finish(run(ctx, _script))


@remote_cmd.command("os")
@click.argument("alias")
@click.pass_context
def remote_os(ctx: click.Context, alias: str) -> None:
    """Show OSTYP / OSREL / OSMIR for ALIAS."""

    async def _probe(services: Services):
        return await services.prober.probe(alias)

    print_os_identity(alias, run(ctx, _probe))


@remote_cmd.command("check")
@click.argument("alias")
@click.option("--root", "check_root", is_flag=True, default=False, help="Also verify root access")
@click.pass_context
def remote_check(ctx: click.Context, alias: str, check_root: bool) -> None:
    """Test that ALIAS is reachable and record the result."""

    async def _check(services: Services) -> tuple[bool, bool | None]:
        reachable = await services.executor.test_connection(alias)
        if isinstance(services.registry, DatabaseHostRegistry):
            await services.registry.mark_reachable(alias, reachable)
        root = None
        if reachable and check_root:
            root = await services.executor.test_root_access(alias)
        return reachable, root

    reachable, root = run(ctx, _check)
    if not reachable:
        console.print(f"[red]✗ {alias} is not reachable[/red]")
        raise SystemExit(1)
    console.print(f"[green]✓ {alias} is reachable[/green]")
    if root is not None:
        if root:
            console.print("[green]✓ root access[/green]")
        else:
            console.print("[red]✗ no root access[/red]")
            raise SystemExit(1)


@remote_cmd.command("close")
@click.argument("alias")
@click.pass_context
def remote_close(ctx: click.Context, alias: str) -> None:
    """Stop the shared master connection for ALIAS."""

    async def _close(services: Services) -> None:
        await services.multiplexer.teardown(alias)

    run(ctx, _close)
    console.print(f"[green]Closed[/green] master connection for {alias}")
