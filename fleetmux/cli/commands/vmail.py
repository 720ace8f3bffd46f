"""CLI commands for mailbox credentials."""

from __future__ import annotations

import click
from rich.markup import escape

from fleetmux.cli.output import console, credential_detail
from fleetmux.cli.runtime import run
from fleetmux.core.services import Services
from fleetmux.remote.vault import mail_domain
from fleetmux.schemas.credential import ProvisionResult


def _report(result: ProvisionResult, action: str) -> None:
    if result.dry_run:
        console.print(result.description, style="yellow", markup=False)
        return
    if not result.success:
        console.print(f"[red]✗ {escape(result.error or 'failed')}[/red]")
        raise SystemExit(1)
    console.print(f"[green]✓ {action}[/green] {result.identity} on {result.alias}")
    if result.generated_password:
        console.print(f"  [dim]Password[/dim] {escape(result.generated_password)}", highlight=False)


def _require_email(email: str) -> None:
    try:
        mail_domain(email)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="EMAIL") from exc


@click.group("vmail")
def vmail_cmd() -> None:
    """Mailbox credentials (hash on the node, encrypted cleartext locally)."""


@vmail_cmd.command("add")
@click.argument("alias")
@click.argument("email")
@click.option("--password", default=None, help="Default: generate one")
@click.option("--uid", type=int, default=None, help="Default: owner of /srv/<domain>")
@click.option("--gid", type=int, default=None)
@click.option("--hint", default=None)
@click.option("--dry-run", is_flag=True, default=False)
@click.pass_context
def vmail_add(
    ctx: click.Context,
    alias: str,
    email: str,
    password: str | None,
    uid: int | None,
    gid: int | None,
    hint: str | None,
    dry_run: bool,
) -> None:
    """Create mailbox EMAIL on ALIAS."""
    _require_email(email)

    async def _provision(services: Services) -> ProvisionResult:
        return await services.vault.provision(
            alias, email, password, uid=uid, gid=gid, hint=hint, dry_run=dry_run
        )

    _report(run(ctx, _provision), "Created")


@vmail_cmd.command("passwd")
@click.argument("alias")
@click.argument("email")
@click.option("--password", default=None, help="Default: generate one")
@click.option("--dry-run", is_flag=True, default=False)
@click.pass_context
def vmail_passwd(
    ctx: click.Context, alias: str, email: str, password: str | None, dry_run: bool
) -> None:
    """Change the password of EMAIL on ALIAS."""
    _require_email(email)

    async def _rotate(services: Services) -> ProvisionResult:
        return await services.vault.rotate(alias, email, password, dry_run=dry_run)

    _report(run(ctx, _rotate), "Updated")


@vmail_cmd.command("show")
@click.argument("email")
@click.option("--reveal", is_flag=True, default=False, help="Decrypt and show the stored password")
@click.pass_context
def vmail_show(ctx: click.Context, email: str, reveal: bool) -> None:
    """Show the locally stored credential for EMAIL."""

    async def _show(services: Services):
        credential = await services.credentials.get(email)
        password = None
        if credential is not None and reveal:
            password = await services.credentials.reveal(email)
        return credential, password

    credential, password = run(ctx, _show)
    if credential is None:
        console.print(f"[yellow]No stored credential for {email!r}.[/yellow]")
        raise SystemExit(1)
    credential_detail(credential, password)
