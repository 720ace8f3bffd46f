"""Rich output helpers: tables and result printing."""

from __future__ import annotations

from datetime import datetime

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from fleetmux.schemas.credential import CredentialOut
from fleetmux.schemas.execution import ExecutionResult
from fleetmux.schemas.host import HostOut
from fleetmux.schemas.osinfo import OsIdentity
from fleetmux.schemas.tunnel import TunnelInfo

console = Console()
err_console = Console(stderr=True)


def fmt_date(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M")


def flag(value: bool | None, true_style: str = "green") -> Text:
    if value is None:
        return Text("?", style="dim")
    return Text("✓", style=true_style) if value else Text("✗", style="dim")


def hosts_table(items: list[HostOut]) -> Table:
    table = Table(
        title=f"Hosts ({len(items)})",
        show_header=True,
        header_style="bold cyan",
        border_style="dim",
    )
    table.add_column("Alias", style="bold", no_wrap=True)
    table.add_column("Hostname")
    table.add_column("Port", justify="right")
    table.add_column("User")
    table.add_column("Jump", style="dim")
    table.add_column("Active", justify="center")
    table.add_column("Reachable", justify="center")
    table.add_column("Last tested", style="dim")

    for h in items:
        table.add_row(
            h.alias,
            h.hostname,
            str(h.port),
            h.user,
            h.jump_host or "-",
            flag(h.is_active),
            flag(h.is_reachable),
            fmt_date(h.last_tested_at),
        )
    return table


def tunnels_table(items: list[TunnelInfo]) -> Table:
    table = Table(
        title=f"Tunnels ({len(items)})",
        header_style="bold cyan",
        border_style="dim",
    )
    table.add_column("Alias", style="bold")
    table.add_column("Local port", justify="right")
    table.add_column("Endpoint")
    table.add_column("State")

    for t in items:
        state = Text("active", style="green") if t.active else Text("inactive", style="dim")
        table.add_row(t.alias, str(t.local_port), t.endpoint, state)
    return table


def print_execution(result: ExecutionResult) -> None:
    """Remote stdout goes to stdout untouched; stderr and status go to stderr."""
    if result.dry_run:
        console.print(result.output, style="yellow", markup=False)
    elif result.stdout:
        console.out(result.stdout, end="", highlight=False)
    if result.stderr:
        err_console.out(result.stderr, end="", style="yellow", highlight=False)
    if not result.success:
        err_console.print(f"[red]Exit code {result.exit_code}[/red] [dim]({result.elapsed:.2f}s)[/dim]")


def print_os_identity(alias: str, identity: OsIdentity) -> None:
    style = "green" if identity.is_known else "yellow"
    console.rule(f"[bold cyan]{alias}")
    for key, value in identity.as_env().items():
        console.print(f"  [dim]{key:<6}[/dim] [{style}]{value}[/{style}]")


def credential_detail(credential: CredentialOut, password: str | None = None) -> None:
    console.rule(f"[bold cyan]Mailbox {credential.email}")
    fields = [
        ("Host", credential.host_alias),
        ("Domain", credential.vhost_domain),
        ("Hint", credential.hint),
        ("Active", str(credential.is_active)),
        ("Rotated", fmt_date(credential.last_rotated_at)),
        ("Created", fmt_date(credential.created_at)),
        ("Password", password),
    ]
    for label, value in fields:
        if value:
            console.print(f"  [dim]{label:<10}[/dim] {escape(value)}", highlight=False)
