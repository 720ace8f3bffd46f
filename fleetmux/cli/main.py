"""fleetmux CLI entry point: `fleetmux` command group."""

from __future__ import annotations

import os

import click

from fleetmux.cli.commands.hosts import hosts_cmd
from fleetmux.cli.commands.remote import remote_cmd
from fleetmux.cli.commands.tunnel import tunnel_cmd
from fleetmux.cli.commands.vmail import vmail_cmd
from fleetmux.core.config import get_settings
from fleetmux.core.logging import configure_logging


@click.group()
@click.version_option(package_name="fleetmux")
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    envvar="FLEETMUX_DEBUG",
    help="Human-readable DEBUG logs on stderr",
)
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """fleetmux: multiplexed SSH execution and tunnels for fleet nodes.

    \b
    Quick start:
      fleetmux hosts add web1 203.0.113.10 --user admin
      fleetmux remote exec web1 "uptime"
      fleetmux tunnel ensure web1 powerdns
      fleetmux tunnel list
    """
    ctx.ensure_object(dict)
    if debug:
        os.environ["APP_DEBUG"] = "true"
        os.environ["LOG_LEVEL"] = "DEBUG"
        get_settings.cache_clear()
        configure_logging(force=True)


# Register sub-commands
cli.add_command(hosts_cmd)
cli.add_command(remote_cmd)
cli.add_command(tunnel_cmd)
cli.add_command(vmail_cmd)


if __name__ == "__main__":
    cli()
