"""Glue between synchronous click commands and the async services."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import click
from rich.markup import escape

from fleetmux.cli.output import err_console
from fleetmux.core.database import close_engine, init_models
from fleetmux.core.exceptions import FleetMuxError
from fleetmux.core.services import Services, build_services

T = TypeVar("T")


def get_services(ctx: click.Context) -> Services:
    """Services from ``ctx.obj`` (tests inject their own), built on first use."""
    obj = ctx.ensure_object(dict)
    if "services" not in obj:
        obj["services"] = build_services()
        obj["owns_database"] = True
    return obj["services"]


def run(ctx: click.Context, action: Callable[[Services], Awaitable[T]]) -> T:
    """Run *action* on a fresh event loop; fleetmux errors exit with status 1."""
    services = get_services(ctx)
    owns_database = ctx.obj.get("owns_database", False)

    async def _main() -> T:
        if owns_database:
            await init_models()
        try:
            return await action(services)
        finally:
            if owns_database:
                await close_engine()

    try:
        return asyncio.run(_main())
    except FleetMuxError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}", highlight=False)
        raise SystemExit(1)
