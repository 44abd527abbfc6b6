from __future__ import annotations

from typing import TYPE_CHECKING

import typer
from rich import box
from rich.table import Table

from askcmd.core.cache import NullCache
from askcmd.core.console import console

if TYPE_CHECKING:
    from askcmd.main import AppState

app = typer.Typer(help="Inspect and maintain the command cache.", no_args_is_help=True)


@app.command("stats")
def stats(ctx: typer.Context) -> None:
    """Show cache location, size and expired entries."""
    state: AppState = ctx.obj
    cache = state.runtime_ctx.get_cache()
    info = cache.stats()

    table = Table(title="Cache", box=box.SIMPLE, show_header=False)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")
    if not info.enabled:
        reason = cache.reason if isinstance(cache, NullCache) else "disabled"
        table.add_row("Enabled", f"[yellow]no[/yellow] ({reason})")
    else:
        table.add_row("Enabled", "[green]yes[/green]")
        table.add_row("Directory", str(info.directory))
        table.add_row("Entries", str(info.entries))
        table.add_row("Expired", str(info.expired))
        table.add_row("TTL", f"{info.ttl}s")
    console.print(table)


@app.command("clear")
def clear(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Remove every cached command."""
    state: AppState = ctx.obj
    if not yes and not typer.confirm("Remove all cached commands?"):
        raise typer.Exit(code=1)
    removed = state.runtime_ctx.get_cache().clear()
    console.print(f"[green]Removed {removed} cached command(s).[/green]")


@app.command("prune")
def prune(ctx: typer.Context) -> None:
    """Remove expired cache entries."""
    state: AppState = ctx.obj
    removed = state.runtime_ctx.get_cache().prune()
    console.print(f"[green]Pruned {removed} expired entr{'y' if removed == 1 else 'ies'}.[/green]")
