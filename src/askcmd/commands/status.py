from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import typer
from rich import box
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from askcmd.core.breaker import BreakerStatus
from askcmd.core.console import console
from askcmd.core.decorators import handle_exceptions
from askcmd.core.diagnostics import default_checks, run_diagnostics
from askcmd.core.result import ExitCode

if TYPE_CHECKING:
    from askcmd.main import AppState

_BREAKER_STYLE = {
    BreakerStatus.CLOSED: "green",
    BreakerStatus.HALF_OPEN: "yellow",
    BreakerStatus.OPEN: "red",
}


@handle_exceptions
def status(
    ctx: typer.Context,
    reset: bool = typer.Option(
        False, "--reset", help="Close the circuit breaker and clear the rate window."
    ),
) -> None:
    """Show circuit breaker state and rate limit usage."""
    state: AppState = ctx.obj
    runtime = state.runtime_ctx
    breaker = runtime.get_breaker()
    limiter = runtime.get_rate_limiter()

    if reset:
        breaker.reset()
        limiter.reset()
        console.print("[green]Circuit breaker closed and rate window cleared.[/green]")

    current = breaker.state()
    used, limit = limiter.usage()

    table = Table(title="Backend guards", box=box.SIMPLE, show_header=False)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")
    style = _BREAKER_STYLE[current.status]
    table.add_row("Breaker", f"[{style}]{current.status.value}[/{style}]")
    table.add_row("Consecutive failures", f"{current.failures}/{breaker.threshold}")
    if current.status == BreakerStatus.OPEN and current.opened_at is not None:
        remaining = max(0.0, current.opened_at + breaker.cooldown - runtime.clock())
        table.add_row("Trial allowed in", f"{remaining:.0f}s")
    table.add_row("Rate window", f"{used}/{limit} calls per {limiter.window_seconds:g}s")
    if used >= limit:
        table.add_row("Retry after", f"{limiter.retry_after():.0f}s")
    table.add_row("Backend", escape(" ".join(runtime.config.backend.command)))
    console.print(table)


def doctor(ctx: typer.Context) -> None:
    """Check the backend, state directories and delivery channels."""
    state: AppState = ctx.obj
    checks = default_checks(state.config, state.config_meta.path, state.config_meta.file_loaded)
    results = asyncio.run(run_diagnostics(checks))

    tree = Tree("askcmd health")
    style_map = {"ok": "green", "warn": "yellow", "error": "red", "missing": "red"}
    for result in results:
        style = style_map.get(result.status, "white")
        tree.add(f"[{style}]{result.status}[/{style}] {result.name}: {escape(result.message)}")
    console.print(tree)

    if any(result.failed for result in results):
        raise typer.Exit(code=int(ExitCode.DEPENDENCY_MISSING))
