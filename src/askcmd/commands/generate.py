from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import typer
from rich.markup import escape

from askcmd.core.config import OutputMode, apply_overrides
from askcmd.core.console import console, stderr_console
from askcmd.core.decorators import handle_exceptions
from askcmd.core.delivery import deliver
from askcmd.core.pipeline import PipelineResult, build_pipeline
from askcmd.core.runtime import RuntimeContext
from askcmd.core.security import RiskLevel

if TYPE_CHECKING:
    from askcmd.main import AppState

_RISK_STYLE = {
    RiskLevel.LOW: "cyan",
    RiskLevel.MODERATE: "yellow",
    RiskLevel.HIGH: "bold red",
}


def _report(result: PipelineResult) -> None:
    """Warnings go to stderr so stdout carries nothing but the command."""
    if result.sensitive:
        stderr_console.print(
            "[yellow]Warning:[/yellow] the request looks like it contains sensitive data "
            f"({', '.join(result.sensitive)})"
        )
    warning = result.warning
    if warning.is_risky:
        style = _RISK_STYLE.get(warning.level, "yellow")
        stderr_console.print(f"[{style}]{escape(warning.message)}[/{style}]")


@handle_exceptions
def generate(
    ctx: typer.Context,
    query: list[str] = typer.Argument(..., help="What the command should do, in plain words."),
    safe: bool = typer.Option(False, "--safe", "-s", help="Only accept read-only commands."),
    dry_run: bool = typer.Option(
        False, "--dry-run", "-n", help="Print the command to stdout instead of delivering it."
    ),
    output: OutputMode | None = typer.Option(
        None, "--output", "-o", help="Delivery channel (default from config)."
    ),
    no_cache: bool = typer.Option(False, "--no-cache", help="Bypass the command cache."),
    timeout: float | None = typer.Option(
        None, "--timeout", "-t", help="Backend timeout in seconds (max 600)."
    ),
) -> None:
    """Generate a shell command from a plain-language request."""
    state: AppState = ctx.obj
    runtime = state.runtime_ctx

    overrides: dict[str, object] = {}
    if timeout is not None:
        overrides["timeout"] = timeout
    if safe:
        overrides["safe_mode"] = True
    if overrides:
        config = apply_overrides(runtime.config, overrides)
        runtime = RuntimeContext(config=config, trace_id=runtime.trace_id, runner=runtime.runner)

    pipeline = build_pipeline(runtime, use_cache=not no_cache)
    result = asyncio.run(pipeline.run(" ".join(query)))
    _report(result)

    if dry_run:
        console.print(result.command, markup=False, highlight=False, soft_wrap=True)
        return

    outcome = deliver(result.command, output or runtime.config.output_mode)
    if outcome.channel == "prefill":
        stderr_console.print("[dim]Command typed into the current pane; review it before pressing Enter.[/dim]")
    elif outcome.channel == "clipboard":
        stderr_console.print("[dim]Command copied to the clipboard.[/dim]")
    if outcome.fell_back:
        stderr_console.print("[yellow]Requested output channel unavailable; printed instead.[/yellow]")
