from __future__ import annotations

import json
from typing import TYPE_CHECKING

import typer
from rich import box
from rich.markup import escape
from rich.table import Table

from askcmd.core.audit import AuditCategory
from askcmd.core.console import console

if TYPE_CHECKING:
    from askcmd.main import AppState

_CATEGORY_STYLE = {
    AuditCategory.COMMAND: "green",
    AuditCategory.SECURITY: "red",
    AuditCategory.PERFORMANCE: "dim",
}


def audit(
    ctx: typer.Context,
    category: AuditCategory | None = typer.Option(
        None, "--category", "-c", help="Only show one category."
    ),
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Number of records to show."),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON lines."),
) -> None:
    """Show the most recent audit records."""
    state: AppState = ctx.obj
    log = state.runtime_ctx.get_audit()
    records = log.read(category=category, limit=limit)

    if as_json:
        for record in records:
            console.print(record.model_dump_json(), markup=False, highlight=False, soft_wrap=True)
        return

    if not records:
        console.print(f"[yellow]No audit records in {log.path}[/yellow]")
        return

    table = Table(title=f"Audit ({len(records)})", box=box.SIMPLE_HEAVY, expand=True)
    table.add_column("Time", style="dim", no_wrap=True)
    table.add_column("Category", no_wrap=True)
    table.add_column("Event", style="cyan", no_wrap=True)
    table.add_column("Details", style="white")

    for record in records:
        style = _CATEGORY_STYLE[record.category]
        details = json.dumps(record.payload, ensure_ascii=False, default=str)
        details = (details[:117] + "...") if len(details) > 120 else details
        table.add_row(
            record.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            f"[{style}]{record.category.value}[/{style}]",
            record.event,
            escape(details),
        )

    console.print(table)
