from __future__ import annotations

from typing import TYPE_CHECKING

import typer
from rich import box
from rich.markup import escape
from rich.table import Table

from askcmd.core.audit import AuditCategory
from askcmd.core.console import console
from askcmd.core.decorators import handle_exceptions
from askcmd.core.result import DangerousCommandError
from askcmd.core.security import (
    CommandVerdict,
    generate_safety_warning,
    is_read_only,
    validate_command,
)

if TYPE_CHECKING:
    from askcmd.main import AppState


@handle_exceptions
def check(
    ctx: typer.Context,
    command: str = typer.Argument(..., help="Shell command to validate (quote it)."),
    safe: bool = typer.Option(False, "--safe", "-s", help="Apply the read-only rules."),
) -> None:
    """Validate a command against the safety rules without calling the backend."""
    state: AppState = ctx.obj
    safe_mode = safe or state.config.safe_mode

    verdict, reason = validate_command(command, safe_mode=safe_mode)
    warning = generate_safety_warning(command)

    table = Table(box=box.SIMPLE, show_header=False)
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")
    table.add_row("Command", escape(command))
    table.add_row("Mode", "safe" if safe_mode else "normal")
    style = "green" if verdict == CommandVerdict.ALLOWED else "red"
    table.add_row("Verdict", f"[{style}]{verdict.name}[/{style}]")
    table.add_row("Reason", escape(reason))
    table.add_row("Read-only", "yes" if is_read_only(command) else "no")
    table.add_row("Risk", escape(warning.message))
    console.print(table)

    if verdict != CommandVerdict.ALLOWED:
        state.runtime_ctx.get_audit().record(
            AuditCategory.SECURITY,
            "check_rejected",
            command=command,
            verdict=verdict.name,
            reason=reason,
            safe_mode=safe_mode,
        )
        raise DangerousCommandError(
            f"Command rejected: {reason}", context={"verdict": verdict.name}
        )
