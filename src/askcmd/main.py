from __future__ import annotations

import logging
import signal
from dataclasses import dataclass, field
from pathlib import Path
from time import perf_counter
from types import FrameType
from typing import Any
from uuid import uuid4

import typer
from rich import box
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .core.config import AppConfig, ConfigError, ConfigLoadResult, load_config
from .core.console import configure_color, console, setup_logging, stderr_console
from .core.error_middleware import format_error, format_for_cli
from .core.registry import discover_commands
from .core.result import ExitCode
from .core.runtime import RuntimeContext

app = typer.Typer(
    help="askcmd: turn a plain-language request into a vetted shell command.",
    no_args_is_help=True,
)
logger = logging.getLogger(__name__)


class ApplicationLifecycle:
    """Owns the runtime context and the process signal handlers.

    SIGINT and SIGTERM become ``SystemExit(130)`` so that every ``with`` block
    and ``finally`` clause on the stack runs: held locks are released, temp
    files removed and a running backend child is killed.
    """

    def __init__(self) -> None:
        self._shutdown_requested: bool = False
        self._previous: dict[int, Any] = {}

    def establish_runtime(self, config: AppConfig) -> RuntimeContext:
        runtime = RuntimeContext(config=config, trace_id=f"cli-{uuid4().hex[:8]}")
        runtime.startup_cleanup()
        return runtime

    def handle_shutdown(self, signum: int, frame: FrameType | None) -> None:
        if not self._shutdown_requested:
            self._shutdown_requested = True
            stderr_console.print("\n[yellow]Interrupted, cleaning up...[/yellow]")
        raise SystemExit(int(ExitCode.INTERRUPTED))

    def register_signal_handlers(self) -> None:
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                self._previous[signum] = signal.signal(signum, self.handle_shutdown)
            except ValueError:
                # Not the main thread (embedded use); leave handlers alone
                logger.debug("Cannot install handler for signal %d", signum)

    def restore_signal_handlers(self) -> None:
        for signum, handler in self._previous.items():
            signal.signal(signum, handler)
        self._previous.clear()


@dataclass
class AppState:
    config: AppConfig
    config_meta: ConfigLoadResult
    logger: logging.Logger
    verbose: bool = False
    runtime_ctx: RuntimeContext = field(default=None)  # type: ignore[assignment]
    lifecycle: ApplicationLifecycle = field(default=None)  # type: ignore[assignment]


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to an askcmd config file (TOML or JSON)."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable coloured output."),
) -> None:
    try:
        loaded_config, meta = load_config(config_path=config)
    except ConfigError as exc:
        stderr_console.print(format_for_cli(format_error(exc)))
        raise typer.Exit(code=int(exc.exit_code))

    verbose = verbose or loaded_config.debug
    configure_color(loaded_config.color_output and not no_color)
    app_logger = setup_logging(verbose=verbose)

    lifecycle = ApplicationLifecycle()
    runtime = lifecycle.establish_runtime(loaded_config)
    lifecycle.register_signal_handlers()
    ctx.call_on_close(lifecycle.restore_signal_handlers)

    ctx.obj = AppState(
        config=loaded_config,
        config_meta=meta,
        logger=app_logger,
        verbose=verbose,
        runtime_ctx=runtime,
        lifecycle=lifecycle,
    )
    app_logger.debug(
        "Loaded configuration from %s (file: %s, env overrides: %s, trace: %s)",
        meta.path,
        meta.file_loaded,
        sorted(meta.env_overrides),
        runtime.trace_id,
    )


@app.command("config")
def show_config(ctx: typer.Context) -> None:
    """Show the active configuration and where it came from."""
    state: AppState = ctx.obj
    config = state.config
    meta = state.config_meta

    table = Table(title="Config", box=box.SIMPLE, expand=True)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")

    for key, value in config.model_dump(mode="json").items():
        if isinstance(value, dict):
            for sub_key, sub_value in value.items():
                table.add_row(f"{key}.{sub_key}", str(sub_value))
        else:
            table.add_row(key, str(value))

    console.print(table)

    meta_lines = [
        f"Path: {meta.path}",
        "File loaded: yes" if meta.file_loaded else "File loaded: no (using defaults + env)",
    ]
    if meta.env_overrides:
        meta_lines.append("Env overrides: " + ", ".join(sorted(meta.env_overrides)))

    console.print(Panel("\n".join(meta_lines), title="Config source", box=box.SIMPLE))


@app.command("version")
def show_version() -> None:
    """Print the askcmd version."""
    console.print(__version__)


def _register_commands() -> None:
    commands_path = Path(__file__).resolve().parent / "commands"
    typer_modules, function_commands = discover_commands(commands_path)

    for name, module in typer_modules:
        app.add_typer(module.app, name=name)

    for spec in function_commands:
        app.command(spec.name)(spec.handler)


def _register_commands_with_timing() -> None:
    start = perf_counter()
    _register_commands()
    logger.debug("Command registry initialized in %.3f seconds", perf_counter() - start)


_register_commands_with_timing()


def cli() -> None:
    app()


if __name__ == "__main__":
    cli()
