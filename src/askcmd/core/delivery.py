"""
Hand the validated command to the user without running it.

Strategies:
- prefill: type the command into the current tmux pane, no trailing newline
- clipboard: copy with pyperclip
- stdout: print the bare command

``auto`` tries prefill, then clipboard, then stdout. An explicit mode that
is unavailable falls back to stdout so the command is never lost.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Protocol

import pyperclip

from askcmd.core.config import OutputMode
from askcmd.core.console import console, get_logger

logger = get_logger(__name__)

TMUX_TIMEOUT = 5.0


class DeliveryUnavailable(Exception):
    """The chosen delivery channel cannot be used in this environment."""


class DeliveryStrategy(Protocol):
    name: str

    def available(self) -> bool: ...

    def deliver(self, command: str) -> None: ...


class PrefillStrategy:
    name = "prefill"

    def __init__(
        self,
        env: Mapping[str, str] | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self._env = os.environ if env is None else env
        self._which = which

    def available(self) -> bool:
        return bool(self._env.get("TMUX")) and self._which("tmux") is not None

    def deliver(self, command: str) -> None:
        if not self.available():
            raise DeliveryUnavailable("not inside tmux")
        # -l sends the text literally; no Enter key, so nothing runs
        argv = ["tmux", "send-keys", "-l", "--", command]
        try:
            subprocess.run(argv, check=True, capture_output=True, timeout=TMUX_TIMEOUT)
        except (OSError, subprocess.SubprocessError) as exc:
            raise DeliveryUnavailable(f"tmux send-keys failed: {exc}") from exc


class ClipboardStrategy:
    name = "clipboard"

    def available(self) -> bool:
        # pyperclip only reports a missing backend when used
        return True

    def deliver(self, command: str) -> None:
        try:
            pyperclip.copy(command)
        except pyperclip.PyperclipException as exc:
            raise DeliveryUnavailable(f"clipboard unavailable: {exc}") from exc


class StdoutStrategy:
    name = "stdout"

    def available(self) -> bool:
        return True

    def deliver(self, command: str) -> None:
        # The command may contain [brackets]; never let rich interpret it
        console.print(command, markup=False, highlight=False, soft_wrap=True)


@dataclass(frozen=True)
class DeliveryOutcome:
    channel: str
    fell_back: bool = False


def strategies_for(mode: OutputMode) -> list[DeliveryStrategy]:
    """Strategies to try, in order, for ``mode``. Stdout always comes last."""
    chains: dict[OutputMode, list[DeliveryStrategy]] = {
        OutputMode.AUTO: [PrefillStrategy(), ClipboardStrategy()],
        OutputMode.PREFILL: [PrefillStrategy()],
        OutputMode.CLIPBOARD: [ClipboardStrategy()],
        OutputMode.STDOUT: [],
    }
    return [*chains[mode], StdoutStrategy()]


def deliver(
    command: str,
    mode: OutputMode | str = OutputMode.AUTO,
    *,
    strategies: list[DeliveryStrategy] | None = None,
) -> DeliveryOutcome:
    """Deliver ``command`` through the first channel that works."""
    mode = OutputMode(mode)
    chain = strategies if strategies is not None else strategies_for(mode)
    for index, strategy in enumerate(chain):
        if not strategy.available():
            logger.debug("Delivery via %s unavailable", strategy.name)
            continue
        try:
            strategy.deliver(command)
        except DeliveryUnavailable as exc:
            logger.warning("Delivery via %s failed: %s", strategy.name, exc)
            continue
        fell_back = index > 0 and mode != OutputMode.AUTO
        return DeliveryOutcome(channel=strategy.name, fell_back=fell_back)

    StdoutStrategy().deliver(command)
    return DeliveryOutcome(channel="stdout", fell_back=True)


__all__ = [
    "ClipboardStrategy",
    "DeliveryOutcome",
    "DeliveryStrategy",
    "DeliveryUnavailable",
    "PrefillStrategy",
    "StdoutStrategy",
    "deliver",
    "strategies_for",
]
