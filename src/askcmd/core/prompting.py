"""Prompt construction for the backend and parsing of its refusal sentinel."""

from __future__ import annotations

import os
import platform
import re
from collections.abc import Mapping
from pathlib import Path

from askcmd.core.templates import render_template

PROMPT_TEMPLATE_NAME = "command_prompt.j2"
ERROR_SENTINEL = "ERROR:"

_ERROR_LINE = re.compile(r"^\s*ERROR:\s*(?P<reason>.*?)\s*$")
_OS_NAMES = {"Darwin": "macOS", "Linux": "Linux", "Windows": "Windows"}


def detect_shell(env: Mapping[str, str] | None = None) -> str:
    env = os.environ if env is None else env
    return Path(env.get("SHELL") or "sh").name or "sh"


def detect_os() -> str:
    system = platform.system()
    return _OS_NAMES.get(system, system or "Unix")


def build_prompt(
    request: str,
    *,
    safe_mode: bool,
    shell: str | None = None,
    os_name: str | None = None,
    template_root: Path | None = None,
) -> str:
    """Render the backend prompt for an already sanitized request."""
    return render_template(
        PROMPT_TEMPLATE_NAME,
        {
            "request": request,
            "safe_mode": safe_mode,
            "shell": shell or detect_shell(),
            "os_name": os_name or detect_os(),
        },
        template_root=template_root,
    ).strip()


def parse_error_sentinel(text: str) -> str | None:
    """Return the backend's refusal reason if ``text`` is an ``ERROR:`` line."""
    match = _ERROR_LINE.match(text)
    if match is None:
        return None
    return match.group("reason") or "request refused"


__all__ = [
    "ERROR_SENTINEL",
    "PROMPT_TEMPLATE_NAME",
    "build_prompt",
    "detect_os",
    "detect_shell",
    "parse_error_sentinel",
]
