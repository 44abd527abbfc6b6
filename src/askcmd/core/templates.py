"""Centralized Jinja2 template utilities.

This module provides:
- resolve_template_root: Find the templates directory
- get_template_environment: Cached template environment factory
- render_template: Render a template by name
- Template filters: tojson, oneline
"""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateNotFound


def _to_json(value: object) -> str:
    return json.dumps(value, ensure_ascii=False)


def _one_line(value: object) -> str:
    """Collapse any whitespace run, including newlines, to a single space."""
    return " ".join(str(value).split())


def resolve_template_root(custom_root: Path | None = None) -> Path:
    """Resolve the templates directory path.

    Searches in order:
    1. custom_root if provided and valid
    2. Package templates directory (askcmd/templates)

    Raises:
        FileNotFoundError: If no valid templates directory found.
    """
    if custom_root is not None and custom_root.is_dir():
        return custom_root.resolve()

    package_templates = Path(__file__).parent.parent / "templates"
    if package_templates.is_dir():
        return package_templates.resolve()

    raise FileNotFoundError("No templates directory found")


@lru_cache(maxsize=4)
def get_template_environment(template_root: Path) -> Environment:
    """Create or retrieve a cached Jinja2 Environment.

    Prompts are plain text, so autoescape is off; values are embedded through
    the ``tojson`` filter instead.
    """
    env = Environment(
        loader=FileSystemLoader(str(template_root)),
        autoescape=False,
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["tojson"] = _to_json
    env.filters["oneline"] = _one_line
    return env


def render_template(
    name: str,
    context: dict[str, object],
    *,
    template_root: Path | None = None,
) -> str:
    """Render a template by name with the given context.

    Raises:
        FileNotFoundError: If template or templates directory not found.
    """
    root = resolve_template_root(template_root)
    env = get_template_environment(root)
    try:
        template = env.get_template(name)
    except TemplateNotFound as exc:
        raise FileNotFoundError(f"Template {name} not found in {root}") from exc
    return template.render(**context)


__all__ = [
    "get_template_environment",
    "render_template",
    "resolve_template_root",
]
