"""Core shared infrastructure for askcmd.

This package contains the request pipeline and its collaborators:
    - config: Application configuration management
    - console: Rich console output and logging
    - security: Sanitization, injection detection and command validation
    - state: Directory locks and lock-guarded JSON records
    - cache, rate_limit, breaker, backend: Backend call coordination
    - pipeline: Request orchestration
    - result: Error handling patterns
"""

from __future__ import annotations

from . import config, console

__all__ = ["config", "console"]
