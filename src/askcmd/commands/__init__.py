"""CLI command modules for askcmd.

Each module is discovered by ``askcmd.core.registry``:
    - generate: Turn a request into a command and deliver it
    - check: Validate a command without calling the backend
    - cache: Inspect and maintain the command cache
    - status: Breaker and rate limit state, environment diagnostics
    - audit: Browse the audit trail
"""

from __future__ import annotations
