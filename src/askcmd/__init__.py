"""askcmd - turn a natural-language request into a vetted shell command.

The package wraps an external text-generation backend with sanitization,
command-safety validation, caching, rate limiting, a circuit breaker and an
audit trail. Generated commands are never executed.

Exports:
    __version__: Package version string.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.4.0"
