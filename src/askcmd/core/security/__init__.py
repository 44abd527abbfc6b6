"""
Security checks applied on both sides of the backend call.

This package consolidates:
- Input and output sanitization
- Pre-call injection and sensitive-data detection
- Post-call command validation and risk classification

Usage:
    from askcmd.core.security import sanitize_input, validate_command
"""

from __future__ import annotations

from askcmd.core.security.command import (
    ALLOWED_GIT_SUBCOMMANDS,
    DENYLIST_PATTERNS,
    FORBIDDEN_GIT_SUBCOMMANDS,
    READ_ONLY_BINARIES,
    CommandVerdict,
    RiskLevel,
    SafetyWarning,
    find_denylist_match,
    generate_safety_warning,
    is_command_safe,
    is_read_only,
    validate_command,
)
from askcmd.core.security.injection import (
    check_injection_attempts,
    check_sensitive_info,
    find_injection_patterns,
    find_sensitive_info,
)
from askcmd.core.security.sanitize import (
    SHELL_METACHARS,
    sanitize_input,
    sanitize_output,
    strip_ansi,
    validate_encoding,
)

__all__ = [
    "ALLOWED_GIT_SUBCOMMANDS",
    "DENYLIST_PATTERNS",
    "FORBIDDEN_GIT_SUBCOMMANDS",
    "READ_ONLY_BINARIES",
    "SHELL_METACHARS",
    "CommandVerdict",
    "RiskLevel",
    "SafetyWarning",
    "check_injection_attempts",
    "check_sensitive_info",
    "find_denylist_match",
    "find_injection_patterns",
    "find_sensitive_info",
    "generate_safety_warning",
    "is_command_safe",
    "is_read_only",
    "sanitize_input",
    "sanitize_output",
    "strip_ansi",
    "validate_encoding",
]
