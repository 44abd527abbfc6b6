"""
Input and output sanitization.

Both ends of the backend call are untrusted: the user's request may carry
terminal escapes or shell syntax, and the backend may return multi-line
prose, Markdown fences, ANSI sequences or outright injection payloads.

Usage:
    from askcmd.core.security.sanitize import sanitize_input, sanitize_output

    match sanitize_input(raw, max_length=500):
        case Ok(clean):
            prompt = build_prompt(clean)
        case Err(error):
            raise error

    command = sanitize_output(backend_text)
"""

from __future__ import annotations

import re
import unicodedata

from askcmd.core.config import MultilinePolicy
from askcmd.core.result import Err, InvalidInputError, Ok, Result

DEFAULT_MAX_INPUT_LENGTH = 500

# Characters with shell meaning that never belong in a prompt
SHELL_METACHARS: frozenset[str] = frozenset({"`", "$", ";", "|", "&", "<", ">", "\\"})

_ANSI_PATTERN = re.compile(
    r"""
    \x1b\][^\x07\x1b]*(?:\x07|\x1b\\)?    # OSC ... BEL / ST
    | \x1b[PX^_][^\x1b]*(?:\x1b\\)?       # DCS / SOS / PM / APC
    | \x1b\[[0-?]*[ -/]*[@-~]             # CSI
    | \x9b[0-?]*[ -/]*[@-~]               # 8-bit CSI
    | \x1b[ -/]*[0-~]                     # two-character escapes
    | \x1b                                # lone ESC
    """,
    re.VERBOSE,
)
_WHITESPACE = re.compile(r"\s+")
_FENCE = re.compile(r"^\s*(```|~~~)")
_SUBSTITUTION_OPENERS = ("$(", "<(", ">(")

# Unicode categories dropped outright: control, format, surrogate, private use, unassigned
_DROPPED_CATEGORIES = frozenset({"Cc", "Cf", "Cs", "Co", "Cn"})
_LINE_BREAK_CATEGORIES = frozenset({"Zl", "Zp"})

_BIDI_CONTROLS = frozenset(
    "\u061c\u200e\u200f\u202a\u202b\u202c\u202d\u202e\u2066\u2067\u2068\u2069"
)


def strip_ansi(text: str) -> str:
    """Remove ANSI/VT escape sequences."""
    return _ANSI_PATTERN.sub("", text)


def _collapse(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


# ---------------------------------------------------------------------------
# Input side
# ---------------------------------------------------------------------------


def _clean_input_char(ch: str) -> str:
    if ch in SHELL_METACHARS or ch.isspace():
        return " "
    category = unicodedata.category(ch)
    if category in _LINE_BREAK_CATEGORIES:
        return " "
    if category in _DROPPED_CATEGORIES:
        return ""
    return ch


def sanitize_input(
    raw: str, max_length: int = DEFAULT_MAX_INPUT_LENGTH
) -> Result[str, InvalidInputError]:
    """Normalize a raw request into a single safe line.

    Control characters and escape sequences are removed, newlines and shell
    metacharacters become spaces, and runs of whitespace collapse to one.
    """
    if len(raw) > max_length:
        return Err(
            InvalidInputError(
                f"Request is too long ({len(raw)} characters, limit {max_length})",
                context={"length": len(raw), "limit": max_length},
            )
        )

    cleaned = _collapse("".join(_clean_input_char(ch) for ch in strip_ansi(raw)))
    if not cleaned:
        return Err(InvalidInputError("Request is empty after sanitization"))
    return Ok(cleaned)


def validate_encoding(raw: str | bytes) -> bool:
    """Reject malformed byte sequences and disallowed code points.

    Bytes must decode as strict UTF-8. Strings must not contain lone
    surrogates (how Python represents undecodable argv bytes), the U+FFFD
    replacement character, NUL, bidirectional overrides, or noncharacters.
    """
    if isinstance(raw, bytes):
        try:
            text = raw.decode("utf-8", errors="strict")
        except UnicodeDecodeError:
            return False
    else:
        text = raw

    for ch in text:
        code = ord(ch)
        if ch == "\x00" or ch == "\ufffd" or ch in _BIDI_CONTROLS:
            return False
        if 0xD800 <= code <= 0xDFFF:
            return False
        if 0xFDD0 <= code <= 0xFDEF or (code & 0xFFFE) == 0xFFFE:
            return False
    return True


# ---------------------------------------------------------------------------
# Output side
# ---------------------------------------------------------------------------


def _select_lines(text: str, policy: MultilinePolicy) -> str:
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    normalized = normalized.replace("\u2028", "\n").replace("\u2029", "\n")
    lines = [line.strip() for line in normalized.split("\n") if not _FENCE.match(line)]
    lines = [line for line in lines if line]
    if not lines:
        return ""
    if policy == MultilinePolicy.JOIN:
        return " ".join(lines)
    return lines[0]


def _drop_control_chars(text: str) -> str:
    parts = []
    for ch in text:
        if ch.isspace():
            parts.append(" ")
        elif unicodedata.category(ch) in _DROPPED_CATEGORIES:
            continue
        else:
            parts.append(ch)
    return "".join(parts)


def _find_closing_paren(text: str, start: int) -> int:
    depth = 0
    for index in range(start, len(text)):
        if text[index] == "(":
            depth += 1
        elif text[index] == ")":
            depth -= 1
            if depth == 0:
                return index
    return len(text) - 1


def _remove_substitutions(text: str) -> str:
    """Drop whole ``$(...)``, ``<(...)`` and ``>(...)`` spans, unbalanced ones to end of line."""
    while True:
        positions = [pos for pos in (text.find(op) for op in _SUBSTITUTION_OPENERS) if pos >= 0]
        if not positions:
            return text
        start = min(positions)
        end = _find_closing_paren(text, start + 1)
        text = text[:start] + " " + text[end + 1 :]


def _sanitize_output_once(text: str, policy: MultilinePolicy) -> str:
    text = strip_ansi(text)
    text = _select_lines(text, policy)
    text = _drop_control_chars(text)
    text = text.replace("`", "")
    text = _remove_substitutions(text)
    return _collapse(text)


def sanitize_output(text: str, policy: MultilinePolicy | str = MultilinePolicy.FIRST_LINE) -> str:
    """Reduce untrusted backend text to a single inert command line.

    ``policy`` decides how multi-line output collapses: ``first_line`` keeps
    the first non-empty line, ``join`` joins every non-empty line with a
    space. Markdown fence lines are dropped under both policies.

    The passes repeat until the text stops changing, which makes the function
    idempotent.
    """
    mode = MultilinePolicy(policy)
    current = text
    while True:
        cleaned = _sanitize_output_once(current, mode)
        if cleaned == current:
            return cleaned
        current = cleaned


__all__ = [
    "DEFAULT_MAX_INPUT_LENGTH",
    "SHELL_METACHARS",
    "sanitize_input",
    "sanitize_output",
    "strip_ansi",
    "validate_encoding",
]
