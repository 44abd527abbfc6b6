"""Pre-call checks on the raw request.

Injection detection blocks the request; sensitive-data detection only warns,
because the request is about to leave the machine as part of a prompt.
"""

from __future__ import annotations

import math
import re

# Named shell-injection idioms. Each pattern is matched against the raw request
# before sanitization removes the metacharacters they rely on.
_INJECTION_PATTERNS: dict[str, re.Pattern[str]] = {
    "command_chaining": re.compile(
        r"&&|\|\||;\s*(rm|dd|mkfs\S*|shutdown|reboot|curl|wget|nc|bash|sh|sudo|chmod|chown|kill)\b"
    ),
    "command_substitution": re.compile(r"\$\(|`[^`]*`"),
    "pipe_to_interpreter": re.compile(
        r"\|\s*(sudo\s+)?(ba|z|da|k)?sh\b|\|\s*(python\d?(\.\d+)?|perl|ruby|node|php)\b"
    ),
    "redirect_to_system": re.compile(r">{1,2}\s*/(dev|etc|boot|sys|proc)/"),
    "here_string": re.compile(r"<<<"),
    "fork_bomb": re.compile(r":\s*\(\s*\)\s*\{.*:\s*\|\s*:\s*&.*\}"),
    "encoded_separator": re.compile(r"%0[aAdD]|%3[bB]|%26|%7[cC]|\\x0[aAdD]|\\x3[bB]|\\n|\\r"),
    "decode_and_pipe": re.compile(r"base64\s+(-d|--decode)\b.*\|"),
    "path_traversal": re.compile(r"(\.\./){2,}"),
    "ifs_expansion": re.compile(r"\$\{?IFS\}?"),
}

# Known credential prefixes, no entropy check needed
_KNOWN_API_KEY_PATTERN = re.compile(
    r"""(?x)
    \b(
        sk-[A-Za-z0-9_\-]{20,}|         # OpenAI / Anthropic
        gsk_[A-Za-z0-9]{20,}|           # Groq
        sk_(live|test)_[A-Za-z0-9]{16,}|# Stripe secret key
        xox[bpas]-[A-Za-z0-9\-]{20,}|   # Slack token
        gh[pousr]_[A-Za-z0-9]{20,}|     # GitHub token
        AIza[A-Za-z0-9_\-]{20,}         # Google API key
    )
    """
)
_AWS_ACCESS_KEY = re.compile(r"\b(AKIA|ASIA)[A-Z0-9]{16}\b")
_JWT = re.compile(r"\beyJ[A-Za-z0-9_\-]{8,}\.eyJ[A-Za-z0-9_\-]{8,}\.[A-Za-z0-9_\-]{8,}")
_PRIVATE_KEY = re.compile(r"-----BEGIN ([A-Z]+ )?PRIVATE KEY-----")
_SECRET_ASSIGNMENT = re.compile(
    r"""(?ix)
    \b[A-Z0-9_]*(KEY|TOKEN|SECRET|CREDENTIAL|AUTH)[A-Z0-9_]*
    \s*[=:]\s*
    ['"]?(?P<value>[A-Za-z0-9+/=_\-]{16,})
    """
)
_PASSWORD_ASSIGNMENT = re.compile(r"(?i)\b(password|passwd|pwd)\s*[=:]\s*\S+")
_EMAIL = re.compile(r"\b[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}\b")
_CARD_CANDIDATE = re.compile(r"\b(?:\d[ \-]?){12,18}\d\b")
_SSN = re.compile(r"\b(?!000|666|9\d\d)\d{3}-(?!00)\d{2}-(?!0000)\d{4}\b")

ENTROPY_THRESHOLD = 4.0


def find_injection_patterns(text: str) -> list[str]:
    """Return the names of every injection idiom found in ``text``."""
    return [name for name, pattern in _INJECTION_PATTERNS.items() if pattern.search(text)]


def check_injection_attempts(text: str) -> bool:
    """True when ``text`` contains a known shell-injection idiom."""
    return bool(find_injection_patterns(text))


def _estimate_entropy(value: str) -> float:
    """Rough Shannon entropy estimate in bits per character."""
    if not value:
        return 0.0
    freq = {ch: value.count(ch) for ch in set(value)}
    length = len(value)

    entropy = 0.0
    for count in freq.values():
        p = count / length
        entropy -= p * math.log(p, 2)
    return entropy


def _luhn_valid(digits: str) -> bool:
    total = 0
    for index, char in enumerate(reversed(digits)):
        value = int(char)
        if index % 2 == 1:
            value *= 2
            if value > 9:
                value -= 9
        total += value
    return total % 10 == 0


def _has_card_number(text: str) -> bool:
    for match in _CARD_CANDIDATE.finditer(text):
        digits = re.sub(r"\D", "", match.group())
        if 13 <= len(digits) <= 19 and _luhn_valid(digits):
            return True
    return False


def find_sensitive_info(text: str) -> list[str]:
    """Return the kinds of secret or personal data that appear in ``text``.

    Detection strategies:
    1. Known API key prefixes (sk-, ghp_, xoxb-, ...)
    2. Cloud and token formats (AWS access keys, JWTs, PEM private keys)
    3. KEY=value assignments whose value looks random
    4. Personal data (e-mail, Luhn-valid card numbers, US SSNs, passwords)
    """
    found: list[str] = []
    if _KNOWN_API_KEY_PATTERN.search(text):
        found.append("api_key")
    if _AWS_ACCESS_KEY.search(text):
        found.append("aws_access_key")
    if _JWT.search(text):
        found.append("jwt")
    if _PRIVATE_KEY.search(text):
        found.append("private_key")
    if any(
        _estimate_entropy(match.group("value")) >= ENTROPY_THRESHOLD
        for match in _SECRET_ASSIGNMENT.finditer(text)
    ):
        found.append("secret_assignment")
    if _PASSWORD_ASSIGNMENT.search(text):
        found.append("password")
    if _EMAIL.search(text):
        found.append("email")
    if _has_card_number(text):
        found.append("card_number")
    if _SSN.search(text):
        found.append("ssn")
    return found


def check_sensitive_info(text: str) -> bool:
    """True when ``text`` appears to carry credentials or personal data."""
    return bool(find_sensitive_info(text))


__all__ = [
    "ENTROPY_THRESHOLD",
    "check_injection_attempts",
    "check_sensitive_info",
    "find_injection_patterns",
    "find_sensitive_info",
]
