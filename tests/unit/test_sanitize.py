"""Tests for core/security/sanitize.py - input and output sanitization."""

from __future__ import annotations

import pytest

from askcmd.core.config import MultilinePolicy
from askcmd.core.result import Err, InvalidInputError, Ok
from askcmd.core.security.sanitize import (
    SHELL_METACHARS,
    sanitize_input,
    sanitize_output,
    strip_ansi,
    validate_encoding,
)

# ---------------------------------------------------------------------------
# sanitize_input
# ---------------------------------------------------------------------------


class TestSanitizeInput:
    def test_plain_request_unchanged(self) -> None:
        assert sanitize_input("list all python files") == Ok("list all python files")

    def test_whitespace_collapsed(self) -> None:
        assert sanitize_input("  list\tall \n\n python   files ") == Ok("list all python files")

    @pytest.mark.parametrize("char", sorted(SHELL_METACHARS))
    def test_metachars_replaced_by_space(self, char: str) -> None:
        result = sanitize_input(f"show{char}files")
        assert result == Ok("show files")

    def test_control_and_format_characters_removed(self) -> None:
        result = sanitize_input("list\x07 files\u200b here")
        assert result == Ok("list files here")

    def test_ansi_sequences_removed(self) -> None:
        assert sanitize_input("\x1b[31mred\x1b[0m files") == Ok("red files")

    def test_empty_after_sanitization(self) -> None:
        match sanitize_input(" ;;; && | "):
            case Err(error):
                assert isinstance(error, InvalidInputError)
                assert "empty" in error.message
            case Ok(_):
                pytest.fail("expected an error")

    def test_too_long(self) -> None:
        result = sanitize_input("a" * 11, max_length=10)
        assert result.is_err()
        assert isinstance(result.error, InvalidInputError)
        assert result.error.context == {"length": 11, "limit": 10}

    def test_exactly_max_length_accepted(self) -> None:
        assert sanitize_input("a" * 10, max_length=10) == Ok("a" * 10)

    def test_unicode_letters_kept(self) -> None:
        assert sanitize_input("fichiers modifi\u00e9s aujourd'hui") == Ok("fichiers modifi\u00e9s aujourd'hui")


# ---------------------------------------------------------------------------
# validate_encoding
# ---------------------------------------------------------------------------


class TestValidateEncoding:
    def test_plain_text_valid(self) -> None:
        assert validate_encoding("list files") is True

    def test_valid_utf8_bytes(self) -> None:
        assert validate_encoding("h\u00e9llo".encode()) is True

    def test_invalid_utf8_bytes(self) -> None:
        assert validate_encoding(b"\xff\xfe list") is False

    def test_overlong_encoding_rejected(self) -> None:
        assert validate_encoding(b"\xc0\xaf") is False

    @pytest.mark.parametrize(
        "text",
        [
            "list \udcff files",  # lone surrogate from undecodable argv
            "list \ufffd files",
            "list \x00 files",
            "list \u202e files",
            "list \u2066 files",
            "list \ufdd0 files",
            "list \uffff files",
        ],
    )
    def test_disallowed_code_points(self, text: str) -> None:
        assert validate_encoding(text) is False


# ---------------------------------------------------------------------------
# sanitize_output
# ---------------------------------------------------------------------------


class TestSanitizeOutput:
    def test_plain_command_unchanged(self) -> None:
        assert sanitize_output("find . -name '*.py'") == "find . -name '*.py'"

    def test_code_fence_dropped(self) -> None:
        text = "```bash\nls -la\n```"
        assert sanitize_output(text) == "ls -la"

    def test_first_line_policy(self) -> None:
        text = "ls -la\necho second"
        assert sanitize_output(text, MultilinePolicy.FIRST_LINE) == "ls -la"

    def test_join_policy(self) -> None:
        text = "ls -la\n\n  | wc -l\n"
        assert sanitize_output(text, "join") == "ls -la | wc -l"

    def test_leading_blank_lines_skipped(self) -> None:
        assert sanitize_output("\n\n  df -h  \n") == "df -h"

    def test_ansi_removed(self) -> None:
        assert sanitize_output("\x1b[1mls\x1b[0m -l") == "ls -l"

    def test_backticks_removed(self) -> None:
        assert sanitize_output("echo `whoami`") == "echo whoami"

    def test_command_substitution_removed(self) -> None:
        assert sanitize_output("echo $(cat /etc/passwd) done") == "echo done"

    def test_nested_substitution_removed(self) -> None:
        assert sanitize_output("echo $(a $(b) c) end") == "echo end"

    def test_process_substitution_removed(self) -> None:
        assert sanitize_output("diff <(ls a) >(tee b)") == "diff"

    def test_unbalanced_substitution_removed_to_end(self) -> None:
        assert sanitize_output("ls $(rm -rf x") == "ls"

    def test_control_characters_removed(self) -> None:
        assert sanitize_output("ls\x00 -l\x08a") == "ls -la"

    def test_empty_output(self) -> None:
        assert sanitize_output("```\n```") == ""

    def test_crlf_lines(self) -> None:
        assert sanitize_output("pwd\r\nrm -rf /") == "pwd"

    def test_idempotent_on_tricky_input(self) -> None:
        text = "$$(()echo `$(x`) y"
        once = sanitize_output(text)
        assert sanitize_output(once) == once

    def test_unknown_policy_rejected(self) -> None:
        with pytest.raises(ValueError):
            sanitize_output("ls", "all_lines")


def test_strip_ansi_handles_osc_and_csi() -> None:
    text = "\x1b]0;title\x07ls \x1b[38;5;82m-l\x1b[0m"
    assert strip_ansi(text) == "ls -l"
