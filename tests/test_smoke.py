from __future__ import annotations

import pytest
from typer.testing import CliRunner

from askcmd import __version__
from askcmd.main import app

runner = CliRunner()


def test_app_version() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


@pytest.mark.parametrize(
    "argv",
    [
        ["--help"],
        ["generate", "--help"],
        ["check", "--help"],
        ["status", "--help"],
        ["doctor", "--help"],
        ["audit", "--help"],
        ["config", "--help"],
        ["cache", "--help"],
        ["cache", "stats", "--help"],
        ["cache", "clear", "--help"],
        ["cache", "prune", "--help"],
    ],
)
def test_help_for_every_command(argv: list[str]) -> None:
    result = runner.invoke(app, argv)
    assert result.exit_code == 0, result.output
    assert "Usage" in result.stdout


def test_all_commands_registered() -> None:
    names = {command.name for command in app.registered_commands}
    assert {"generate", "check", "status", "doctor", "audit", "config", "version"} <= names
    assert [group.name for group in app.registered_groups] == ["cache"]
