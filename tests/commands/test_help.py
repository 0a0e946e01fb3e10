"""Parametrized help tests for all CLI commands."""

from __future__ import annotations

import pytest
from click.testing import CliRunner

from schemalink.cli import cli

# (CLI args, expected keywords in output)
HELP_COMMANDS: list[tuple[list[str], list[str]]] = [
    ([], ["link", "records", "check", "--json", "--actor"]),
    (["link", "--help"], ["set", "remove", "candidates"]),
    (["link", "set", "--help"], ["LOCAL_ID", "--slot", "--remote", "--previous"]),
    (["link", "remove", "--help"], ["--slot", "--previous"]),
    (["link", "candidates", "--help"], ["LOCAL_ID"]),
    (["records", "--help"], ["sync", "unlink", "purge-links"]),
    (["records", "sync", "--help"], ["--ancestor", "--descendant", "--add-only"]),
    (["records", "unlink", "--help"], ["REMOTE_IDS"]),
    (["records", "purge-links", "--help"], ["RECORD_ID"]),
    (["check", "--help"], ["--examples"]),
]


@pytest.mark.parametrize(
    ("args", "keywords"),
    HELP_COMMANDS,
    ids=[" ".join(a) or "root" for a, _ in HELP_COMMANDS],
)
def test_help(cli_runner: CliRunner, args: list[str], keywords: list[str]) -> None:
    result = cli_runner.invoke(cli, args if args else ["--help"])
    assert result.exit_code == 0
    for keyword in keywords:
        assert keyword in result.output


@pytest.mark.parametrize("args", [["link"], ["records"], ["check"], ["link", "set"]])
def test_examples_flag(cli_runner: CliRunner, args: list[str]) -> None:
    result = cli_runner.invoke(cli, [*args, "--examples"])
    assert result.exit_code == 0
    assert "schemalink" in result.output


def test_version(cli_runner: CliRunner) -> None:
    result = cli_runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_help_points_to_examples(cli_runner: CliRunner) -> None:
    result = cli_runner.invoke(cli, ["records", "sync", "--help"])
    assert "Run with --examples for usage examples." in result.output


def test_examples_are_indented(cli_runner: CliRunner) -> None:
    result = cli_runner.invoke(cli, ["link", "remove", "--examples"])
    assert "  schemalink link remove 12 --slot 40 --previous 7" in result.output.splitlines()
