"""Tests for the command-line interface."""

from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from gits import __version__
from gits.core import app

runner = CliRunner()


class TestOptions:
    """Eager options and configuration errors."""

    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"gits {__version__}" in result.output

    def test_schema(self) -> None:
        result = runner.invoke(app, ["--schema"])

        assert result.exit_code == 0
        schema = json.loads(result.output)
        assert schema["name"] == "gits"
        assert "parallel" in schema["tools"][0]["inputSchema"]["properties"]

    def test_no_command(self, root: Path) -> None:
        result = runner.invoke(app, ["--root", str(root)])

        assert result.exit_code == 1
        assert "No command provided" in result.output

    def test_status_with_command(self, root: Path) -> None:
        result = runner.invoke(app, ["--status", "--root", str(root), "ls"])

        assert result.exit_code == 1
        assert "cannot be combined" in result.output

    def test_parallel_must_be_positive(self, root: Path) -> None:
        result = runner.invoke(app, ["-p", "0", "--root", str(root), "ls"])

        assert result.exit_code == 2

    def test_missing_root(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["--root", str(tmp_path / "missing"), "ls"])

        assert result.exit_code == 1
        assert "Error" in result.output


class TestRuns:
    """Full invocations against real repositories."""

    def test_failing_command(self, root: Path, make_repo) -> None:
        make_repo("A")

        result = runner.invoke(app, ["--root", str(root), "false"])

        assert result.exit_code == 1
        assert "✗ A:" in result.output

    def test_trailing_command_keeps_its_flags(self, root: Path, make_repo) -> None:
        make_repo("A", dirty=True)

        result = runner.invoke(app, ["--root", str(root), "git", "status", "--porcelain"])

        assert result.exit_code == 0
        assert "✓ A:" in result.output
        assert "M README.md" in result.output

    def test_branch_filter(self, root: Path, make_repo) -> None:
        make_repo("A")
        make_repo("B", branch="bugfix-123", dirty=True)

        result = runner.invoke(app, ["-b", "bugfix-123", "--root", str(root), "true"])

        assert result.exit_code == 0
        assert "✓ B:" in result.output
        assert "A:" not in result.output

    def test_status_mode(self, root: Path, make_repo) -> None:
        make_repo("abc")
        make_repo("twelve-chars", dirty=True)

        result = runner.invoke(app, ["--status", "--root", str(root)])

        assert result.exit_code == 0
        assert "abc          [main]" in result.output
        assert "twelve-chars [main](✎)" in result.output

    def test_parallel_from_environment(self, root: Path, make_repo) -> None:
        make_repo("A")

        result = runner.invoke(app, ["--root", str(root), "true"], env={"GITS_PARALLEL": "1"})

        assert result.exit_code == 0
