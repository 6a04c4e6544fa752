"""
Unit tests for the restic-browser command line (restic_browser.__main__).

Tests cover:
- Usage output without a command
- snapshots / ls / ls -l / stat / cat / test commands
- Configuration errors and restic failures mapped to exit code 1
- Diagnostics on stderr, file data on stdout
"""

from pathlib import Path
from unittest.mock import patch

import pytest
from conftest import NOTES_CONTENT, SNAP2_LABEL, SNAP_LABEL

from restic_browser.__main__ import main, parse_args

ALICE = f"{SNAP_LABEL}/home/alice"
NOTES = f"{ALICE}/notes.txt"
REPO_ARGS = ["--repo", "/srv/backups/restic"]


@pytest.fixture
def cli(filesystem, monkeypatch):
    """Run main() against the fake-backed filesystem."""
    monkeypatch.setenv("RESTIC_PASSWORD", "from-env")
    with (
        patch("restic_browser.__main__.setup_logging"),
        patch("restic_browser.__main__.build_filesystem", return_value=filesystem) as build,
    ):
        yield build


class TestParseArgs:
    """Tests for argument parsing."""

    def test_common_options_after_subcommand(self):
        args = parse_args(["ls", ALICE, "-l", "--repo", "/r", "--verbose"])

        assert args.command == "ls"
        assert args.path == ALICE
        assert args.long is True
        assert args.repo == "/r"
        assert args.verbose is True

    def test_ls_defaults_to_root(self):
        assert parse_args(["ls"]).path == ""


class TestMainCommands:
    """Tests for each subcommand."""

    def test_no_command_prints_usage(self, capsys):
        assert main([]) == 1
        assert "Usage: restic-browser" in capsys.readouterr().out

    def test_snapshots(self, cli, capsys):
        assert main(["snapshots", *REPO_ARGS]) == 0

        assert capsys.readouterr().out.splitlines() == [SNAP_LABEL, SNAP2_LABEL]

    def test_ls_directory(self, cli, capsys):
        assert main(["ls", ALICE, *REPO_ARGS]) == 0

        assert capsys.readouterr().out.splitlines() == ["notes.txt", "photos", "link"]

    def test_ls_long(self, cli, capsys):
        assert main(["ls", "-l", ALICE, *REPO_ARGS]) == 0

        lines = capsys.readouterr().out.splitlines()
        notes_line = next(line for line in lines if line.endswith("notes.txt"))
        assert notes_line.startswith("file")
        assert " 80 " in notes_line
        assert any(line.startswith("dir") and line.endswith("photos") for line in lines)

    def test_stat(self, cli, capsys):
        assert main(["stat", NOTES, *REPO_ARGS]) == 0

        out = capsys.readouterr().out
        assert "Type:  file" in out
        assert "Size:  80" in out

    def test_cat_writes_file_bytes_to_stdout(self, cli, capsysbinary):
        assert main(["cat", NOTES, *REPO_ARGS]) == 0

        assert capsysbinary.readouterr().out == NOTES_CONTENT

    def test_cat_refuses_directory(self, cli, capsys):
        assert main(["cat", ALICE, *REPO_ARGS]) == 1

        captured = capsys.readouterr()
        assert captured.out == ""
        assert "Not a file" in captured.err

    def test_test_command(self, cli, capsys):
        assert main(["test", *REPO_ARGS]) == 0
        assert "[OK]" in capsys.readouterr().out

    def test_config_passed_to_build(self, cli):
        main(["snapshots", *REPO_ARGS, "--restic-binary", "/opt/restic"])

        config = cli.call_args.args[0]
        assert config.repository.path == "/srv/backups/restic"
        assert config.repository.password == "from-env"
        assert config.repository.binary == "/opt/restic"


class TestMainErrors:
    """Tests for error reporting and exit codes."""

    def test_unresolvable_path(self, cli, capsys):
        assert main(["ls", "home/alice", *REPO_ARGS]) == 1

        err = capsys.readouterr().err
        assert "Cannot resolve snapshot" in err
        assert "<time> (<id>)" in err

    def test_restic_command_failure(self, cli, capsys):
        assert main(["ls", f"{SNAP_LABEL}/missing", *REPO_ARGS]) == 1

        err = capsys.readouterr().err
        assert "restic failed with exit code 1" in err
        assert "not found" in err

    def test_missing_password(self, monkeypatch, capsys):
        monkeypatch.delenv("RESTIC_PASSWORD", raising=False)

        assert main(["snapshots", *REPO_ARGS]) == 1
        assert "Configuration error" in capsys.readouterr().err

    def test_missing_config_file(self, capsys, tmp_path: Path):
        assert main(["snapshots", "--config", str(tmp_path / "nope.ini")]) == 1
        assert "Configuration file not found" in capsys.readouterr().err

    def test_restic_binary_not_found(self, monkeypatch, capsys, tmp_path: Path):
        monkeypatch.setenv("RESTIC_PASSWORD", "from-env")
        missing = str(tmp_path / "no-such-restic")

        with patch("restic_browser.__main__.setup_logging"):
            code = main(["snapshots", *REPO_ARGS, "--restic-binary", missing])

        assert code == 1
        assert "Could not start restic" in capsys.readouterr().err

    def test_test_command_reports_unreadable_repository(self, monkeypatch, capsys, tmp_path):
        monkeypatch.setenv("RESTIC_PASSWORD", "from-env")
        missing = str(tmp_path / "no-such-restic")

        with patch("restic_browser.__main__.setup_logging"):
            code = main(["test", *REPO_ARGS, "--restic-binary", missing])

        assert code == 1
        assert "is not readable" in capsys.readouterr().err
