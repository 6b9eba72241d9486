# tests/unit/test_main.py — v1
"""Tests for main.py — CLI entry point."""

from __future__ import annotations

import hashlib
import json
import logging

import pytest

from partledger.main import _build_parser, main


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Run the CLI from tmp_path with JSON state storage under it."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "state"))
    monkeypatch.setenv("STORAGE_BACKEND", "json")
    monkeypatch.setenv("LOG_FILE", str(tmp_path / "logs" / "cli.log"))
    return tmp_path


@pytest.fixture(autouse=True)
def _restore_package_logger():
    package_logger = logging.getLogger("partledger")
    level, handlers = package_logger.level, list(package_logger.handlers)
    yield
    for handler in package_logger.handlers:
        if handler not in handlers:
            handler.close()
    package_logger.handlers[:] = handlers
    package_logger.setLevel(level)


@pytest.fixture
def text_file(cli_env):
    path = cli_env / "report.txt"
    path.write_text("First paragraph.\n\nSecond paragraph.", encoding="utf-8")
    return path


# === Parser ===


class TestBuildParser:
    def test_version_flag(self):
        parser = _build_parser()
        with pytest.raises(SystemExit) as exc_info:
            parser.parse_args(["--version"])
        assert exc_info.value.code == 0

    def test_split_subcommand(self):
        args = _build_parser().parse_args(["split", "doc.txt", "--title", "Doc", "--json"])
        assert args.command == "split"
        assert str(args.file) == "doc.txt"
        assert args.title == "Doc"
        assert args.json is True

    def test_verify_subcommand(self):
        args = _build_parser().parse_args(["verify", "abc"])
        assert args.series_id == "abc"

    def test_cleanup_flags(self):
        assert _build_parser().parse_args(["cleanup"]).emergency is False
        assert _build_parser().parse_args(["cleanup", "--emergency"]).emergency is True

    def test_verbose(self):
        assert _build_parser().parse_args(["-v", "pending"]).verbose is True


# === Commands ===


class TestMain:
    def test_no_command(self, cli_env, capsys):
        assert main([]) == 1

    def test_split(self, text_file, capsys):
        assert main(["split", str(text_file)]) == 0
        out = capsys.readouterr().out
        assert "Split preview for report.txt" in out
        assert "Parts:        1" in out

    def test_split_json(self, text_file, capsys):
        assert main(["split", str(text_file), "--json"]) == 0
        preview = json.loads(capsys.readouterr().out)
        assert preview["total_parts"] == 1
        assert preview["total_words"] == 4

    def test_split_missing_file(self, cli_env):
        assert main(["split", str(cli_env / "absent.txt")]) == 1

    def test_hash(self, text_file, capsys):
        assert main(["hash", str(text_file)]) == 0
        out = capsys.readouterr().out
        expected = hashlib.sha256(text_file.read_bytes()).hexdigest()
        assert expected in out
        assert "part " not in out

    def test_pending_empty(self, cli_env, capsys):
        assert main(["pending"]) == 0
        assert "No pending series." in capsys.readouterr().out

    def test_verify_unknown_series(self, cli_env):
        assert main(["verify", "3f2b8c1e-9d4a-4b7e-8f60-1a2b3c4d5e6f"]) == 1

    def test_cleanup(self, cli_env, capsys):
        assert main(["cleanup"]) == 0
        out = capsys.readouterr().out
        assert "Cleanup complete" in out
        assert "Parts deleted:  0" in out

    def test_bad_backend_is_fatal(self, cli_env, monkeypatch):
        monkeypatch.setenv("STORAGE_BACKEND", "tape")
        assert main(["pending"]) == 1


class TestLoggingSetup:
    def test_log_file_from_settings(self, cli_env):
        assert main(["pending"]) == 0
        assert (cli_env / "logs" / "cli.log").exists()

    def test_level_from_settings(self, cli_env, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "WARNING")
        assert main(["pending"]) == 0
        assert logging.getLogger("partledger").level == logging.WARNING

    def test_verbose_forces_debug(self, cli_env, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        assert main(["-v", "pending"]) == 0
        assert logging.getLogger("partledger").level == logging.DEBUG

    def test_text_format_from_settings(self, cli_env, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "text")
        assert main(["pending"]) == 0
        formatters = {type(h.formatter).__name__ for h in logging.getLogger("partledger").handlers}
        assert formatters == {"TextFormatter"}

    def test_invalid_log_setting_is_fatal(self, cli_env, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "LOUD")
        assert main(["pending"]) == 1
