"""Tests for the command-line entry point."""
from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from lesson_pipeline import __main__ as cli
from lesson_pipeline.db import Database


@pytest.fixture
def cli_config(tmp_path):
    """Point the CLI at a config whose databases live in tmp_path."""
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({
        "db_path": str(tmp_path / "cli.db"),
        "document_db_path": str(tmp_path / "docs.db"),
    }))
    with patch("lesson_pipeline.config.CONFIG_PATH", config_path):
        yield tmp_path


def _run(*argv):
    with patch("sys.argv", ["lesson_pipeline", *argv]):
        cli.main()


class TestArgs:
    def test_parse_flag(self):
        assert cli._parse_flag(["--port", "9000"], "--port", "8770") == "9000"
        assert cli._parse_flag(["--port"], "--port", "8770") == "8770"

    def test_positional(self):
        assert cli._positional(["questions", "--name", "N", "a", "b"]) == ["questions", "a", "b"]


class TestCommands:
    def test_unknown_command(self, capsys):
        with pytest.raises(SystemExit):
            _run("frobnicate")
        assert "Unknown command" in capsys.readouterr().out

    def test_import_then_stats(self, cli_config, capsys, sample_questions):
        payload = cli_config / "questions.json"
        payload.write_text(json.dumps(sample_questions))

        _run("import", "questions", str(payload), "--name", "Imported")
        _run("stats")

        out = capsys.readouterr().out
        assert "Imported 3 questions" in out
        assert "Question sets:          1" in out

    def test_lesson_and_sync(self, cli_config, capsys, sample_questions, sample_solutions):
        db = Database(cli_config / "cli.db")
        qs = db.create_set("questions", "Q", None, None, [], status="completed",
                           payload={"questions": sample_questions})
        ss = db.create_set("solutions", "S", None, None, [], status="completed",
                           payload={"solutions": sample_solutions})
        db.close()

        _run("lesson", "Limits", qs["id"], ss["id"], "--per", "2")
        _run("sync")

        out = capsys.readouterr().out
        assert "Limits 1-2: 2 items" in out
        assert "SYNC SUMMARY" in out
        assert "Inserted: 2" in out
        assert "Inserted: 3" in out

    def test_bad_kind(self, cli_config, capsys):
        with pytest.raises(SystemExit):
            _run("import", "answers", "x.json", "--name", "N")
        assert "Unknown set kind" in capsys.readouterr().out
