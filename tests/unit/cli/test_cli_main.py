"""Tests for the mindcache app entry point and error message helpers."""

from __future__ import annotations

import pytest
from typer.testing import CliRunner

from mindcache.cli import errors
from mindcache.cli.main import app

runner = CliRunner()


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert result.output.startswith("mindcache ")


def test_version_command() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "mindcache" in result.output


def test_help_lists_commands() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in ("init", "save", "search", "delete", "list", "stats"):
        assert command in result.output


# ---------------------------------------------------------------------------
# Error messages: every message names the problem and the fix
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("message", "fix"),
    [
        (errors.err_no_db("lib.db"), "mindcache init"),
        (errors.err_config("bad overlap"), "mindcache.yaml"),
        (errors.err_init_failed("boom"), "embedding settings"),
        (errors.err_embedding_failed("boom"), "MINDCACHE_LOG_LEVEL=DEBUG"),
        (errors.err_storage("locked"), "writable"),
        (errors.err_content_source(), "--text"),
        (errors.err_empty_content(), "non-whitespace"),
        (errors.err_file_unreadable("a.txt", "missing"), "UTF-8"),
        (errors.err_document_not_found("abc"), "mindcache list"),
    ],
)
def test_error_messages_include_fix(message: str, fix: str) -> None:
    assert fix in message


def test_error_messages_include_cause() -> None:
    assert "lib.db" in errors.err_no_db("lib.db")
    assert "bad overlap" in errors.err_config("bad overlap")
    assert "abc" in errors.err_document_not_found("abc")
    assert "a.txt" in errors.err_file_unreadable("a.txt", "missing")
