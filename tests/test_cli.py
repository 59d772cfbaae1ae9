"""Tests for the CLI commands that need no network"""

from typer.testing import CliRunner

from movie_aggregator.cli.main import app

runner = CliRunner()


def test_init_db(tmp_path):
    result = runner.invoke(app, ["init-db"])
    assert result.exit_code == 0
    assert "Document store ready" in result.output
    assert (tmp_path / "test.db").exists()


def test_failures_empty():
    result = runner.invoke(app, ["failures", "ophim"])
    assert result.exit_code == 0
    assert "No failures recorded for ophim" in result.output


def test_clear_autostop():
    result = runner.invoke(app, ["clear-autostop", "kkphim"])
    assert result.exit_code == 0
    assert "Auto-stop cleared for kkphim" in result.output


def test_unknown_source():
    result = runner.invoke(app, ["crawl", "unknown"])
    assert result.exit_code == 1
    assert "Unknown source" in result.output
