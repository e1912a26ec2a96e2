"""Tests for the rag command line interface."""

import json
import pytest
import tempfile
import yaml
from pathlib import Path
from unittest.mock import AsyncMock, patch

from click.testing import CliRunner

from main import cli
from ragdocs.exceptions import AlreadyExists
from ragdocs.models import ChunkMetadata, FileOutcome, RetrievalResult, SyncReport


@pytest.fixture
def config_path():
    """Config file pointing the corpus at a temporary database."""
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "config.yaml"
        path.write_text(yaml.dump({
            "storage": {"database_path": str(Path(tmpdir) / "db.sqlite")},
            "logging": {"console_enabled": False},
        }))
        yield str(path)


@pytest.fixture
def runner():
    return CliRunner()


def sample_result():
    return RetrievalResult(
        chunk_id=7,
        documentation="react",
        path="learn/hooks.md",
        metadata=ChunkMetadata(documentation="react", path="learn/hooks.md", breadcrumb=["Hooks"]),
        content="Use useMemo to cache a calculation.",
        distance=0.125,
    )


def test_first_run_writes_default_config(runner):
    """Test a missing config file is created with defaults."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / "rag" / "config.yaml"

        result = runner.invoke(cli, ["--config", str(config_path), "docs", "--help"])

        assert result.exit_code == 0
        assert config_path.exists()
        assert yaml.safe_load(config_path.read_text())["embedding"]["model"] == "nomic-embed-text"


def test_invalid_config_exits(runner):
    """Test an invalid config file is reported."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / "config.yaml"
        config_path.write_text("sync:\n  workers: 0\n")

        result = runner.invoke(cli, ["--config", str(config_path), "docs", "list"])

        assert result.exit_code == 1


def test_docs_list_empty(runner, config_path):
    """Test listing an empty corpus as JSON."""
    result = runner.invoke(cli, ["--config", config_path, "docs", "list", "--json"])

    assert result.exit_code == 0
    assert json.loads(result.output) == []


def test_docs_remove_missing(runner, config_path):
    """Test removing an unknown documentation is not an error."""
    result = runner.invoke(cli, ["--config", config_path, "docs", "remove", "ghost"])

    assert result.exit_code == 0
    assert "not found" in result.output


def test_docs_add(runner, config_path):
    """Test add passes options to the sync engine."""
    report = SyncReport(
        operation="add", documentation="react",
        outcomes=[FileOutcome(path="index.md", status="added", chunks=3)],
    )
    with patch("main.SyncEngine") as mock_engine:
        mock_engine.return_value.add = AsyncMock(return_value=report)

        result = runner.invoke(cli, [
            "--config", config_path, "docs", "add", "react",
            "https://github.com/reactjs/react.dev", "--subdir", "src/content",
        ])

    assert result.exit_code == 0
    options = mock_engine.return_value.add.call_args.args[0]
    assert options.name == "react"
    assert options.subdir == "src/content"
    assert options.branch == "main"
    assert "1 added" in result.output


def test_docs_add_existing(runner, config_path):
    """Test add of an existing name exits with an error."""
    with patch("main.SyncEngine") as mock_engine:
        mock_engine.return_value.add = AsyncMock(side_effect=AlreadyExists("react"))

        result = runner.invoke(cli, [
            "--config", config_path, "docs", "add", "react", "https://example.com/r.git",
        ])

    assert result.exit_code == 1
    assert "already exists" in result.output


def test_docs_update_only_given_fields(runner, config_path):
    """Test update forwards only the options that were passed."""
    report = SyncReport(operation="update", documentation="react")
    with patch("main.SyncEngine") as mock_engine:
        mock_engine.return_value.update = AsyncMock(return_value=report)

        result = runner.invoke(cli, [
            "--config", config_path, "docs", "update", "react", "--branch", "canary",
        ])

    assert result.exit_code == 0
    name, options = mock_engine.return_value.update.call_args.args
    assert name == "react"
    assert options.changes() == {"branch": "canary"}


def test_docs_update_with_failures_exits_nonzero(runner, config_path):
    """Test a partially failed update is reported with exit status 1."""
    report = SyncReport(
        operation="update", documentation="react",
        outcomes=[
            FileOutcome(path="a.md", status="skipped"),
            FileOutcome(path="b.md", status="failed", error="backend down"),
        ],
    )
    with patch("main.SyncEngine") as mock_engine:
        mock_engine.return_value.update = AsyncMock(return_value=report)

        result = runner.invoke(cli, ["--config", config_path, "docs", "update", "react"])

    assert result.exit_code == 1
    assert "b.md" in result.output


def test_get_json(runner, config_path):
    """Test get prints results as JSON."""
    with patch("main.RetrievalEngine") as mock_engine:
        mock_engine.return_value.retrieve = AsyncMock(return_value=[sample_result()])

        result = runner.invoke(cli, [
            "--config", config_path, "get", "memoize a value", "--count", "3", "--json",
        ])

    assert result.exit_code == 0
    mock_engine.return_value.retrieve.assert_awaited_once_with("memoize a value", 3, None)
    data = json.loads(result.output)
    assert data[0]["path"] == "learn/hooks.md"
    assert data[0]["metadata"]["breadcrumb"] == ["Hooks"]
    assert data[0]["distance"] == 0.125


def test_get_reads_prompt_from_stdin(runner, config_path):
    """Test the prompt falls back to standard input."""
    with patch("main.RetrievalEngine") as mock_engine:
        mock_engine.return_value.retrieve = AsyncMock(return_value=[])

        result = runner.invoke(
            cli, ["--config", config_path, "get", "--docs", "react"], input="from stdin\n"
        )

    assert result.exit_code == 0
    mock_engine.return_value.retrieve.assert_awaited_once_with("from stdin\n", 5, "react")


def test_get_rejects_negative_count(runner, config_path):
    """Test a negative count is a usage error."""
    result = runner.invoke(cli, ["--config", config_path, "get", "x", "--count", "-1"])

    assert result.exit_code == 2
