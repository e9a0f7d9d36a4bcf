"""Tests for CLI commands."""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from docsync.cli import _ensure_db_parent, _setup_logging, app
from docsync.errors import SetupError


runner = CliRunner()


@pytest.fixture
def patched_stack(provider, tokenizer):
    """Route the CLI to the in-memory provider and word tokenizer."""
    with patch("docsync.cli.build_provider", return_value=provider), patch(
        "docsync.cli._load_tokenizer", return_value=tokenizer
    ):
        yield provider


def _write_docs(root: Path) -> None:
    (root / "auth.md").write_text("# Auth\n\nLogin with a token", encoding="utf-8")
    (root / "deploy.md").write_text("# Deploy\n\nShip to production", encoding="utf-8")


class TestSetupLogging:
    """Tests for _setup_logging helper."""

    def test_setup_logging_verbose(self) -> None:
        """Verbose mode sets DEBUG level."""
        with patch("docsync.cli.logging.basicConfig") as mock_config:
            _setup_logging(verbose=True)
            mock_config.assert_called_once()
            assert mock_config.call_args[1]["level"] == logging.DEBUG

    def test_setup_logging_normal(self) -> None:
        """Normal mode sets INFO level."""
        with patch("docsync.cli.logging.basicConfig") as mock_config:
            _setup_logging(verbose=False)
            mock_config.assert_called_once()
            assert mock_config.call_args[1]["level"] == logging.INFO


class TestEnsureDbParent:
    """Tests for _ensure_db_parent helper."""

    def test_ensure_db_parent_creates_directory(self, tmp_path: Path) -> None:
        """Creates parent directory if it doesn't exist."""
        db_path = tmp_path / "subdir" / "test.db"
        assert not db_path.parent.exists()
        _ensure_db_parent(db_path)
        assert db_path.parent.exists()

    def test_ensure_db_parent_existing_directory(self, tmp_path: Path) -> None:
        """Does not fail if directory already exists."""
        db_path = tmp_path / "test.db"
        _ensure_db_parent(db_path)
        assert db_path.parent.exists()


class TestSyncCommand:
    """Tests for the sync command."""

    def test_sync_missing_docs_root(self, tmp_path: Path) -> None:
        """A missing docs root exits with an error before any work."""
        result = runner.invoke(app, ["sync", str(tmp_path / "missing"), "--db", str(tmp_path / "t.db")])

        assert result.exit_code == 1
        assert "Docs root not found" in result.output

    def test_sync_openai_without_key(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        result = runner.invoke(
            app, ["sync", str(tmp_path), "--db", str(tmp_path / "t.db"), "--provider", "openai"]
        )

        assert result.exit_code == 1
        assert "OPENAI_API_KEY" in result.output

    def test_sync_invalid_geometry(self, tmp_path: Path) -> None:
        result = runner.invoke(
            app,
            ["sync", str(tmp_path), "--db", str(tmp_path / "t.db"), "--chunk-tokens", "10", "--overlap", "10"],
        )

        assert result.exit_code == 1
        assert "Invalid chunk geometry" in result.output

    def test_sync_tokenizer_failure(self, docs_root: Path, tmp_path: Path) -> None:
        with patch("docsync.cli._load_tokenizer", side_effect=SetupError("no encoding")):
            result = runner.invoke(app, ["sync", str(docs_root), "--db", str(tmp_path / "t.db")])

        assert result.exit_code == 1
        assert "no encoding" in result.output

    def test_sync_inserts_then_unchanged(self, docs_root: Path, tmp_path: Path, patched_stack) -> None:
        _write_docs(docs_root)
        db_path = tmp_path / "nested" / "docs.db"

        first = runner.invoke(app, ["sync", str(docs_root), "--db", str(db_path)])
        second = runner.invoke(app, ["sync", str(docs_root), "--db", str(db_path)])

        assert first.exit_code == 0, first.output
        assert "Discovered 2 pages" in first.output
        assert "Inserted: 2, updated: 0, unchanged: 0, failed: 0, removed: 0" in first.output
        assert db_path.exists()
        assert second.exit_code == 0, second.output
        assert "Inserted: 0, updated: 0, unchanged: 2" in second.output

    def test_sync_refresh(self, docs_root: Path, tmp_path: Path, patched_stack) -> None:
        _write_docs(docs_root)
        db_path = tmp_path / "docs.db"
        runner.invoke(app, ["sync", str(docs_root), "--db", str(db_path)])

        result = runner.invoke(app, ["sync", str(docs_root), "--db", str(db_path), "--refresh"])

        assert result.exit_code == 0, result.output
        assert "updated: 2" in result.output

    def test_sync_ignore(self, docs_root: Path, tmp_path: Path, patched_stack) -> None:
        _write_docs(docs_root)

        result = runner.invoke(
            app, ["sync", str(docs_root), "--db", str(tmp_path / "docs.db"), "--ignore", "/deploy"]
        )

        assert result.exit_code == 0, result.output
        assert "Discovered 1 pages" in result.output

    def test_sync_reports_failures(self, docs_root: Path, tmp_path: Path, patched_stack) -> None:
        """A failing page is reported without failing the run."""
        _write_docs(docs_root)
        patched_stack.fail_when = lambda text: "Deploy" in text

        result = runner.invoke(app, ["sync", str(docs_root), "--db", str(tmp_path / "docs.db")])

        assert result.exit_code == 0, result.output
        assert "failed: 1" in result.output
        assert "Failed:" in result.output
        assert "/deploy" in result.output

    def test_sync_docs_root_from_env(self, docs_root: Path, tmp_path: Path, patched_stack) -> None:
        _write_docs(docs_root)

        result = runner.invoke(
            app,
            ["sync", "--db", str(tmp_path / "docs.db")],
            env={"DOCSYNC_DOCS_ROOT": str(docs_root)},
        )

        assert result.exit_code == 0, result.output
        assert "Discovered 2 pages" in result.output


class TestSearchCommand:
    """Tests for the search command."""

    def test_search_missing_database(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["search", "query", "--db", str(tmp_path / "missing.db")])

        assert result.exit_code != 0

    def test_search_no_matches(self, docs_root: Path, tmp_path: Path, patched_stack) -> None:
        db_path = tmp_path / "docs.db"
        runner.invoke(app, ["sync", str(docs_root), "--db", str(db_path)])

        result = runner.invoke(app, ["search", "anything", "--db", str(db_path)])

        assert result.exit_code == 0, result.output
        assert "No matches found." in result.output

    def test_search_results(self, docs_root: Path, tmp_path: Path, patched_stack) -> None:
        _write_docs(docs_root)
        db_path = tmp_path / "docs.db"
        runner.invoke(app, ["sync", str(docs_root), "--db", str(db_path)])

        result = runner.invoke(app, ["search", "production", "--db", str(db_path), "--top-k", "1"])

        assert result.exit_code == 0, result.output
        assert "Score" in result.output
        assert "Heading" in result.output

    def test_search_rejects_zero_top_k(self, docs_root: Path, tmp_path: Path, patched_stack) -> None:
        _write_docs(docs_root)
        db_path = tmp_path / "docs.db"
        runner.invoke(app, ["sync", str(docs_root), "--db", str(db_path)])

        result = runner.invoke(app, ["search", "production", "--db", str(db_path), "--top-k", "0"])

        assert result.exit_code == 2


class TestSyncUnreadableTree:
    """A docs tree that cannot be fully listed aborts before any page is touched."""

    def test_sync_unreadable_directory(self, docs_root: Path, tmp_path: Path, patched_stack) -> None:
        _write_docs(docs_root)
        (docs_root / "locked").mkdir()
        db_path = tmp_path / "docs.db"
        runner.invoke(app, ["sync", str(docs_root), "--db", str(db_path)])
        original = Path.iterdir

        def iterdir(path: Path):
            if path.name == "locked":
                raise PermissionError(13, "Permission denied")
            return original(path)

        with patch.object(Path, "iterdir", iterdir):
            result = runner.invoke(app, ["sync", str(docs_root), "--db", str(db_path)])

        assert result.exit_code == 1
        assert "Unable to list" in result.output
        assert "removed" not in result.output
