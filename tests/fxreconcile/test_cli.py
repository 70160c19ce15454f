"""Tests for the fxreconcile CLI (click.testing.CliRunner)."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from fxreconcile.cli import main
from fxreconcile.core.database import Base, create_engine
from fxreconcile.engines.framework_reconciler.models import RunSummary, SelectionFilter
from fxreconcile.exceptions import ConfigurationError

STORAGE = "AccountName=gallery;SharedAccessSignature=sig=1"


@pytest.fixture(autouse=True)
def _no_logging_setup():
    with patch("fxreconcile.cli.setup_logging"):
        yield


@pytest.fixture
def connection_args(tmp_path):
    return [
        "--db",
        f"sqlite+aiosqlite:///{tmp_path / 'gallery.db'}",
        "--storage",
        STORAGE,
        "--work",
        str(tmp_path / "work"),
    ]


def _invoke(*args):
    return CliRunner().invoke(main, ["populate-frameworks", *args])


class TestSelection:
    def test_version_or_all_required(self, connection_args):
        result = _invoke("Foo", *connection_args)
        assert result.exit_code == 1
        assert "--all" in result.output

    def test_version_and_all_conflict(self, connection_args):
        result = _invoke("Foo", "1.0.0", "--all", *connection_args)
        assert result.exit_code == 1
        assert "cannot be combined" in result.output

    def test_invalid_version(self, connection_args):
        result = _invoke("Foo", "not-a-version", *connection_args)
        assert result.exit_code == 1
        assert "not a valid package version" in result.output


class TestConfiguration:
    def test_missing_connection_settings(self, tmp_path, monkeypatch):
        monkeypatch.delenv("FXRECONCILE_DATABASE_URL", raising=False)
        monkeypatch.delenv("FXRECONCILE_STORAGE_CONNECTION", raising=False)
        result = _invoke("Foo", "1.0.0", "--work", str(tmp_path))
        assert result.exit_code == 1
        assert "required" in result.output

    def test_unreachable_store_is_fatal(self, connection_args):
        with patch(
            "fxreconcile.cli._populate",
            new=AsyncMock(side_effect=ConfigurationError("cannot connect to the database")),
        ):
            result = _invoke("--all", *connection_args)
        assert result.exit_code == 1
        assert "cannot connect" in result.output


class TestPopulate:
    def test_passes_normalized_selection(self, connection_args):
        populate = AsyncMock(return_value=RunSummary(total=1, resolved=1))
        with patch("fxreconcile.cli._populate", new=populate):
            result = _invoke("Foo", "1.0", "-p", "3", "-y", *connection_args)

        assert result.exit_code == 0, result.output
        settings, selection = populate.await_args.args
        assert selection == SelectionFilter(id="Foo", version="1.0.0", all=False)
        assert settings.parallelism == 3
        assert populate.await_args.kwargs == {
            "dry_run": False,
            "assume_yes": True,
            "batch_size": 500,
        }
        assert "Processed 1 of 1 package(s): 1 resolved" in result.output

    def test_what_if_summary(self, connection_args):
        populate = AsyncMock(return_value=RunSummary(total=2, errors=2))
        with patch("fxreconcile.cli._populate", new=populate):
            result = _invoke("--all", "--what-if", *connection_args)

        assert result.exit_code == 0, result.output
        assert populate.await_args.kwargs["dry_run"] is True
        assert "(what-if, nothing written)" in result.output

    def test_per_package_errors_exit_zero(self, connection_args):
        populate = AsyncMock(return_value=RunSummary(total=3, resolved=1, errors=1, skipped=1))
        with patch("fxreconcile.cli._populate", new=populate):
            result = _invoke("--all", "-y", *connection_args)

        assert result.exit_code == 0
        assert "1 error" in result.output

    def test_cancelled_run_prints_no_summary(self, connection_args):
        with patch("fxreconcile.cli._populate", new=AsyncMock(return_value=None)):
            result = _invoke("--all", *connection_args)

        assert result.exit_code == 0
        assert "Processed" not in result.output


@pytest.fixture
def empty_gallery(tmp_path):
    async def _create_tables():
        engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'gallery.db'}")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await engine.dispose()

    asyncio.run(_create_tables())


class TestEndToEnd:
    def test_what_if_against_empty_catalog(self, empty_gallery, connection_args):
        result = _invoke("--all", "--what-if", *connection_args)

        assert result.exit_code == 0, result.output
        assert "Processed 0 of 0 package(s)" in result.output

    def test_declined_confirmation(self, empty_gallery, connection_args):
        result = CliRunner().invoke(
            main, ["populate-frameworks", "--all", *connection_args], input="n\n"
        )

        assert result.exit_code == 0, result.output
        assert "Continue?" in result.output
        assert "Processed" not in result.output
