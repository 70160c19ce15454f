"""Tests for OperationApplier and derive_state."""

from __future__ import annotations

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from fxreconcile.dao.package_framework_dao import PackageFrameworkDAO
from fxreconcile.engines.framework_reconciler.applier import OperationApplier, derive_state
from fxreconcile.engines.framework_reconciler.differ import diff
from fxreconcile.engines.framework_reconciler.models import (
    NOT_STARTED,
    ReconciliationReport,
    ReportState,
)


def _report(declared, recorded, key=1) -> ReconciliationReport:
    report = ReconciliationReport(
        key=key,
        id="Foo",
        version="1.0.0",
        normalized_version="1.0.0",
        content_hash="abc",
        created_at=datetime(2014, 1, 2),
        declared_frameworks=frozenset(declared),
        recorded_frameworks=frozenset(recorded),
    )
    report.operations = diff(declared, recorded)
    return report


def _locked(*args, **kwargs):
    raise OperationalError("INSERT", {}, Exception("database is locked"))


# ── derive_state ─────────────────────────────────────────────────────────


class TestDeriveState:
    def test_zero_operations_resolved(self):
        assert derive_state(_report({"net45"}, {"net45"})) is ReportState.RESOLVED

    def test_pending_operation_is_error(self):
        assert derive_state(_report({"net45"}, set())) is ReportState.ERROR

    def test_all_applied_resolved(self):
        report = _report({"net45"}, {"sl4"})
        for op in report.operations:
            op.applied = True
        assert derive_state(report) is ReportState.RESOLVED

    def test_retrieval_failure_is_error(self):
        report = _report(set(), set())
        report.declared_frameworks = None
        report.error = "failed to retrieve Foo@1.0.0: 404"
        assert derive_state(report) is ReportState.ERROR

    def test_not_yet_diffed_is_unresolved(self):
        report = _report(set(), set())
        report.recorded_frameworks = None
        assert derive_state(report) is ReportState.UNRESOLVED


# ── apply without a store ────────────────────────────────────────────────


@pytest.mark.anyio
class TestApplyWithoutSession:
    async def test_zero_operations_resolved_immediately(self):
        dao = MagicMock(spec=PackageFrameworkDAO)
        report = await OperationApplier(dao).apply(None, _report({"net45"}, {"net45"}))
        assert report.state is ReportState.RESOLVED
        assert report.error is None
        dao.add.assert_not_called()

    async def test_dry_run_never_touches_store(self):
        dao = MagicMock(spec=PackageFrameworkDAO)
        session = MagicMock()
        report = _report({"net45", "netstandard1.3"}, {"sl4"})

        await OperationApplier(dao).apply(session, report, dry_run=True)

        # pending changes classify as Error, with nothing written
        assert report.state is ReportState.ERROR
        assert report.error == "3 of 3 operations pending (what-if)"
        assert all(not op.applied for op in report.operations)
        assert all(op.error == NOT_STARTED for op in report.operations)
        session.begin.assert_not_called()
        dao.add.assert_not_called()
        dao.remove.assert_not_called()

    async def test_dry_run_of_consistent_package_is_resolved(self):
        dao = MagicMock(spec=PackageFrameworkDAO)
        report = await OperationApplier(dao).apply(
            None, _report({"net45"}, {"net45"}), dry_run=True
        )
        assert report.state is ReportState.RESOLVED
        assert report.error is None

    async def test_pending_operations_need_a_session(self):
        dao = MagicMock(spec=PackageFrameworkDAO)
        with pytest.raises(ValueError, match="session"):
            await OperationApplier(dao).apply(None, _report({"net45"}, set()))

    async def test_already_applied_need_no_session(self):
        dao = MagicMock(spec=PackageFrameworkDAO)
        report = _report({"net45"}, set())
        report.operations[0].applied = True
        await OperationApplier(dao).apply(None, report)
        assert report.state is ReportState.RESOLVED


# ── apply against the database ───────────────────────────────────────────


@pytest.mark.anyio
class TestApplyToStore:
    async def test_example_package_resolves(self, session_factory, gallery):
        await gallery.add_package(1, "Foo", "1.0.0", frameworks=("net45",))
        report = _report({"net45", "netstandard1.3"}, {"net45"})

        async with session_factory() as session:
            await OperationApplier(PackageFrameworkDAO()).apply(session, report)

        assert report.state is ReportState.RESOLVED
        assert report.operations[0].applied is True
        assert report.operations[0].error is None
        assert await gallery.frameworks(1) == ["net45", "netstandard1.3"]

    async def test_adds_and_removes(self, session_factory, gallery):
        await gallery.add_package(1, "Foo", "1.0.0", frameworks=("sl4", "net20"))
        report = _report({"net45"}, {"sl4", "net20"})

        async with session_factory() as session:
            await OperationApplier(PackageFrameworkDAO()).apply(session, report)

        assert report.state is ReportState.RESOLVED
        assert await gallery.frameworks(1) == ["net45"]

    async def test_reapplying_applied_report_has_no_effect(self, session_factory, gallery):
        await gallery.add_package(1, "Foo", "1.0.0", frameworks=("sl4",))
        report = _report({"net45"}, {"sl4"})
        applier = OperationApplier(PackageFrameworkDAO())

        async with session_factory() as session:
            await applier.apply(session, report)
        async with session_factory() as session:
            await applier.apply(session, report)

        assert report.state is ReportState.RESOLVED
        # no duplicate inserts, no error from a second delete
        assert await gallery.frameworks(1) == ["net45"]

    async def test_failed_operation_does_not_block_others(self, session_factory, gallery):
        await gallery.add_package(1, "Foo", "1.0.0", frameworks=("sl4",))
        dao = PackageFrameworkDAO()
        report = _report({"net45"}, {"sl4"})

        with patch.object(dao, "add", AsyncMock(side_effect=_locked)):
            async with session_factory() as session:
                await OperationApplier(dao).apply(session, report)

        add, remove = report.operations
        assert add.applied is False
        assert add.error.startswith("Add net45 failed: OperationalError")
        assert "database is locked" in add.error
        assert remove.applied is True
        assert report.state is ReportState.ERROR
        assert report.error == "1 of 2 operations failed"
        assert await gallery.frameworks(1) == []

    async def test_resume_applies_only_failed_operations(self, session_factory, gallery):
        await gallery.add_package(1, "Foo", "1.0.0", frameworks=("sl4",))
        dao = PackageFrameworkDAO()
        report = _report({"net45"}, {"sl4"})

        with patch.object(dao, "add", AsyncMock(side_effect=_locked)):
            async with session_factory() as session:
                await OperationApplier(dao).apply(session, report)

        remove_spy = AsyncMock(wraps=dao.remove)
        with patch.object(dao, "remove", remove_spy):
            async with session_factory() as session:
                await OperationApplier(dao).apply(session, report)

        remove_spy.assert_not_called()
        assert report.state is ReportState.RESOLVED
        assert report.error is None
        assert await gallery.frameworks(1) == ["net45"]

    async def test_failed_operation_is_rolled_back(self, session_factory, gallery):
        await gallery.add_package(1, "Foo", "1.0.0", frameworks=("sl4",))
        dao = PackageFrameworkDAO()
        report = _report(set(), {"sl4"})

        async def _delete_then_fail(session, package_key, framework):
            await PackageFrameworkDAO.remove(dao, session, package_key, framework)
            _locked()

        with patch.object(dao, "remove", AsyncMock(side_effect=_delete_then_fail)):
            async with session_factory() as session:
                await OperationApplier(dao).apply(session, report)

        assert report.state is ReportState.ERROR
        assert await gallery.frameworks(1) == ["sl4"]
