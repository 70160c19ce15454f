"""Operation applier — execute a report's operations against PackageFrameworks."""

from __future__ import annotations

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fxreconcile.dao.package_framework_dao import PackageFrameworkDAO
from fxreconcile.engines.framework_reconciler.models import (
    OperationKind,
    ReconciliationOperation,
    ReconciliationReport,
    ReportState,
)
from fxreconcile.exceptions import ApplicationError

log = structlog.get_logger("fxreconcile.engine")


def derive_state(report: ReconciliationReport) -> ReportState:
    """Report state from its operations.

    * Error if retrieval failed before operations were computed;
    * Resolved iff every operation is applied (so zero operations is Resolved);
    * otherwise Error. A dry-run leaves every operation unapplied, so a package
      that needs changes classifies as Error there too.
    """
    if not report.diffed:
        return ReportState.ERROR if report.error else ReportState.UNRESOLVED
    if all(op.applied for op in report.operations):
        return ReportState.RESOLVED
    return ReportState.ERROR


class OperationApplier:
    """Apply add/remove operations one transaction at a time."""

    def __init__(self, framework_dao: PackageFrameworkDAO) -> None:
        self._framework_dao = framework_dao

    async def apply(
        self,
        session: AsyncSession | None,
        report: ReconciliationReport,
        *,
        dry_run: bool = False,
    ) -> ReconciliationReport:
        """Apply pending operations of *report* and set its state.

        Each operation commits or rolls back on its own, so a failure leaves
        the others untouched. Operations already marked applied are skipped,
        which makes re-applying a loaded checkpoint safe. In dry-run the
        session is never touched and may be None; it may also be None
        when no operation is pending.
        """
        if not dry_run:
            for op in report.operations:
                if op.applied:
                    continue
                if session is None:
                    raise ValueError("a session is required to apply pending operations")
                await self._apply_one(session, report, op)

        report.state = derive_state(report)
        if report.state is ReportState.ERROR and report.diffed:
            failed = sum(1 for op in report.operations if not op.applied)
            outcome = "pending (what-if)" if dry_run else "failed"
            report.error = f"{failed} of {len(report.operations)} operations {outcome}"
        elif report.state is ReportState.RESOLVED:
            report.error = None
        return report

    async def _apply_one(
        self,
        session: AsyncSession,
        report: ReconciliationReport,
        op: ReconciliationOperation,
    ) -> None:
        try:
            await self._execute(session, report, op)
        except ApplicationError as exc:
            op.applied = False
            op.error = str(exc)
            log.warning(
                "applier.failed",
                package=report.identity,
                key=report.key,
                kind=op.kind.value,
                framework=op.framework,
                error=exc.reason,
            )
            return

        op.applied = True
        op.error = None
        log.info(
            "applier.add" if op.kind is OperationKind.ADD else "applier.remove",
            package=report.identity,
            key=report.key,
            framework=op.framework,
        )

    async def _execute(
        self,
        session: AsyncSession,
        report: ReconciliationReport,
        op: ReconciliationOperation,
    ) -> None:
        """Run one operation in its own transaction; store failures raise ApplicationError."""
        try:
            async with session.begin():
                if op.kind is OperationKind.ADD:
                    await self._framework_dao.add(session, report.key, op.framework)
                    return
                deleted = await self._framework_dao.remove(session, report.key, op.framework)
        except (SQLAlchemyError, OSError) as exc:
            reason = f"{type(exc).__name__}: {exc}"
            raise ApplicationError(op.kind.value, op.framework, reason) from exc

        if deleted == 0:
            log.debug("applier.remove_missing", package=report.identity, framework=op.framework)
