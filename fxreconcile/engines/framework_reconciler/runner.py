"""FrameworkReconcilerRunner — drive the catalog through inspect/diff/apply/checkpoint."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fxreconcile.dao.package_framework_dao import PackageFrameworkDAO
from fxreconcile.engines.framework_reconciler.applier import OperationApplier
from fxreconcile.engines.framework_reconciler.archive import ArchiveInspector
from fxreconcile.engines.framework_reconciler.checkpoint import CheckpointStore
from fxreconcile.engines.framework_reconciler.differ import align_to_recorded, apply_to_set, diff
from fxreconcile.engines.framework_reconciler.models import (
    PackageDescriptor,
    ReconciliationReport,
    ReportState,
    RunSummary,
    SelectionFilter,
)
from fxreconcile.engines.framework_reconciler.progress import ProgressCounter, ProgressPrinter
from fxreconcile.exceptions import RetrievalError
from fxreconcile.services.catalog_service import DEFAULT_BATCH_SIZE, CatalogService

log = structlog.get_logger("fxreconcile.engine")

DEFAULT_PARALLELISM = 10

_DONE = object()


def _describe(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


class FrameworkReconcilerRunner:
    """Orchestration layer: catalog -> checkpoint -> inspect -> diff -> apply -> checkpoint."""

    def __init__(
        self,
        catalog_service: CatalogService,
        framework_dao: PackageFrameworkDAO,
        inspector: ArchiveInspector,
        checkpoints: CheckpointStore,
        applier: OperationApplier | None = None,
    ) -> None:
        self._catalog_service = catalog_service
        self._framework_dao = framework_dao
        self._inspector = inspector
        self._checkpoints = checkpoints
        self._applier = applier or OperationApplier(framework_dao)

    # ── single package ───────────────────────────────────────────────────

    async def process(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        descriptor: PackageDescriptor,
        *,
        dry_run: bool = False,
    ) -> ReconciliationReport:
        """Reconcile one package and checkpoint the outcome.

        1. Load the checkpoint (promoting a hash-qualified one)
        2. If there is none: download + inspect the archive, read the store, diff
        3. Apply pending operations
        4. Save the checkpoint (skipped in dry-run)

        Failures after the report exists end up in the report as Error. Only
        failures loading or saving the checkpoint propagate.
        """
        report = await self._checkpoints.aload(
            descriptor.id, descriptor.version, descriptor.content_hash, promote=not dry_run
        )
        if report is not None and not report.diffed:
            # previous attempt failed before operations were computed
            log.info("reconciler.retry_fresh", package=report.identity, error=report.error)
            report = None

        try:
            if report is None:
                report = ReconciliationReport.fresh(descriptor)
                await self._reconcile_fresh(session_factory, report, descriptor, dry_run=dry_run)
            else:
                log.debug(
                    "reconciler.checkpoint_loaded",
                    package=report.identity,
                    state=report.state.value,
                )
                await self._apply(session_factory, report, dry_run=dry_run)
        except RetrievalError as exc:
            report.state = ReportState.ERROR
            report.error = str(exc)
        except Exception as exc:
            log.exception("reconciler.package_error", package=report.identity)
            report.state = ReportState.ERROR
            report.error = _describe(exc)

        if dry_run:
            self._log_preview(report)
        else:
            await self._checkpoints.asave(report)
        return report

    async def _reconcile_fresh(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        report: ReconciliationReport,
        descriptor: PackageDescriptor,
        *,
        dry_run: bool,
    ) -> None:
        declared = await self._inspector.inspect(descriptor)

        async with session_factory() as session:
            async with session.begin():
                recorded = await self._framework_dao.list_frameworks(session, descriptor.key)

            report.declared_frameworks = align_to_recorded(declared, recorded)
            report.recorded_frameworks = frozenset(recorded)
            report.operations = diff(report.declared_frameworks, report.recorded_frameworks)

            await self._applier.apply(None if dry_run else session, report, dry_run=dry_run)

    async def _apply(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        report: ReconciliationReport,
        *,
        dry_run: bool,
    ) -> None:
        pending = any(not op.applied for op in report.operations)
        if dry_run or not pending:
            await self._applier.apply(None, report, dry_run=dry_run)
            return
        async with session_factory() as session:
            await self._applier.apply(session, report)

    @staticmethod
    def _log_preview(report: ReconciliationReport) -> None:
        if not report.diffed:
            return
        log.info(
            "reconciler.dry_run",
            package=report.identity,
            operations=[f"{op.kind.value} {op.framework}" for op in report.operations],
            projected=sorted(apply_to_set(report.recorded_frameworks, report.operations)),
        )

    # ── batch ────────────────────────────────────────────────────────────

    async def run_all(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        selection: SelectionFilter,
        *,
        dry_run: bool = False,
        parallelism: int = DEFAULT_PARALLELISM,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> RunSummary:
        """Reconcile every package *selection* covers with bounded concurrency.

        A single producer streams descriptors in catalog order into a bounded
        queue; *parallelism* workers take them in that order and report as
        they finish, so output order follows completion order.
        """
        parallelism = max(1, parallelism)

        async with session_factory() as session:
            total = await self._catalog_service.count(session, selection)

        summary = RunSummary(total=total)
        printer = ProgressPrinter(ProgressCounter(total))
        queue: asyncio.Queue = asyncio.Queue(maxsize=parallelism * 2)

        log.info(
            "reconciler.run_start",
            total=total,
            parallelism=parallelism,
            dry_run=dry_run,
            package_id=selection.id,
            version=selection.version,
            all=selection.all,
        )

        async def _produce() -> None:
            try:
                async for descriptor in self._catalog_service.iter_descriptors(
                    session_factory, selection, batch_size=batch_size
                ):
                    await queue.put(descriptor)
            finally:
                for _ in range(parallelism):
                    await queue.put(_DONE)

        async def _work() -> None:
            while True:
                item = await queue.get()
                if item is _DONE:
                    return
                state = await self._run_one(session_factory, item, printer, dry_run=dry_run)
                summary.record(state)

        workers = [
            asyncio.create_task(_work(), name=f"reconciler-worker-{n}") for n in range(parallelism)
        ]
        try:
            await _produce()
        finally:
            await asyncio.gather(*workers)

        log.info(
            "reconciler.run_end",
            total=summary.total,
            resolved=summary.resolved,
            errors=summary.errors,
            unresolved=summary.unresolved,
            skipped=summary.skipped,
        )
        return summary

    async def _run_one(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        descriptor: PackageDescriptor,
        printer: ProgressPrinter,
        *,
        dry_run: bool,
    ) -> ReportState | None:
        """Package boundary: nothing raised here escapes to other packages."""
        try:
            report = await self.process(session_factory, descriptor, dry_run=dry_run)
        except Exception as exc:
            log.exception(
                "reconciler.package_failed",
                package=f"{descriptor.id}@{descriptor.version}",
                key=descriptor.key,
            )
            await self._print(printer.report_error(descriptor, _describe(exc)), descriptor)
            return None
        await self._print(printer.report(descriptor, report.state), descriptor)
        return report.state

    @staticmethod
    async def _print(line: Awaitable[int], descriptor: PackageDescriptor) -> None:
        # a console that cannot be written must not stop the worker
        try:
            await line
        except Exception:
            log.exception(
                "reconciler.progress_failed",
                package=f"{descriptor.id}@{descriptor.version}",
            )
