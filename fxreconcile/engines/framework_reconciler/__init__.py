"""Framework reconciler engine — make PackageFrameworks match what package archives declare."""

from fxreconcile.engines.framework_reconciler.applier import OperationApplier, derive_state
from fxreconcile.engines.framework_reconciler.archive import ArchiveInspector
from fxreconcile.engines.framework_reconciler.checkpoint import CheckpointStore
from fxreconcile.engines.framework_reconciler.differ import diff
from fxreconcile.engines.framework_reconciler.models import (
    OperationKind,
    PackageDescriptor,
    ReconciliationOperation,
    ReconciliationReport,
    ReportState,
    RunSummary,
    SelectionFilter,
)

__all__ = [
    "ArchiveInspector",
    "CheckpointStore",
    "OperationApplier",
    "OperationKind",
    "PackageDescriptor",
    "ReconciliationOperation",
    "ReconciliationReport",
    "ReportState",
    "RunSummary",
    "SelectionFilter",
    "derive_state",
    "diff",
]
