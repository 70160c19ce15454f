"""Data models for the framework reconciler engine.

These are pure data structures — no DB dependencies.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime

FrameworkSet = frozenset[str]

NOT_STARTED = "Not Started"


class OperationKind(str, enum.Enum):
    ADD = "Add"
    REMOVE = "Remove"


class ReportState(str, enum.Enum):
    UNRESOLVED = "Unresolved"
    RESOLVED = "Resolved"
    ERROR = "Error"


STATE_LABEL_WIDTH = max(len(state.value) for state in ReportState)


@dataclass(frozen=True)
class SelectionFilter:
    """Which packages a run covers: one id, one version, or everything."""

    id: str | None = None
    version: str | None = None
    all: bool = False


@dataclass(frozen=True)
class PackageDescriptor:
    """Immutable identity of one published package snapshot."""

    key: int
    id: str
    version: str
    normalized_version: str
    content_hash: str
    created_at: datetime


@dataclass
class ReconciliationOperation:
    kind: OperationKind
    framework: str
    applied: bool = False
    error: str | None = NOT_STARTED

    @property
    def sort_key(self) -> tuple[str, str]:
        return (self.kind.value, self.framework)


@dataclass
class ReconciliationReport:
    """The resumable unit of work for one package, keyed by (id, version)."""

    key: int
    id: str
    version: str
    normalized_version: str
    content_hash: str
    created_at: datetime
    # None until the archive has been inspected and the store read
    declared_frameworks: FrameworkSet | None = None
    recorded_frameworks: FrameworkSet | None = None
    operations: list[ReconciliationOperation] = field(default_factory=list)
    state: ReportState = ReportState.UNRESOLVED
    error: str | None = None

    @classmethod
    def fresh(cls, descriptor: PackageDescriptor) -> ReconciliationReport:
        return cls(
            key=descriptor.key,
            id=descriptor.id,
            version=descriptor.version,
            normalized_version=descriptor.normalized_version,
            content_hash=descriptor.content_hash,
            created_at=descriptor.created_at,
        )

    @property
    def diffed(self) -> bool:
        """True once both framework sets are known, so operations were computed."""
        return self.declared_frameworks is not None and self.recorded_frameworks is not None

    @property
    def identity(self) -> str:
        return f"{self.id}@{self.version}"


@dataclass
class RunSummary:
    """Totals for one batch run."""

    total: int = 0
    resolved: int = 0
    errors: int = 0
    unresolved: int = 0
    skipped: int = 0

    def record(self, state: ReportState | None) -> None:
        if state is None:
            self.skipped += 1
        elif state is ReportState.RESOLVED:
            self.resolved += 1
        elif state is ReportState.ERROR:
            self.errors += 1
        else:
            self.unresolved += 1

    @property
    def processed(self) -> int:
        return self.resolved + self.errors + self.unresolved + self.skipped
