"""Checkpoint store — one JSON report per package under the work directory.

Two names per package:

* primary   ``<work>/<id>_<version>.json`` — the only file ``save`` writes;
* secondary ``<work>/<id>_<version>_<hash>.json`` — left behind when a
  package's content hash changed; promoted to the primary name before load.
"""

from __future__ import annotations

import asyncio
import os
from datetime import datetime
from pathlib import Path
from urllib.parse import quote

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from fxreconcile.engines.framework_reconciler.models import (
    OperationKind,
    ReconciliationOperation,
    ReconciliationReport,
    ReportState,
)
from fxreconcile.exceptions import CheckpointError

log = structlog.get_logger("fxreconcile.checkpoint")


# ── JSON document schema ─────────────────────────────────────────────────


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OperationDocument(_CamelModel):
    kind: OperationKind
    framework: str
    applied: bool = False
    error: str | None = None


class ReportDocument(_CamelModel):
    id: str
    version: str
    normalized_version: str = ""
    key: int
    hash: str
    created: datetime
    declared_frameworks: list[str] | None = None
    recorded_frameworks: list[str] | None = None
    operations: list[OperationDocument] = []
    state: ReportState = ReportState.UNRESOLVED
    error: str | None = None

    @classmethod
    def from_report(cls, report: ReconciliationReport) -> ReportDocument:
        return cls(
            id=report.id,
            version=report.version,
            normalized_version=report.normalized_version,
            key=report.key,
            hash=report.content_hash,
            created=report.created_at,
            declared_frameworks=(
                sorted(report.declared_frameworks)
                if report.declared_frameworks is not None
                else None
            ),
            recorded_frameworks=(
                sorted(report.recorded_frameworks)
                if report.recorded_frameworks is not None
                else None
            ),
            operations=[
                OperationDocument(
                    kind=op.kind, framework=op.framework, applied=op.applied, error=op.error
                )
                for op in report.operations
            ],
            state=report.state,
            error=report.error,
        )

    def to_report(self) -> ReconciliationReport:
        return ReconciliationReport(
            key=self.key,
            id=self.id,
            version=self.version,
            normalized_version=self.normalized_version,
            content_hash=self.hash,
            created_at=self.created,
            declared_frameworks=(
                frozenset(self.declared_frameworks)
                if self.declared_frameworks is not None
                else None
            ),
            recorded_frameworks=(
                frozenset(self.recorded_frameworks)
                if self.recorded_frameworks is not None
                else None
            ),
            operations=[
                ReconciliationOperation(
                    kind=op.kind, framework=op.framework, applied=op.applied, error=op.error
                )
                for op in self.operations
            ],
            state=self.state,
            error=self.error,
        )


# ── store ────────────────────────────────────────────────────────────────


class CheckpointStore:
    """Read and write per-package reconciliation reports."""

    def __init__(self, work_dir: Path) -> None:
        self._work_dir = Path(work_dir)

    @property
    def work_dir(self) -> Path:
        return self._work_dir

    def primary_path(self, package_id: str, version: str) -> Path:
        return self._work_dir / f"{package_id}_{version}.json"

    def secondary_path(self, package_id: str, version: str, content_hash: str) -> Path:
        # base64 hashes may contain "/", which must not become a directory
        return self._work_dir / f"{package_id}_{version}_{quote(content_hash, safe='')}.json"

    def promote(self, package_id: str, version: str, content_hash: str) -> bool:
        """Rename the hash-qualified checkpoint to the primary name.

        Only happens when the secondary exists and the primary does not.
        Returns True if a rename took place.
        """
        primary = self.primary_path(package_id, version)
        secondary = self.secondary_path(package_id, version, content_hash)
        if primary.exists() or not secondary.exists():
            return False
        os.replace(secondary, primary)
        log.info("checkpoint.promoted", package=f"{package_id}@{version}", source=secondary.name)
        return True

    def load(
        self,
        package_id: str,
        version: str,
        content_hash: str | None = None,
        *,
        promote: bool = True,
    ) -> ReconciliationReport | None:
        """Return the stored report for (id, version), or None if there is none.

        With *content_hash* the secondary checkpoint is considered too: promoted
        when *promote* is True, otherwise read in place (dry-run). A checkpoint
        that cannot be parsed is logged and treated as absent so the package is
        reconciled from scratch.
        """
        path = self.primary_path(package_id, version)
        if content_hash is not None:
            if promote:
                self.promote(package_id, version, content_hash)
            elif not path.exists():
                path = self.secondary_path(package_id, version, content_hash)

        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise CheckpointError(f"cannot read checkpoint {path}: {exc}") from exc

        # truncated or binary writes surface here as well, not only bad JSON
        try:
            return ReportDocument.model_validate_json(raw).to_report()
        except (ValidationError, UnicodeDecodeError) as exc:
            log.warning(
                "checkpoint.unreadable",
                path=str(path),
                error=str(exc).splitlines()[0],
            )
            return None

    def save(self, report: ReconciliationReport) -> Path:
        """Overwrite the primary checkpoint with *report* (atomic replace)."""
        path = self.primary_path(report.id, report.version)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        data = ReportDocument.from_report(report).model_dump_json(by_alias=True, indent=2)
        try:
            self._work_dir.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(data + "\n", encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as exc:
            raise CheckpointError(f"cannot write checkpoint {path}: {exc}") from exc
        return path

    # ── async wrappers (file I/O off the event loop) ─────────────────────

    async def aload(
        self,
        package_id: str,
        version: str,
        content_hash: str | None = None,
        *,
        promote: bool = True,
    ) -> ReconciliationReport | None:
        return await asyncio.to_thread(
            self.load, package_id, version, content_hash, promote=promote
        )

    async def asave(self, report: ReconciliationReport) -> Path:
        return await asyncio.to_thread(self.save, report)
