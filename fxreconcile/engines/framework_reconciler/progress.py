"""Per-package progress lines for a reconciliation run."""

from __future__ import annotations

import asyncio

import click

from fxreconcile.engines.framework_reconciler.models import (
    STATE_LABEL_WIDTH,
    PackageDescriptor,
    ReportState,
)


class ProgressCounter:
    """Completed-package counter shared by all workers."""

    def __init__(self, total: int) -> None:
        self.total = total
        self._done = 0
        self._lock = asyncio.Lock()

    @property
    def done(self) -> int:
        return self._done

    async def increment(self) -> int:
        async with self._lock:
            self._done += 1
            return self._done

    def percent(self, index: int) -> float:
        if self.total <= 0:
            return 100.0
        return index / self.total * 100


def _prefix(index: int, total: int, percent: float) -> str:
    return f"[{index:07d}/{total:07d} {percent:06.2f}%]"


def format_progress_line(
    index: int, total: int, percent: float, state: ReportState, descriptor: PackageDescriptor
) -> str:
    """``[0000012/0001000 001.20%] Resolved   Package: Foo@1.0.0 (created 2014-01-02 03:04:05)``"""
    return (
        f"{_prefix(index, total, percent)} {state.value.ljust(STATE_LABEL_WIDTH)} "
        f"Package: {descriptor.id}@{descriptor.version} (created {descriptor.created_at})"
    )


def format_error_line(
    index: int, total: int, percent: float, descriptor: PackageDescriptor, error: str
) -> str:
    return (
        f"{_prefix(index, total, percent)} Error for Package: "
        f"{descriptor.id}@{descriptor.version}: {error}"
    )


class ProgressPrinter:
    """Write one line per finished package; writes are serialized per line."""

    def __init__(self, counter: ProgressCounter) -> None:
        self._counter = counter
        self._lock = asyncio.Lock()

    async def report(self, descriptor: PackageDescriptor, state: ReportState) -> int:
        index = await self._counter.increment()
        line = format_progress_line(
            index, self._counter.total, self._counter.percent(index), state, descriptor
        )
        async with self._lock:
            click.echo(line)
        return index

    async def report_error(self, descriptor: PackageDescriptor, error: str) -> int:
        index = await self._counter.increment()
        line = format_error_line(
            index, self._counter.total, self._counter.percent(index), descriptor, error
        )
        async with self._lock:
            click.echo(line, err=True)
        return index
