"""State differ — compute the add/remove operations that turn recorded into declared."""

from __future__ import annotations

from collections.abc import Iterable

from fxreconcile.engines.framework_reconciler.models import (
    OperationKind,
    ReconciliationOperation,
)


def diff(declared: Iterable[str], recorded: Iterable[str]) -> list[ReconciliationOperation]:
    """Return one Add per ``declared - recorded`` and one Remove per ``recorded - declared``.

    Adds come first, then removes; each group is sorted by framework so the
    output is reproducible.
    """
    declared_set = set(declared)
    recorded_set = set(recorded)

    adds = [
        ReconciliationOperation(kind=OperationKind.ADD, framework=fx)
        for fx in sorted(declared_set - recorded_set)
    ]
    removes = [
        ReconciliationOperation(kind=OperationKind.REMOVE, framework=fx)
        for fx in sorted(recorded_set - declared_set)
    ]
    return adds + removes


def apply_to_set(
    recorded: Iterable[str], operations: Iterable[ReconciliationOperation]
) -> frozenset[str]:
    """Replay *operations* against an in-memory copy of *recorded*.

    Used by the dry-run preview and by tests to check that a diff closes the gap.
    """
    result = set(recorded)
    for op in operations:
        if op.kind is OperationKind.ADD:
            result.add(op.framework)
        else:
            result.discard(op.framework)
    return frozenset(result)


def align_to_recorded(declared: Iterable[str], recorded: Iterable[str]) -> frozenset[str]:
    """Spell each declared name the way the store already records it.

    Short names come out of the archive lower-cased, while rows written by
    older tooling keep mixed case (``MonoAndroid10``). A declared name that
    matches a recorded one ignoring case takes the recorded spelling, so the
    diff stays exact without churning those rows.
    """
    recorded_set = set(recorded)
    by_lower: dict[str, str] = {}
    for name in sorted(recorded_set):
        by_lower.setdefault(name.lower(), name)

    aligned = set()
    for name in declared:
        if name in recorded_set:
            aligned.add(name)
        else:
            aligned.add(by_lower.get(name.lower(), name))
    return frozenset(aligned)
