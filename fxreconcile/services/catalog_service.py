"""CatalogService — validate a package selection and stream its descriptors."""

from __future__ import annotations

import re
from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fxreconcile.dao.package_dao import PackageDAO
from fxreconcile.engines.framework_reconciler.models import PackageDescriptor, SelectionFilter
from fxreconcile.exceptions import SelectionError

DEFAULT_BATCH_SIZE = 500

_VERSION_RE = re.compile(
    r"^\s*v?(?P<numbers>\d+(?:\.\d+){0,3})"
    r"(?:-(?P<release>[0-9A-Za-z.-]+))?"
    r"(?:\+[0-9A-Za-z.-]+)?\s*$"
)


def normalize_version(version: str) -> str:
    """Normalize a package version the way the gallery stores ``NormalizedVersion``.

    ``1.0`` -> ``1.0.0``, ``1.0.0.0`` -> ``1.0.0``, ``01.2.3.4`` -> ``1.2.3.4``,
    ``1.0.0-Beta+build5`` -> ``1.0.0-Beta``.

    Raises :class:`SelectionError` for strings that are not versions.
    """
    match = _VERSION_RE.match(version)
    if match is None:
        raise SelectionError(f"'{version}' is not a valid package version")
    numbers = [int(part) for part in match.group("numbers").split(".")]
    while len(numbers) < 3:
        numbers.append(0)
    if len(numbers) == 4 and numbers[3] == 0:
        numbers.pop()
    normalized = ".".join(str(n) for n in numbers)
    release = match.group("release")
    if release:
        normalized += f"-{release}"
    return normalized


class CatalogService:
    """Stateless service over the package catalog."""

    def __init__(self, package_dao: PackageDAO) -> None:
        self._package_dao = package_dao

    @staticmethod
    def validate(selection: SelectionFilter) -> SelectionFilter:
        """Check *selection* and return it with a normalized version.

        Exactly one of ``version`` and ``all`` must be set. Raises
        :class:`SelectionError` otherwise.
        """
        package_id = (selection.id or "").strip() or None
        version = (selection.version or "").strip() or None
        if version is None and not selection.all:
            raise SelectionError(
                "a version is required unless --all is given to process all versions"
            )
        if version is not None and selection.all:
            raise SelectionError("a version and --all cannot be combined")
        if version is not None:
            version = normalize_version(version)
        return SelectionFilter(id=package_id, version=version, all=selection.all)

    async def count(self, session: AsyncSession, selection: SelectionFilter) -> int:
        return await self._package_dao.count_selected(session, selection)

    async def iter_descriptors(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        selection: SelectionFilter,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> AsyncIterator[PackageDescriptor]:
        """Yield descriptors newest first, one short-lived session per batch.

        At most *batch_size* descriptors are held in memory at a time.
        """
        after = None
        while True:
            async with session_factory() as session:
                batch = await self._package_dao.list_batch(
                    session, selection, after=after, limit=batch_size
                )
            for descriptor in batch:
                yield descriptor
            if len(batch) < batch_size:
                return
            last = batch[-1]
            after = (last.created_at, last.key)
