"""PackageDAO — catalog reads over Packages joined to PackageRegistrations."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Select, and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from fxreconcile.dao.base import BaseDAO
from fxreconcile.engines.framework_reconciler.models import PackageDescriptor, SelectionFilter
from fxreconcile.models.package import Package
from fxreconcile.models.package_registration import PackageRegistration


class PackageDAO(BaseDAO[Package]):
    model = Package

    def _selection(self, selection: SelectionFilter) -> Select:
        """Descriptor columns filtered by *selection* (no ORDER BY / LIMIT)."""
        query = (
            select(
                Package.key,
                PackageRegistration.id,
                Package.version,
                Package.normalized_version,
                Package.hash,
                Package.created,
            )
            .join(PackageRegistration, PackageRegistration.key == Package.package_registration_key)
            .where(Package.created.is_not(None))
        )
        if selection.id:
            query = query.where(func.lower(PackageRegistration.id) == selection.id.lower())
        if not selection.all:
            query = query.where(Package.normalized_version == selection.version)
        return query

    async def count_selected(self, session: AsyncSession, selection: SelectionFilter) -> int:
        """Number of packages *selection* covers."""
        return await self.count(session, self._selection(selection))

    async def list_batch(
        self,
        session: AsyncSession,
        selection: SelectionFilter,
        *,
        after: tuple[datetime, int] | None = None,
        limit: int = 500,
    ) -> list[PackageDescriptor]:
        """One keyset page of descriptors, newest first.

        Ordering is (Created DESC, Key DESC); *after* is the (created, key) of
        the last row of the previous page.
        """
        query = self._selection(selection)
        if after is not None:
            created, key = after
            query = query.where(
                or_(
                    Package.created < created,
                    and_(Package.created == created, Package.key < key),
                )
            )
        query = query.order_by(Package.created.desc(), Package.key.desc()).limit(limit)
        result = await session.execute(query)
        return [
            PackageDescriptor(
                key=row.key,
                id=row.id,
                version=row.version,
                normalized_version=row.normalized_version or row.version,
                content_hash=row.hash,
                created_at=row.created,
            )
            for row in result
        ]
