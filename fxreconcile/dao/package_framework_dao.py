"""PackageFrameworkDAO — PackageFrameworks table operations."""

from sqlalchemy import delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from fxreconcile.dao.base import BaseDAO
from fxreconcile.models.package_framework import PackageFramework


class PackageFrameworkDAO(BaseDAO[PackageFramework]):
    model = PackageFramework

    # ── read ──────────────────────────────────────────────────────────────

    async def list_frameworks(self, session: AsyncSession, package_key: int) -> frozenset[str]:
        """Recorded framework names for a package.

        Rows with a NULL TargetFramework are not part of the recorded set.
        """
        stmt = select(PackageFramework.target_framework).where(
            PackageFramework.package_key == package_key,
            PackageFramework.target_framework.is_not(None),
        )
        result = await session.execute(stmt)
        return frozenset(result.scalars().all())

    # ── write ─────────────────────────────────────────────────────────────

    async def add(self, session: AsyncSession, package_key: int, framework: str) -> None:
        stmt = insert(PackageFramework).values(target_framework=framework, package_key=package_key)
        await session.execute(stmt)

    async def remove(self, session: AsyncSession, package_key: int, framework: str) -> int:
        """Delete the (framework, package) association. Returns the deleted row count."""
        stmt = delete(PackageFramework).where(
            PackageFramework.target_framework == framework,
            PackageFramework.package_key == package_key,
        )
        result = await session.execute(stmt)
        return result.rowcount
