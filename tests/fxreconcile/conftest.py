"""Shared fixtures for fxreconcile tests.

Database tests run against a throwaway SQLite file per test (aiosqlite), with
the gallery tables created from the ORM models.
"""

from datetime import datetime

import pytest
import structlog
from sqlalchemy import select

from fxreconcile.core.database import Base, create_engine, create_session_factory
from fxreconcile.engines.framework_reconciler.models import PackageDescriptor
from fxreconcile.models import Package, PackageFramework, PackageRegistration


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session", autouse=True)
def _route_structlog_to_stdlib():
    """Keep log events off stdout, which carries the progress lines under test."""
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.KeyValueRenderer(key_order=["event"]),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )
    yield
    structlog.reset_defaults()


@pytest.fixture
async def engine(anyio_backend, tmp_path):
    """Create an engine over a fresh database file with all tables."""
    eng = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'gallery.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


class Gallery:
    """Seed and inspect the gallery tables."""

    def __init__(self, session_factory):
        self._session_factory = session_factory
        self._registrations: dict[str, int] = {}

    async def add_package(
        self,
        key: int,
        package_id: str,
        version: str,
        *,
        created: datetime | None = datetime(2015, 1, 1),
        content_hash: str = "hash",
        normalized_version: str | None = None,
        frameworks: tuple[str | None, ...] = (),
    ) -> PackageDescriptor:
        async with self._session_factory() as session:
            async with session.begin():
                reg_key = self._registrations.get(package_id.lower())
                if reg_key is None:
                    reg_key = len(self._registrations) + 1
                    session.add(PackageRegistration(key=reg_key, id=package_id))
                    self._registrations[package_id.lower()] = reg_key
                session.add(
                    Package(
                        key=key,
                        package_registration_key=reg_key,
                        version=version,
                        normalized_version=normalized_version or version,
                        hash=content_hash,
                        created=created,
                    )
                )
                for fx in frameworks:
                    session.add(PackageFramework(target_framework=fx, package_key=key))
        return PackageDescriptor(
            key=key,
            id=package_id,
            version=version,
            normalized_version=normalized_version or version,
            content_hash=content_hash,
            created_at=created,
        )

    async def frameworks(self, package_key: int) -> list[str | None]:
        """All TargetFramework values recorded for a package, sorted, NULLs first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(PackageFramework.target_framework).where(
                    PackageFramework.package_key == package_key
                )
            )
            return sorted(result.scalars().all(), key=lambda fx: (fx is not None, fx or ""))

    async def all_rows(self) -> list[tuple[int, str | None]]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(PackageFramework.package_key, PackageFramework.target_framework)
            )
            return sorted(
                ((row[0], row[1]) for row in result), key=lambda r: (r[0], r[1] or "")
            )


@pytest.fixture
def gallery(session_factory):
    return Gallery(session_factory)
