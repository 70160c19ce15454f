"""SQLAlchemy ORM models — one file per table."""

from fxreconcile.models.package import Package
from fxreconcile.models.package_framework import PackageFramework
from fxreconcile.models.package_registration import PackageRegistration

__all__ = [
    "PackageRegistration",
    "Package",
    "PackageFramework",
]
