"""Packages table — one row per published package version."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from fxreconcile.core.database import Base


class Package(Base):
    __tablename__ = "Packages"

    key: Mapped[int] = mapped_column("Key", Integer, primary_key=True)
    package_registration_key: Mapped[int] = mapped_column(
        "PackageRegistrationKey",
        Integer,
        ForeignKey("PackageRegistrations.Key"),
        nullable=False,
    )
    version: Mapped[str] = mapped_column("Version", String(64), nullable=False)
    normalized_version: Mapped[Optional[str]] = mapped_column("NormalizedVersion", String(64))
    hash: Mapped[str] = mapped_column("Hash", String(256), nullable=False)
    created: Mapped[Optional[datetime]] = mapped_column("Created", DateTime)

    __table_args__ = (
        Index("idx_packages_created_key", "Created", "Key"),
        Index("idx_packages_registration", "PackageRegistrationKey"),
    )
