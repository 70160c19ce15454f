"""PackageFrameworks table — the recorded (framework, package) associations."""

from typing import Optional

from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from fxreconcile.core.database import Base


class PackageFramework(Base):
    __tablename__ = "PackageFrameworks"

    key: Mapped[int] = mapped_column("Key", Integer, primary_key=True, autoincrement=True)
    target_framework: Mapped[Optional[str]] = mapped_column("TargetFramework", String(256))
    package_key: Mapped[int] = mapped_column(
        "Package_Key",
        Integer,
        ForeignKey("Packages.Key"),
        nullable=False,
    )

    __table_args__ = (Index("idx_packageframeworks_package", "Package_Key"),)
