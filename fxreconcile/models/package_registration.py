"""PackageRegistrations table — one row per package id."""

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from fxreconcile.core.database import Base


class PackageRegistration(Base):
    __tablename__ = "PackageRegistrations"

    key: Mapped[int] = mapped_column("Key", Integer, primary_key=True)
    id: Mapped[str] = mapped_column("Id", String(128), unique=True, nullable=False)
