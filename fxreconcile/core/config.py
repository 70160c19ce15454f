"""Run settings — explicit values, then environment, then the service registry."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from fxreconcile.exceptions import ConfigurationError

ENV_DATABASE_URL = "FXRECONCILE_DATABASE_URL"
ENV_STORAGE_CONNECTION = "FXRECONCILE_STORAGE_CONNECTION"
ENV_WORK_DIR = "FXRECONCILE_WORK_DIR"
ENV_SERVICE_REGISTRY = "FXRECONCILE_SERVICE_REGISTRY"
ENV_PARALLELISM = "FXRECONCILE_PARALLELISM"

REGISTRY_SERVICE = "work"
REGISTRY_SQL_KEY = "Sql.Legacy"
REGISTRY_STORAGE_KEY = "Storage.Legacy"


@dataclass(frozen=True)
class Settings:
    database_url: str
    storage_connection: str
    work_dir: Path
    parallelism: int = 10

    @property
    def database_host(self) -> str:
        """Host/database part of the URL, safe to print."""
        url = make_url(self.database_url)
        return f"{url.host or 'local'}/{url.database or ''}"


def load_service_config(
    registry_path: Path, datacenter: str, service: str = REGISTRY_SERVICE
) -> dict[str, Any]:
    """Return the settings block for *service* in *datacenter* from a registry JSON file.

    The file maps ``{"<datacenter>": {"<service>": {"Sql.Legacy": ..., ...}}}``.
    Raises :class:`ConfigurationError` if the file or the entry is missing.
    """
    try:
        registry = json.loads(Path(registry_path).read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigurationError(f"service registry not found: {registry_path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"service registry is not valid JSON: {registry_path}") from exc

    entry = registry.get(str(datacenter), {}).get(service)
    if not isinstance(entry, dict):
        raise ConfigurationError(
            f"service registry has no '{service}' service for datacenter {datacenter}"
        )
    return entry


def load_settings(
    *,
    database_url: str | None = None,
    storage_connection: str | None = None,
    work_dir: str | Path | None = None,
    datacenter: str | None = None,
    service_registry: str | Path | None = None,
    parallelism: int | None = None,
) -> Settings:
    """Resolve settings for a run.

    Explicit arguments win, then ``FXRECONCILE_*`` environment variables, then
    the service registry when a datacenter is given. Missing connection
    settings raise :class:`ConfigurationError`. The work directory is created.
    """
    database_url = database_url or os.environ.get(ENV_DATABASE_URL)
    storage_connection = storage_connection or os.environ.get(ENV_STORAGE_CONNECTION)

    if datacenter is not None and (not database_url or not storage_connection):
        registry_path = service_registry or os.environ.get(ENV_SERVICE_REGISTRY)
        if not registry_path:
            raise ConfigurationError(
                "a datacenter was given but no service registry file is configured"
            )
        config = load_service_config(Path(registry_path), datacenter)
        database_url = database_url or config.get(REGISTRY_SQL_KEY)
        storage_connection = storage_connection or config.get(REGISTRY_STORAGE_KEY)

    if not database_url or not storage_connection:
        raise ConfigurationError(
            "database URL and storage connection string are required "
            "(options, environment, or service registry)"
        )
    try:
        make_url(database_url)
    except ArgumentError as exc:
        raise ConfigurationError(f"invalid database URL: {exc}") from exc

    resolved_work = Path(work_dir or os.environ.get(ENV_WORK_DIR) or Path.cwd() / "work")
    try:
        resolved_work.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigurationError(f"cannot create work directory {resolved_work}: {exc}") from exc

    if parallelism is None:
        raw = os.environ.get(ENV_PARALLELISM, "10")
        try:
            parallelism = int(raw)
        except ValueError as exc:
            raise ConfigurationError(f"{ENV_PARALLELISM} must be an integer, got {raw!r}") from exc

    return Settings(
        database_url=database_url,
        storage_connection=storage_connection,
        work_dir=resolved_work,
        parallelism=max(1, parallelism),
    )
