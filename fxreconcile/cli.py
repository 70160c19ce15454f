"""CLI entry point: fxreconcile.

Subcommands:
    fxreconcile populate-frameworks Foo 1.0.0        # one package version
    fxreconcile populate-frameworks Foo --all        # every version of Foo
    fxreconcile populate-frameworks --all --what-if  # preview the whole catalog
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import click
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fxreconcile.core.blob import BlobStorageClient
from fxreconcile.core.config import Settings, load_settings
from fxreconcile.core.database import create_engine, create_session_factory, verify_connection
from fxreconcile.core.logging import bind_run, setup_logging
from fxreconcile.dao.package_dao import PackageDAO
from fxreconcile.dao.package_framework_dao import PackageFrameworkDAO
from fxreconcile.engines.framework_reconciler.archive import ArchiveInspector
from fxreconcile.engines.framework_reconciler.checkpoint import CheckpointStore
from fxreconcile.engines.framework_reconciler.models import RunSummary, SelectionFilter
from fxreconcile.engines.framework_reconciler.runner import FrameworkReconcilerRunner
from fxreconcile.exceptions import ConfigurationError, SelectionError
from fxreconcile.services.catalog_service import DEFAULT_BATCH_SIZE, CatalogService

log = structlog.get_logger("fxreconcile.cli")


def build_runner(
    settings: Settings, blob_client: BlobStorageClient
) -> tuple[FrameworkReconcilerRunner, CatalogService]:
    """Wire DAOs, services and engine components for one run."""
    catalog_service = CatalogService(PackageDAO())
    runner = FrameworkReconcilerRunner(
        catalog_service,
        PackageFrameworkDAO(),
        ArchiveInspector(blob_client),
        CheckpointStore(settings.work_dir),
    )
    return runner, catalog_service


async def _confirm(
    catalog_service: CatalogService,
    session_factory: async_sessionmaker[AsyncSession],
    selection: SelectionFilter,
    settings: Settings,
) -> bool:
    async with session_factory() as session:
        count = await catalog_service.count(session, selection)
    return click.confirm(
        f"This will reconcile the frameworks of {count} package(s) in "
        f"{settings.database_host}. Continue?",
        default=True,
    )


async def _populate(
    settings: Settings,
    selection: SelectionFilter,
    *,
    dry_run: bool,
    assume_yes: bool,
    batch_size: int,
) -> RunSummary | None:
    blob_client = BlobStorageClient.from_connection_string(settings.storage_connection)

    engine = create_engine(settings.database_url, pool_size=settings.parallelism)
    try:
        await verify_connection(engine)
        session_factory = create_session_factory(engine)
        click.echo(
            f"Using database {settings.database_host} and blob endpoint "
            f"{blob_client.account.blob_endpoint}",
            err=True,
        )
        runner, catalog_service = build_runner(settings, blob_client)

        if not dry_run and not assume_yes:
            if not await _confirm(catalog_service, session_factory, selection, settings):
                click.echo("Cancelled; nothing was changed.", err=True)
                return None

        return await runner.run_all(
            session_factory,
            selection,
            dry_run=dry_run,
            parallelism=settings.parallelism,
            batch_size=batch_size,
        )
    finally:
        await blob_client.close()
        await engine.dispose()


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write log events as JSON lines to this file.",
)
def main(verbose: bool, log_file: Path | None) -> None:
    """fxreconcile: keep the package framework index in line with package contents."""
    try:
        setup_logging("DEBUG" if verbose else None, log_file=log_file)
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc


@main.command("populate-frameworks")
@click.argument("package_id", required=False)
@click.argument("version", required=False)
@click.option(
    "-a",
    "--all",
    "all_versions",
    is_flag=True,
    help="Process all versions of PACKAGE_ID, or every package if no id is given.",
)
@click.option("--db", "database_url", default=None, help="SQLAlchemy URL of the package database.")
@click.option(
    "--storage", "storage_connection", default=None, help="Blob storage connection string."
)
@click.option(
    "--work",
    "work_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for resume checkpoints.",
)
@click.option("--datacenter", default=None, help="Datacenter to look up in the service registry.")
@click.option(
    "--service-registry",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="JSON file mapping datacenters to service settings.",
)
@click.option("--what-if", "dry_run", is_flag=True, help="Report what would change; write nothing.")
@click.option(
    "-p",
    "--parallelism",
    type=click.IntRange(min=1),
    default=None,
    help="Packages processed concurrently (default 10).",
)
@click.option(
    "--batch-size",
    type=click.IntRange(min=1),
    default=DEFAULT_BATCH_SIZE,
    help="Catalog rows fetched per query.",
)
@click.option("-y", "--yes", "assume_yes", is_flag=True, help="Do not ask for confirmation.")
def populate_frameworks(
    package_id: str | None,
    version: str | None,
    all_versions: bool,
    database_url: str | None,
    storage_connection: str | None,
    work_dir: Path | None,
    datacenter: str | None,
    service_registry: Path | None,
    dry_run: bool,
    parallelism: int | None,
    batch_size: int,
    assume_yes: bool,
) -> None:
    """Populate the package framework index from the packages themselves."""
    try:
        selection = CatalogService.validate(
            SelectionFilter(id=package_id, version=version, all=all_versions)
        )
        settings = load_settings(
            database_url=database_url,
            storage_connection=storage_connection,
            work_dir=work_dir,
            datacenter=datacenter,
            service_registry=service_registry,
            parallelism=parallelism,
        )
        bind_run(
            package_id=selection.id,
            version=selection.version,
            all=selection.all,
            dry_run=dry_run,
        )
        summary = asyncio.run(
            _populate(
                settings,
                selection,
                dry_run=dry_run,
                assume_yes=assume_yes,
                batch_size=batch_size,
            )
        )
    except (SelectionError, ConfigurationError) as exc:
        raise click.ClickException(str(exc)) from exc

    if summary is None:
        return
    click.echo(
        f"\nProcessed {summary.processed} of {summary.total} package(s): "
        f"{summary.resolved} resolved, {summary.errors} error, "
        f"{summary.unresolved} pending, {summary.skipped} skipped"
        + (" (what-if, nothing written)" if dry_run else "")
    )
