"""Archive inspector — download a package archive and read its declared frameworks."""

from __future__ import annotations

import asyncio
import os
import tempfile
from pathlib import Path

import structlog

from fxreconcile.core.blob import BlobStorageClient
from fxreconcile.engines.framework_reconciler.frameworks import read_package_frameworks
from fxreconcile.engines.framework_reconciler.models import PackageDescriptor
from fxreconcile.exceptions import RetrievalError

log = structlog.get_logger("fxreconcile.engine")

PACKAGES_CONTAINER = "packages"


def blob_name(descriptor: PackageDescriptor) -> str:
    """``<id-lower>.<version-lower>.nupkg``"""
    return f"{descriptor.id.lower()}.{descriptor.version.lower()}.nupkg"


class ArchiveInspector:
    """Fetch a package archive into a transient file and extract its monikers."""

    def __init__(
        self,
        blob_client: BlobStorageClient,
        *,
        container: str = PACKAGES_CONTAINER,
        temp_dir: Path | None = None,
    ) -> None:
        self._blob_client = blob_client
        self._container = container
        self._temp_dir = temp_dir

    async def inspect(self, descriptor: PackageDescriptor) -> list[str]:
        """Return the sorted, distinct short framework names *descriptor* declares.

        The transient archive is always removed, on success and on failure.
        Raises :class:`RetrievalError` for any download or parse failure.
        """
        fd, raw_path = tempfile.mkstemp(suffix=".nupkg", dir=self._temp_dir)
        os.close(fd)
        local_path = Path(raw_path)
        name = blob_name(descriptor)
        try:
            log.debug("archive.downloading", blob=name, path=str(local_path))
            size = await self._blob_client.download_to_file(self._container, name, local_path)
            frameworks = await asyncio.to_thread(read_package_frameworks, local_path)
            log.debug("archive.inspected", blob=name, bytes=size, frameworks=frameworks)
            return frameworks
        except Exception as exc:
            reason = f"{type(exc).__name__}: {exc}"
            raise RetrievalError(descriptor.id, descriptor.version, reason) from exc
        finally:
            local_path.unlink(missing_ok=True)
