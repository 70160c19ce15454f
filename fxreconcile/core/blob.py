"""Async blob-storage download client with retries."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import parse_qsl, quote

import httpx
import structlog

from fxreconcile.exceptions import ConfigurationError

log = structlog.get_logger("fxreconcile.blob")

_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 1.0  # seconds
_CHUNK_SIZE = 64 * 1024

_DEV_STORAGE_ENDPOINT = "http://127.0.0.1:10000/devstoreaccount1"


@dataclass(frozen=True)
class StorageAccount:
    """Where blobs live and how requests are authorized."""

    blob_endpoint: str
    account_name: str | None = None
    sas_token: str | None = None


def parse_connection_string(connection_string: str) -> StorageAccount:
    """Parse an Azure-style ``Key=Value;`` storage connection string.

    Supported keys: ``BlobEndpoint``, ``AccountName``, ``EndpointSuffix``,
    ``DefaultEndpointsProtocol``, ``SharedAccessSignature`` and
    ``UseDevelopmentStorage``. Requests are authorized with the SAS token;
    an ``AccountKey`` without a SAS is rejected because requests cannot be
    signed with it here.

    Raises :class:`ConfigurationError` for malformed strings.
    """
    values: dict[str, str] = {}
    for part in connection_string.split(";"):
        part = part.strip()
        if not part:
            continue
        key, sep, value = part.partition("=")
        if not sep:
            raise ConfigurationError(f"malformed storage connection string segment: {part!r}")
        values[key.strip().lower()] = value.strip()

    if values.get("usedevelopmentstorage", "").lower() == "true":
        return StorageAccount(blob_endpoint=_DEV_STORAGE_ENDPOINT, account_name="devstoreaccount1")

    sas = values.get("sharedaccesssignature") or None
    if sas:
        sas = sas.lstrip("?")
    if values.get("accountkey") and not sas:
        raise ConfigurationError(
            "storage connection strings with an AccountKey need a SharedAccessSignature"
        )

    account = values.get("accountname")
    endpoint = values.get("blobendpoint")
    if not endpoint:
        if not account:
            raise ConfigurationError("storage connection string needs BlobEndpoint or AccountName")
        protocol = values.get("defaultendpointsprotocol", "https")
        suffix = values.get("endpointsuffix", "core.windows.net")
        endpoint = f"{protocol}://{account}.blob.{suffix}"

    return StorageAccount(blob_endpoint=endpoint.rstrip("/"), account_name=account, sas_token=sas)


class BlobStorageClient:
    """Thin async wrapper for downloading blobs over HTTPS."""

    def __init__(
        self,
        account: StorageAccount,
        *,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._account = account
        self._params = dict(parse_qsl(account.sas_token)) if account.sas_token else {}
        self._client = httpx.AsyncClient(
            base_url=account.blob_endpoint,
            headers={"x-ms-version": "2021-08-06"},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_connection_string(cls, connection_string: str, **kwargs) -> BlobStorageClient:
        return cls(parse_connection_string(connection_string), **kwargs)

    @property
    def account(self) -> StorageAccount:
        return self._account

    # ── lifecycle ──────────────────────────────────────────────────────────

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> BlobStorageClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── public ─────────────────────────────────────────────────────────────

    def blob_path(self, container: str, blob_name: str) -> str:
        return f"/{quote(container)}/{quote(blob_name)}"

    async def download_to_file(self, container: str, blob_name: str, destination: Path) -> int:
        """Stream a blob into *destination*, overwriting it. Returns the byte count.

        Retries 5xx responses and timeouts with exponential backoff; 4xx
        responses raise ``httpx.HTTPStatusError`` immediately.
        """
        path = self.blob_path(container, blob_name)
        last_exc: Exception | None = None
        for attempt in range(_MAX_RETRIES):
            try:
                async with self._client.stream("GET", path, params=self._params) as resp:
                    if resp.status_code < 500:
                        resp.raise_for_status()
                        return await self._write_body(resp, destination)
                    log.warning(
                        "blob.server_error",
                        blob=blob_name,
                        status=resp.status_code,
                        attempt=attempt + 1,
                        max_retries=_MAX_RETRIES,
                    )
                    last_exc = httpx.HTTPStatusError(
                        f"{resp.status_code}", request=resp.request, response=resp
                    )
            except httpx.TimeoutException as exc:
                log.warning(
                    "blob.timeout",
                    blob=blob_name,
                    attempt=attempt + 1,
                    max_retries=_MAX_RETRIES,
                )
                last_exc = exc

            if attempt < _MAX_RETRIES - 1:
                await asyncio.sleep(_RETRY_BASE_DELAY * (2**attempt))

        raise last_exc  # type: ignore[misc]

    # ── internal ───────────────────────────────────────────────────────────

    @staticmethod
    async def _write_body(resp: httpx.Response, destination: Path) -> int:
        written = 0
        with destination.open("wb") as handle:
            async for chunk in resp.aiter_bytes(_CHUNK_SIZE):
                handle.write(chunk)
                written += len(chunk)
        return written
