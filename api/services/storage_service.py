"""Object store uploads for rendered certificate documents.

Each uploader makes exactly one attempt per call and raises UploadFailure on
any error. Retry policy belongs to the issuance workflow.

Object keys are derived from the certificate ID, so uploading twice for the
same certificate overwrites rather than duplicates.
"""

import asyncio
import logging
from pathlib import Path
from typing import Protocol

import httpx

from core.config import Settings, get_settings
from core.storage_client import get_storage_client

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"


class UploadFailure(Exception):
    """Raised when a single upload attempt fails.

    ``status_code`` is the provider's HTTP status when one was received;
    ``code`` is a short machine-readable reason (provider error code,
    ``timeout``, ``transport_error`` or ``io_error``).
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
    ):
        self.status_code = status_code
        self.code = code
        super().__init__(message)


class DocumentUploader(Protocol):
    async def upload(self, data: bytes, object_key: str) -> str:
        """Store ``data`` under ``object_key`` and return its durable URL."""
        ...

    async def delete(self, object_key: str) -> None: ...


def certificate_object_key(certificate_id: str, folder: str | None = None) -> str:
    """Deterministic object key for a certificate's PDF."""
    if folder is None:
        folder = get_settings().object_store_folder
    folder = folder.strip("/")
    filename = f"certificate-{certificate_id}.pdf"
    return f"{folder}/{filename}" if folder else filename


def _provider_error_code(response: httpx.Response) -> str:
    """Best-effort extraction of a provider error code from a response body."""
    try:
        body = response.json()
    except ValueError:
        return f"http_{response.status_code}"
    if isinstance(body, dict):
        for key in ("code", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return f"http_{response.status_code}"


class HttpObjectStoreUploader:
    """Path-addressed HTTP object store (PUT/DELETE on ``{base_url}/{key}``)."""

    def __init__(
        self,
        base_url: str,
        *,
        public_base_url: str | None = None,
        token: str = "",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.public_base_url = (public_base_url or base_url).rstrip("/")
        self.token = token
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        return await get_storage_client()

    def _headers(self, **extra: str) -> dict[str, str]:
        headers = dict(extra)
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def upload(self, data: bytes, object_key: str) -> str:
        client = await self._get_client()
        url = f"{self.base_url}/{object_key}"
        try:
            response = await client.put(
                url,
                content=data,
                headers=self._headers(**{"Content-Type": PDF_CONTENT_TYPE}),
            )
        except httpx.TimeoutException as e:
            raise UploadFailure(
                f"Upload of {object_key} timed out", code="timeout"
            ) from e
        except httpx.RequestError as e:
            raise UploadFailure(
                f"Upload of {object_key} failed: {e}", code="transport_error"
            ) from e

        if not response.is_success:
            raise UploadFailure(
                f"Object store rejected {object_key} with HTTP {response.status_code}",
                status_code=response.status_code,
                code=_provider_error_code(response),
            )

        logger.debug(
            "storage.uploaded",
            extra={"object_key": object_key, "size_bytes": len(data)},
        )
        return f"{self.public_base_url}/{object_key}"

    async def delete(self, object_key: str) -> None:
        """Delete an object. A missing object counts as deleted."""
        client = await self._get_client()
        try:
            response = await client.delete(
                f"{self.base_url}/{object_key}", headers=self._headers()
            )
        except httpx.RequestError as e:
            raise UploadFailure(
                f"Delete of {object_key} failed: {e}", code="transport_error"
            ) from e

        if response.status_code == 404:
            return
        if not response.is_success:
            raise UploadFailure(
                f"Object store refused to delete {object_key} "
                f"with HTTP {response.status_code}",
                status_code=response.status_code,
                code=_provider_error_code(response),
            )


class LocalFileUploader:
    """Development backend that writes documents to a local directory.

    Files are served by the API under ``/uploads``.
    """

    def __init__(self, root_dir: str | Path, public_base_url: str) -> None:
        self.root_dir = Path(root_dir)
        self.public_base_url = public_base_url.rstrip("/")

    def _path_for(self, object_key: str) -> Path:
        root = self.root_dir.resolve()
        path = (root / object_key).resolve()
        if not path.is_relative_to(root):
            raise UploadFailure(
                f"Object key escapes storage directory: {object_key}",
                code="invalid_key",
            )
        return path

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def upload(self, data: bytes, object_key: str) -> str:
        path = self._path_for(object_key)
        try:
            await asyncio.to_thread(self._write, path, data)
        except OSError as e:
            raise UploadFailure(
                f"Could not write {object_key}: {e}", code="io_error"
            ) from e
        return f"{self.public_base_url}/uploads/{object_key}"

    async def delete(self, object_key: str) -> None:
        path = self._path_for(object_key)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as e:
            raise UploadFailure(
                f"Could not delete {object_key}: {e}", code="io_error"
            ) from e


def get_uploader(settings: Settings | None = None) -> DocumentUploader:
    """Build the uploader for the configured storage backend."""
    settings = settings or get_settings()
    if settings.storage_backend == "http":
        return HttpObjectStoreUploader(
            settings.object_store_url,
            public_base_url=settings.public_object_base_url,
            token=settings.object_store_token,
        )
    return LocalFileUploader(settings.local_storage_dir, settings.public_base_url)
