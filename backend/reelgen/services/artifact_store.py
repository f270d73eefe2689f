"""Content-opaque artifact storage.

Accepts bytes, returns a stable storage identifier, and resolves identifiers
to fetchable URLs on read. URLs are never persisted: the identifier is the
durable reference, and URLs may be short-lived or backend-specific.

Two implementations:
- LocalArtifactStore: files under a base directory, served by the API
- HttpArtifactStore: remote two-step upload (request upload target, PUT bytes)
"""

import asyncio
import logging
import mimetypes
import os
import re
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from reelgen.config import Settings

logger = logging.getLogger(__name__)

_STORAGE_ID_RE = re.compile(r"^[0-9a-f]{32}(\.[a-z0-9]{1,8})?$")


def _is_retriable(exc: BaseException) -> bool:
    """Return True only for transient errors worth retrying (429, 5xx, network)."""
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code == 429 or code >= 500
    return isinstance(exc, httpx.TransportError)


_transient_retry = retry(
    stop=stop_after_attempt(4),
    wait=wait_exponential(multiplier=1, min=1, max=20),
    retry=retry_if_exception(_is_retriable),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


class ArtifactStore(ABC):
    """Minimal blob storage contract used by the pipeline."""

    @abstractmethod
    async def store(self, data: bytes, content_type: str) -> str:
        """Persist bytes and return an opaque storage identifier."""
        ...

    @abstractmethod
    async def get_url(self, storage_id: str) -> Optional[str]:
        """Resolve a storage identifier to a URL, or None if invalid/expired."""
        ...

    async def close(self) -> None:
        pass


class LocalArtifactStore(ArtifactStore):
    """
    Store artifacts as files under a base directory.

    Identifiers are random hex names with an extension derived from the
    content type. Implements path traversal protection so identifiers
    coming back from callers cannot escape the base directory. File writes
    run in a worker thread so large videos do not stall the event loop.
    """

    def __init__(self, base_dir: str | Path, base_url: str):
        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.base_url = base_url.rstrip("/")

    def path_for(self, storage_id: str) -> Optional[Path]:
        """Return the file path for an identifier, or None if malformed or missing."""
        if not _STORAGE_ID_RE.match(storage_id):
            return None
        path = (self.base_dir / storage_id).resolve()
        if not path.is_relative_to(self.base_dir):
            return None
        if not path.is_file():
            return None
        return path

    @staticmethod
    def _write_atomic(path: Path, data: bytes) -> None:
        tmp_path = path.with_name(path.name + ".part")
        tmp_path.write_bytes(data)
        os.replace(tmp_path, path)

    async def store(self, data: bytes, content_type: str) -> str:
        ext = mimetypes.guess_extension(content_type.split(";")[0].strip()) or ""
        storage_id = f"{uuid.uuid4().hex}{ext}"
        await asyncio.to_thread(self._write_atomic, self.base_dir / storage_id, data)
        logger.debug(f"Stored artifact {storage_id} ({len(data)} bytes, {content_type})")
        return storage_id

    async def get_url(self, storage_id: str) -> Optional[str]:
        if self.path_for(storage_id) is None:
            return None
        return f"{self.base_url}/{storage_id}"


class HttpArtifactStore(ArtifactStore):
    """Async client for a remote artifact service with two-step uploads.

    Upload: POST /upload-url returns {"uploadUrl"}; the raw bytes are PUT to
    that URL with a Content-Type header and the response body carries
    {"storageId"}. Read: GET /artifacts/{id}/url returns {"url"} (null or
    404 for unknown/expired ids). Every request retries on 429, 5xx and
    network errors.
    """

    def __init__(
        self,
        service_url: str,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.service_url = service_url.rstrip("/")
        self._api_key = api_key
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
            self._client = httpx.AsyncClient(
                headers=headers,
                follow_redirects=True,
                timeout=httpx.Timeout(120.0, connect=30.0),
            )
        return self._client

    @_transient_retry
    async def _request_upload_url(self) -> str:
        response = await self.client.post(f"{self.service_url}/upload-url")
        response.raise_for_status()
        return response.json()["uploadUrl"]

    @_transient_retry
    async def _put_bytes(self, upload_url: str, data: bytes, content_type: str) -> str:
        response = await self.client.put(
            upload_url,
            content=data,
            headers={"Content-Type": content_type},
        )
        response.raise_for_status()
        return response.json()["storageId"]

    async def store(self, data: bytes, content_type: str) -> str:
        upload_url = await self._request_upload_url()
        logger.info(f"PUT artifact ({len(data)} bytes, {content_type})")
        storage_id = await self._put_bytes(upload_url, data, content_type)
        logger.debug(f"  stored as {storage_id}")
        return storage_id

    @_transient_retry
    async def get_url(self, storage_id: str) -> Optional[str]:
        response = await self.client.get(f"{self.service_url}/artifacts/{storage_id}/url")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json().get("url")

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


def build_artifact_store(app_settings: Settings) -> ArtifactStore:
    """Select the artifact store from configuration."""
    storage = app_settings.storage
    if storage.artifact_service_url:
        logger.info(f"Using remote artifact store at {storage.artifact_service_url}")
        return HttpArtifactStore(storage.artifact_service_url, storage.artifact_service_key)
    logger.info(f"Using local artifact store at {storage.artifact_dir}")
    return LocalArtifactStore(storage.artifact_dir, storage.artifact_base_url)
