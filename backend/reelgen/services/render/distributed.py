"""Render farm client: submit a composition, poll its progress, download the MP4.

Wire format:
    POST {service_url}/functions/{function_name}/render
        {generatedCode, imageUrls, audioUrl, totalFrames, width, height,
         codec, imageFormat, composition, serveUrl, inputProps}
        -> {renderId, bucketName}
    POST {service_url}/functions/{function_name}/progress
        {renderId, bucketName}
        -> {overallProgress, done, fatalErrorEncountered, errors, outputFile}

The farm's output location is only a staging area; the caller re-uploads the
bytes into the artifact store.
"""

import logging
from typing import Optional

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from reelgen.services.render.base import RenderBackend, RenderHandle, RenderSpec, RenderStatus

logger = logging.getLogger(__name__)


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


class DistributedRenderBackend(RenderBackend):
    """Renders on a remote function-based render farm."""

    name = "distributed"

    def __init__(
        self,
        service_url: str,
        function_name: str,
        *,
        api_key: Optional[str] = None,
        serve_url: Optional[str] = None,
        composition_id: str = "DynamicVideo",
        poll_interval: float = 2.0,
        max_polls: int = 450,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(poll_interval=poll_interval, max_polls=max_polls)
        self.service_url = service_url.rstrip("/")
        self.function_name = function_name
        self.serve_url = serve_url
        self.composition_id = composition_id
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

    @property
    def _function_url(self) -> str:
        return f"{self.service_url}/functions/{self.function_name}"

    def build_submit_payload(self, spec: RenderSpec) -> dict:
        return {
            "generatedCode": spec.code,
            "imageUrls": list(spec.image_urls),
            "audioUrl": spec.audio_url,
            "totalFrames": spec.total_frames,
            "width": spec.width,
            "height": spec.height,
            "fps": spec.fps,
            "codec": spec.codec,
            "imageFormat": spec.image_format,
            "composition": self.composition_id,
            "serveUrl": self.serve_url,
            "inputProps": spec.input_props(),
        }

    @_transient_retry
    async def submit(self, spec: RenderSpec) -> RenderHandle:
        logger.info(f"POST {self._function_url}/render ({spec.total_frames} frames)")
        response = await self.client.post(
            f"{self._function_url}/render", json=self.build_submit_payload(spec)
        )
        logger.info(f"  submit response: HTTP {response.status_code}")
        response.raise_for_status()
        data = response.json()
        return RenderHandle(render_id=data["renderId"], bucket_name=data.get("bucketName"))

    @_transient_retry
    async def poll(self, handle: RenderHandle) -> RenderStatus:
        response = await self.client.post(
            f"{self._function_url}/progress",
            json={"renderId": handle.render_id, "bucketName": handle.bucket_name},
        )
        response.raise_for_status()
        data = response.json()
        status = RenderStatus(
            done=bool(data.get("done")),
            fraction=float(data.get("overallProgress") or 0.0),
            fatal_error=bool(data.get("fatalErrorEncountered")),
            errors=[str(e) for e in data.get("errors") or []],
            output_location=data.get("outputFile"),
        )
        logger.debug(
            f"  render {handle.render_id}: {status.fraction:.0%} done={status.done} "
            f"fatal={status.fatal_error}"
        )
        return status

    @_transient_retry
    async def fetch_output(self, location: str) -> bytes:
        logger.info(f"GET {location}")
        response = await self.client.get(location)
        logger.info(
            f"  download response: HTTP {response.status_code}, {len(response.content)} bytes"
        )
        response.raise_for_status()
        return response.content

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
