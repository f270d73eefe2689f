"""Image generation provider.

HttpImageGenerator talks to a fal-style synchronous endpoint:
POST {api_url}/{model} with {prompt, image_size, num_images} returns
{"images": [{"url", "content_type"}]}; the first image is downloaded.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from pydantic import BaseModel
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

# Named image sizes matching each video aspect ratio
_IMAGE_SIZES: dict[str, str] = {
    "9:16": "portrait_16_9",
    "16:9": "landscape_16_9",
    "1:1": "square_hd",
}


def _is_retriable(exc: BaseException) -> bool:
    """Return True only for transient errors worth retrying (429, 5xx, network)."""
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code == 429 or code >= 500
    return isinstance(exc, httpx.TransportError)


class GeneratedImage(BaseModel):
    data: bytes
    content_type: str = "image/jpeg"


class ImageGenerator(ABC):
    @abstractmethod
    async def generate(self, prompt: str, aspect_ratio: str) -> GeneratedImage:
        """Generate one image for a prompt, framed for the aspect ratio."""
        ...

    async def close(self) -> None:
        """Release any held resources."""


class HttpImageGenerator(ImageGenerator):
    """fal.ai-style text-to-image client."""

    def __init__(
        self,
        api_url: str,
        model: str,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.model = model
        self._api_key = api_key
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Authorization": f"Key {self._api_key}"} if self._api_key else {}
            self._client = httpx.AsyncClient(
                headers=headers,
                follow_redirects=True,
                timeout=httpx.Timeout(120.0, connect=30.0),
            )
        return self._client

    @retry(
        stop=stop_after_attempt(4),
        wait=wait_exponential(multiplier=2, min=2, max=30),
        retry=retry_if_exception(_is_retriable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def generate(self, prompt: str, aspect_ratio: str) -> GeneratedImage:
        logger.info(f"POST {self.api_url}/{self.model} ({aspect_ratio}): {prompt[:60]}")
        response = await self.client.post(
            f"{self.api_url}/{self.model}",
            json={
                "prompt": prompt,
                "image_size": _IMAGE_SIZES.get(aspect_ratio, "portrait_16_9"),
                "num_images": 1,
            },
        )
        response.raise_for_status()
        images = response.json().get("images") or []
        if not images or not images[0].get("url"):
            raise ValueError("image service returned no images")

        image = images[0]
        download = await self.client.get(image["url"])
        download.raise_for_status()
        content_type = image.get("content_type") or download.headers.get("content-type", "image/jpeg")
        return GeneratedImage(data=download.content, content_type=content_type)

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
