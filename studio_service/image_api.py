"""HTTP client for the external image-processing API (ClipDrop)."""

import logging
from typing import Dict, Optional, Tuple

import httpx

from studio_service.errors import UpstreamError
from studio_service.utils import CLIPDROP_API_URL, CLIPDROP_API_KEY, CLIPDROP_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

# (filename, content, content type)
FilePart = Tuple[str, bytes, str]


class ImageApiClient:
    """
    Thin async wrapper around the image API. A custom transport can be passed
    in, which is how the tests route calls to httpx.MockTransport.
    """

    def __init__(self, base_url: str = CLIPDROP_API_URL, api_key: Optional[str] = CLIPDROP_API_KEY,
                 timeout: float = CLIPDROP_TIMEOUT_SECONDS,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key or ""
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def fetch_asset(self, url: str) -> bytes:
        """Downloads the bytes of an uploaded asset."""
        async with self._client() as client:
            try:
                response = await client.get(url)
                response.raise_for_status()
            except (httpx.RequestError, httpx.HTTPStatusError) as exc:
                logger.error(f"Failed to fetch uploaded asset {url}: {exc}")
                raise UpstreamError("Could not read the uploaded image")
        return response.content

    async def process(self, endpoint: str, fields: Dict[str, str],
                      files: Optional[Dict[str, FilePart]] = None) -> bytes:
        """
        POSTs multipart form data to an image API endpoint and returns the raw
        image bytes of the response.
        """
        url = f"{self.base_url}{endpoint}"
        # Text fields go in as filename-less parts so the body is always multipart
        parts = {name: (None, value) for name, value in fields.items()}
        parts.update(files or {})
        async with self._client() as client:
            try:
                response = await client.post(
                    url,
                    files=parts,
                    headers={"x-api-key": self.api_key},
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                logger.error(f"Image API {endpoint} returned {exc.response.status_code}: {exc.response.text[:200]}")
                raise UpstreamError(f"Image service returned status {exc.response.status_code}")
            except httpx.RequestError as exc:
                logger.error(f"Image API {endpoint} unreachable: {exc}")
                raise UpstreamError("Image service unavailable")
        logger.info(f"Image API {endpoint} returned {len(response.content)} bytes")
        return response.content
