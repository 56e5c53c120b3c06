"""Fetch applicant photos and turn them into bounded, embeddable JPEG data URIs.

Images are best-effort inputs: ``normalize_all`` skips individual failures so
one broken upload never blocks a report.
"""

import base64
import io
import logging
from dataclasses import dataclass

import httpx
from PIL import Image, ImageOps, UnidentifiedImageError

from matchdesk.core.config import ImageConfig
from matchdesk.core.errors import ImageProcessingFailed, truncate_url

logger = logging.getLogger(__name__)

OUTPUT_MEDIA_TYPE = "image/jpeg"


@dataclass(frozen=True)
class NormalizedImage:
    source_url: str
    data_uri: str
    size_bytes: int
    width: int
    height: int
    media_type: str = OUTPUT_MEDIA_TYPE

    @property
    def base64_data(self) -> str:
        """The payload without the ``data:<type>;base64,`` prefix."""
        return self.data_uri.split(",", 1)[1]

    def raw_bytes(self) -> bytes:
        return base64.b64decode(self.base64_data)


def transcode(data: bytes, *, max_dimension: int, quality: int) -> tuple[bytes, int, int]:
    """Decode any Pillow-readable image and re-encode it as JPEG.

    Downscale only, aspect ratio preserved. Returns (jpeg_bytes, width, height).
    Raises OSError / UnidentifiedImageError on undecodable input.
    """
    with Image.open(io.BytesIO(data)) as img:
        img = ImageOps.exif_transpose(img)
        if img.mode != "RGB":
            img = img.convert("RGB")
        img.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)
        out = io.BytesIO()
        img.save(out, format="JPEG", quality=quality, optimize=True)
        return out.getvalue(), img.width, img.height


class ImageNormalizer:
    """Fetch + validate + transcode. One shared HTTP client per normalizer."""

    def __init__(self, config: ImageConfig, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._client = client

    async def normalize(self, url: str) -> NormalizedImage:
        """Fetch a single image. Raises ImageProcessingFailed on any failure."""
        data, content_type = await self._fetch(url)
        if not content_type.lower().startswith("image/"):
            raise ImageProcessingFailed(url, f"unsupported content-type '{content_type or 'none'}'")

        try:
            encoded, width, height = transcode(
                data,
                max_dimension=self._config.max_dimension,
                quality=self._config.quality,
            )
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise ImageProcessingFailed(url, f"decode failed: {e}") from e

        data_uri = f"data:{OUTPUT_MEDIA_TYPE};base64,{base64.b64encode(encoded).decode('ascii')}"
        logger.debug(
            "Normalized %s: %d -> %d bytes (%dx%d)",
            truncate_url(url), len(data), len(encoded), width, height,
        )
        return NormalizedImage(
            source_url=url,
            data_uri=data_uri,
            size_bytes=len(encoded),
            width=width,
            height=height,
        )

    async def normalize_all(self, urls: list[str]) -> list[NormalizedImage]:
        """Normalize every URL in order, logging and skipping failures."""
        results: list[NormalizedImage] = []
        for url in urls:
            try:
                results.append(await self.normalize(url))
            except ImageProcessingFailed as e:
                logger.warning("Skipping image: %s", e)
        return results

    async def _fetch(self, url: str) -> tuple[bytes, str]:
        try:
            if self._client is not None:
                response = await self._client.get(url, timeout=self._config.timeout_s)
            else:
                async with httpx.AsyncClient(follow_redirects=True) as client:
                    response = await client.get(url, timeout=self._config.timeout_s)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ImageProcessingFailed(url, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ImageProcessingFailed(url, f"fetch failed: {e!r}") from e
        return response.content, response.headers.get("content-type", "")
