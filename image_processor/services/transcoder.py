"""Download, recompress and upload a single product image."""

from __future__ import annotations

import io
import time
import uuid
from dataclasses import dataclass
from typing import Dict

import httpx
from PIL import Image, UnidentifiedImageError

from image_processor.core.config import Settings, settings
from image_processor.core.errors import (
    ImageDecodeError,
    ImageDownloadError,
    UnsupportedContentTypeError,
    UnsupportedImageFormatError,
)
from image_processor.core.logging import get_logger
from image_processor.services.blob_store import BlobStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class EncodedImage:
    data: bytes
    extension: str
    content_type: str


class ImageTranscoder:
    """Recompresses JPEG sources lossily and re-encodes PNG sources losslessly."""

    # Pillow reports multi-picture JPEGs from phone cameras as MPO.
    _LOSSY_FORMATS = {"JPEG", "MPO"}
    _LOSSLESS_FORMATS = {"PNG"}
    _CONTENT_TYPES: Dict[str, str] = {"jpg": "image/jpeg", "png": "image/png"}

    def __init__(
        self,
        blob_store: BlobStore,
        client: httpx.Client | None = None,
        *,
        jpeg_quality: int = 60,
        destination_prefix: str = "compressed",
        timeout: float = 30.0,
    ) -> None:
        self._blob_store = blob_store
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)
        self._jpeg_quality = jpeg_quality
        self._prefix = destination_prefix.strip("/")

    @classmethod
    def from_settings(cls, blob_store: BlobStore, config: Settings = settings) -> "ImageTranscoder":
        return cls(
            blob_store,
            jpeg_quality=config.jpeg_quality,
            destination_prefix=config.compressed_prefix,
            timeout=config.download_timeout_seconds,
        )

    def process(self, source_url: str) -> str:
        """Compress the image at ``source_url`` and return the uploaded object's URI."""

        source_bytes = self._fetch_source(source_url)
        encoded = self._encode(source_bytes)
        key = self.destination_key(encoded.extension)
        uri = self._blob_store.upload(key, encoded.data, encoded.content_type)

        logger.info(
            "image_transcoded",
            source_url=source_url,
            destination=uri,
            original_bytes=len(source_bytes),
            compressed_bytes=len(encoded.data),
        )
        return uri

    def close(self) -> None:
        self._client.close()

    def destination_key(self, extension: str) -> str:
        """Return a collision-resistant object key under the destination prefix."""

        return f"{self._prefix}/{time.time_ns()}-{uuid.uuid4()}.{extension}"

    def _fetch_source(self, url: str) -> bytes:
        """Download the source image into memory."""

        try:
            response = self._client.get(url)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise ImageDownloadError(f"Download of {url} failed: {exc}") from exc

        content_type = response.headers.get("content-type", "")
        media_type = content_type.split(";", 1)[0].strip().lower()
        if not media_type.startswith("image/"):
            raise UnsupportedContentTypeError(f"{url} returned non-image content type {content_type!r}")

        return response.content

    def _encode(self, source_bytes: bytes) -> EncodedImage:
        try:
            image = Image.open(io.BytesIO(source_bytes))
            image.load()
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
            raise ImageDecodeError(f"Unable to decode image: {exc}") from exc

        source_format = (image.format or "").upper()
        buffer = io.BytesIO()

        if source_format in self._LOSSY_FORMATS:
            if image.mode not in ("RGB", "L"):
                image = image.convert("RGB")
            image.save(buffer, format="JPEG", quality=self._jpeg_quality, optimize=True)
            extension = "jpg"
        elif source_format in self._LOSSLESS_FORMATS:
            image.save(buffer, format="PNG", optimize=True)
            extension = "png"
        else:
            raise UnsupportedImageFormatError(f"Unsupported image format: {source_format or 'unknown'}")

        return EncodedImage(data=buffer.getvalue(), extension=extension, content_type=self._CONTENT_TYPES[extension])
