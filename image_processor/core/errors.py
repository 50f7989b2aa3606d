"""Exception hierarchy shared by the worker components."""

from __future__ import annotations

from typing import Optional


class ImageProcessorError(Exception):
    """Base class for all worker errors."""


class TransientError(ImageProcessorError):
    """Failure that may succeed when the same operation is attempted again."""


class PermanentError(ImageProcessorError):
    """Failure that cannot succeed on retry with the same input."""


class TaskDecodeError(PermanentError):
    """The delivered payload is not a valid image processing task."""

    def __init__(self, message: str, product_id: Optional[int] = None) -> None:
        super().__init__(message)
        self.product_id = product_id


class ImageDownloadError(TransientError):
    """The source image could not be fetched."""


class UnsupportedContentTypeError(PermanentError):
    """The source response does not declare an image content type."""


class ImageDecodeError(PermanentError):
    """The downloaded bytes are not a decodable image."""


class UnsupportedImageFormatError(PermanentError):
    """The decoded image format has no configured encoder."""


class BlobStoreError(TransientError):
    """Upload or download against blob storage failed."""


class RetryExhaustedError(ImageProcessorError):
    """All attempts of a retried operation failed."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"gave up after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class PersistenceError(ImageProcessorError):
    """A product repository write failed."""


class CacheError(ImageProcessorError):
    """A cache operation failed."""


class InvalidStatusTransition(ImageProcessorError):
    """A processing status change is not allowed from the current status."""
