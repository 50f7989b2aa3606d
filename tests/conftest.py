import io
from collections.abc import Sequence
from threading import Lock
from typing import Dict, List, Optional, Tuple

import httpx
import pytest
from PIL import Image
from pydantic import BaseModel, Field

from image_processor.core.errors import PersistenceError
from image_processor.models.product import ProcessingStatus
from image_processor.services.retry import RetryPolicy


def make_image_bytes(fmt: str, mode: str = "RGB", size: Tuple[int, int] = (16, 12), color=(200, 40, 40)) -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, size, color).save(buffer, format=fmt)
    return buffer.getvalue()


class FakeBlobStore:
    def __init__(self) -> None:
        self.uploads: List[Tuple[str, bytes, str]] = []

    def upload(self, key: str, data: bytes, content_type: str) -> str:
        self.uploads.append((key, data, content_type))
        return f"https://blobs.test/{key}"

    def download(self, key: str) -> bytes:
        for stored_key, data, _ in self.uploads:
            if stored_key == key:
                return data
        raise KeyError(key)


class RecordingCache:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.deleted: List[str] = []
        self._error = error

    def delete(self, key: str) -> None:
        self.deleted.append(key)
        if self._error is not None:
            raise self._error


class RecordingDeadLetter:
    def __init__(self) -> None:
        self.records: List[Tuple[int, str]] = []

    def report(self, product_id: int, error: str) -> None:
        self.records.append((product_id, error))


class ProductRecord(BaseModel):
    """Snapshot of the worker-owned product fields."""

    product_id: int
    status: ProcessingStatus = ProcessingStatus.pending
    compressed_images: List[str] = Field(default_factory=list)
    status_history: List[ProcessingStatus] = Field(default_factory=list)

    def with_status(self, status: ProcessingStatus) -> "ProductRecord":
        return self.model_copy(update={"status": status, "status_history": [*self.status_history, status]})

    def with_images(self, images: Sequence[str]) -> "ProductRecord":
        return self.model_copy(update={"compressed_images": list(images)})


class InMemoryProductRepository:
    """Thread-safe product registry standing in for the database."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._products: Dict[int, ProductRecord] = {}

    def add(self, product_id: int) -> ProductRecord:
        record = ProductRecord(product_id=product_id, status_history=[ProcessingStatus.pending])
        with self._lock:
            self._products[product_id] = record
        return record

    def get(self, product_id: int) -> Optional[ProductRecord]:
        with self._lock:
            return self._products.get(product_id)

    def update_processing_status(self, product_id: int, status: ProcessingStatus) -> None:
        with self._lock:
            record = self._require(product_id)
            self._products[product_id] = record.with_status(ProcessingStatus(status))

    def update_compressed_images(self, product_id: int, images: Sequence[str]) -> None:
        with self._lock:
            record = self._require(product_id)
            self._products[product_id] = record.with_images(images)

    def _require(self, product_id: int) -> ProductRecord:
        record = self._products.get(product_id)
        if record is None:
            raise PersistenceError(f"Product {product_id} not found")
        return record


class FlakyRepository(InMemoryProductRepository):
    """In-memory repository that fails the first ``n`` calls of selected writes."""

    def __init__(self, status_failures: int = 0, image_failures: int = 0) -> None:
        super().__init__()
        self.status_failures = status_failures
        self.image_failures = image_failures

    def update_processing_status(self, product_id: int, status: ProcessingStatus) -> None:
        if self.status_failures:
            self.status_failures -= 1
            raise PersistenceError("database unavailable")
        super().update_processing_status(product_id, status)

    def update_compressed_images(self, product_id: int, images) -> None:
        if self.image_failures:
            self.image_failures -= 1
            raise PersistenceError("database unavailable")
        super().update_compressed_images(product_id, images)


def image_server(routes: Dict[str, Tuple[int, bytes, str]], hits: Optional[List[str]] = None) -> httpx.Client:
    """Return an httpx client answering ``path -> (status, body, content type)``."""

    def handler(request: httpx.Request) -> httpx.Response:
        if hits is not None:
            hits.append(request.url.path)
        status, body, content_type = routes.get(request.url.path, (404, b"missing", "text/plain"))
        return httpx.Response(status, content=body, headers={"content-type": content_type})

    return httpx.Client(transport=httpx.MockTransport(handler))


@pytest.fixture()
def jpeg_bytes() -> bytes:
    return make_image_bytes("JPEG")


@pytest.fixture()
def png_bytes() -> bytes:
    return make_image_bytes("PNG", mode="RGBA", color=(10, 20, 30, 128))


@pytest.fixture()
def blob_store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture()
def cache() -> RecordingCache:
    return RecordingCache()


@pytest.fixture()
def dead_letter() -> RecordingDeadLetter:
    return RecordingDeadLetter()


@pytest.fixture()
def sleeps() -> List[float]:
    return []


@pytest.fixture()
def retry_policy(sleeps: List[float]) -> RetryPolicy:
    return RetryPolicy(max_attempts=3, sleep=sleeps.append)
