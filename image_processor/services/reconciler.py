"""Writes processing outcomes back to the product record and its cached view."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Dict, Optional

from image_processor.core.errors import PersistenceError
from image_processor.core.logging import get_logger
from image_processor.models.product import ProcessingStatus, validate_transition
from image_processor.services.product_cache import ProductCache, product_cache_key
from image_processor.services.product_repository import ProductRepository

logger = get_logger(__name__)


class StatusReconciler:
    """Sole writer of a product's processing status, compressed images and cache entry.

    The status last written for each product with an attempt in flight is
    tracked, and every status write is validated against it. Repository
    failures propagate as ``PersistenceError``; cache failures are logged and
    ignored.
    """

    def __init__(self, repository: ProductRepository, cache: ProductCache) -> None:
        self._repository = repository
        self._cache = cache
        self._in_flight: Dict[int, ProcessingStatus] = {}

    def current_status(self, product_id: int) -> Optional[ProcessingStatus]:
        """Return the status written during the product's in-flight attempt, if any."""

        return self._in_flight.get(product_id)

    def mark_processing(self, product_id: int) -> None:
        self._set_status(product_id, ProcessingStatus.processing)

    def mark_failed(self, product_id: int) -> None:
        self._set_status(product_id, ProcessingStatus.failed)

    def commit(self, product_id: int, compressed_images: Sequence[str]) -> None:
        """Persist the full image list, drop the cached product, then mark it completed."""

        validate_transition(self.current_status(product_id), ProcessingStatus.completed)
        self._repository.update_compressed_images(product_id, list(compressed_images))
        self.invalidate(product_id)
        self._set_status(product_id, ProcessingStatus.completed)

    def invalidate(self, product_id: int) -> None:
        key = product_cache_key(product_id)
        try:
            self._cache.delete(key)
        except PersistenceError:
            raise
        except Exception as exc:
            logger.warning("cache_invalidation_failed", product_id=product_id, key=key, error=str(exc))

    def _set_status(self, product_id: int, target: ProcessingStatus) -> None:
        validate_transition(self.current_status(product_id), target)
        self._repository.update_processing_status(product_id, target)

        # completed and failed end the attempt; a redelivery starts from scratch
        if target is ProcessingStatus.processing:
            self._in_flight[product_id] = target
        else:
            self._in_flight.pop(product_id, None)
        logger.info("product_status_updated", product_id=product_id, status=target.value)
