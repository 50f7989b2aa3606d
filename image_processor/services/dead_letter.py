"""Publishes failure records for tasks that will never succeed."""

from __future__ import annotations

from typing import Any, Optional

from kombu import Producer, Queue

from image_processor.core.logging import get_logger
from image_processor.models.task import DeadLetterRecord

logger = get_logger(__name__)


class DeadLetterReporter:
    """Best-effort publisher to the dead-letter queue.

    Publishing problems are logged and never raised to the caller.
    """

    def __init__(self, queue: Queue, producer: Optional[Producer] = None) -> None:
        self._queue = queue
        self._producer = producer

    def bind(self, channel: Any) -> None:
        """Publish through ``channel`` from now on."""

        self._producer = Producer(channel)

    def report(self, product_id: int, error: str) -> Optional[DeadLetterRecord]:
        """Publish a record for ``product_id`` and return it, or ``None`` if it was not sent."""

        record = DeadLetterRecord(product_id=product_id, error=error)
        if self._producer is None:
            logger.error("dead_letter_publish_skipped", product_id=product_id, reason="no broker channel bound")
            return None

        try:
            self._producer.publish(
                record.model_dump_json(),
                exchange="",
                routing_key=self._queue.name,
                declare=[self._queue],
                content_type="application/json",
                content_encoding="utf-8",
                delivery_mode=2,
            )
        except Exception as exc:
            logger.error("dead_letter_publish_failed", product_id=product_id, error=str(exc))
            return None

        logger.info("dead_letter_published", product_id=product_id, queue=self._queue.name)
        return record
