"""Per-delivery handling of image processing tasks."""

from __future__ import annotations

import json
from typing import List, Optional, Union

import structlog
from pydantic import ValidationError

from image_processor.core.errors import (
    InvalidStatusTransition,
    PersistenceError,
    RetryExhaustedError,
    TaskDecodeError,
)
from image_processor.core.logging import get_logger
from image_processor.models.task import ImageProcessingTask, TaskOutcome
from image_processor.services.dead_letter import DeadLetterReporter
from image_processor.services.reconciler import StatusReconciler
from image_processor.services.retry import RetryPolicy
from image_processor.services.transcoder import ImageTranscoder

logger = get_logger(__name__)


def decode_task(body: Union[bytes, str]) -> ImageProcessingTask:
    """Parse a task envelope, raising ``TaskDecodeError`` for anything malformed."""

    try:
        return ImageProcessingTask.model_validate_json(body)
    except ValidationError as exc:
        raise TaskDecodeError(f"Invalid image processing task: {exc}", _salvage_product_id(body)) from exc


def _salvage_product_id(body: Union[bytes, str]) -> Optional[int]:
    """Return the product id of a payload that failed validation, when it carries a usable one."""

    try:
        payload = json.loads(body)
    except (TypeError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None
    product_id = payload.get("product_id")
    if isinstance(product_id, int) and not isinstance(product_id, bool) and product_id >= 0:
        return product_id
    return None


class TaskDispatcher:
    """Runs one delivered task to completion and decides how it is acknowledged.

    Outcomes:
      * ``ack``: every image was compressed and the product reconciled.
      * ``requeue``: a repository write failed; the broker redelivers the whole task.
      * ``drop``: the task can never succeed and has been dead-lettered.
    """

    def __init__(
        self,
        transcoder: ImageTranscoder,
        retry_policy: RetryPolicy,
        reconciler: StatusReconciler,
        dead_letter: DeadLetterReporter,
    ) -> None:
        self._transcoder = transcoder
        self._retry = retry_policy
        self._reconciler = reconciler
        self._dead_letter = dead_letter

    def handle(self, body: Union[bytes, str]) -> TaskOutcome:
        try:
            task = decode_task(body)
        except TaskDecodeError as exc:
            logger.error("task_decode_failed", error=str(exc))
            self._dead_letter.report(exc.product_id or 0, str(exc))
            return TaskOutcome.drop

        structlog.contextvars.bind_contextvars(product_id=task.product_id)
        try:
            return self._process(task)
        except Exception as exc:
            logger.exception("task_processing_crashed", error=str(exc))
            self._mark_failed(task.product_id)
            self._dead_letter.report(task.product_id, f"Unexpected error: {exc}")
            return TaskOutcome.drop
        finally:
            structlog.contextvars.unbind_contextvars("product_id")

    def close(self) -> None:
        """Release the transcoder's HTTP client."""

        self._transcoder.close()

    def _process(self, task: ImageProcessingTask) -> TaskOutcome:
        logger.info("task_received", image_count=len(task.images))

        try:
            self._reconciler.mark_processing(task.product_id)
        except PersistenceError as exc:
            logger.warning("processing_status_update_failed", error=str(exc), outcome=TaskOutcome.requeue.value)
            return TaskOutcome.requeue

        compressed: List[str] = []
        for position, source_url in enumerate(task.images):
            try:
                compressed.append(self._retry.call(self._transcoder.process, source_url))
            except RetryExhaustedError as exc:
                return self._fail(task, position, source_url, exc)

        try:
            self._reconciler.commit(task.product_id, compressed)
        except PersistenceError as exc:
            logger.warning("reconcile_failed", error=str(exc), outcome=TaskOutcome.requeue.value)
            return TaskOutcome.requeue

        logger.info("task_completed", image_count=len(compressed))
        return TaskOutcome.ack

    def _fail(self, task: ImageProcessingTask, position: int, source_url: str, exc: RetryExhaustedError) -> TaskOutcome:
        error = f"image {position} ({source_url}) failed after {exc.attempts} attempt(s): {exc.last_error}"
        logger.error("image_processing_exhausted", position=position, source_url=source_url, error=str(exc.last_error))

        self._mark_failed(task.product_id)
        self._dead_letter.report(task.product_id, error)
        return TaskOutcome.drop

    def _mark_failed(self, product_id: int) -> None:
        try:
            self._reconciler.mark_failed(product_id)
        except (PersistenceError, InvalidStatusTransition) as exc:
            logger.error("failed_status_update_failed", error=str(exc))
