"""Worker process entrypoint."""

from __future__ import annotations

import signal
from types import FrameType
from typing import Optional

from kombu import Connection

from image_processor.core.config import Settings, settings
from image_processor.core.logging import configure_logging, get_logger
from image_processor.services.blob_store import S3BlobStore
from image_processor.services.dead_letter import DeadLetterReporter
from image_processor.services.product_cache import RedisProductCache
from image_processor.services.product_repository import SqlProductRepository
from image_processor.services.reconciler import StatusReconciler
from image_processor.services.retry import RetryPolicy
from image_processor.services.transcoder import ImageTranscoder
from image_processor.tasks.image_tasks import TaskDispatcher
from image_processor.worker.consumer import ImageTaskConsumer, build_queues

logger = get_logger(__name__)


def build_consumer(config: Settings = settings) -> ImageTaskConsumer:
    """Wire the consumer against the configured broker, database, cache and bucket."""

    task_queue, dead_letter_queue = build_queues(config)
    dead_letter = DeadLetterReporter(dead_letter_queue)

    dispatcher = TaskDispatcher(
        transcoder=ImageTranscoder.from_settings(S3BlobStore.from_settings(config), config),
        retry_policy=RetryPolicy.from_settings(config),
        reconciler=StatusReconciler(
            SqlProductRepository.from_settings(config),
            RedisProductCache.from_settings(config),
        ),
        dead_letter=dead_letter,
    )

    return ImageTaskConsumer(
        Connection(config.broker_url),
        dispatcher,
        dead_letter,
        task_queue,
        dead_letter_queue,
        prefetch_count=config.prefetch_count,
    )


def install_signal_handlers(consumer: ImageTaskConsumer) -> None:
    """Stop consuming on SIGINT/SIGTERM after the current task is settled."""

    def _handle(signum: int, frame: Optional[FrameType]) -> None:
        logger.info("shutdown_signal_received", signal=signal.Signals(signum).name)
        consumer.stop()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def main() -> None:
    configure_logging()
    logger.info("worker_starting", app=settings.app_name, environment=settings.environment)

    consumer = build_consumer(settings)
    install_signal_handlers(consumer)
    try:
        consumer.run()
    finally:
        consumer.close()

    logger.info("worker_stopped")


if __name__ == "__main__":
    main()
