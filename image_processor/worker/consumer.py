"""Broker consumer feeding image processing tasks to the dispatcher."""

from __future__ import annotations

from typing import Any, List

from kombu import Connection, Queue
from kombu.message import Message
from kombu.mixins import ConsumerMixin

from image_processor.core.config import Settings, settings
from image_processor.core.logging import get_logger
from image_processor.models.task import TaskOutcome
from image_processor.services.dead_letter import DeadLetterReporter
from image_processor.tasks.image_tasks import TaskDispatcher

logger = get_logger(__name__)


def build_queues(config: Settings = settings) -> tuple[Queue, Queue]:
    """Return the durable task queue and its dead-letter queue."""

    task_queue = Queue(config.task_queue, routing_key=config.task_queue, durable=True, auto_delete=False)
    dead_letter_queue = Queue(
        config.dead_letter_queue, routing_key=config.dead_letter_queue, durable=True, auto_delete=False
    )
    return task_queue, dead_letter_queue


class ImageTaskConsumer(ConsumerMixin):
    """Consumes the task queue one unacknowledged message at a time.

    The dispatcher fully handles each message before it is settled, and with a
    prefetch of one the broker withholds the next delivery until then.
    """

    def __init__(
        self,
        connection: Connection,
        dispatcher: TaskDispatcher,
        dead_letter: DeadLetterReporter,
        task_queue: Queue,
        dead_letter_queue: Queue,
        prefetch_count: int = 1,
    ) -> None:
        self.connection = connection
        self._dispatcher = dispatcher
        self._dead_letter = dead_letter
        self._task_queue = task_queue
        self._dead_letter_queue = dead_letter_queue
        self._prefetch_count = prefetch_count

    def get_consumers(self, Consumer: Any, channel: Any) -> List[Any]:
        self.declare_topology(channel)
        self._dead_letter.bind(channel)
        return [
            Consumer(
                queues=[self._task_queue],
                on_message=self.on_message,
                prefetch_count=self._prefetch_count,
                no_ack=False,
            )
        ]

    def declare_topology(self, channel: Any) -> None:
        """Declare both durable queues on ``channel``."""

        self._task_queue(channel).declare()
        self._dead_letter_queue(channel).declare()

    def on_message(self, message: Message) -> None:
        outcome = self._dispatcher.handle(message.body)
        self.settle(message, outcome)

    @staticmethod
    def settle(message: Message, outcome: TaskOutcome) -> None:
        """Apply the dispatcher's acknowledgment decision to ``message``."""

        if outcome is TaskOutcome.ack:
            message.ack()
        elif outcome is TaskOutcome.requeue:
            message.requeue()
        else:
            message.reject(requeue=False)
        logger.debug("message_settled", outcome=outcome.value)

    def on_consume_ready(self, connection: Connection, channel: Any, consumers: List[Any], **kwargs: Any) -> None:
        logger.info(
            "consumer_ready",
            queue=self._task_queue.name,
            dead_letter_queue=self._dead_letter_queue.name,
            prefetch_count=self._prefetch_count,
        )

    def on_connection_error(self, exc: Exception, interval: float) -> None:
        logger.warning("broker_connection_error", error=str(exc), retry_in_seconds=interval)

    def stop(self) -> None:
        """Ask the consume loop to exit once the in-flight message is settled."""

        logger.info("consumer_stop_requested")
        self.should_stop = True

    def close(self) -> None:
        """Release the broker connection and the dispatcher's clients."""

        try:
            self._dispatcher.close()
        finally:
            self.connection.release()
        logger.info("consumer_closed")
