import uuid
from datetime import datetime

import pytest
from kombu import Connection, Queue

from image_processor.services.dead_letter import DeadLetterReporter


@pytest.fixture()
def connection():
    conn = Connection("memory://")
    yield conn
    conn.release()


@pytest.fixture()
def dlq():
    name = f"image_processing_dlq-{uuid.uuid4().hex}"
    return Queue(name, routing_key=name, durable=True)


def test_report_publishes_json_record(connection, dlq):
    reporter = DeadLetterReporter(dlq)
    reporter.bind(connection.default_channel)

    record = reporter.report(7, "image 0 failed")

    message = dlq(connection.default_channel).get(no_ack=True)
    assert message is not None
    assert message.content_type == "application/json"
    payload = message.payload
    assert payload["product_id"] == 7
    assert payload["error"] == "image 0 failed"
    assert datetime.fromisoformat(payload["timestamp"].replace("Z", "+00:00")) == record.timestamp


def test_report_without_channel_is_skipped(dlq):
    assert DeadLetterReporter(dlq).report(7, "boom") is None


def test_publish_failure_is_swallowed(dlq):
    class BrokenProducer:
        def publish(self, *args, **kwargs):
            raise ConnectionResetError("broker gone")

    reporter = DeadLetterReporter(dlq, producer=BrokenProducer())

    assert reporter.report(7, "boom") is None
