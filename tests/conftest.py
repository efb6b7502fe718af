import logging

import pytest

from logical_queues.client import QueueClient
from logical_queues.context import QueueContext, correlation_context
from logical_queues.memory import MemoryTransport

QUEUES = {
    "basic": "basic_queue",
    "redrive": {"name": "redrive_queue", "dead_letter": "dead"},
    "dead": "dead_letter_queue",
}


@pytest.fixture(autouse=True)
def _clean_queue_env(monkeypatch):
    for var in ("DISABLE_QUEUE_SUBSCRIPTIONS", "QUEUE_ENDPOINT", "QUEUE_REGION", "QUEUE_ACCOUNT_ID", "QUEUE_WAIT_TIME_SECONDS"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def transport():
    return MemoryTransport(auto_create=True, poll_interval=0.01, default_visibility_timeout=0.3)


@pytest.fixture
def context():
    return QueueContext(logger=logging.getLogger("tests.queue"))


@pytest.fixture
def make_client(transport, context):
    def factory(queues=None, **overrides):
        config = {
            "endpoint": "http://localhost:9324",
            "account_id": "queue",
            "region": "us-east-1",
            "queues": QUEUES if queues is None else queues,
            "subscriptions": {"wait_time_seconds": 1, "error_backoff_seconds": 0.01},
            "context_function": correlation_context,
        }
        config.update(overrides)
        return QueueClient(context, config, transport_factory=lambda endpoint: transport)

    return factory
