import logging

import pytest

from logical_queues.context import QueueContext, correlation_context
from logical_queues.errors import HandlerFailure, InvalidQueue, QueueConfigurationError, reject
from logical_queues.mock import MockQueueClient

CONFIG = {
    "queues": {
        "basic": "basic_queue",
        "redrive": {"name": "redrive_queue", "dead_letter": "dead"},
        "dead": "dead_letter_queue",
    },
    "context_function": correlation_context,
}


@pytest.fixture
def ctx():
    return QueueContext(logger=logging.getLogger("tests.mock"), headers={"correlationid": "mock-corr"})


@pytest.mark.asyncio
async def test_publish_dispatches_to_subscriber(ctx):
    client = MockQueueClient(ctx, CONFIG)
    received = []

    async def handler(context, body, metadata):
        received.append((body, context.correlation_id, metadata.correlation_id))

    assert await client.subscribe(ctx, "basic", handler) is True
    await client.start(ctx)
    await client.publish(ctx, "basic", {"messageId": "m"}, compression=True)

    assert received == [({"messageId": "m"}, "mock-corr", "mock-corr")]


@pytest.mark.asyncio
async def test_mock_handler_takes_priority_and_resets(ctx):
    client = MockQueueClient(ctx, CONFIG)
    real, mocked = [], []
    await client.subscribe(ctx, "basic", lambda c, body, m: real.append(body))
    await client.mock_publish("basic", lambda c, body, m: mocked.append(body))

    await client.publish(ctx, "basic", {"n": 1})
    client.reset_mocks()
    await client.publish(ctx, "basic", {"n": 2})

    assert mocked == [{"n": 1}]
    assert real == [{"n": 2}]


@pytest.mark.asyncio
async def test_publish_without_subscriber_only_warns(ctx, caplog):
    client = MockQueueClient(ctx, CONFIG)
    with caplog.at_level(logging.WARNING):
        result = await client.publish(ctx, "basic", {"n": 1})
    assert result.message_id
    assert [r.levelname for r in caplog.records] == ["WARNING"]


@pytest.mark.asyncio
async def test_unknown_queue_raises_invalid_queue(ctx):
    client = MockQueueClient(ctx, CONFIG)
    with pytest.raises(InvalidQueue):
        await client.publish(ctx, "missing", {})
    with pytest.raises(InvalidQueue):
        await client.subscribe(ctx, "missing", lambda *a: None)
    with pytest.raises(InvalidQueue):
        await client.mock_publish("missing", lambda *a: None)


@pytest.mark.asyncio
async def test_dead_letter_redirect_between_mock_queues(ctx):
    client = MockQueueClient(ctx, CONFIG)
    dead = []

    async def redrive(context, body, metadata):
        reject(f"Rejected {body['errorId']}")

    async def dead_handler(context, body, metadata):
        dead.append((body, metadata.attributes["ErrorDetail"].string_value, context.correlation_id))

    await client.subscribe(ctx, "redrive", redrive)
    await client.subscribe(ctx, "dead", dead_handler)
    await client.publish(QueueContext(headers={"correlationid": "publisher"}), "redrive", {"errorId": "e1"})

    assert dead == [({"errorId": "e1"}, "Rejected e1", "publisher")]


@pytest.mark.asyncio
async def test_handler_failure_propagates_to_publisher(ctx):
    client = MockQueueClient(ctx, CONFIG)

    async def handler(context, body, metadata):
        raise ValueError("bad input")

    await client.subscribe(ctx, "basic", handler)
    with pytest.raises(HandlerFailure):
        await client.publish(ctx, "basic", {})


@pytest.mark.asyncio
async def test_deferred_delivery_runs_on_drain(ctx):
    client = MockQueueClient(ctx, CONFIG, deferred=True)
    received = []

    async def handler(context, body, metadata):
        received.append(body)

    await client.subscribe(ctx, "basic", handler)
    await client.publish(ctx, "basic", {"n": 1})
    await client.drain()
    assert received == [{"n": 1}]


def test_get_queue_configuration(ctx):
    client = MockQueueClient(ctx, CONFIG)
    assert client.get_queue_configuration("redrive").dead_letter == "dead"
    assert client.get_queue_configuration("dead").name == "dead_letter_queue"


@pytest.mark.asyncio
async def test_subscribe_honors_disabled_subscriptions_and_single_subscriber(ctx):
    client = MockQueueClient(ctx, {**CONFIG, "disable_subscriptions": "basic"})
    assert await client.subscribe(ctx, "basic", lambda *a: None) is False
    assert await client.subscribe(ctx, "dead", lambda *a: None) is True
    with pytest.raises(QueueConfigurationError) as exc:
        await client.subscribe(ctx, "dead", lambda *a: None)
    assert exc.value.code == "AlreadySubscribed"


@pytest.mark.asyncio
async def test_disable_all_mock_subscriptions_from_environment(monkeypatch, ctx):
    monkeypatch.setenv("DISABLE_QUEUE_SUBSCRIPTIONS", "true")
    client = MockQueueClient(ctx, CONFIG)
    assert await client.subscribe(ctx, "basic", lambda *a: None) is False
