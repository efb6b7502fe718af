import pytest

from logical_queues.context import QueueContext
from logical_queues.errors import QueueConfigurationError, TransportError


def queue_url(name):
    return f"http://localhost:9324/queue/{name}"


async def seed_dead_letters(client, count):
    for i in range(count):
        await client.publish(QueueContext(headers={"correlationid": f"corr-{i}"}), "dead", {"i": i}, compression=i % 2 == 0)


@pytest.mark.asyncio
async def test_move_messages_respects_max(make_client, transport, context):
    client = make_client()
    await seed_dead_letters(client, 7)

    moved = await client.move_messages(context, "dead_letter_queue", "basic_queue", 5)

    assert moved == 5
    assert transport.approximate_count(queue_url("dead_letter_queue")) == 2
    assert transport.approximate_count(queue_url("basic_queue")) == 5


@pytest.mark.asyncio
async def test_move_messages_keeps_body_and_attributes(make_client, transport, context):
    client = make_client()
    await seed_dead_letters(client, 2)
    originals = {m.body: m.attributes for m in transport.messages(queue_url("dead_letter_queue"))}

    await client.move_messages(context, "dead_letter_queue", "basic_queue")

    moved = {m.body: m.attributes for m in transport.messages(queue_url("basic_queue"))}
    assert moved == originals


@pytest.mark.asyncio
async def test_move_messages_uses_transport_batch_size(make_client, transport, context):
    transport.max_batch_size = 2
    client = make_client()
    await seed_dead_letters(client, 7)
    transport.calls.clear()

    assert await client.move_messages(context, "dead_letter_queue", "basic_queue", 5) == 5
    assert [op for op, _ in transport.calls].count("receive") == 3


@pytest.mark.asyncio
async def test_move_messages_stops_when_source_is_empty(make_client, transport, context):
    client = make_client()
    await seed_dead_letters(client, 3)

    assert await client.move_messages(context, "dead_letter_queue", "basic_queue", 10, wait_time_seconds=0) == 3
    assert await client.move_messages(context, "dead_letter_queue", "basic_queue", 10, wait_time_seconds=0) == 0


@pytest.mark.asyncio
async def test_move_messages_failure_leaves_source_intact(make_client, transport, context):
    client = make_client()
    await seed_dead_letters(client, 3)
    transport.inject_failure("send", TransportError("throttled", code="Throttling"))

    with pytest.raises(TransportError):
        await client.move_messages(context, "dead_letter_queue", "basic_queue", 3)

    assert transport.approximate_count(queue_url("dead_letter_queue")) == 3
    assert transport.approximate_count(queue_url("basic_queue")) == 0


@pytest.mark.asyncio
async def test_move_messages_unknown_endpoint(make_client, context):
    client = make_client()
    with pytest.raises(QueueConfigurationError):
        await client.move_messages(context, "a", "b", endpoint="missing")


@pytest.mark.asyncio
async def test_move_messages_keeps_binary_attributes(make_client, transport, context):
    client = make_client()
    await client.publish(context, "dead", {"i": 0}, attributes={"Signature": b"\x00\xff"})

    await client.move_messages(context, "dead_letter_queue", "basic_queue")

    [moved] = transport.messages(queue_url("basic_queue"))
    assert moved.attributes["Signature"].binary_value == b"\x00\xff"
    assert moved.attributes["Signature"].data_type == "Binary"
