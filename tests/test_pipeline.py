import asyncio
import logging
from types import SimpleNamespace

import pytest

from logical_queues.config import QueueConfig
from logical_queues.context import QueueContext, correlation_context
from logical_queues.envelope import RawMessage, build_envelope
from logical_queues.errors import (
    DeadLetterError,
    DeadLetterMisconfigured,
    HandlerFailure,
    ParseFailure,
    TransportError,
    reject,
)
from logical_queues.events import EventStream, QueueObserver
from logical_queues.pipeline import MessagePipeline


class Recorder(QueueObserver):
    def __init__(self):
        self.events = []

    def on_start(self, call_info):
        self.events.append(("start", call_info.operation_name))

    def on_finish(self, call_info):
        self.events.append(("finish", call_info.operation_name))

    def on_error(self, call_info):
        self.events.append(("error", type(call_info.error).__name__))


def make_fake_client(context_function=None, publish_error=None):
    published = []

    async def publish(context, logical_name, body, **kwargs):
        if publish_error is not None:
            raise publish_error
        published.append({"logical_name": logical_name, "body": body, **kwargs})
        return SimpleNamespace(message_id="dlq-1")

    recorder = Recorder()
    client = SimpleNamespace(
        events=EventStream([recorder]),
        context_function=context_function,
        publish=publish,
        published=published,
        recorder=recorder,
    )
    return client


def raw_message(body, *, compression=None, correlation_id="corr-1"):
    envelope = build_envelope(QueueContext(), body, compression_option=compression, correlation_id=correlation_id)
    return RawMessage(message_id="m-1", receipt_handle="rh-1", body=envelope.body, attributes=dict(envelope.attributes))


def queue_config(dead_letter=None):
    return QueueConfig(logical_name="work", name="work_queue", dead_letter=dead_letter)


@pytest.mark.asyncio
async def test_handler_receives_body_metadata_and_derived_context():
    client = make_fake_client(context_function=correlation_context)
    seen = {}

    async def handler(ctx, body, metadata):
        seen.update(body=body, correlation=ctx.correlation_id, message_id=metadata.message_id)

    pipeline = MessagePipeline(client, queue_config(), QueueContext(), handler)
    await pipeline(raw_message({"id": 7}))

    assert seen == {"body": {"id": 7}, "correlation": "corr-1", "message_id": "m-1"}
    assert client.recorder.events == [("start", "handleQueueMessage"), ("finish", "handleQueueMessage")]


@pytest.mark.asyncio
async def test_sync_handler_and_async_context_function():
    async def context_function(ctx, message):
        return ctx.with_correlation_id("derived")

    client = make_fake_client(context_function=context_function)
    seen = []
    pipeline = MessagePipeline(client, queue_config(), QueueContext(), lambda ctx, body, meta: seen.append(ctx.correlation_id))
    await pipeline(raw_message({}))
    assert seen == ["derived"]


@pytest.mark.asyncio
async def test_parse_failure_is_logged_once_and_raised(caplog):
    client = make_fake_client()
    pipeline = MessagePipeline(client, queue_config(), QueueContext(), lambda *a: None)
    message = RawMessage(message_id="m-1", receipt_handle="rh", body="{oops")

    with caplog.at_level(logging.ERROR), pytest.raises(ParseFailure) as exc:
        await pipeline(message)

    assert exc.value.already_logged is True
    assert sum("parse" in r.getMessage() for r in caplog.records) == 1
    assert client.recorder.events[-1] == ("error", "ParseFailure")


@pytest.mark.asyncio
async def test_handler_failure_wraps_original():
    client = make_fake_client()

    async def handler(ctx, body, metadata):
        raise RuntimeError("boom")

    pipeline = MessagePipeline(client, queue_config(dead_letter="dead"), QueueContext(), handler)
    with pytest.raises(HandlerFailure) as exc:
        await pipeline(raw_message({}))

    assert isinstance(exc.value.__cause__, RuntimeError)
    assert exc.value.already_logged is True
    assert exc.value.message == "boom"
    assert client.published == []
    assert client.recorder.events[-1] == ("error", "HandlerFailure")


@pytest.mark.asyncio
async def test_dead_letter_redirects_to_configured_queue():
    client = make_fake_client()

    async def handler(ctx, body, metadata):
        reject("bad order")

    pipeline = MessagePipeline(client, queue_config(dead_letter="dead"), QueueContext(), handler)
    await pipeline(raw_message({"order": 1}))

    [redirect] = client.published
    assert redirect["logical_name"] == "dead"
    assert redirect["body"] == {"order": 1}
    assert redirect["correlation_id"] == "corr-1"
    assert redirect["compression"] is None
    assert redirect["attributes"]["ErrorDetail"].string_value == "bad order"
    assert "CorrelationId" not in redirect["attributes"]
    assert client.recorder.events[-1] == ("finish", "handleQueueMessage")


@pytest.mark.asyncio
async def test_dead_letter_keeps_compression_and_explicit_target():
    client = make_fake_client()

    async def handler(ctx, body, metadata):
        raise DeadLetterError("route elsewhere", dead_letter="quarantine")

    pipeline = MessagePipeline(client, queue_config(dead_letter="dead"), QueueContext(), handler)
    await pipeline(raw_message({"order": 2}, compression=True))

    [redirect] = client.published
    assert redirect["logical_name"] == "quarantine"
    assert redirect["compression"] == {"encoding": "gzip"}
    assert "Content-Encoding" not in redirect["attributes"]


@pytest.mark.asyncio
async def test_dead_letter_without_configured_queue_is_misconfigured():
    client = make_fake_client()

    async def handler(ctx, body, metadata):
        reject("nowhere to go")

    pipeline = MessagePipeline(client, queue_config(), QueueContext(), handler)
    with pytest.raises(DeadLetterMisconfigured) as exc:
        await pipeline(raw_message({}))

    assert exc.value.already_logged is True
    assert isinstance(exc.value.__cause__, DeadLetterError)
    assert client.published == []


@pytest.mark.asyncio
async def test_dead_letter_publish_failure_propagates():
    failure = TransportError("gone", code="AWS.SimpleQueueService.NonExistentQueue")
    client = make_fake_client(publish_error=failure)

    async def handler(ctx, body, metadata):
        reject("bad")

    pipeline = MessagePipeline(client, queue_config(dead_letter="dead"), QueueContext(), handler)
    with pytest.raises(TransportError) as exc:
        await pipeline(raw_message({}))

    assert exc.value is failure
    assert failure.already_logged is True
    assert client.recorder.events[-1] == ("error", "TransportError")


@pytest.mark.asyncio
async def test_cancelled_handling_reports_error_to_observers():
    client = make_fake_client()

    async def handler(ctx, body, metadata):
        await asyncio.sleep(1)

    pipeline = MessagePipeline(client, queue_config(), QueueContext(), handler)
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(pipeline(raw_message({})), timeout=0.05)

    assert client.recorder.events == [("start", "handleQueueMessage"), ("error", "HandlerCancelled")]
