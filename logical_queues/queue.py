"""A logical queue: one physical queue, its publisher and its consumers.

``LogicalQueue`` is created by ``QueueClient`` from normalized
configuration. It publishes envelopes through its endpoint's transport and,
once a handler is subscribed, runs one ``Consumer`` per reader.

Lifecycle:
- ``subscribe`` registers the single handler for this queue and creates
  the consumers (started immediately if the queue is already started)
- ``start`` begins polling on all consumers; calling it again is a no-op
- ``stop`` halts and releases the consumers; a later ``start`` does nothing
  until ``subscribe`` is called again
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from logical_queues.config import QueueConfig, SubscriptionOptions
from logical_queues.constants import OP_PUBLISH
from logical_queues.consumer import Consumer
from logical_queues.context import get_context_logger
from logical_queues.envelope import AttributeInput, build_envelope
from logical_queues.errors import MessageTooLong, QueueConfigurationError, QueueError
from logical_queues.events import CallInfo
from logical_queues.metrics import QUEUE_PUBLISH_TOTAL
from logical_queues.pipeline import Handler, MessagePipeline
from logical_queues.tracing import get_tracer, record_failure
from logical_queues.transport import SendResult, Transport


class LogicalQueue:
    """Publisher and consumer set for one configured queue.

    Properties:
    - `client`: owning ``QueueClient`` (events, reconnect, dead-letter publishes)
    - `transport`: endpoint transport; replaced on reconnect
    - `config`: normalized ``QueueConfig``
    - `url`: resolved physical queue URL
    - `consumers`: running or startable consumers, one per reader
    """

    def __init__(self, client: Any, transport: Transport, config: QueueConfig, url: str) -> None:
        self.client = client
        self.transport = transport
        self.config = config
        self.url = url
        self.consumers: list[Consumer] = []
        self.started = False
        self._tracer = get_tracer()

    @property
    def logical_name(self) -> str:
        return self.config.logical_name

    @property
    def dead_letter(self) -> Optional[str]:
        return self.config.dead_letter

    async def publish(
        self,
        context: Any,
        body: Any,
        *,
        compression: Any = None,
        correlation_id: Optional[str] = None,
        attributes: Optional[Mapping[str, AttributeInput]] = None,
        **transport_options: Any,
    ) -> SendResult:
        """Serialize ``body`` and send it to this queue.

        Raises ``UnsupportedEncoding`` or ``MessageTooLong`` before the
        transport is called, and ``TransportError`` for broker failures.
        """
        envelope = build_envelope(
            context,
            body,
            compression_option=compression,
            correlation_id=correlation_id,
            attributes=attributes,
        )
        size = envelope.size()
        if size > self.transport.max_message_size:
            QUEUE_PUBLISH_TOTAL.labels(queue=self.logical_name, result="too_long").inc()
            raise MessageTooLong(size, self.transport.max_message_size, logical_name=self.logical_name)

        call_info = CallInfo(operation_name=OP_PUBLISH, message=envelope, logical_name=self.logical_name)
        events = self.client.events
        events.start(call_info)
        with self._tracer.start_as_current_span("publish") as span:
            span.set_attribute("queue.logical_name", self.logical_name)
            span.set_attribute("correlation_id", envelope.correlation_id or "")
            try:
                result = await self.transport.send(self.url, envelope, **transport_options)
            except Exception as exc:
                if isinstance(exc, QueueError):
                    exc.with_details(logical_name=self.logical_name)
                record_failure(span, exc)
                QUEUE_PUBLISH_TOTAL.labels(queue=self.logical_name, result="error").inc()
                events.error(call_info, exc)
                raise
        QUEUE_PUBLISH_TOTAL.labels(queue=self.logical_name, result="ok").inc()
        events.finish(call_info)
        return result

    async def subscribe(self, context: Any, handler: Handler, options: SubscriptionOptions) -> None:
        """Attach ``handler`` and create one consumer per reader."""
        if self.consumers:
            raise QueueConfigurationError(
                f"Logical queue '{self.logical_name}' already has a subscriber",
                code="AlreadySubscribed",
                logical_name=self.logical_name,
            )
        readers = options.readers or self.config.readers
        pipeline = MessagePipeline(self.client, self.config, context, handler)
        self.consumers = [Consumer(self, context, pipeline, options, index=i) for i in range(readers)]
        if self.started:
            for consumer in self.consumers:
                await consumer.start()
        get_context_logger(context).info(
            "Subscribed to queue", extra={"readers": readers, "logical_name": self.logical_name}
        )

    async def start(self) -> None:
        if self.started:
            return
        for consumer in self.consumers:
            await consumer.start()
        self.started = True

    async def stop(self) -> None:
        consumers, self.consumers = self.consumers, []
        for consumer in consumers:
            await consumer.stop()
        self.started = False

    async def reconnect(self, context: Any) -> Transport:
        """Refresh the endpoint transport after a credential error."""
        self.transport = await self.client.reconnect(context, self.config.endpoint)
        return self.transport
