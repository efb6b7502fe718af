"""In-process mock broker for application tests.

``MockQueueClient`` exposes the same surface as ``QueueClient`` without any
transport. Publishing builds the envelope a real queue would send and runs
it straight through ``MessagePipeline``, so handlers see exactly the body,
metadata and context they would get in production, including dead-letter
redirects between logical queues.

Tests can intercept a queue without removing its production subscriber:

>>> client = MockQueueClient(ctx, {"queues": {"orders": "orders_queue"}})
>>> await client.subscribe(ctx, "orders", handle_order)
>>> seen = []
>>> await client.mock_publish("orders", lambda c, body, meta: seen.append(body))
>>> await client.publish(ctx, "orders", {"order_id": 1})
>>> seen
[{'order_id': 1}]

Handler failures propagate to the publisher unless ``deferred=True``, in
which case deliveries run as tasks and ``drain()`` awaits them.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Union

from logical_queues.config import ClientConfig, QueueConfig, Settings, parse_disabled_subscriptions
from logical_queues.constants import OP_PUBLISH
from logical_queues.context import get_context_logger
from logical_queues.envelope import AttributeInput, RawMessage, build_envelope
from logical_queues.errors import InvalidQueue, QueueConfigurationError
from logical_queues.events import CallInfo, EventStream, QueueObserver
from logical_queues.pipeline import Handler, MessagePipeline
from logical_queues.transport import SendResult

MOCK_RECEIPT_HANDLE = "mock-receipt"


@dataclass
class _MockQueue:
    config: QueueConfig
    subscriber: Optional[Handler] = None
    subscriber_context: Any = None
    mock_subscriber: Optional[Handler] = None


class MockQueueClient:
    """Transport-free stand-in for ``QueueClient``."""

    def __init__(
        self,
        context: Any,
        config: Union[ClientConfig, Mapping[str, Any]],
        *,
        deferred: bool = False,
        observers: Optional[Iterable[QueueObserver]] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.config = config if isinstance(config, ClientConfig) else ClientConfig.model_validate(config)
        self.settings = settings or Settings()
        disabled = self.config.disable_subscriptions
        if disabled is None:
            disabled = self.settings.disable_subscriptions
        self._disabled_subscriptions = parse_disabled_subscriptions(disabled)
        self.context = context
        self.deferred = deferred
        self.events = EventStream(observers)
        self.started = False
        self._pending: list[asyncio.Task[None]] = []
        self._queues: dict[str, _MockQueue] = {
            queue_config.logical_name: _MockQueue(config=queue_config)
            for queue_config in self.config.normalized_queues()
        }

    @property
    def context_function(self):
        return self.config.context_function

    def add_observer(self, observer: QueueObserver) -> None:
        self.events.add_observer(observer)

    def _get(self, logical_name: str) -> _MockQueue:
        queue = self._queues.get(logical_name)
        if queue is None:
            raise InvalidQueue(logical_name)
        return queue

    def get_queue_configuration(self, logical_name: str) -> QueueConfig:
        return self._get(logical_name).config

    def is_subscription_disabled(self, logical_name: str) -> bool:
        if self._disabled_subscriptions is True:
            return True
        return logical_name in self._disabled_subscriptions

    async def publish(
        self,
        context: Any,
        logical_name: str,
        body: Any,
        *,
        compression: Any = None,
        correlation_id: Optional[str] = None,
        attributes: Optional[Mapping[str, AttributeInput]] = None,
        **transport_options: Any,
    ) -> SendResult:
        """Deliver ``body`` in-process to the queue's mock handler or subscriber."""
        queue = self._get(logical_name)
        envelope = build_envelope(
            context,
            body,
            compression_option=compression,
            correlation_id=correlation_id,
            attributes=attributes,
        )
        call_info = CallInfo(operation_name=OP_PUBLISH, message=envelope, logical_name=logical_name)
        self.events.start(call_info)
        message = RawMessage(
            message_id=str(uuid.uuid4()),
            receipt_handle=MOCK_RECEIPT_HANDLE,
            body=envelope.body,
            attributes=dict(envelope.attributes),
            system_attributes={"ApproximateReceiveCount": "1"},
        )
        self.events.finish(call_info)

        if queue.mock_subscriber is not None:
            pipeline = MessagePipeline(self, queue.config, context, queue.mock_subscriber)
        elif queue.subscriber is not None:
            pipeline = MessagePipeline(self, queue.config, queue.subscriber_context, queue.subscriber)
        else:
            get_context_logger(context).warning(
                "Publishing to mock queue with no subscriber", extra={"logical_name": logical_name}
            )
            return SendResult(message_id=message.message_id)

        if self.deferred:
            self._pending.append(asyncio.create_task(pipeline(message)))
        else:
            await pipeline(message)
        return SendResult(message_id=message.message_id)

    async def subscribe(
        self,
        context: Any,
        logical_name: str,
        handler: Handler,
        options: Any = None,
        **overrides: Any,
    ) -> bool:
        """Register the production handler; polling options are accepted and ignored.

        Follows ``QueueClient.subscribe``: returns False for disabled
        subscriptions and raises ``AlreadySubscribed`` on a second handler.
        """
        queue = self._get(logical_name)
        if self.is_subscription_disabled(logical_name):
            get_context_logger(context).info(
                "Queue subscriptions disabled, not subscribing", extra={"logical_name": logical_name}
            )
            return False
        if queue.subscriber is not None:
            raise QueueConfigurationError(
                f"Logical queue '{logical_name}' already has a subscriber",
                code="AlreadySubscribed",
                logical_name=logical_name,
            )
        queue.subscriber = handler
        queue.subscriber_context = context
        return True

    async def mock_publish(self, logical_name: str, handler: Handler) -> None:
        """Route publishes to ``logical_name`` to ``handler`` instead of its subscriber."""
        self._get(logical_name).mock_subscriber = handler

    def reset_mocks(self) -> None:
        for queue in self._queues.values():
            queue.mock_subscriber = None

    async def drain(self) -> None:
        """Wait for deferred deliveries, including ones they trigger. Raises the first failure."""
        first_error: Optional[BaseException] = None
        while self._pending:
            pending, self._pending = self._pending, []
            results = await asyncio.gather(*pending, return_exceptions=True)
            for result in results:
                if isinstance(result, BaseException) and first_error is None:
                    first_error = result
        if first_error is not None:
            raise first_error

    async def start(self, context: Any = None) -> "MockQueueClient":
        if context is not None:
            self.context = context
        self.started = True
        return self

    async def stop(self, context: Any = None) -> None:
        await self.drain()
        self.started = False
