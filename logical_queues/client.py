"""Queue registry: the application-facing entry point.

``QueueClient`` turns a ``ClientConfig`` into a map of logical queues, each
bound to the transport of its endpoint, and routes every application call
by logical name.

Responsibilities:
- Normalize queue configuration and resolve physical queue URLs
- Build one transport per endpoint (the default plus any named ones)
- Publish and subscribe by logical name (``InvalidQueue`` for unknown names)
- Honor the subscription kill switch, evaluated once at construction
- Verify the assumed role before any consumer starts
- Move messages between physical queues (operator tooling)

Example:
    >>> client = QueueClient(ctx, ClientConfig(region="us-east-1", queues={"orders": "orders_queue"}))
    >>> await client.subscribe(ctx, "orders", handle_order, readers=2)
    >>> await client.start(ctx)
    >>> await client.publish(ctx, "orders", {"order_id": 1}, compression=True)
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Mapping, Optional, Union

from logical_queues.config import (
    ClientConfig,
    EndpointConfig,
    QueueConfig,
    Settings,
    SubscriptionOptions,
    _snake,
    parse_disabled_subscriptions,
    resolve_queue_url,
)
from logical_queues.context import get_context_logger
from logical_queues.envelope import AttributeInput, Envelope
from logical_queues.errors import InvalidQueue, QueueConfigurationError
from logical_queues.events import EventStream, QueueObserver
from logical_queues.metrics import QUEUE_MOVED_TOTAL
from logical_queues.pipeline import Handler
from logical_queues.queue import LogicalQueue
from logical_queues.sqs import SqsTransport
from logical_queues.transport import SendResult, Transport

TransportFactory = Callable[[EndpointConfig], Transport]


class QueueClient:
    """Registry of logical queues sharing one configuration.

    Properties:
    - `config`: validated ``ClientConfig``
    - `settings`: process ``Settings`` used for defaults the config leaves out
    - `events`: ``EventStream`` receiving start/finish/error call events
    - `endpoints`: endpoint configs keyed by name; the default is under ``None``
    - `transports`: one transport per endpoint, same keys
    - `queues`: logical name -> ``LogicalQueue``
    """

    def __init__(
        self,
        context: Any,
        config: Union[ClientConfig, Mapping[str, Any]],
        *,
        transport_factory: Optional[TransportFactory] = None,
        observers: Optional[Iterable[QueueObserver]] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.config = config if isinstance(config, ClientConfig) else ClientConfig.model_validate(config)
        self.settings = settings or Settings()
        self.events = EventStream(observers)
        self._transport_factory = transport_factory or SqsTransport
        self._logger = get_context_logger(context)

        self.endpoints: dict[Optional[str], EndpointConfig] = {None: self._default_endpoint()}
        self.endpoints.update(self.config.endpoints)
        self.transports: dict[Optional[str], Transport] = {
            name: self._transport_factory(endpoint) for name, endpoint in self.endpoints.items()
        }

        disabled = self.config.disable_subscriptions
        if disabled is None:
            disabled = self.settings.disable_subscriptions
        self._disabled_subscriptions = parse_disabled_subscriptions(disabled)

        self.queues: dict[str, LogicalQueue] = {}
        for queue_config in self.config.normalized_queues():
            self._add_queue(queue_config)

    def _default_endpoint(self) -> EndpointConfig:
        endpoint = self.config.default_endpoint()
        if endpoint is not None:
            return endpoint
        s = self.settings
        return EndpointConfig(
            endpoint=s.queue_endpoint or None,
            region=s.queue_region or None,
            account_id=s.queue_account_id or None,
        )

    def _add_queue(self, queue_config: QueueConfig) -> None:
        endpoint_name = queue_config.endpoint
        if endpoint_name not in self.endpoints:
            raise QueueConfigurationError(
                f"Logical queue '{queue_config.logical_name}' references unknown endpoint '{endpoint_name}'",
                code="UnknownEndpoint",
                logical_name=queue_config.logical_name,
            )
        url = resolve_queue_url(queue_config.name, self.endpoints[endpoint_name])
        self.queues[queue_config.logical_name] = LogicalQueue(
            self, self.transports[endpoint_name], queue_config, url
        )
        self._logger.info(
            "Added queue",
            extra={"logical_name": queue_config.logical_name, "queue_url": url, "endpoint": endpoint_name},
        )

    @property
    def context_function(self):
        return self.config.context_function

    def add_observer(self, observer: QueueObserver) -> None:
        self.events.add_observer(observer)

    def get_queue(self, logical_name: str) -> LogicalQueue:
        queue = self.queues.get(logical_name)
        if queue is None:
            raise InvalidQueue(logical_name)
        return queue

    def get_queue_configuration(self, logical_name: str) -> QueueConfig:
        return self.get_queue(logical_name).config

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
        """Publish ``body`` to a logical queue."""
        queue = self.get_queue(logical_name)
        return await queue.publish(
            context,
            body,
            compression=compression,
            correlation_id=correlation_id,
            attributes=attributes,
            **transport_options,
        )

    def subscription_options(
        self,
        logical_name: str,
        options: Union[SubscriptionOptions, Mapping[str, Any], None] = None,
        **overrides: Any,
    ) -> SubscriptionOptions:
        """Merge subscription options: client defaults, queue options, call options, keyword overrides.

        A queue configured with ``readers`` overrides the client default;
        call options and overrides win over both.
        """
        queue_config = self.get_queue_configuration(logical_name)
        merged = self.config.subscriptions.model_dump(exclude_unset=True)
        merged.setdefault("wait_time_seconds", self.settings.wait_time_seconds)
        if "readers" in queue_config.model_fields_set:
            merged["readers"] = queue_config.readers
        merged.update({_snake(k): v for k, v in queue_config.consumer_options.items()})
        if isinstance(options, SubscriptionOptions):
            merged.update(options.model_dump(exclude_unset=True))
        elif options:
            merged.update({_snake(k): v for k, v in options.items()})
        merged.update({k: v for k, v in overrides.items() if v is not None})
        merged.setdefault("readers", queue_config.readers)
        return SubscriptionOptions.model_validate(merged)

    async def subscribe(
        self,
        context: Any,
        logical_name: str,
        handler: Handler,
        options: Union[SubscriptionOptions, Mapping[str, Any], None] = None,
        **overrides: Any,
    ) -> bool:
        """Attach ``handler`` to a logical queue.

        Returns False, without creating consumers or touching the transport,
        when subscriptions are disabled for the queue.
        """
        queue = self.get_queue(logical_name)
        if self.is_subscription_disabled(logical_name):
            get_context_logger(context).info(
                "Queue subscriptions disabled, not subscribing", extra={"logical_name": logical_name}
            )
            return False
        await queue.subscribe(context, handler, self.subscription_options(logical_name, options, **overrides))
        return True

    async def verify_assumed_role(self, context: Any) -> None:
        expected = self.config.assumed_role
        if not expected:
            return
        identity = await self.transports[None].get_caller_identity()
        if expected not in identity.arn:
            get_context_logger(context).error(
                "Queue client is not running with the expected role",
                extra={"expected_role": expected, "caller_arn": identity.arn},
            )
            raise QueueConfigurationError(
                f"Caller identity '{identity.arn}' does not match assumed role '{expected}'",
                code="AssumedRoleMismatch",
                expected_role=expected,
                caller_arn=identity.arn,
            )

    async def start(self, context: Any) -> None:
        """Check the assumed role, then start every subscribed queue."""
        await self.verify_assumed_role(context)
        for queue in self.queues.values():
            await queue.start()
        get_context_logger(context).info("Queue client started", extra={"queue_count": len(self.queues)})

    async def stop(self, context: Any) -> None:
        for queue in self.queues.values():
            await queue.stop()
        get_context_logger(context).info("Queue client stopped")

    async def close(self) -> None:
        for transport in self.transports.values():
            await transport.close()

    async def reconnect(self, context: Any, endpoint_name: Optional[str] = None) -> Transport:
        """Re-acquire credentials for one endpoint and rebind its queues."""
        old = self.transports[endpoint_name]
        transport = await old.reconnect()
        self.transports[endpoint_name] = transport
        for queue in self.queues.values():
            if queue.config.endpoint == endpoint_name:
                queue.transport = transport
        get_context_logger(context).info("Reconnected queue transport", extra={"endpoint": endpoint_name})
        return transport

    async def move_messages(
        self,
        context: Any,
        source: str,
        destination: str,
        max_messages: Optional[int] = None,
        *,
        endpoint: Optional[str] = None,
        wait_time_seconds: int = 1,
    ) -> int:
        """Move messages between two physical queues; returns how many were moved.

        ``source`` and ``destination`` are physical queue names or URLs on
        ``endpoint``. Bodies and attributes are sent verbatim, so compressed
        messages stay compressed. Each message is deleted from the source
        only after it was sent to the destination. With ``max_messages`` of
        ``None`` the source is drained until a receive comes back empty.
        """
        if endpoint not in self.endpoints:
            raise QueueConfigurationError(f"Unknown endpoint '{endpoint}'", code="UnknownEndpoint")
        transport = self.transports[endpoint]
        source_url = resolve_queue_url(source, self.endpoints[endpoint])
        destination_url = resolve_queue_url(destination, self.endpoints[endpoint])
        log = get_context_logger(context)

        moved = 0
        while max_messages is None or moved < max_messages:
            batch_size = transport.max_batch_size
            if max_messages is not None:
                batch_size = min(batch_size, max_messages - moved)
            messages = await transport.receive(
                source_url,
                max_messages=batch_size,
                wait_time_seconds=wait_time_seconds,
                attribute_names=["All"],
            )
            if not messages:
                break
            for message in messages:
                await transport.send(destination_url, Envelope(body=message.body, attributes=dict(message.attributes)))
                await transport.delete(source_url, message.receipt_handle)
                moved += 1
                QUEUE_MOVED_TOTAL.inc()

        log.info(
            "Moved queue messages",
            extra={"source": source_url, "destination": destination_url, "moved": moved},
        )
        return moved
