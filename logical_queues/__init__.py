"""Logical queues in front of an SQS-style broker.

Modules include configuration, the envelope and compression codecs, the
message handling pipeline, consumers, the queue registry (``QueueClient``),
an in-process mock broker, transports, metrics and tracing helpers.
"""

from logical_queues.client import QueueClient
from logical_queues.config import ClientConfig, EndpointConfig, QueueConfig, Settings, SubscriptionOptions
from logical_queues.context import QueueContext, correlation_context
from logical_queues.envelope import AttributeValue, Envelope, MessageMetadata, RawMessage
from logical_queues.errors import (
    DeadLetterError,
    DeadLetterMisconfigured,
    HandlerCancelled,
    HandlerFailure,
    InvalidQueue,
    MessageTooLong,
    ParseFailure,
    QueueConfigurationError,
    QueueError,
    TransportError,
    UnsupportedEncoding,
    reject,
)
from logical_queues.events import CallInfo, QueueObserver
from logical_queues.memory import MemoryTransport
from logical_queues.mock import MockQueueClient
from logical_queues.transport import SendResult, Transport

__all__ = [
    "AttributeValue",
    "CallInfo",
    "ClientConfig",
    "DeadLetterError",
    "DeadLetterMisconfigured",
    "EndpointConfig",
    "Envelope",
    "HandlerCancelled",
    "HandlerFailure",
    "InvalidQueue",
    "MemoryTransport",
    "MessageMetadata",
    "MessageTooLong",
    "MockQueueClient",
    "ParseFailure",
    "QueueClient",
    "QueueConfig",
    "QueueConfigurationError",
    "QueueContext",
    "QueueError",
    "QueueObserver",
    "RawMessage",
    "SendResult",
    "Settings",
    "SubscriptionOptions",
    "Transport",
    "TransportError",
    "UnsupportedEncoding",
    "correlation_context",
    "reject",
]
