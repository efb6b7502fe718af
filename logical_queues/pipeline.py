"""Message handling pipeline shared by real consumers and the mock broker.

For every delivery the pipeline:
1. emits a ``start`` call event
2. derives the per-message context through the client's context function
3. decodes the body (decompressing when ``Content-Encoding`` is gzip)
4. invokes the application handler with ``(context, body, metadata)``
5. emits ``finish`` on success
6. on failure, either redirects the message to a dead-letter queue or
   re-raises so the transport can redeliver it

Failure outcomes:
- ``ParseFailure``: body is not JSON. Logged, marked ``already_logged``, raised.
- ``HandlerFailure``: handler raised anything but ``DeadLetterError``.
  Logged, marked ``already_logged``, raised with the original as ``__cause__``.
- ``DeadLetterMisconfigured``: handler raised ``DeadLetterError`` without a
  target on a queue with no dead-letter queue. Logged and raised.
- Dead-letter redirect: the decoded body is republished to the target
  logical queue with the original attributes, the original correlation id,
  an ``ErrorDetail`` attribute holding the failure message, and the
  original compression. The delivery then counts as handled. If the
  redirect publish fails, that failure is logged and raised.
- ``HandlerCancelled``: the delivery was cancelled mid-handling (a consumer
  timeout). Reported to observers as ``error`` and the cancellation re-raised.

Example:
    >>> pipeline = MessagePipeline(client, queue_config, ctx, handler)
    >>> await pipeline(raw_message)
"""
from __future__ import annotations

import asyncio
import inspect
import time
from typing import Any, Awaitable, Callable, Optional, Union

from logical_queues.config import QueueConfig
from logical_queues.constants import (
    ATTR_CONTENT_ENCODING,
    ATTR_CORRELATION_ID,
    ATTR_ERROR_DETAIL,
    OP_HANDLE_MESSAGE,
)
from logical_queues.context import get_context_logger
from logical_queues.envelope import AttributeValue, DecodedMessage, RawMessage, decode_message
from logical_queues.errors import (
    DeadLetterError,
    DeadLetterMisconfigured,
    HandlerCancelled,
    HandlerFailure,
    ParseFailure,
    QueueError,
)
from logical_queues.events import CallInfo
from logical_queues.logging_utils import error_fields
from logical_queues.metrics import QUEUE_DEAD_LETTER_TOTAL, QUEUE_HANDLE_LATENCY_SECONDS, QUEUE_MESSAGE_TOTAL
from logical_queues.tracing import get_tracer, record_failure

Handler = Callable[[Any, Any, Any], Union[Awaitable[Any], Any]]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class MessagePipeline:
    """Callable that handles one raw delivery for a subscribed logical queue.

    Properties:
    - `client`: registry used for events, the context function and dead-letter publishes
    - `queue_config`: configuration of the consuming queue (logical name, dead letter)
    - `context`: subscription context, the base for per-message contexts
    - `handler`: application handler
    """

    def __init__(self, client: Any, queue_config: QueueConfig, context: Any, handler: Handler) -> None:
        self.client = client
        self.queue_config = queue_config
        self.context = context
        self.handler = handler
        self._tracer = get_tracer()

    @property
    def logical_name(self) -> str:
        return self.queue_config.logical_name

    async def __call__(self, message: RawMessage) -> None:
        call_info = CallInfo(operation_name=OP_HANDLE_MESSAGE, message=message, logical_name=self.logical_name)
        events = self.client.events
        events.start(call_info)
        start_ts = time.perf_counter()
        try:
            with self._tracer.start_as_current_span("handle_queue_message") as span:
                span.set_attribute("queue.logical_name", self.logical_name)
                span.set_attribute("message.id", message.message_id)
                if message.correlation_id:
                    span.set_attribute("correlation_id", message.correlation_id)
                try:
                    status = await self._process(message, call_info)
                except Exception as exc:
                    record_failure(span, exc)
                    raise
            QUEUE_MESSAGE_TOTAL.labels(queue=self.logical_name, status=status).inc()
        except asyncio.CancelledError:
            # Observers still get a terminal event for the started operation
            QUEUE_MESSAGE_TOTAL.labels(queue=self.logical_name, status="cancelled").inc()
            events.error(
                call_info, HandlerCancelled(logical_name=self.logical_name, message_id=message.message_id)
            )
            raise
        except ParseFailure:
            QUEUE_MESSAGE_TOTAL.labels(queue=self.logical_name, status="parse_error").inc()
            raise
        except Exception:
            QUEUE_MESSAGE_TOTAL.labels(queue=self.logical_name, status="failed").inc()
            raise
        finally:
            QUEUE_HANDLE_LATENCY_SECONDS.labels(queue=self.logical_name).observe(time.perf_counter() - start_ts)

    async def _derive_context(self, message: RawMessage) -> Any:
        context_function = getattr(self.client, "context_function", None)
        if context_function is None:
            return self.context
        return await _maybe_await(context_function(self.context, message))

    async def _process(self, message: RawMessage, call_info: CallInfo) -> str:
        events = self.client.events
        message_context = await self._derive_context(message)
        logger = get_context_logger(message_context)

        try:
            decoded = decode_message(message)
        except ParseFailure as exc:
            logger.error(
                "Failed to parse queue message body as JSON",
                extra=error_fields(exc, logical_name=self.logical_name),
            )
            exc.already_logged = True
            events.error(call_info, exc)
            raise

        try:
            await _maybe_await(self.handler(message_context, decoded.body, decoded.metadata))
        except DeadLetterError as exc:
            await self._dead_letter(exc, decoded, message_context, call_info)
            return "dead_lettered"
        except Exception as exc:  # noqa: BLE001
            failure = HandlerFailure(exc, logical_name=self.logical_name, message_id=message.message_id)
            failure.already_logged = True
            logger.error("Failed to handle message", extra=error_fields(failure))
            events.error(call_info, failure)
            raise failure from exc

        events.finish(call_info)
        return "success"

    async def _dead_letter(
        self,
        exc: DeadLetterError,
        decoded: DecodedMessage,
        message_context: Any,
        call_info: CallInfo,
    ) -> None:
        logger = get_context_logger(message_context)
        events = self.client.events
        target: Optional[str] = exc.dead_letter or self.queue_config.dead_letter
        if target is None:
            failure = DeadLetterMisconfigured(
                exc, logical_name=self.logical_name, message_id=decoded.metadata.message_id
            )
            failure.already_logged = True
            logger.error(
                "Received dead-letter failure but queue has no dead-letter queue configured",
                extra=error_fields(failure),
            )
            events.error(call_info, failure)
            raise failure from exc

        attributes: dict[str, AttributeValue] = dict(decoded.metadata.attributes)
        attributes.pop(ATTR_CONTENT_ENCODING, None)
        correlation = attributes.pop(ATTR_CORRELATION_ID, None)
        attributes[ATTR_ERROR_DETAIL] = AttributeValue(string_value=exc.message)
        compression_option = {"encoding": decoded.content_encoding} if decoded.content_encoding else None
        try:
            await self.client.publish(
                self.context,
                target,
                decoded.body,
                compression=compression_option,
                correlation_id=correlation.string_value if correlation is not None else None,
                attributes=attributes,
            )
        except Exception as publish_error:
            logger.error(
                "Failed to publish to configured dead-letter queue",
                extra=error_fields(publish_error, logical_name=self.logical_name, dead_letter=target),
            )
            if isinstance(publish_error, QueueError):
                publish_error.already_logged = True
            events.error(call_info, publish_error)
            raise

        QUEUE_DEAD_LETTER_TOTAL.labels(queue=self.logical_name, dead_letter=target).inc()
        logger.info(
            "Redirected message to dead-letter queue",
            extra={"logical_name": self.logical_name, "dead_letter": target, "error_detail": exc.message},
        )
        events.finish(call_info)
