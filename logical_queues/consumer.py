"""Long-poll consumers for logical queues.

A ``Consumer`` is one independent polling worker: an ``asyncio`` task that
receives a batch, hands each message to the handling pipeline one at a
time, and deletes the message once it was handled. A logical queue runs one
consumer per configured reader, so readers of the same queue process
messages concurrently and in no particular order.

Error policy:
- credential expiry while polling -> ask the client to reconnect, back off,
  keep polling
- access denied / queue not found -> log once and stop this worker
- other polling errors -> log, back off, keep polling
- processing errors -> log unless the pipeline already did; the message is
  left undeleted and the broker redelivers it after its visibility timeout
- handler timeouts -> log; redelivery also comes from the visibility timeout

``stop()`` cancels an outstanding long poll but lets a batch that was
already received finish.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from logical_queues.config import SubscriptionOptions
from logical_queues.constants import REQUIRED_ATTRIBUTE_NAMES
from logical_queues.context import get_context_logger
from logical_queues.envelope import RawMessage
from logical_queues.errors import is_already_logged, is_credential_error, is_fatal_consumer_error
from logical_queues.logging_utils import error_fields
from logical_queues.metrics import CONSUMER_ERROR_TOTAL, CONSUMER_RECONNECT_TOTAL
from logical_queues.transport import Transport

MessageHandler = Callable[[RawMessage], Awaitable[None]]


def attribute_names_for(options: SubscriptionOptions) -> list[str]:
    """Attribute names to request: the required ones first, then caller ones, without duplicates."""
    names: list[str] = []
    for name in [*REQUIRED_ATTRIBUTE_NAMES, *options.message_attribute_names]:
        if name not in names:
            names.append(name)
    return names


class Consumer:
    """One polling worker bound to a physical queue.

    `queue` is the owning logical queue; it provides the transport, the
    queue URL and the reconnect hook.
    """

    def __init__(
        self,
        queue: Any,
        context: Any,
        handle_message: MessageHandler,
        options: SubscriptionOptions,
        index: int = 0,
    ) -> None:
        self.queue = queue
        self.context = context
        self.handle_message = handle_message
        self.options = options
        self.index = index
        self.attribute_names = attribute_names_for(options)
        self._task: Optional[asyncio.Task[None]] = None
        self._poll: Optional[asyncio.Task[list[RawMessage]]] = None
        self._stopping = asyncio.Event()

    @property
    def logical_name(self) -> str:
        return self.queue.logical_name

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def logger(self) -> logging.Logger:
        return get_context_logger(self.context)

    async def start(self) -> None:
        if self.is_running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name=f"consumer:{self.logical_name}:{self.index}")

    async def stop(self) -> None:
        """Stop polling; wait for the batch in progress to finish."""
        self._stopping.set()
        if self._poll is not None and not self._poll.done():
            self._poll.cancel()
        task = self._task
        if task is not None and task is not asyncio.current_task():
            await asyncio.gather(task, return_exceptions=True)
        self._task = None

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                messages = await self._receive()
            except asyncio.CancelledError:
                if self._stopping.is_set():
                    return
                raise
            except Exception as exc:  # noqa: BLE001
                if not await self._on_error(exc):
                    return
                continue
            for message in messages:
                await self._process(message)

    async def _receive(self) -> list[RawMessage]:
        transport: Transport = self.queue.transport
        self._poll = asyncio.ensure_future(
            transport.receive(
                self.queue.url,
                max_messages=self.options.batch_size,
                wait_time_seconds=self.options.wait_time_seconds,
                visibility_timeout=self.options.visibility_timeout,
                attribute_names=self.attribute_names,
            )
        )
        try:
            return await self._poll
        finally:
            self._poll = None

    async def _on_error(self, error: Exception) -> bool:
        """Apply the polling error policy. Returns False when the worker must stop."""
        if is_credential_error(error):
            CONSUMER_RECONNECT_TOTAL.labels(queue=self.logical_name).inc()
            self.logger.info("Queue credentials expired, reconnecting", extra={"logical_name": self.logical_name})
            try:
                await self.queue.reconnect(self.context)
            except Exception as exc:  # noqa: BLE001
                error = exc
            else:
                # A reconnect that hands back the same stale credentials must not spin
                await self._backoff()
                return True
        if is_fatal_consumer_error(error):
            CONSUMER_ERROR_TOTAL.labels(queue=self.logical_name, kind="fatal").inc()
            self.logger.error(
                "Queue consumer stopped on unrecoverable error",
                extra=error_fields(error, logical_name=self.logical_name),
            )
            self._stopping.set()
            return False
        CONSUMER_ERROR_TOTAL.labels(queue=self.logical_name, kind="receive").inc()
        self.logger.error("Queue receive error", extra=error_fields(error, logical_name=self.logical_name))
        await self._backoff()
        return True

    async def _backoff(self) -> None:
        """Sleep for ``error_backoff_seconds``; ``stop()`` cuts the wait short."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=self.options.error_backoff_seconds)
        except asyncio.TimeoutError:
            pass

    async def _process(self, message: RawMessage) -> None:
        timeout_ms = self.options.handle_message_timeout
        try:
            if timeout_ms:
                await asyncio.wait_for(self.handle_message(message), timeout=timeout_ms / 1000.0)
            else:
                await self.handle_message(message)
        except asyncio.TimeoutError as exc:
            CONSUMER_ERROR_TOTAL.labels(queue=self.logical_name, kind="timeout").inc()
            self.logger.error(
                "Queue message processing timed out",
                extra=error_fields(
                    exc,
                    logical_name=self.logical_name,
                    message_id=message.message_id,
                    handle_message_timeout=timeout_ms,
                ),
            )
            return
        except Exception as exc:  # noqa: BLE001
            CONSUMER_ERROR_TOTAL.labels(queue=self.logical_name, kind="processing").inc()
            if not is_already_logged(exc):
                self.logger.error(
                    "Queue processing error",
                    extra=error_fields(exc, logical_name=self.logical_name, message_id=message.message_id),
                )
            return

        try:
            await self.queue.transport.delete(self.queue.url, message.receipt_handle)
        except Exception as exc:  # noqa: BLE001
            CONSUMER_ERROR_TOTAL.labels(queue=self.logical_name, kind="delete").inc()
            self.logger.error(
                "Failed to delete handled queue message",
                extra=error_fields(exc, logical_name=self.logical_name, message_id=message.message_id),
            )
