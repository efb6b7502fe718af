"""In-memory transport with SQS-like semantics.

``MemoryTransport`` keeps every queue in process memory and mimics the parts
of SQS the client relies on:
- long polling (``wait_time_seconds``) woken up by sends
- visibility timeouts: a received message is hidden until it is deleted or
  its timeout expires, after which it is delivered again
- receipt handles that change on every delivery
- ``ApproximateReceiveCount`` system attribute
- message attribute filtering by requested names

It never touches the network, so tests run the real client, queues and
consumers against it. Failures can be scripted with ``inject_failure``.

Example:
    >>> transport = MemoryTransport(queue_urls=["http://local/q"])
    >>> await transport.send("http://local/q", envelope)
    >>> [m.body for m in await transport.receive("http://local/q")]
"""

from __future__ import annotations

import asyncio
import hashlib
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

from logical_queues.constants import CODE_NON_EXISTENT_QUEUE, CODE_RECEIPT_HANDLE_INVALID, MAX_BATCH_SIZE
from logical_queues.envelope import AttributeValue, Envelope, RawMessage
from logical_queues.errors import TransportError
from logical_queues.transport import CallerIdentity, SendResult, Transport


@dataclass
class _StoredMessage:
    message_id: str
    body: str
    attributes: dict[str, AttributeValue]
    send_options: dict[str, Any]
    visible_at: float = 0.0
    receipt_handle: Optional[str] = None
    receive_count: int = 0

    def to_raw(self, attribute_names: Optional[Sequence[str]]) -> RawMessage:
        if attribute_names is None or "All" in attribute_names:
            attrs = dict(self.attributes)
        else:
            attrs = {k: v for k, v in self.attributes.items() if k in attribute_names}
        return RawMessage(
            message_id=self.message_id,
            receipt_handle=self.receipt_handle or "",
            body=self.body,
            attributes=attrs,
            system_attributes={"ApproximateReceiveCount": str(self.receive_count)},
        )


@dataclass
class _MemoryQueue:
    url: str
    messages: deque[_StoredMessage] = field(default_factory=deque)

    def claim(self, now: float, max_messages: int, visibility_timeout: float) -> list[_StoredMessage]:
        claimed: list[_StoredMessage] = []
        for msg in self.messages:
            if len(claimed) >= max_messages:
                break
            if msg.visible_at <= now:
                msg.visible_at = now + visibility_timeout
                msg.receipt_handle = uuid.uuid4().hex
                msg.receive_count += 1
                claimed.append(msg)
        return claimed


class MemoryTransport(Transport):
    """Deterministic in-process ``Transport``.

    Queues must exist before use unless ``auto_create`` is set; sending to or
    receiving from an unknown URL fails with the SQS non-existent-queue code.
    """

    def __init__(
        self,
        queue_urls: Iterable[str] = (),
        *,
        auto_create: bool = False,
        default_visibility_timeout: float = 30.0,
        poll_interval: float = 0.05,
        max_message_size: Optional[int] = None,
        max_batch_size: int = MAX_BATCH_SIZE,
        caller_arn: str = "arn:aws:sts::000000000000:assumed-role/local/session",
    ) -> None:
        self._queues: dict[str, _MemoryQueue] = {url: _MemoryQueue(url) for url in queue_urls}
        self.auto_create = auto_create
        self.default_visibility_timeout = default_visibility_timeout
        self.poll_interval = poll_interval
        if max_message_size is not None:
            self.max_message_size = max_message_size
        self.max_batch_size = max_batch_size
        self.caller_arn = caller_arn
        self.reconnect_count = 0
        self.calls: list[tuple[str, str]] = []
        self._failures: dict[str, deque[BaseException]] = defaultdict(deque)
        self._condition: Optional[asyncio.Condition] = None

    def _get_condition(self) -> asyncio.Condition:
        # Created lazily so the transport can be built outside a running loop
        if self._condition is None:
            self._condition = asyncio.Condition()
        return self._condition

    def create_queue(self, url: str) -> None:
        self._queues.setdefault(url, _MemoryQueue(url))

    def inject_failure(self, operation: str, error: BaseException, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` (send/receive/delete/get_caller_identity) raise ``error``."""
        for _ in range(times):
            self._failures[operation].append(error)

    def _maybe_fail(self, operation: str, queue_url: Optional[str] = None) -> None:
        self.calls.append((operation, queue_url or ""))
        pending = self._failures.get(operation)
        if pending:
            raise pending.popleft()

    def _queue(self, url: str) -> _MemoryQueue:
        queue = self._queues.get(url)
        if queue is None:
            if not self.auto_create:
                raise TransportError(
                    "The specified queue does not exist for this wsdl version.",
                    code=CODE_NON_EXISTENT_QUEUE,
                    queue_url=url,
                )
            queue = self._queues[url] = _MemoryQueue(url)
        return queue

    def messages(self, url: str) -> list[RawMessage]:
        """Snapshot of every message currently stored in ``url``, visible or not."""
        return [m.to_raw(None) for m in self._queue(url).messages]

    def approximate_count(self, url: str) -> int:
        return len(self._queue(url).messages)

    async def send(self, queue_url: str, envelope: Envelope, **options: Any) -> SendResult:
        self._maybe_fail("send", queue_url)
        queue = self._queue(queue_url)
        stored = _StoredMessage(
            message_id=str(uuid.uuid4()),
            body=envelope.body,
            attributes=dict(envelope.attributes),
            send_options=dict(options),
        )
        delay = options.get("delay_seconds") or options.get("DelaySeconds")
        if delay:
            stored.visible_at = asyncio.get_running_loop().time() + float(delay)
        queue.messages.append(stored)
        condition = self._get_condition()
        async with condition:
            condition.notify_all()
        return SendResult(
            message_id=stored.message_id,
            md5_of_body=hashlib.md5(envelope.body.encode("utf-8")).hexdigest(),
        )

    async def receive(
        self,
        queue_url: str,
        *,
        max_messages: int = 1,
        wait_time_seconds: int = 0,
        visibility_timeout: Optional[int] = None,
        attribute_names: Optional[Sequence[str]] = None,
    ) -> list[RawMessage]:
        self._maybe_fail("receive", queue_url)
        queue = self._queue(queue_url)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(0, wait_time_seconds)
        timeout = self.default_visibility_timeout if visibility_timeout is None else visibility_timeout
        batch = min(max(1, max_messages), self.max_batch_size)
        condition = self._get_condition()
        async with condition:
            while True:
                claimed = queue.claim(loop.time(), batch, timeout)
                if claimed:
                    return [m.to_raw(attribute_names) for m in claimed]
                remaining = deadline - loop.time()
                if remaining <= 0:
                    return []
                # Wake on sends, and periodically so expired visibility timeouts are noticed
                try:
                    await asyncio.wait_for(condition.wait(), timeout=min(remaining, self.poll_interval))
                except asyncio.TimeoutError:
                    pass

    async def delete(self, queue_url: str, receipt_handle: str) -> None:
        self._maybe_fail("delete", queue_url)
        queue = self._queue(queue_url)
        for msg in queue.messages:
            if msg.receipt_handle == receipt_handle:
                queue.messages.remove(msg)
                return
        raise TransportError(
            f"The receipt handle '{receipt_handle}' is not valid.",
            code=CODE_RECEIPT_HANDLE_INVALID,
            queue_url=queue_url,
        )

    async def get_caller_identity(self) -> CallerIdentity:
        self._maybe_fail("get_caller_identity")
        return CallerIdentity(arn=self.caller_arn)

    async def reconnect(self) -> "MemoryTransport":
        self.reconnect_count += 1
        return self
