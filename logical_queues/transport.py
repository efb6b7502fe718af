"""Transport capability consumed by logical queues.

A transport moves envelopes to and from physical queues addressed by URL.
Two implementations ship with the package: ``SqsTransport`` (boto3) and
``MemoryTransport`` (in-process, deterministic, for tests). Everything above
this interface, from the handling pipeline to the registry, is transport
agnostic.

Failures are raised as ``TransportError`` with the broker's error code.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from logical_queues.constants import MAX_BATCH_SIZE, MAX_MESSAGE_SIZE_BYTES
from logical_queues.envelope import Envelope, RawMessage


@dataclass
class SendResult:
    message_id: str
    md5_of_body: Optional[str] = None
    sequence_number: Optional[str] = None


@dataclass
class CallerIdentity:
    arn: str
    account: Optional[str] = None
    user_id: Optional[str] = None


class Transport(ABC):
    """Abstract queue transport."""

    max_message_size: int = MAX_MESSAGE_SIZE_BYTES
    max_batch_size: int = MAX_BATCH_SIZE

    @abstractmethod
    async def send(self, queue_url: str, envelope: Envelope, **options: Any) -> SendResult:
        """Send one envelope to ``queue_url``."""

    @abstractmethod
    async def receive(
        self,
        queue_url: str,
        *,
        max_messages: int = 1,
        wait_time_seconds: int = 0,
        visibility_timeout: Optional[int] = None,
        attribute_names: Optional[Sequence[str]] = None,
    ) -> list[RawMessage]:
        """Long-poll ``queue_url`` for up to ``max_messages`` messages."""

    @abstractmethod
    async def delete(self, queue_url: str, receipt_handle: str) -> None:
        """Acknowledge a received message."""

    @abstractmethod
    async def get_caller_identity(self) -> CallerIdentity:
        """Return the identity the transport authenticates as."""

    async def reconnect(self) -> "Transport":
        """Re-acquire credentials. Returns the transport to use from now on."""
        return self

    async def close(self) -> None:
        return None
