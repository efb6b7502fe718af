"""Amazon SQS transport built on boto3.

This module wraps the boto3 SQS and STS clients to provide the ``Transport``
interface:
- Sending envelopes with their message attributes
- Long-polling for messages and acknowledging them
- Resolving the caller identity for assumed-role checks
- Rebuilding clients when credentials expire

boto3 is synchronous, so every call runs in a worker thread via
``asyncio.to_thread`` to keep the event loop free for other readers.

Example:
    >>> transport = SqsTransport(EndpointConfig(region="us-east-1"))
    >>> await transport.send(url, envelope)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Sequence

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from logical_queues.config import EndpointConfig
from logical_queues.constants import MAX_BATCH_SIZE, MAX_VISIBILITY_TIMEOUT, MAX_WAIT_TIME_SECONDS
from logical_queues.envelope import AttributeValue, Envelope, RawMessage
from logical_queues.errors import TransportError
from logical_queues.transport import CallerIdentity, SendResult, Transport

logger = logging.getLogger(__name__)

# snake_case publish options accepted by send(); anything else is passed as-is
_SEND_OPTIONS = {
    "delay_seconds": "DelaySeconds",
    "message_group_id": "MessageGroupId",
    "message_deduplication_id": "MessageDeduplicationId",
}


def _translate(error: Exception, operation: str, queue_url: Optional[str] = None) -> TransportError:
    """Convert a botocore failure into a ``TransportError`` carrying the AWS error code."""
    if isinstance(error, ClientError):
        err = error.response.get("Error", {})
        code = err.get("Code") or "ClientError"
        message = err.get("Message") or str(error)
    else:
        code = error.__class__.__name__
        message = str(error)
    return TransportError(message, code=code, operation=operation, queue_url=queue_url)


class SqsTransport(Transport):
    """``Transport`` backed by one boto3 SQS client per endpoint."""

    def __init__(self, endpoint: EndpointConfig, session: Optional[boto3.session.Session] = None) -> None:
        self.endpoint = endpoint
        self._session = session
        self._client = self._create_client("sqs")

    def _client_kwargs(self) -> dict[str, Any]:
        ep = self.endpoint
        kwargs: dict[str, Any] = {}
        if ep.region:
            kwargs["region_name"] = ep.region
        if ep.endpoint:
            kwargs["endpoint_url"] = ep.endpoint
        if ep.access_key_id and ep.secret_access_key:
            kwargs["aws_access_key_id"] = ep.access_key_id
            kwargs["aws_secret_access_key"] = ep.secret_access_key
            if ep.session_token:
                kwargs["aws_session_token"] = ep.session_token
        return kwargs

    def _create_client(self, service: str) -> Any:
        session = self._session or boto3.session.Session()
        kwargs = self._client_kwargs()
        if service != "sqs":
            # Local brokers only emulate SQS; identity calls go to the real STS
            kwargs.pop("endpoint_url", None)
        return session.client(service, **kwargs)

    async def send(self, queue_url: str, envelope: Envelope, **options: Any) -> SendResult:
        params: dict[str, Any] = {_SEND_OPTIONS.get(k, k): v for k, v in options.items()}
        params.update(
            QueueUrl=queue_url,
            MessageBody=envelope.body,
            MessageAttributes=envelope.wire_attributes(),
        )
        try:
            response = await asyncio.to_thread(self._client.send_message, **params)
        except (ClientError, BotoCoreError) as exc:
            raise _translate(exc, "send", queue_url) from exc
        return SendResult(
            message_id=response["MessageId"],
            md5_of_body=response.get("MD5OfMessageBody"),
            sequence_number=response.get("SequenceNumber"),
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
        params: dict[str, Any] = {
            "QueueUrl": queue_url,
            "MaxNumberOfMessages": min(max(1, max_messages), MAX_BATCH_SIZE),
            "WaitTimeSeconds": max(0, min(wait_time_seconds, MAX_WAIT_TIME_SECONDS)),
            "AttributeNames": ["All"],
            "MessageAttributeNames": list(attribute_names) if attribute_names else ["All"],
        }
        if visibility_timeout is not None:
            params["VisibilityTimeout"] = max(0, min(visibility_timeout, MAX_VISIBILITY_TIMEOUT))
        try:
            response = await asyncio.to_thread(self._client.receive_message, **params)
        except (ClientError, BotoCoreError) as exc:
            raise _translate(exc, "receive", queue_url) from exc
        return [self._convert_message(m) for m in response.get("Messages", [])]

    @staticmethod
    def _convert_message(sqs_msg: dict[str, Any]) -> RawMessage:
        attributes = {
            name: AttributeValue.from_wire(value)
            for name, value in (sqs_msg.get("MessageAttributes") or {}).items()
        }
        return RawMessage(
            message_id=sqs_msg["MessageId"],
            receipt_handle=sqs_msg["ReceiptHandle"],
            body=sqs_msg.get("Body", ""),
            attributes=attributes,
            system_attributes=dict(sqs_msg.get("Attributes") or {}),
        )

    async def delete(self, queue_url: str, receipt_handle: str) -> None:
        try:
            await asyncio.to_thread(self._client.delete_message, QueueUrl=queue_url, ReceiptHandle=receipt_handle)
        except (ClientError, BotoCoreError) as exc:
            raise _translate(exc, "delete", queue_url) from exc

    async def get_caller_identity(self) -> CallerIdentity:
        sts = self._create_client("sts")
        try:
            response = await asyncio.to_thread(sts.get_caller_identity)
        except (ClientError, BotoCoreError) as exc:
            raise _translate(exc, "get_caller_identity") from exc
        return CallerIdentity(arn=response["Arn"], account=response.get("Account"), user_id=response.get("UserId"))

    async def reconnect(self) -> "SqsTransport":
        """Rebuild the SQS client from a fresh session so refreshed credentials are picked up."""
        logger.info("Reconnecting SQS client", extra={"endpoint": self.endpoint.endpoint, "region": self.endpoint.region})
        self._session = None
        self._client = await asyncio.to_thread(self._create_client, "sqs")
        return self
