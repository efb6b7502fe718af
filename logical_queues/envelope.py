"""Wire envelope: building outbound messages and decoding inbound ones.

An ``Envelope`` is what a queue publishes: a text body (JSON, optionally
gzip+base64) and string or binary message attributes. A ``RawMessage`` is what a
transport hands back on receive. ``decode_message`` turns a ``RawMessage``
into the parsed body plus the ``MessageMetadata`` a handler sees.

Example:
    >>> from logical_queues.context import QueueContext
    >>> env = build_envelope(QueueContext(), {"id": 1}, correlation_id="c-1")
    >>> env.body, env.attributes["CorrelationId"].string_value
    ('{"id":1}', 'c-1')
"""
from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

from logical_queues import compression
from logical_queues.constants import (
    ATTR_CONTENT_ENCODING,
    ATTR_CORRELATION_ID,
    DATA_TYPE_BINARY,
    DATA_TYPE_NUMBER,
    DATA_TYPE_STRING,
)
from logical_queues.context import get_correlation_id
from logical_queues.errors import ParseFailure


@dataclass(frozen=True)
class AttributeValue:
    """A single message attribute, as SQS models it.

    Binary attributes keep their bytes in ``binary_value`` and leave
    ``string_value`` empty.
    """
    string_value: str = ""
    data_type: str = DATA_TYPE_STRING
    binary_value: Optional[bytes] = None

    def to_wire(self) -> dict[str, Any]:
        if self.binary_value is not None:
            return {"DataType": self.data_type, "BinaryValue": self.binary_value}
        return {"DataType": self.data_type, "StringValue": self.string_value}

    @classmethod
    def from_wire(cls, value: Mapping[str, Any]) -> "AttributeValue":
        data_type = str(value.get("DataType", DATA_TYPE_STRING))
        if value.get("BinaryValue") is not None:
            return cls(data_type=data_type, binary_value=bytes(value["BinaryValue"]))
        return cls(string_value=str(value.get("StringValue", "")), data_type=data_type)


AttributeInput = Union[AttributeValue, str, bytes, int, float, Mapping[str, Any]]


def to_attribute(value: AttributeInput) -> AttributeValue:
    """Coerce a caller supplied attribute value into an ``AttributeValue``."""
    if isinstance(value, AttributeValue):
        return value
    if isinstance(value, Mapping):
        return AttributeValue.from_wire(value)
    if isinstance(value, bytes):
        return AttributeValue(data_type=DATA_TYPE_BINARY, binary_value=value)
    if isinstance(value, bool):
        return AttributeValue(string_value=str(value).lower())
    if isinstance(value, (int, float)):
        return AttributeValue(string_value=str(value), data_type=DATA_TYPE_NUMBER)
    return AttributeValue(string_value=str(value))


def normalize_attributes(attributes: Optional[Mapping[str, AttributeInput]]) -> dict[str, AttributeValue]:
    return {str(k): to_attribute(v) for k, v in (attributes or {}).items()}


def attribute_string(attributes: Mapping[str, AttributeValue], name: str) -> Optional[str]:
    value = attributes.get(name)
    return value.string_value if value is not None else None


@dataclass
class Envelope:
    body: str
    attributes: dict[str, AttributeValue] = field(default_factory=dict)

    @property
    def correlation_id(self) -> Optional[str]:
        return attribute_string(self.attributes, ATTR_CORRELATION_ID)

    @property
    def content_encoding(self) -> Optional[str]:
        return attribute_string(self.attributes, ATTR_CONTENT_ENCODING)

    def wire_attributes(self) -> dict[str, dict[str, Any]]:
        return {name: value.to_wire() for name, value in self.attributes.items()}

    def size(self) -> int:
        """Size in bytes as the broker counts it: body plus attribute names, types and values."""
        total = len(self.body.encode("utf-8"))
        for name, value in self.attributes.items():
            total += len(name.encode("utf-8"))
            total += len(value.data_type.encode("utf-8"))
            total += len(value.string_value.encode("utf-8"))
            if value.binary_value is not None:
                total += len(value.binary_value)
        return total


@dataclass
class RawMessage:
    """A message as received from a transport."""
    message_id: str
    receipt_handle: str
    body: str
    attributes: dict[str, AttributeValue] = field(default_factory=dict)
    system_attributes: dict[str, str] = field(default_factory=dict)

    @property
    def correlation_id(self) -> Optional[str]:
        return attribute_string(self.attributes, ATTR_CORRELATION_ID)


@dataclass
class MessageMetadata:
    """Envelope information passed to handlers alongside the parsed body.

    ``attributes`` never contains a ``Content-Encoding`` the pipeline already
    resolved; unknown encodings are left in place for the application.
    """
    message_id: str
    receipt_handle: str
    attributes: dict[str, AttributeValue] = field(default_factory=dict)
    system_attributes: dict[str, str] = field(default_factory=dict)

    @property
    def correlation_id(self) -> Optional[str]:
        return attribute_string(self.attributes, ATTR_CORRELATION_ID)

    @property
    def receive_count(self) -> int:
        return int(self.system_attributes.get("ApproximateReceiveCount", "1"))


@dataclass
class DecodedMessage:
    body: Any
    metadata: MessageMetadata
    content_encoding: Optional[str] = None


def encode_body(body: Any, compress_option: Any = None) -> tuple[str, Optional[str]]:
    """Serialize ``body`` to JSON and optionally compress it.

    Returns ``(wire_body, content_encoding)``; the encoding is ``None`` when
    the body is sent uncompressed. A falsy ``compress_option`` disables
    compression.
    """
    text = json.dumps(body, separators=(",", ":"))
    if not compress_option:
        return text, None
    encoding, wire_body = compression.compress(text.encode("utf-8"), compress_option)
    return wire_body, encoding


def build_envelope(
    context: Any,
    body: Any,
    *,
    compression_option: Any = None,
    correlation_id: Optional[str] = None,
    attributes: Optional[Mapping[str, AttributeInput]] = None,
) -> Envelope:
    """Build the envelope a logical queue publishes.

    The correlation id is taken from ``correlation_id``, then the context's
    ``correlationid`` header, and is otherwise freshly generated. A stale
    ``Content-Encoding`` among ``attributes`` is dropped; it is only set when
    this envelope is compressed.
    """
    wire_body, encoding = encode_body(body, compression_option)
    merged = normalize_attributes(attributes)
    merged.pop(ATTR_CONTENT_ENCODING, None)
    if encoding is not None:
        merged[ATTR_CONTENT_ENCODING] = AttributeValue(string_value=encoding)
    cid = correlation_id or get_correlation_id(context) or str(uuid.uuid4())
    merged[ATTR_CORRELATION_ID] = AttributeValue(string_value=cid)
    return Envelope(body=wire_body, attributes=merged)


def decode_message(message: RawMessage) -> DecodedMessage:
    """Decode an inbound message body according to its ``Content-Encoding``.

    Raises ``ParseFailure`` when the body cannot be decompressed or is not
    valid JSON.
    """
    attributes = dict(message.attributes)
    encoding = attribute_string(attributes, ATTR_CONTENT_ENCODING)
    try:
        if compression.is_supported(encoding):
            raw = compression.decompress(message.body, encoding)  # type: ignore[arg-type]
            body = json.loads(raw.decode("utf-8"))
            attributes.pop(ATTR_CONTENT_ENCODING, None)
        else:
            body = json.loads(message.body)
    except (ValueError, UnicodeDecodeError) as exc:
        raise ParseFailure(
            f"Failed to parse queue message body as JSON: {exc}",
            message_id=message.message_id,
            content_encoding=encoding,
        ) from exc
    metadata = MessageMetadata(
        message_id=message.message_id,
        receipt_handle=message.receipt_handle,
        attributes=attributes,
        system_attributes=dict(message.system_attributes),
    )
    return DecodedMessage(body=body, metadata=metadata, content_encoding=encoding if compression.is_supported(encoding) else None)
