"""Execution context passed to publishers and handlers.

A ``QueueContext`` carries the logger to use and the inbound request
headers, most importantly the correlation id. Publishing reads the
correlation id from the context; the handling pipeline derives a fresh
context per message through the configured context function so handlers see
the publisher's correlation id.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from logical_queues.constants import ATTR_CORRELATION_ID, CORRELATION_HEADER


@dataclass(frozen=True)
class QueueContext:
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("logical_queues"))
    headers: dict[str, str] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def correlation_id(self) -> Optional[str]:
        return self.headers.get(CORRELATION_HEADER)

    def with_correlation_id(self, correlation_id: Optional[str]) -> "QueueContext":
        headers = dict(self.headers)
        if correlation_id is None:
            headers.pop(CORRELATION_HEADER, None)
        else:
            headers[CORRELATION_HEADER] = correlation_id
        return replace(self, headers=headers)


def get_context_logger(context: Any) -> logging.Logger:
    """Return the logger carried by ``context``, falling back to the package logger."""
    logger = getattr(context, "logger", None)
    if logger is None:
        return logging.getLogger("logical_queues")
    return logger


def get_correlation_id(context: Any) -> Optional[str]:
    headers = getattr(context, "headers", None) or {}
    return headers.get(CORRELATION_HEADER)


def correlation_context(context: QueueContext, message: Any) -> QueueContext:
    """Context function that copies the message's ``CorrelationId`` into the context headers.

    Usable as ``ClientConfig(context_function=correlation_context)``.
    """
    attributes = getattr(message, "attributes", None) or {}
    value = attributes.get(ATTR_CORRELATION_ID)
    correlation_id = getattr(value, "string_value", value)
    return context.with_correlation_id(correlation_id)
