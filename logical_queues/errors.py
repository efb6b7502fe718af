"""Exception types raised by the queue client, pipeline and transports.

Every failure carries a machine-readable ``code`` so callers can branch on
the kind of error, a ``domain`` naming the component that raised it, and a
``details`` mapping of structured context for logging.

``already_logged`` is set by the message handling pipeline once it has
written a log line for the failure. Consumers check it so the same failure is
not logged twice.

Handlers ask for a dead-letter redirect by raising ``DeadLetterError``
(or calling ``reject``):

>>> async def handler(ctx, body, metadata):
...     if not body.get("order_id"):
...         reject("order_id is required")
"""
from __future__ import annotations

from typing import Any, NoReturn, Optional

from logical_queues.constants import CREDENTIAL_ERROR_CODES, FATAL_CONSUMER_ERROR_CODES


class QueueError(Exception):
    """Base class for all queue errors."""

    code = "QueueError"
    domain = "QueueClient"

    def __init__(self, message: str, *, code: Optional[str] = None, **details: Any) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        self.details: dict[str, Any] = dict(details)
        self.already_logged = False

    @property
    def message(self) -> str:
        return str(self)

    def with_details(self, **fields: Any) -> "QueueError":
        """Attach structured context to the error and return the same instance."""
        self.details.update(fields)
        return self


class InvalidQueue(QueueError):
    """Raised when a logical queue name is not configured."""

    code = "InvalidQueue"

    def __init__(self, logical_name: str) -> None:
        super().__init__(f"Unable to find a logical queue named '{logical_name}'", logical_name=logical_name)
        self.logical_name = logical_name


class UnsupportedEncoding(QueueError):
    """Raised for a compression request the codec cannot honor."""

    code = "InvalidEncoding"
    domain = "Compression"


class MessageTooLong(QueueError):
    """Raised when an encoded message exceeds the transport size limit."""

    code = "MessageTooLong"

    def __init__(self, size: int, limit: int, **details: Any) -> None:
        super().__init__(f"Message of {size} bytes exceeds the {limit} byte limit", size=size, limit=limit, **details)
        self.size = size
        self.limit = limit


class TransportError(QueueError):
    """Failure reported by the broker, carrying the broker's error code."""

    code = "TransportError"
    domain = "Transport"


class QueueConfigurationError(QueueError):
    """Invalid client or queue configuration, detected at runtime."""

    code = "InvalidConfiguration"


class ParseFailure(QueueError):
    """The message body could not be decoded into JSON."""

    code = "ParseFailure"
    domain = "MessagePipeline"


class HandlerFailure(QueueError):
    """The application handler raised; the original exception is ``__cause__``."""

    code = "HandlerFailure"
    domain = "MessagePipeline"

    def __init__(self, error: BaseException, **details: Any) -> None:
        super().__init__(str(error), error_type=error.__class__.__name__, **details)
        self.error = error


class DeadLetterMisconfigured(HandlerFailure):
    """A handler asked for a dead-letter redirect but the queue has no dead-letter queue."""

    code = "DeadLetterMisconfigured"


class HandlerCancelled(QueueError):
    """Handling was cancelled before the handler returned, usually by a timeout."""

    code = "HandlerCancelled"
    domain = "MessagePipeline"

    def __init__(self, **details: Any) -> None:
        super().__init__("Message handling was cancelled before it finished", **details)


class DeadLetterError(Exception):
    """Raised by handlers to redirect the current message to a dead-letter queue.

    ``dead_letter`` names the target logical queue. When it is ``None`` the
    dead-letter queue configured for the consuming queue is used.
    """

    def __init__(self, message: str, dead_letter: Optional[str] = None) -> None:
        super().__init__(message)
        self.dead_letter = dead_letter

    @property
    def message(self) -> str:
        return str(self)


def reject(message: str, dead_letter: Optional[str] = None) -> NoReturn:
    """Raise a ``DeadLetterError`` for the message being handled."""
    raise DeadLetterError(message, dead_letter)


def error_code(error: BaseException) -> Optional[str]:
    """Return the broker or queue error code of an exception, if any."""
    return getattr(error, "code", None)


def is_credential_error(error: BaseException) -> bool:
    """Return True for expired or invalid credential errors that warrant a reconnect."""
    return error_code(error) in CREDENTIAL_ERROR_CODES


def is_fatal_consumer_error(error: BaseException) -> bool:
    """Return True for permission or missing-queue errors that should stop a consumer."""
    return error_code(error) in FATAL_CONSUMER_ERROR_CODES


def is_already_logged(error: BaseException) -> bool:
    return bool(getattr(error, "already_logged", False))
