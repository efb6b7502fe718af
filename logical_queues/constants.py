"""Shared constants for envelopes, call events and transport limits.

These values centralize naming so publishers, consumers and the mock broker
agree on the wire format.

Message attributes:
- ``CorrelationId``: always present; ties a delivery back to its publisher.
- ``Content-Encoding``: present when the body was compressed.
- ``ErrorDetail``: present on messages redirected to a dead-letter queue;
  carries the failure message of the handler that rejected it.

Call events (``CallInfo`` observers):
- ``start``: an operation (publish or message handling) began.
- ``finish``: the operation completed, including a successful dead-letter redirect.
- ``error``: the operation failed.
"""
# Message attribute names
ATTR_CORRELATION_ID = "CorrelationId"
ATTR_CONTENT_ENCODING = "Content-Encoding"
ATTR_ERROR_DETAIL = "ErrorDetail"

# Attributes every consumer requests on top of caller supplied ones
REQUIRED_ATTRIBUTE_NAMES = [ATTR_CORRELATION_ID, ATTR_ERROR_DETAIL, ATTR_CONTENT_ENCODING]

# Correlation header key inside QueueContext.headers
CORRELATION_HEADER = "correlationid"

# Attribute data types
DATA_TYPE_STRING = "String"
DATA_TYPE_NUMBER = "Number"
DATA_TYPE_BINARY = "Binary"

# Call events
EVENT_START = "start"
EVENT_FINISH = "finish"
EVENT_ERROR = "error"

# Operation names carried on CallInfo
OP_PUBLISH = "publish"
OP_HANDLE_MESSAGE = "handleQueueMessage"

# Supported compression
ENCODING_GZIP = "gzip"

# SQS limits
MAX_MESSAGE_SIZE_BYTES = 262_144
MAX_BATCH_SIZE = 10
MAX_WAIT_TIME_SECONDS = 20
MAX_VISIBILITY_TIMEOUT = 43_200

DEFAULT_WAIT_TIME_SECONDS = 5
DEFAULT_READERS = 1

# Broker error codes
CODE_NON_EXISTENT_QUEUE = "AWS.SimpleQueueService.NonExistentQueue"
CODE_QUEUE_DOES_NOT_EXIST = "QueueDoesNotExist"
CODE_ACCESS_DENIED = "AccessDenied"
CODE_ACCESS_DENIED_EXCEPTION = "AccessDeniedException"
CODE_EXPIRED_TOKEN = "ExpiredToken"
CODE_EXPIRED_TOKEN_EXCEPTION = "ExpiredTokenException"
CODE_REQUEST_EXPIRED = "RequestExpired"
CODE_RECEIPT_HANDLE_INVALID = "ReceiptHandleIsInvalid"

CREDENTIAL_ERROR_CODES = frozenset({CODE_EXPIRED_TOKEN, CODE_EXPIRED_TOKEN_EXCEPTION, CODE_REQUEST_EXPIRED})
FATAL_CONSUMER_ERROR_CODES = frozenset(
    {CODE_ACCESS_DENIED, CODE_ACCESS_DENIED_EXCEPTION, CODE_NON_EXISTENT_QUEUE, CODE_QUEUE_DOES_NOT_EXIST}
)
