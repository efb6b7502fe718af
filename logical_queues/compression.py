"""Message body compression.

Exactly one encoding is supported: ``gzip``. Queue bodies are text, so the
compressed stream travels base64 encoded and the ``Content-Encoding``
attribute tells consumers to reverse it.

>>> header, body = compress(b'{"a":1}', True)
>>> header
'gzip'
>>> decompress(body, header)
b'{"a":1}'
"""

from __future__ import annotations

import base64
import binascii
import gzip
import zlib
from typing import Any, Mapping

from logical_queues.constants import ENCODING_GZIP
from logical_queues.errors import UnsupportedEncoding

SUPPORTED_ENCODING = ENCODING_GZIP


def resolve_encoding(requested: Any) -> str:
    """Return the encoding selected by a compression request.

    ``True`` selects the default encoding; a mapping selects
    ``requested["encoding"]``, which must be the supported one.
    """
    if requested is True:
        return SUPPORTED_ENCODING
    if isinstance(requested, Mapping):
        encoding = requested.get("encoding", SUPPORTED_ENCODING)
        if encoding != SUPPORTED_ENCODING:
            raise UnsupportedEncoding(f"Unsupported compression encoding '{encoding}'", encoding=encoding)
        return SUPPORTED_ENCODING
    raise UnsupportedEncoding(f"Invalid compression option {requested!r}", option=repr(requested))


def compress(raw: bytes, requested: Any) -> tuple[str, str]:
    """Compress ``raw`` and return ``(content_encoding, wire_body)``."""
    encoding = resolve_encoding(requested)
    compressed = gzip.compress(raw, compresslevel=9)
    return encoding, base64.b64encode(compressed).decode("ascii")


def decompress(encoded_body: str, declared_encoding: str) -> bytes:
    """Reverse ``compress`` for a body carrying ``declared_encoding``.

    Raises ``UnsupportedEncoding`` for any encoding other than gzip and
    ``ValueError`` for a body that is not a valid base64 gzip stream.
    """
    if declared_encoding != SUPPORTED_ENCODING:
        raise UnsupportedEncoding(
            f"Unsupported compression encoding '{declared_encoding}'", encoding=declared_encoding
        )
    try:
        return gzip.decompress(base64.b64decode(encoded_body, validate=True))
    except (binascii.Error, OSError, EOFError, zlib.error) as exc:
        raise ValueError(f"Invalid {declared_encoding} body: {exc}") from exc


def is_supported(encoding: str | None) -> bool:
    return encoding == SUPPORTED_ENCODING
