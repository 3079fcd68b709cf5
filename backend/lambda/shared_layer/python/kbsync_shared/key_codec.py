"""kbsync_shared.key_codec — S3 notification key decoding.

S3 event notifications URL-encode object keys: spaces arrive as ``+`` and
other reserved characters are percent-escaped. The decoded key is the
document name used on the knowledge-base side.

Two keys that decode to the same name are indistinguishable remotely.
"""

from __future__ import annotations

from urllib.parse import unquote

__all__ = ["decode_key"]


def decode_key(encoded_key: str) -> str:
    """Percent-decode ``encoded_key``, then turn every literal ``+`` into a space.

    >>> decode_key("a+b%20c")
    'a b c'
    """
    return unquote(encoded_key).replace("+", " ")
