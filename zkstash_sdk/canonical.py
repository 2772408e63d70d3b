"""
Canonical request message used as the wallet signing payload.

The message is ``METHOD|PATH|BODY_HASH|TIMESTAMP``. The server rebuilds the same
string from the request it receives, so every component must be derived from
exactly the bytes and path that go on the wire.
"""
from typing import Optional, Union

from .utils import sha256_hex

EMPTY_BODY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"

Body = Optional[Union[bytes, str]]


def strip_query(path: str) -> str:
    """Drop everything from the first ``?`` onward."""
    idx = path.find("?")
    return path if idx == -1 else path[:idx]


def hash_body(body: Body) -> str:
    """Hex SHA-256 of the raw body; an absent body hashes as the empty string."""
    return sha256_hex(body if body else b"")


def build_canonical_message(method: str, path: str, body: Body, timestamp_ms: int) -> str:
    """
    Build the signable message for a request.

    Args:
        method: HTTP method, any case
        path: Request path; a query string, if present, is ignored
        body: Raw request body bytes (str is UTF-8 encoded), or None
        timestamp_ms: Milliseconds since epoch, sent verbatim as x-wallet-timestamp

    Returns:
        ``UPPER(method)|path|sha256hex(body)|timestamp_ms``
    """
    return "|".join((
        method.upper(),
        strip_query(path),
        hash_body(body),
        str(int(timestamp_ms)),
    ))
