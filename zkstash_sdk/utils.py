"""
Utility functions for the zkStash SDK.
"""
import base64
import hashlib
import json
import time
import urllib.parse
from typing import Any, Dict, Optional, Union


def sha256_hex(data: Union[str, bytes, None]) -> str:
    """
    Calculate SHA-256 hash and return as hex string.

    Args:
        data: String or bytes to hash; ``None`` hashes the empty string

    Returns:
        Hex-encoded SHA-256 hash
    """
    if data is None:
        data = b""
    elif isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def encode_json_b64(payload: Dict[str, Any]) -> str:
    """Compact JSON, then standard base64."""
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def decode_json_b64(value: str) -> Dict[str, Any]:
    """
    Inverse of :func:`encode_json_b64`.

    Raises:
        ValueError: If the value is not base64 of a JSON object
    """
    try:
        raw = base64.b64decode(value, validate=True)
        decoded = json.loads(raw.decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        raise ValueError(f"Invalid base64 JSON value: {e}")
    if not isinstance(decoded, dict):
        raise ValueError(f"Expected a JSON object, got {type(decoded).__name__}")
    return decoded


def truncate_address(address: Optional[str], keep: int = 6) -> str:
    """Shorten an address for log output."""
    if not address:
        return "<none>"
    if len(address) <= keep * 2:
        return address
    return f"{address[:keep]}…{address[-4:]}"


def validate_service_url(name: str, url: str) -> None:
    """
    Require https:// for remote endpoints.

    Raises:
        ValueError: If the URL is plain http and not localhost/127.0.0.1
    """
    parsed = urllib.parse.urlparse(url)
    host = parsed.hostname or ""
    is_local = host in ("localhost", "127.0.0.1")
    if parsed.scheme != "https" and not is_local:
        raise ValueError(f"{name} must use https:// for security (got: {parsed.scheme}://)")
