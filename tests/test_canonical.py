"""
Tests for the canonical request message.
"""
import hashlib

from hypothesis import given, settings, strategies as st

from zkstash_sdk.canonical import (
    EMPTY_BODY_SHA256, build_canonical_message, hash_body, strip_query
)

path_strategy = st.from_regex(r"/[a-zA-Z0-9/_.-]{0,40}", fullmatch=True)
query_strategy = st.from_regex(r"[a-zA-Z0-9=&%+._-]{0,40}", fullmatch=True)


def test_empty_body_hash_constant():
    assert EMPTY_BODY_SHA256 == hashlib.sha256(b"").hexdigest()
    assert hash_body(None) == EMPTY_BODY_SHA256
    assert hash_body(b"") == EMPTY_BODY_SHA256
    assert hash_body("") == EMPTY_BODY_SHA256


def test_message_layout():
    body = b'{"agentId":"a1"}'
    message = build_canonical_message("post", "/memories", body, 1700000000000)
    assert message == f"POST|/memories|{hashlib.sha256(body).hexdigest()}|1700000000000"


def test_get_without_body():
    message = build_canonical_message("GET", "/memories/search?query=cats&limit=5", None, 42)
    assert message == f"GET|/memories/search|{EMPTY_BODY_SHA256}|42"


def test_str_body_hashes_as_utf8():
    assert hash_body("héllo") == hashlib.sha256("héllo".encode("utf-8")).hexdigest()


def test_strip_query_keeps_path_without_query():
    assert strip_query("/memories") == "/memories"
    assert strip_query("/memories?") == "/memories"
    assert strip_query("/a?b=1?c=2") == "/a"


@settings(max_examples=100)
@given(path=path_strategy, query=query_strategy, timestamp=st.integers(min_value=0, max_value=2**53))
def test_query_string_never_changes_message(path, query, timestamp):
    """Appending any query string leaves the signed message unchanged."""
    base = build_canonical_message("GET", path, None, timestamp)
    assert build_canonical_message("GET", f"{path}?{query}", None, timestamp) == base


@settings(max_examples=50)
@given(body=st.binary(max_size=256))
def test_body_hash_matches_sha256(body):
    message = build_canonical_message("POST", "/memories", body, 1)
    assert message.split("|")[2] == hashlib.sha256(body).hexdigest()
