"""
Tests for the deadline / cancellation token.
"""
import threading
import time

import pytest

from zkstash_sdk.deadline import Deadline


def test_negative_timeout_rejected():
    with pytest.raises(ValueError):
        Deadline(-1)
    with pytest.raises(ValueError):
        Deadline(None)


def test_zero_timeout_is_expired():
    deadline = Deadline(0)
    assert deadline.expired()
    assert deadline.sleep(1) is False


def test_sleep_is_bounded_by_deadline():
    deadline = Deadline(0.05)
    start = time.monotonic()
    while deadline.sleep(10):
        pass
    assert time.monotonic() - start < 1
    assert deadline.remaining() == 0


def test_cancel_from_another_thread():
    event = threading.Event()
    deadline = Deadline(30, cancel_event=event)
    threading.Timer(0.05, event.set).start()

    start = time.monotonic()
    assert deadline.sleep(10) is False
    assert time.monotonic() - start < 5
    assert deadline.cancelled
    assert deadline.expired()


def test_remaining_before_expiry():
    deadline = Deadline(30)
    assert 0 < deadline.remaining() <= 30
    assert not deadline.expired()
    deadline.cancel()
    assert deadline.expired()
