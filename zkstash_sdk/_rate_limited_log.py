"""
Thread-safe rate-limited logging utilities.

Used for warnings that can repeat on every call, such as a server that keeps
sending a challenge shape the SDK does not recognize.
"""
import logging
import threading
from typing import Optional

from cachetools import TLRUCache

logger = logging.getLogger(__name__)

# Values are expiry times; each entry lives exactly as long as its own interval
_log_cache: TLRUCache = TLRUCache(maxsize=256, ttu=lambda _key, expires_at, _now: expires_at)
_log_cache_lock = threading.RLock()


def rate_limited_log(
    message: str,
    level: str = "warning",
    interval: int = 3600,
    logger_instance: Optional[logging.Logger] = None
) -> bool:
    """
    Log a message at most once per ``interval`` seconds, in a thread-safe manner.

    Args:
        message: Message to log
        level: Log level (debug, info, warning, error, critical)
        interval: Suppression window in seconds
        logger_instance: Logger to use (defaults to module logger)

    Returns:
        True if the message was emitted, False if it was suppressed
    """
    log_instance = logger_instance or logger
    log_method = getattr(log_instance, level.lower(), log_instance.warning)
    key = f"{log_instance.name}:{level}:{message}"

    with _log_cache_lock:
        expires_at = _log_cache.get(key)
        now = _log_cache.timer()
        if expires_at is not None and now < expires_at:
            return False
        log_method(message)
        _log_cache[key] = now + interval
        return True


def reset_rate_limited_log() -> None:
    """Forget suppressed messages (used by tests)."""
    with _log_cache_lock:
        _log_cache.clear()
