"""
Thread-safe rate-limited logging.

Polling loops (bridge credit, execution tracking) hit the same transient
failure many times in a row; this keeps one line per failure kind in the log
per interval instead of one per poll.
"""
import logging
import threading
import time
from typing import Optional

from cachetools import TTLCache

logger = logging.getLogger(__name__)

# Keyed by logger/level/message, value is the monotonic time it was last emitted.
# Entries expire after an hour so the cache never grows without bound.
_log_cache = TTLCache(maxsize=256, ttl=3600)
_log_cache_lock = threading.RLock()


def rate_limited_log(
    message: str,
    level: str = "warning",
    interval: int = 60,
    logger_instance: Optional[logging.Logger] = None
) -> bool:
    """
    Log a message unless the same message was logged within ``interval`` seconds.

    Args:
        message: Message to log
        level: Log level (debug, info, warning, error, critical)
        interval: Minimum interval between identical messages in seconds
        logger_instance: Logger to use (defaults to module logger)

    Returns:
        True if the message was emitted, False if it was suppressed
    """
    log_instance = logger_instance or logger
    log_method = getattr(log_instance, level.lower(), log_instance.warning)

    key = f"{log_instance.name}:{level}:{message}"

    with _log_cache_lock:
        now = time.monotonic()
        last = _log_cache.get(key)
        if last is not None and now - last < interval:
            return False
        log_method(message)
        _log_cache[key] = now
    return True


def reset() -> None:
    """Forget every suppressed message"""
    with _log_cache_lock:
        _log_cache.clear()
