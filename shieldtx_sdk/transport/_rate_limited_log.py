"""
Thread-safe rate-limited logging utilities.

Used by loops that poll an unreachable node, so the same warning is not
emitted on every attempt.
"""
import logging
import threading
from typing import Dict, Optional

from cachetools import TTLCache

logger = logging.getLogger(__name__)

# One cache per interval, so each entry expires after its own interval
_log_caches: Dict[int, TTLCache] = {}
_log_cache_lock = threading.RLock()


def rate_limited_log(
    message: str,
    level: str = "warning",
    interval: int = 60,
    logger_instance: Optional[logging.Logger] = None
) -> bool:
    """
    Log a message at most once per interval, in a thread-safe manner.

    Args:
        message: Message to log
        level: Log level (debug, info, warning, error, critical)
        interval: Minimum interval between identical logs in seconds
        logger_instance: Logger to use (defaults to module logger)

    Returns:
        True if the message was logged, False if it was suppressed
    """
    log_instance = logger_instance or logger
    log_method = getattr(log_instance, level.lower(), log_instance.warning)
    key = f"{level}:{message}"

    with _log_cache_lock:
        cache = _log_caches.get(interval)
        if cache is None:
            cache = _log_caches[interval] = TTLCache(maxsize=100, ttl=interval)
        if key in cache:
            return False
        log_method(message)
        cache[key] = True
        return True


def reset() -> None:
    """Forget every suppressed message."""
    with _log_cache_lock:
        _log_caches.clear()
