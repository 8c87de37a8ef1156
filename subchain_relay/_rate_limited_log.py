"""
Thread-safe rate-limited logging.

The live poll loop can fail on every tick while the rootchain is down; this
keeps one line per distinct message per interval instead of one per tick.
"""
import logging
import threading
from typing import Optional

from cachetools import TTLCache

logger = logging.getLogger(__name__)

# Keys live for one hour at most; per-call intervals are enforced with the
# timestamp stored as value.
_log_cache: TTLCache = TTLCache(maxsize=100, ttl=3600)
_log_cache_lock = threading.RLock()


def rate_limited_log(
    message: str,
    level: str = "warning",
    interval: int = 60,
    logger_instance: Optional[logging.Logger] = None,
    now: Optional[float] = None,
) -> bool:
    """
    Log a message unless the same message was logged at the same level
    within the last ``interval`` seconds.

    Args:
        message: Message to log
        level: Log level (debug, info, warning, error, critical)
        interval: Minimum interval between identical logs in seconds
        logger_instance: Logger to use (defaults to module logger)
        now: Current time, for tests (defaults to the cache timer)

    Returns:
        True if the message was logged
    """
    log_instance = logger_instance or logger
    log_method = getattr(log_instance, level.lower(), log_instance.warning)
    key = f"{level}:{message}"

    with _log_cache_lock:
        current = _log_cache.timer() if now is None else now
        last = _log_cache.get(key)
        if last is not None and current - last < interval:
            return False
        log_method(message)
        _log_cache[key] = current
        return True


def reset_rate_limits() -> None:
    """Forget every logged message"""
    with _log_cache_lock:
        _log_cache.clear()
