"""
Shared dedup store for bursts of identical events.

Keys live in Redis with a TTL so every worker process sees the same window.
``claim`` returns True the first time a key is seen within the window.
"""

from __future__ import annotations

import logging
from typing import Optional

from iqraquest.core.config import settings
from iqraquest.core.redis import get_sync_redis, namespaced_key

logger = logging.getLogger(__name__)


def claim(key: str, ttl_s: Optional[int] = None) -> bool:
    """Record ``key`` for the dedup window; False when it was already recorded."""
    ttl = ttl_s or settings.notification_dedup_ttl_seconds
    client = get_sync_redis()
    if client is None:
        logger.warning("dedup_redis_unavailable", extra={"key": key})
        return True
    try:
        return bool(client.set(namespaced_key("dedup", key), "1", nx=True, ex=ttl))
    except Exception as exc:
        logger.warning(
            "dedup_claim_failed",
            extra={"key": key, "error": str(exc), "error_type": type(exc).__name__},
        )
        return True


def forget(key: str) -> None:
    client = get_sync_redis()
    if client is None:
        return
    try:
        client.delete(namespaced_key("dedup", key))
    except Exception as exc:
        logger.warning("dedup_forget_failed", extra={"key": key, "error": str(exc)})
