# iqraquest/core/redis.py
"""
Sync Redis client shared by job locks and the notification dedup store.

The client is created lazily and cached per process. When Redis cannot be
reached ``get_sync_redis`` returns None and callers decide how to degrade.
"""

import logging
import threading
from typing import Optional

from redis import Redis

from iqraquest.core.config import settings

logger = logging.getLogger(__name__)

_SYNC_REDIS: Optional[Redis] = None
_SYNC_REDIS_LOCK = threading.Lock()


def namespaced_key(kind: str, key: str) -> str:
    return f"{settings.redis_namespace}:{kind}:{key}"


def get_sync_redis() -> Optional[Redis]:
    global _SYNC_REDIS
    if _SYNC_REDIS is not None:
        return _SYNC_REDIS
    with _SYNC_REDIS_LOCK:
        if _SYNC_REDIS is not None:
            return _SYNC_REDIS
        try:
            client = Redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            client.ping()
        except Exception as exc:
            logger.warning("sync_redis_unavailable: %s", exc)
            return None
        _SYNC_REDIS = client
        return _SYNC_REDIS
