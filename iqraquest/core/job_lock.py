"""
Redis-backed mutual exclusion for scheduled sweeps.

A sweep takes ``job_lock(name)`` before it starts. If another worker still
holds the lock the new invocation is skipped. When Redis is unavailable the
lock fails open: each item a sweep touches is mutated atomically under row
locks and status guards, so an overlapping run can only repeat no-ops.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
import time
from typing import Iterator, Optional

from iqraquest.core.config import settings
from iqraquest.core.redis import get_sync_redis, namespaced_key
from iqraquest.monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)


def _lock_key(job_name: str) -> str:
    return namespaced_key("lock", f"job:{job_name}")


def acquire_job_lock(job_name: str, ttl_s: Optional[int] = None) -> bool:
    ttl = ttl_s or settings.job_lock_ttl_seconds
    client = get_sync_redis()
    if client is None:
        prometheus_metrics.record_job_lock(job_name, "redis_unavailable")
        logger.warning("job_lock_redis_unavailable", extra={"job": job_name})
        return True
    try:
        acquired = bool(client.set(_lock_key(job_name), str(time.time()), nx=True, ex=ttl))
    except Exception as exc:
        prometheus_metrics.record_job_lock(job_name, "error")
        logger.warning(
            "job_lock_acquire_failed",
            extra={"job": job_name, "error": str(exc), "error_type": type(exc).__name__},
        )
        return True
    prometheus_metrics.record_job_lock(job_name, "acquired" if acquired else "blocked")
    return acquired


def release_job_lock(job_name: str) -> None:
    client = get_sync_redis()
    if client is None:
        return
    try:
        client.delete(_lock_key(job_name))
    except Exception as exc:
        logger.warning(
            "job_lock_release_failed",
            extra={"job": job_name, "error": str(exc), "error_type": type(exc).__name__},
        )


@contextmanager
def job_lock(job_name: str, ttl_s: Optional[int] = None) -> Iterator[bool]:
    """Yield True when this invocation owns the lock, False when it should skip."""
    acquired = acquire_job_lock(job_name, ttl_s=ttl_s)
    try:
        yield acquired
    finally:
        if acquired:
            release_job_lock(job_name)
