# iqraquest/tasks/celery_app.py
"""
Celery application configuration for the IqraQuest settlement core.

Redis is the broker and result backend. Periodic sweeps are registered
from ``beat_schedule.get_beat_schedule``.
"""

import logging
import os
from typing import Any, Callable, ParamSpec, Protocol, TypeVar, cast

from celery import Celery
from celery.result import AsyncResult
from celery.signals import setup_logging

from iqraquest.core.config import settings

P = ParamSpec("P")
R = TypeVar("R", covariant=True)

TASK_MODULES = (
    "iqraquest.tasks.escrow_tasks",
    "iqraquest.tasks.payout_tasks",
    "iqraquest.tasks.event_tasks",
    "iqraquest.tasks.maintenance_tasks",
)


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Returns:
        Celery: Configured Celery application instance
    """
    broker_url = os.getenv("CELERY_BROKER_URL") or settings.redis_url
    result_backend = os.getenv("CELERY_RESULT_BACKEND") or broker_url

    celery_app = Celery("iqraquest", broker=broker_url, backend=result_backend)

    celery_app.conf.update(
        {
            "task_serializer": "json",
            "accept_content": ["json"],
            "result_serializer": "json",
            "timezone": "Africa/Lagos",
            "enable_utc": True,
            "result_expires": 3600,
            "worker_prefetch_multiplier": 1,
            "worker_max_tasks_per_child": 1000,
            "task_soft_time_limit": 300,
            "task_time_limit": 600,
            # Money-moving tasks are idempotent, so redelivery after a crash is safe
            "task_acks_late": True,
            "task_reject_on_worker_lost": True,
            "task_default_retry_delay": 60,
            "task_max_retries": 3,
            "worker_hijack_root_logger": False,
            "broker_transport_options": {"visibility_timeout": 3600},
        }
    )
    celery_app.conf.imports = TASK_MODULES
    celery_app.conf.task_routes = {
        "iqraquest.tasks.payout_tasks.*": {"queue": "payments"},
        "iqraquest.tasks.escrow_tasks.*": {"queue": "payments"},
        "iqraquest.tasks.event_tasks.*": {"queue": "notifications"},
        "iqraquest.tasks.maintenance_tasks.*": {"queue": "maintenance"},
    }

    from iqraquest.tasks.beat_schedule import get_beat_schedule

    celery_app.conf.beat_schedule = get_beat_schedule(settings.environment)
    return celery_app


@setup_logging.connect  # type: ignore[misc]
def config_loggers(*args: Any, **kwargs: Any) -> None:
    """Configure logging to integrate with the application's logging setup."""
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


celery_app = create_celery_app()


class TaskWrapper(Protocol[P, R]):
    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> R:
        ...

    delay: "Callable[..., AsyncResult[Any]]"
    apply_async: "Callable[..., AsyncResult[Any]]"


def typed_task(
    *task_args: Any, **task_kwargs: Any
) -> Callable[[Callable[P, R]], TaskWrapper[P, R]]:
    """Return a typed Celery task decorator for mypy."""

    return cast(
        Callable[[Callable[P, R]], TaskWrapper[P, R]],
        celery_app.task(*task_args, **task_kwargs),
    )
