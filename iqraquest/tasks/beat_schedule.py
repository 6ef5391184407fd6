# iqraquest/tasks/beat_schedule.py
"""
Celery Beat schedule for the settlement sweeps.

Crontab times are in the Celery app timezone (Africa/Lagos).
"""

from typing import Any

from celery.schedules import crontab

CELERYBEAT_SCHEDULE: dict[str, dict[str, Any]] = {
    "detect-no-shows": {
        "task": "iqraquest.tasks.escrow_tasks.detect_no_shows",
        "schedule": crontab(minute="*/5"),
        "options": {"queue": "payments", "priority": 8},
    },
    "release-eligible-escrow": {
        "task": "iqraquest.tasks.escrow_tasks.release_eligible_escrow",
        "schedule": crontab(minute=0),
        "options": {"queue": "payments", "priority": 7},
    },
    "verify-pending-charges": {
        "task": "iqraquest.tasks.maintenance_tasks.verify_pending_charges",
        "schedule": crontab(minute=30),
        "options": {"queue": "maintenance", "priority": 5},
    },
    "process-automatic-payouts": {
        "task": "iqraquest.tasks.payout_tasks.process_automatic_payouts",
        "schedule": crontab(hour=9, minute=0),
        "options": {"queue": "payments", "priority": 6},
    },
    "purge-webhook-events": {
        "task": "iqraquest.tasks.maintenance_tasks.purge_webhook_events",
        "schedule": crontab(hour=4, minute=0),
        "options": {"queue": "maintenance", "priority": 2},
    },
    "drain-event-jobs": {
        "task": "iqraquest.tasks.event_tasks.drain_event_jobs",
        "schedule": crontab(minute="*"),
        "options": {"queue": "notifications", "priority": 5},
    },
}

# Per-environment overrides; development runs sweeps more often for manual testing
SCHEDULE_CONFIG: dict[str, dict[str, dict[str, Any]]] = {
    "development": {
        "release-eligible-escrow": {
            "task": "iqraquest.tasks.escrow_tasks.release_eligible_escrow",
            "schedule": crontab(minute="*/10"),
            "options": {"queue": "payments"},
        },
    },
}


def get_beat_schedule(environment: str = "production") -> dict[str, dict[str, Any]]:
    """
    Get the beat schedule for the specified environment.

    Args:
        environment: The environment name (production, development, test)

    Returns:
        Mapping of schedule entry name to Celery beat configuration dict
    """
    base: dict[str, dict[str, Any]] = dict(CELERYBEAT_SCHEDULE)
    overrides = SCHEDULE_CONFIG.get(environment)
    if overrides:
        base.update(overrides)
    return base
