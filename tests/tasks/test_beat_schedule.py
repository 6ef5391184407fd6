import importlib

from celery.schedules import crontab

from iqraquest.tasks import celery_app
from iqraquest.tasks.beat_schedule import CELERYBEAT_SCHEDULE, get_beat_schedule
from iqraquest.tasks.celery_app import TASK_MODULES


def test_every_sweep_is_scheduled():
    tasks = {entry["task"] for entry in CELERYBEAT_SCHEDULE.values()}

    assert tasks == {
        "iqraquest.tasks.escrow_tasks.detect_no_shows",
        "iqraquest.tasks.escrow_tasks.release_eligible_escrow",
        "iqraquest.tasks.maintenance_tasks.verify_pending_charges",
        "iqraquest.tasks.payout_tasks.process_automatic_payouts",
        "iqraquest.tasks.maintenance_tasks.purge_webhook_events",
        "iqraquest.tasks.event_tasks.drain_event_jobs",
    }


def test_release_runs_hourly_and_payouts_daily():
    assert CELERYBEAT_SCHEDULE["release-eligible-escrow"]["schedule"] == crontab(minute=0)
    assert CELERYBEAT_SCHEDULE["process-automatic-payouts"]["schedule"] == crontab(
        hour=9, minute=0
    )
    assert CELERYBEAT_SCHEDULE["detect-no-shows"]["schedule"] == crontab(minute="*/5")


def test_development_override_only_changes_its_entry():
    production = get_beat_schedule("production")
    development = get_beat_schedule("development")

    assert production == CELERYBEAT_SCHEDULE
    assert development["release-eligible-escrow"]["schedule"] == crontab(minute="*/10")
    assert development["detect-no-shows"] == CELERYBEAT_SCHEDULE["detect-no-shows"]


def test_scheduled_tasks_are_registered():
    for module in TASK_MODULES:
        importlib.import_module(module)

    for entry in CELERYBEAT_SCHEDULE.values():
        assert entry["task"] in celery_app.tasks


def test_payment_tasks_route_to_payments_queue():
    routes = celery_app.conf.task_routes

    assert routes["iqraquest.tasks.payout_tasks.*"] == {"queue": "payments"}
    assert routes["iqraquest.tasks.escrow_tasks.*"] == {"queue": "payments"}
