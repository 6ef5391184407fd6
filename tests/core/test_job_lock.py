from unittest.mock import MagicMock

from iqraquest.core import job_lock as job_lock_module
from iqraquest.core.job_lock import acquire_job_lock, job_lock


def _redis(monkeypatch, *, set_result=True, set_error=None):
    client = MagicMock()
    if set_error is not None:
        client.set.side_effect = set_error
    else:
        client.set.return_value = set_result
    monkeypatch.setattr(job_lock_module, "get_sync_redis", lambda: client)
    return client


def test_lock_acquired_and_released(monkeypatch):
    client = _redis(monkeypatch)

    with job_lock("release_eligible_escrow", ttl_s=30) as acquired:
        assert acquired is True

    args, kwargs = client.set.call_args
    assert args[0].endswith(":lock:job:release_eligible_escrow")
    assert kwargs == {"nx": True, "ex": 30}
    client.delete.assert_called_once_with(args[0])


def test_held_lock_skips_without_releasing(monkeypatch):
    client = _redis(monkeypatch, set_result=None)

    with job_lock("detect_no_shows") as acquired:
        assert acquired is False

    client.delete.assert_not_called()


def test_redis_unavailable_fails_open():
    # redis_unavailable fixture is autouse
    assert acquire_job_lock("drain_event_jobs") is True


def test_redis_error_fails_open(monkeypatch):
    _redis(monkeypatch, set_error=ConnectionError("connection refused"))

    assert acquire_job_lock("drain_event_jobs") is True
