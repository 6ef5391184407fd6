from decimal import Decimal

from pydantic import ValidationError
import pytest

from iqraquest.core.config import Settings


def _settings(**overrides):
    return Settings(_env_file=None, **overrides)


def test_defaults_match_settlement_policy():
    settings = _settings()

    assert settings.dispute_window_hours == 24
    assert settings.no_show_warning_minutes == 10
    assert settings.no_show_grace_minutes == 15
    assert settings.student_no_show_teacher_percentage == Decimal("50")
    assert settings.min_completion_percentage == Decimal("80")
    assert settings.cancellation_refund_tiers == {24: 100, 12: 75, 6: 50}
    assert settings.min_payout_amount == 1_000_000
    assert settings.auto_payout_threshold == 5_000_000


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("DISPUTE_WINDOW_HOURS", "48")
    monkeypatch.setenv("CANCELLATION_REFUND_TIERS", '{"48": 100, "24": 50}')

    settings = _settings()

    assert settings.dispute_window_hours == 48
    assert settings.cancellation_refund_tiers == {48: 100, 24: 50}


@pytest.mark.parametrize(
    "field", ["default_commission_rate", "student_no_show_teacher_percentage", "min_completion_percentage"]
)
def test_percentages_are_bounded(field):
    with pytest.raises(ValidationError):
        _settings(**{field: Decimal("120")})


def test_grace_period_cannot_precede_warning():
    with pytest.raises(ValidationError):
        _settings(no_show_warning_minutes=20, no_show_grace_minutes=15)


def test_refund_tier_percentages_are_bounded():
    with pytest.raises(ValidationError):
        _settings(cancellation_refund_tiers={24: 150})
