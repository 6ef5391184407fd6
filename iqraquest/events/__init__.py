"""Domain events for settlement side effects."""
from .publisher import EventPublisher
from .settlement_events import (
    DisputeRaised,
    DisputeResolved,
    FundsHeld,
    FundsPartiallyReleased,
    FundsRefunded,
    FundsReleased,
    NoShowDetected,
    NoShowWarning,
    PayoutRequested,
    PayoutStatusChanged,
    WalletCredited,
)

__all__ = [
    "DisputeRaised",
    "DisputeResolved",
    "EventPublisher",
    "FundsHeld",
    "FundsPartiallyReleased",
    "FundsRefunded",
    "FundsReleased",
    "NoShowDetected",
    "NoShowWarning",
    "PayoutRequested",
    "PayoutStatusChanged",
    "WalletCredited",
]
