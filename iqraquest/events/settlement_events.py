"""Settlement domain events, emitted after a state transition is applied."""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class FundsHeld:
    booking_id: str
    student_id: str
    amount: int
    held_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FundsReleased:
    booking_id: str
    teacher_id: str
    teacher_amount: int
    commission: int
    released_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FundsRefunded:
    booking_id: str
    student_id: str
    amount: int
    reason: str
    refunded_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FundsPartiallyReleased:
    booking_id: str
    teacher_id: str
    student_id: str
    teacher_amount: int
    commission: int
    refund_amount: int
    teacher_percentage: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DisputeRaised:
    booking_id: str
    raised_by: str
    reason: str
    raised_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DisputeResolved:
    booking_id: str
    outcome: str  # 'teacher', 'student' or 'partial'
    resolved_by: str
    resolution: str
    resolved_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class WalletCredited:
    """Fired when a gateway top-up lands in a wallet."""

    user_id: str
    wallet_id: str
    amount: int
    reference: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PayoutRequested:
    payout_id: str
    teacher_id: str
    amount: int
    is_automatic: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PayoutStatusChanged:
    payout_id: str
    teacher_id: str
    amount: int
    status: str
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class NoShowWarning:
    booking_id: str
    minutes_late: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class NoShowDetected:
    booking_id: str
    no_show_by: str  # 'teacher', 'student' or 'both'
    detected_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
