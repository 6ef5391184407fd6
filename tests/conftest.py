# tests/conftest.py
"""
Pytest configuration for the settlement core.

Each test gets a fresh in-memory SQLite database. Services commit their own
transactions, so the database is rebuilt per test instead of wrapping the
test in a rolled-back outer transaction.

Redis is replaced with "unavailable" by default; job locks and notification
dedup fail open. Tests that exercise Redis behaviour patch in a MagicMock.
"""

import os

# Set test configuration BEFORE any iqraquest imports
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_webhook_secret"
os.environ["REDIS_URL"] = "redis://localhost:6399/15"

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Iterator, Optional

from fastapi.testclient import TestClient
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from iqraquest import models  # noqa: F401
from iqraquest.core import dedup, job_lock
from iqraquest.database import Base, get_db
from iqraquest.models import Booking, BookingStatus, PaymentStatus, TeacherProfile, User, UserRole
from iqraquest.models.wallet import TransactionPurpose
from iqraquest.services.ledger_service import LedgerService


@pytest.fixture(scope="function")
def engine():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db(engine) -> Iterator[Session]:
    """Create a new database session for each test."""
    TestingSessionLocal = sessionmaker(
        autocommit=False, autoflush=False, bind=engine, expire_on_commit=False
    )
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(autouse=True)
def redis_unavailable(monkeypatch):
    monkeypatch.setattr(dedup, "get_sync_redis", lambda: None)
    monkeypatch.setattr(job_lock, "get_sync_redis", lambda: None)


@pytest.fixture
def client(db: Session):
    """Create a test client bound to the test database."""
    from iqraquest.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    test_client = TestClient(app)
    yield test_client
    app.dependency_overrides.clear()
    test_client.close()


@pytest.fixture
def make_user(db: Session) -> Callable[..., User]:
    counter = {"n": 0}

    def _make(role: UserRole = UserRole.STUDENT, email: Optional[str] = None) -> User:
        counter["n"] += 1
        user = User(
            email=email or f"{role.value}{counter['n']}@example.com",
            full_name=f"Test {role.value.title()} {counter['n']}",
            role=role.value,
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def student(make_user) -> User:
    return make_user(UserRole.STUDENT, "student@example.com")


@pytest.fixture
def teacher(make_user) -> User:
    return make_user(UserRole.TEACHER, "teacher@example.com")


@pytest.fixture
def admin(make_user) -> User:
    return make_user(UserRole.ADMIN, "admin@example.com")


@pytest.fixture
def teacher_profile(db: Session, teacher: User) -> TeacherProfile:
    profile = TeacherProfile(
        user_id=teacher.id,
        automatic_payouts=True,
        payout_recipient_code="RCP_test123",
        payout_method_verified=True,
    )
    db.add(profile)
    db.commit()
    return profile


@pytest.fixture
def fund_wallet(db: Session) -> Callable[[User, int], None]:
    counter = {"n": 0}

    def _fund(user: User, amount: int) -> None:
        counter["n"] += 1
        LedgerService(db).credit(
            user.id,
            amount,
            purpose=TransactionPurpose.WALLET_CREDIT,
            reference=f"TEST-FUND-{user.id}-{counter['n']}",
        )

    return _fund


@pytest.fixture
def make_booking(db: Session, student: User, teacher: User) -> Callable[..., Booking]:
    def _make(
        *,
        total_price: int = 2_000,
        commission_rate: Decimal = Decimal("10.00"),
        start_time: Optional[datetime] = None,
        duration_minutes: int = 60,
        status: BookingStatus = BookingStatus.AWAITING_PAYMENT,
        payment_status: PaymentStatus = PaymentStatus.PENDING,
    ) -> Booking:
        start = start_time or datetime.now(timezone.utc) + timedelta(days=2)
        booking = Booking(
            student_id=student.id,
            teacher_id=teacher.id,
            subject="Tajweed",
            start_time=start,
            end_time=start + timedelta(minutes=duration_minutes),
            status=status.value,
            payment_status=payment_status.value,
            total_price=total_price,
            currency="NGN",
            commission_rate=commission_rate,
        )
        db.add(booking)
        db.commit()
        return booking

    return _make
