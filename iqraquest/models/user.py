# iqraquest/models/user.py
"""
User and teacher profile models.

Only the columns the settlement core reads are modelled here; identity,
authentication and profile presentation live with the wider platform.
"""

from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base


class UserRole(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    GUARDIAN = "guardian"
    ADMIN = "admin"


class User(Base):
    __tablename__ = "users"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    email = Column(String(255), nullable=False, unique=True)
    full_name = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default=UserRole.STUDENT.value)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    wallet = relationship("Wallet", back_populates="user", uselist=False)
    teacher_profile = relationship("TeacherProfile", back_populates="user", uselist=False)

    def __repr__(self) -> str:
        return f"<User {self.id} {self.role}>"


class TeacherProfile(Base):
    """Payout preferences for a teacher account."""

    __tablename__ = "teacher_profiles"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id = Column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    automatic_payouts = Column(Boolean, nullable=False, default=False)
    payout_recipient_code = Column(
        String(100), nullable=True, comment="Paystack transfer recipient code"
    )
    payout_method_verified = Column(Boolean, nullable=False, default=False)
    last_payout_requested_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="teacher_profile")
