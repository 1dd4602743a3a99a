from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class Mood(str, Enum):
    happy = "happy"
    sad = "sad"
    angry = "angry"
    stressed = "stressed"
    bored = "bored"
    excited = "excited"
    neutral = "neutral"


class BillStatus(str, Enum):
    pending = "pending"
    paid = "paid"


class AlertType(str, Enum):
    budget = "budget"
    bill = "bill"
    trend = "trend"
    goal = "goal"


class AlertSeverity(str, Enum):
    high = "high"
    medium = "medium"
    low = "low"


class RiskTolerance(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


MONEY = Numeric(12, 2)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)
    mood: Mapped[Optional[Mood]] = mapped_column(SAEnum(Mood))

    __table_args__ = (
        Index("ix_transactions_user_occurred", "user_id", "occurred_at"),
        Index("ix_transactions_user_type_occurred", "user_id", "type", "occurred_at"),
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"
    __table_args__ = (
        UniqueConstraint("user_id", "month", name="uq_budget_user_month"),
        CheckConstraint("monthly_budget > 0", name="ck_budget_positive"),
        CheckConstraint("spent_so_far >= 0", name="ck_budget_spent_non_negative"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    month: Mapped[str] = mapped_column(String(7), nullable=False)
    monthly_budget: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    spent_so_far: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=Decimal("0")
    )


class Bill(Base, TimestampMixin):
    __tablename__ = "bills"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    due_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[BillStatus] = mapped_column(
        SAEnum(BillStatus), nullable=False, default=BillStatus.pending
    )

    __table_args__ = (
        Index("ix_bills_user_status_due", "user_id", "status", "due_date"),
        CheckConstraint("amount > 0", name="ck_bills_amount_positive"),
    )


class Alert(Base):
    __tablename__ = "alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    type: Mapped[AlertType] = mapped_column(SAEnum(AlertType), nullable=False)
    severity: Mapped[AlertSeverity] = mapped_column(
        SAEnum(AlertSeverity), nullable=False
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    budget_usage: Mapped[Optional[int]] = mapped_column(Integer)
    month: Mapped[Optional[str]] = mapped_column(String(7))
    bill_id: Mapped[Optional[int]] = mapped_column(Integer)
    bill_name: Mapped[Optional[str]] = mapped_column(String(120))
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    trend_percentage: Mapped[Optional[int]] = mapped_column(Integer)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_alerts_user_read_created", "user_id", "is_read", "created_at"),
        Index("ix_alerts_user_type", "user_id", "type"),
        Index("ix_alerts_expires", "expires_at"),
    )

    @property
    def details(self) -> dict[str, object]:
        fields = {
            "budget_usage": self.budget_usage,
            "month": self.month,
            "bill_id": self.bill_id,
            "bill_name": self.bill_name,
            "due_date": self.due_date,
            "trend_percentage": self.trend_percentage,
            "category": self.category,
        }
        return {key: value for key, value in fields.items() if value is not None}


class UserPreferences(Base, TimestampMixin):
    __tablename__ = "user_preferences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)

    enable_ai: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    forecast: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    personality: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    suggestions: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    challenges: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    risk_tolerance: Mapped[RiskTolerance] = mapped_column(
        SAEnum(RiskTolerance), default=RiskTolerance.medium, nullable=False
    )

    notify_email: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notify_bills: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notify_budget: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    weekly_reports: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )


class Category(Base, TimestampMixin):
    """User-defined category shown next to the built-in defaults."""

    __tablename__ = "categories"
    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False, default=TransactionType.expense
    )
    color: Mapped[str] = mapped_column(String(7), nullable=False, default="#000000")
    icon: Mapped[str] = mapped_column(String(16), nullable=False, default="🏷️")
