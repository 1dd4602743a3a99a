from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import AlertType, BillStatus, Mood, RiskTolerance, TransactionType


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: TransactionType
    category: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    occurred_at: datetime
    note: Optional[str] = Field(default=None, max_length=200)
    mood: Optional[Mood] = None


class TransactionUpdate(BaseModel):
    """Partial edit; omitted fields keep their stored value."""

    model_config = ConfigDict(extra="forbid")

    type: Optional[TransactionType] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=12, decimal_places=2
    )
    occurred_at: Optional[datetime] = None
    note: Optional[str] = Field(default=None, max_length=200)
    mood: Optional[Mood] = None


class TransactionQuery(BaseModel):
    type: Optional[TransactionType] = None
    category: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    search: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)


class BudgetIn(BaseModel):
    monthly_budget: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    month: Optional[str] = Field(default=None, pattern=r"^\d{4}-(0[1-9]|1[0-2])$")


class BillIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=120)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    due_date: datetime
    status: BillStatus = BillStatus.pending


class BillQuery(BaseModel):
    status: Optional[BillStatus] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    search: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)


class AlertQuery(BaseModel):
    type: Optional[AlertType] = None
    is_read: Optional[bool] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)


class AIPreferencesIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enable_ai: Optional[bool] = None
    forecast: Optional[bool] = None
    personality: Optional[bool] = None
    suggestions: Optional[bool] = None
    challenges: Optional[bool] = None
    risk_tolerance: Optional[RiskTolerance] = None


class NotificationSettingsIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: Optional[bool] = None
    bills: Optional[bool] = None
    budget: Optional[bool] = None
    weekly_reports: Optional[bool] = None


class ReportQuery(BaseModel):
    month: str = Field(..., pattern=r"^\d{4}-(0[1-9]|1[0-2])$")
    type: Optional[TransactionType] = None
    category: Optional[str] = None
    search: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)


class CategoryIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType = TransactionType.expense
    color: str = Field(default="#000000", pattern=r"^#[0-9A-Fa-f]{6}$")
    icon: str = Field(default="🏷️", min_length=1, max_length=16)
