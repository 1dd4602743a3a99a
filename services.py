from __future__ import annotations

import logging
import random
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Sequence, Union

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from alert_rules import (
    AlertDraft,
    ConsolidatedAlert,
    bill_alert,
    budget_alert,
    consolidated_alerts,
    trend_alerts,
)
from config import get_settings
from insights import (
    CHALLENGE_WINDOW_DAYS,
    FORECAST_WINDOW_DAYS,
    MOOD_WINDOW_DAYS,
    PERSONALITY_MIN_TRANSACTIONS,
    PERSONALITY_WINDOW_DAYS,
    SUGGESTION_WINDOW_DAYS,
    Challenge,
    DashboardInsight,
    Forecast,
    MoodInsights,
    Personality,
    Suggestion,
    Unavailable,
    budget_usage,
    build_challenges,
    build_dashboard_insights,
    build_forecast,
    build_mood_insights,
    build_personality,
    build_suggestions,
    classify_personality,
    forecast_risk,
    projected_usage,
    round_amount,
    spending_metrics,
)
from models import (
    Alert,
    AlertType,
    Bill,
    BillStatus,
    Budget,
    Category,
    Transaction,
    TransactionType,
    UserPreferences,
)
from periods import (
    Period,
    calendar_days_until,
    days_in_month,
    local_now,
    month_key,
    month_period,
    parse_month,
    to_local_naive,
)
from schemas import (
    AIPreferencesIn,
    AlertQuery,
    BillIn,
    BillQuery,
    BudgetIn,
    CategoryIn,
    NotificationSettingsIn,
    TransactionIn,
    TransactionQuery,
    TransactionUpdate,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


class ValidationError(ValueError):
    pass


class NotFoundError(ValueError):
    pass


class AuthorizationError(ValueError):
    pass


def get_current_user_id() -> int:
    return 1


def _money(value: object) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT)


def _month_or_invalid(value: str) -> Period:
    try:
        return month_period(value)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


# -- budget aggregate consistency ----------------------------------------


def find_budget(session: Session, user_id: int, month: str) -> Optional[Budget]:
    return session.scalar(
        select(Budget).where(Budget.user_id == user_id, Budget.month == month)
    )


def apply_expense_delta(
    session: Session,
    user_id: int,
    txn_type: TransactionType,
    occurred_at: datetime,
    amount: Decimal,
    *,
    reverse: bool = False,
) -> bool:
    """Add (or with ``reverse`` subtract) an expense from its month's budget.

    The change is a single UPDATE so concurrent deltas for the same month
    cannot overwrite each other. Subtraction floors at zero. Returns False
    when there is nothing to adjust: income, or no budget for that month.
    """
    if txn_type != TransactionType.expense:
        return False
    if reverse:
        remaining = Budget.spent_so_far - amount
        new_value = case((remaining < 0, 0), else_=remaining)
    else:
        new_value = Budget.spent_so_far + amount
    result = session.execute(
        update(Budget)
        .where(Budget.user_id == user_id, Budget.month == month_key(occurred_at))
        .values(spent_so_far=new_value)
        .execution_options(synchronize_session="fetch")
    )
    return (result.rowcount or 0) > 0


def recompute_spent_so_far(session: Session, user_id: int, month: str) -> Decimal:
    period = _month_or_invalid(month)
    total = session.execute(
        select(func.coalesce(func.sum(Transaction.amount), 0)).where(
            Transaction.user_id == user_id,
            Transaction.type == TransactionType.expense,
            Transaction.occurred_at.between(period.start, period.end),
        )
    ).scalar_one()
    return _money(total)


def totals_by_type(
    session: Session, user_id: int, period: Period
) -> dict[TransactionType, Decimal]:
    rows = session.execute(
        select(
            Transaction.type,
            func.coalesce(func.sum(Transaction.amount), 0).label("total"),
        )
        .where(
            Transaction.user_id == user_id,
            Transaction.occurred_at.between(period.start, period.end),
        )
        .group_by(Transaction.type)
    ).all()
    totals = {kind: _money(0) for kind in TransactionType}
    totals.update({row.type: _money(row.total) for row in rows})
    return totals


def expense_totals_by_category(
    session: Session, user_id: int, period: Period
) -> list[tuple[str, Decimal]]:
    """Expense totals per category for the period, largest first."""
    total = func.coalesce(func.sum(Transaction.amount), 0).label("total")
    rows = session.execute(
        select(Transaction.category, total)
        .where(
            Transaction.user_id == user_id,
            Transaction.type == TransactionType.expense,
            Transaction.occurred_at.between(period.start, period.end),
        )
        .group_by(Transaction.category)
        .order_by(total.desc(), Transaction.category.asc())
    ).all()
    return [(row.category, _money(row.total)) for row in rows]


def daily_expense_totals(
    session: Session, user_id: int, period: Period
) -> dict[int, Decimal]:
    day = func.strftime("%d", Transaction.occurred_at).label("day")
    rows = session.execute(
        select(day, func.coalesce(func.sum(Transaction.amount), 0).label("total"))
        .where(
            Transaction.user_id == user_id,
            Transaction.type == TransactionType.expense,
            Transaction.occurred_at.between(period.start, period.end),
        )
        .group_by(day)
    ).all()
    return {int(row.day): _money(row.total) for row in rows}


@dataclass(frozen=True)
class LedgerChange:
    type: TransactionType
    occurred_at: datetime
    amount: Decimal
    reverse: bool = False


@dataclass
class LedgerMutation:
    transaction: Optional[Transaction]
    budget_synced: bool = True
    warning: Optional[str] = None


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    search: Optional[str] = None

    @classmethod
    def from_query(cls, query: TransactionQuery) -> "TransactionFilters":
        return cls(
            type=query.type,
            category=query.category,
            start=query.start,
            end=query.end,
            search=query.search,
        )


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn:
            raise NotFoundError("Transaction not found")
        if txn.user_id != self.user_id:
            raise AuthorizationError("Not authorized to access this transaction")
        return txn

    def canonical_category(self, raw: str) -> str:
        """Trim the label and reuse an existing spelling that differs only by case."""
        name = (raw or "").strip()
        if not name:
            raise ValidationError("Category is required")
        existing = self.session.scalar(
            select(Transaction.category)
            .where(
                Transaction.user_id == self.user_id,
                func.lower(Transaction.category) == name.lower(),
            )
            .order_by(Transaction.id.asc())
            .limit(1)
        )
        return existing or name

    def _sync_budget(self, changes: Sequence[LedgerChange]) -> Optional[str]:
        try:
            for change in changes:
                apply_expense_delta(
                    self.session,
                    self.user_id,
                    change.type,
                    change.occurred_at,
                    change.amount,
                    reverse=change.reverse,
                )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception(f"budget_sync_failed: user_id={self.user_id}")
            return "Transaction saved, but the monthly budget could not be updated."
        return None

    def create(self, data: TransactionIn) -> LedgerMutation:
        if data.amount <= 0:
            raise ValidationError("Amount must be greater than 0")
        txn = Transaction(
            user_id=self.user_id,
            type=data.type,
            category=self.canonical_category(data.category),
            amount=data.amount,
            occurred_at=to_local_naive(data.occurred_at),
            note=data.note,
            mood=data.mood,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)

        warning = self._sync_budget(
            [LedgerChange(txn.type, txn.occurred_at, txn.amount)]
        )
        if warning is None:
            self.session.refresh(txn)
        return LedgerMutation(txn, budget_synced=warning is None, warning=warning)

    def update(self, transaction_id: int, data: TransactionUpdate) -> LedgerMutation:
        txn = self.get(transaction_id)
        changes = data.model_dump(exclude_unset=True)
        if changes.get("amount") is not None and changes["amount"] <= 0:
            raise ValidationError("Amount must be greater than 0")
        category = (
            self.canonical_category(changes["category"])
            if changes.get("category")
            else None
        )

        before = LedgerChange(txn.type, txn.occurred_at, txn.amount, reverse=True)

        if changes.get("amount") is not None:
            txn.amount = changes["amount"]
        if changes.get("type") is not None:
            txn.type = changes["type"]
        if category is not None:
            txn.category = category
        if changes.get("occurred_at") is not None:
            txn.occurred_at = to_local_naive(changes["occurred_at"])
        if "note" in changes:
            txn.note = changes["note"]
        if "mood" in changes:
            txn.mood = changes["mood"]
        self.session.commit()
        self.session.refresh(txn)

        after = LedgerChange(txn.type, txn.occurred_at, txn.amount)
        warning = self._sync_budget([before, after])
        if warning is None:
            self.session.refresh(txn)
        return LedgerMutation(txn, budget_synced=warning is None, warning=warning)

    def delete(self, transaction_id: int) -> LedgerMutation:
        txn = self.get(transaction_id)
        removed = LedgerChange(txn.type, txn.occurred_at, txn.amount, reverse=True)
        self.session.delete(txn)
        self.session.commit()

        warning = self._sync_budget([removed])
        return LedgerMutation(None, budget_synced=warning is None, warning=warning)

    def _filtered(self, filters: TransactionFilters):
        stmt = select(Transaction).where(Transaction.user_id == self.user_id)
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.category:
            stmt = stmt.where(Transaction.category == filters.category)
        if filters.start:
            stmt = stmt.where(Transaction.occurred_at >= to_local_naive(filters.start))
        if filters.end:
            stmt = stmt.where(Transaction.occurred_at <= to_local_naive(filters.end))
        if filters.search:
            like = f"%{filters.search.lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(func.coalesce(Transaction.note, "")).like(like),
                    func.lower(Transaction.category).like(like),
                )
            )
        return stmt

    def list(
        self, filters: TransactionFilters, limit: int = 10, offset: int = 0
    ) -> tuple[list[Transaction], int]:
        base = self._filtered(filters)
        total = self.session.execute(
            select(func.count()).select_from(base.subquery())
        ).scalar_one()
        stmt = (
            base.order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all()), int(total or 0)

    def expenses_since(
        self, start: datetime, *, with_mood: bool = False
    ) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
                Transaction.occurred_at >= start,
            )
            .order_by(Transaction.occurred_at.asc(), Transaction.id.asc())
        )
        if with_mood:
            stmt = stmt.where(Transaction.mood.is_not(None))
        return list(self.session.scalars(stmt).all())

    def category_totals_between(
        self, start: datetime, end: datetime, *, include_end: bool = True
    ) -> dict[str, Decimal]:
        upper = (
            Transaction.occurred_at <= end
            if include_end
            else Transaction.occurred_at < end
        )
        stmt = (
            select(
                Transaction.category,
                func.coalesce(func.sum(Transaction.amount), 0).label("total"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
                Transaction.occurred_at >= start,
                upper,
            )
            .group_by(Transaction.category)
            .order_by(func.min(Transaction.occurred_at))
        )
        return {row.category: _money(row.total) for row in self.session.execute(stmt)}

    def month_summary(self, month: str) -> dict[str, object]:
        period = _month_or_invalid(month)
        totals = totals_by_type(self.session, self.user_id, period)
        stmt = self._filtered(
            TransactionFilters(start=period.start, end=period.end)
        ).order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
        return {
            "transactions": list(self.session.scalars(stmt).all()),
            "total_income": totals[TransactionType.income],
            "total_expenses": totals[TransactionType.expense],
            "category_breakdown": dict(
                expense_totals_by_category(self.session, self.user_id, period)
            ),
        }


# -- budgets ----------------------------------------------------------------


@dataclass(frozen=True)
class BudgetSummary:
    month: str
    monthly_budget: Decimal
    spent_so_far: Decimal
    remaining: Decimal
    percentage_used: int
    status_color: str


def summarize_budget(budget: Budget) -> BudgetSummary:
    spent = _money(budget.spent_so_far)
    monthly = _money(budget.monthly_budget)
    percentage = round_amount(budget_usage(budget))
    if percentage > 95:
        color = "red"
    elif percentage > 80:
        color = "orange"
    elif percentage > 50:
        color = "yellow"
    else:
        color = "green"
    return BudgetSummary(
        month=budget.month,
        monthly_budget=monthly,
        spent_so_far=spent,
        remaining=monthly - spent,
        percentage_used=percentage,
        status_color=color,
    )


def budget_status_message(percentage: int) -> str:
    if percentage >= 100:
        return "Alert: You have exceeded your budget this month."
    if percentage >= 95:
        return "Alert: You have used 95%+ of your budget."
    if percentage >= 80:
        return "Warning: You have used 80%+ of your budget."
    if percentage >= 50:
        return f"You have used {percentage}% of your budget. Keep going!"
    return f"You have used {percentage}% of your budget. Great job!"


class BudgetService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, month: str) -> Optional[Budget]:
        return find_budget(self.session, self.user_id, month)

    def current(self, *, now: Optional[datetime] = None) -> Budget:
        now = now or local_now()
        budget = self.get(month_key(now))
        if not budget:
            raise NotFoundError("No budget set for this month")
        return budget

    def set_budget(self, data: BudgetIn, *, now: Optional[datetime] = None) -> Budget:
        if data.monthly_budget <= 0:
            raise ValidationError("Please provide a valid monthly budget greater than 0")
        month = data.month or month_key(now or local_now())
        # Setting a budget resynchronizes the running total from the ledger.
        spent = recompute_spent_so_far(self.session, self.user_id, month)

        budget = self.get(month)
        if budget:
            budget.monthly_budget = data.monthly_budget
            budget.spent_so_far = spent
        else:
            budget = Budget(
                user_id=self.user_id,
                month=month,
                monthly_budget=data.monthly_budget,
                spent_so_far=spent,
            )
            self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        logger.info(
            f"budget_set: user_id={self.user_id} month={month} spent_so_far={spent}"
        )
        return budget

    def status(self, *, now: Optional[datetime] = None) -> dict[str, object]:
        summary = summarize_budget(self.current(now=now))
        return {
            "alert": budget_status_message(summary.percentage_used),
            "status_color": summary.status_color,
            "budget": summary,
        }


# -- bills ------------------------------------------------------------------


@dataclass(frozen=True)
class BillView:
    id: int
    name: str
    amount: Decimal
    due_date: datetime
    status: BillStatus
    days_left: int
    is_overdue: bool
    alert_level: str
    created_at: datetime
    updated_at: datetime


def bill_view(bill: Bill, *, now: datetime) -> BillView:
    days_left = calendar_days_until(bill.due_date, now)
    if days_left < 0:
        level = "overdue"
    elif days_left <= 2:
        level = "danger"
    elif days_left <= 5:
        level = "warning"
    else:
        level = "none"
    return BillView(
        id=bill.id,
        name=bill.name,
        amount=_money(bill.amount),
        due_date=bill.due_date,
        status=bill.status,
        days_left=days_left,
        is_overdue=days_left < 0,
        alert_level=level,
        created_at=bill.created_at,
        updated_at=bill.updated_at,
    )


class BillService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, bill_id: int) -> Bill:
        bill = self.session.get(Bill, bill_id)
        if not bill:
            raise NotFoundError("Bill not found")
        if bill.user_id != self.user_id:
            raise AuthorizationError("Not authorized to access this bill")
        return bill

    def create(self, data: BillIn) -> Bill:
        if data.amount <= 0:
            raise ValidationError("Amount must be greater than 0")
        name = data.name.strip()
        if not name:
            raise ValidationError("Bill name is required")
        bill = Bill(
            user_id=self.user_id,
            name=name,
            amount=data.amount,
            due_date=to_local_naive(data.due_date),
            status=data.status,
        )
        self.session.add(bill)
        self.session.commit()
        self.session.refresh(bill)
        return bill

    def list(self, query: BillQuery) -> tuple[list[Bill], int]:
        stmt = select(Bill).where(Bill.user_id == self.user_id)
        if query.status:
            stmt = stmt.where(Bill.status == query.status)
        if query.start:
            stmt = stmt.where(Bill.due_date >= to_local_naive(query.start))
        if query.end:
            stmt = stmt.where(Bill.due_date <= to_local_naive(query.end))
        if query.search:
            stmt = stmt.where(func.lower(Bill.name).like(f"%{query.search.lower()}%"))
        total = self.session.execute(
            select(func.count()).select_from(stmt.subquery())
        ).scalar_one()
        # Earliest due date first puts overdue bills ahead of upcoming ones.
        stmt = (
            stmt.order_by(Bill.due_date.asc(), Bill.id.asc())
            .offset((query.page - 1) * query.limit)
            .limit(query.limit)
        )
        return list(self.session.scalars(stmt).all()), int(total or 0)

    def pending(self, *, due_before: Optional[datetime] = None) -> list[Bill]:
        stmt = select(Bill).where(
            Bill.user_id == self.user_id, Bill.status == BillStatus.pending
        )
        if due_before is not None:
            stmt = stmt.where(Bill.due_date <= due_before)
        return list(self.session.scalars(stmt.order_by(Bill.due_date.asc())).all())

    def upcoming(self, *, now: Optional[datetime] = None) -> list[BillView]:
        now = now or local_now()
        views = [bill_view(b, now=now) for b in self.pending()]
        return [v for v in views if v.days_left <= 7]

    def due_between(self, start: datetime, end: datetime) -> list[Bill]:
        stmt = select(Bill).where(
            Bill.user_id == self.user_id,
            Bill.status == BillStatus.pending,
            Bill.due_date.between(start, end),
        )
        return list(self.session.scalars(stmt.order_by(Bill.due_date.asc())).all())

    def mark_paid(self, bill_id: int) -> Bill:
        bill = self.get(bill_id)
        bill.status = BillStatus.paid
        self.session.commit()
        self.session.refresh(bill)
        return bill

    def delete(self, bill_id: int) -> None:
        bill = self.get(bill_id)
        self.session.delete(bill)
        self.session.commit()


# -- preferences ------------------------------------------------------------

AI_PREFERENCE_FIELDS = (
    "enable_ai",
    "forecast",
    "personality",
    "suggestions",
    "challenges",
    "risk_tolerance",
)
NOTIFICATION_FIELDS = {
    "email": "notify_email",
    "bills": "notify_bills",
    "budget": "notify_budget",
    "weekly_reports": "weekly_reports",
}


class PreferencesService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self) -> UserPreferences:
        prefs = self.session.scalar(
            select(UserPreferences).where(UserPreferences.user_id == self.user_id)
        )
        if prefs is None:
            prefs = UserPreferences(user_id=self.user_id)
            self.session.add(prefs)
            self.session.commit()
            self.session.refresh(prefs)
        return prefs

    def ai_preferences(self) -> dict[str, object]:
        prefs = self.get()
        return {name: getattr(prefs, name) for name in AI_PREFERENCE_FIELDS}

    def notification_settings(self) -> dict[str, bool]:
        prefs = self.get()
        return {key: getattr(prefs, attr) for key, attr in NOTIFICATION_FIELDS.items()}

    def update_ai(self, data: AIPreferencesIn) -> dict[str, object]:
        prefs = self.get()
        for name, value in data.model_dump(exclude_none=True).items():
            setattr(prefs, name, value)
        self.session.commit()
        return self.ai_preferences()

    def update_notifications(self, data: NotificationSettingsIn) -> dict[str, bool]:
        prefs = self.get()
        for key, value in data.model_dump(exclude_none=True).items():
            setattr(prefs, NOTIFICATION_FIELDS[key], value)
        self.session.commit()
        return self.notification_settings()

    def is_enabled(self, feature: str) -> bool:
        prefs = self.get()
        return bool(prefs.enable_ai and getattr(prefs, feature))


# -- insights ---------------------------------------------------------------


class InsightService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        *,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.rng = rng
        self.preferences = PreferencesService(session, self.user_id)
        self.transactions = TransactionService(session, self.user_id)
        self.budgets = BudgetService(session, self.user_id)
        self.bills = BillService(session, self.user_id)

    def _window(self, days: int, now: datetime) -> list[Transaction]:
        return self.transactions.expenses_since(now - timedelta(days=days))

    def forecast(self, *, now: Optional[datetime] = None) -> Union[Forecast, Unavailable]:
        now = now or local_now()
        if not self.preferences.is_enabled("forecast"):
            return Unavailable.disabled("AI Forecast disabled in settings")
        budget = self.budgets.get(month_key(now))
        return build_forecast(budget, self._window(FORECAST_WINDOW_DAYS, now), now=now)

    def personality(
        self, *, now: Optional[datetime] = None
    ) -> Union[Personality, Unavailable]:
        now = now or local_now()
        if not self.preferences.is_enabled("personality"):
            return Unavailable.disabled("AI Personality detection disabled in settings")
        return build_personality(
            self._window(PERSONALITY_WINDOW_DAYS, now),
            self.budgets.get(month_key(now)),
        )

    def personality_type(self, *, now: datetime) -> Optional[str]:
        expenses = self._window(PERSONALITY_WINDOW_DAYS, now)
        if len(expenses) < PERSONALITY_MIN_TRANSACTIONS:
            return None
        metrics = spending_metrics(expenses, self.budgets.get(month_key(now)))
        return classify_personality(metrics)

    def suggestions(
        self, *, now: Optional[datetime] = None
    ) -> Union[list[Suggestion], Unavailable]:
        now = now or local_now()
        if not self.preferences.is_enabled("suggestions"):
            return Unavailable.disabled("AI Suggestions are turned off in settings")
        recent = self._window(SUGGESTION_WINDOW_DAYS, now)
        if not recent:
            return Unavailable.insufficient_data("Not enough data for AI suggestions")
        return build_suggestions(
            recent,
            self.budgets.get(month_key(now)),
            self.bills.due_between(now, now + timedelta(days=7)),
            self.personality_type(now=now),
            now=now,
        )

    def mood_insights(
        self, *, now: Optional[datetime] = None
    ) -> Union[MoodInsights, Unavailable]:
        now = now or local_now()
        if not self.preferences.get().enable_ai:
            return Unavailable.disabled("AI insights disabled in settings")
        tagged = self.transactions.expenses_since(
            now - timedelta(days=MOOD_WINDOW_DAYS), with_mood=True
        )
        return build_mood_insights(tagged)

    def challenges(
        self, *, now: Optional[datetime] = None
    ) -> Union[list[Challenge], Unavailable]:
        now = now or local_now()
        if not self.preferences.is_enabled("challenges"):
            return Unavailable.disabled("AI Challenges disabled in settings")
        return build_challenges(self._window(CHALLENGE_WINDOW_DAYS, now), rng=self.rng)

    def consolidated_alerts(
        self, *, now: Optional[datetime] = None
    ) -> list[ConsolidatedAlert]:
        now = now or local_now()
        budget = self.budgets.get(month_key(now))
        risk: Optional[str] = None
        if budget is not None and self.preferences.is_enabled("forecast"):
            usage = projected_usage(
                budget, self._window(FORECAST_WINDOW_DAYS, now), now=now
            )
            if usage is not None:
                risk = forecast_risk(usage)
        return consolidated_alerts(budget, self.bills.pending(), risk, now=now)

    def dashboard_insights(
        self, *, now: Optional[datetime] = None
    ) -> list[DashboardInsight]:
        now = now or local_now()
        prefs = self.preferences.get()
        if not prefs.enable_ai:
            return []
        usage: Optional[Decimal] = None
        if prefs.forecast:
            budget = self.budgets.get(month_key(now))
            if budget is not None:
                usage = projected_usage(
                    budget, self._window(FORECAST_WINDOW_DAYS, now), now=now
                )
        month_categories = expense_totals_by_category(
            self.session, self.user_id, month_period(month_key(now))
        )
        return build_dashboard_insights(
            usage=usage,
            month_categories=month_categories,
            show_personality=prefs.personality,
            show_suggestion=prefs.suggestions,
            now=now,
        )


# -- alert materializer -----------------------------------------------------


class AlertService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _create(self, draft: AlertDraft, now: datetime) -> Alert:
        alert = Alert(
            user_id=self.user_id,
            type=draft.type,
            severity=draft.severity,
            message=draft.message,
            is_read=False,
            created_at=now,
            expires_at=now + timedelta(days=get_settings().alert_ttl_days),
            **draft.details,
        )
        self.session.add(alert)
        return alert

    def _replace(self, drafts: Sequence[AlertDraft], now: datetime) -> list[Alert]:
        created = [self._create(draft, now) for draft in drafts]
        self.session.commit()
        return created

    def generate_budget_alerts(self, *, now: Optional[datetime] = None) -> list[Alert]:
        now = now or local_now()
        month = month_key(now)
        budget = find_budget(self.session, self.user_id, month)
        if budget is None or not budget.monthly_budget:
            return []
        self.session.execute(
            delete(Alert).where(
                Alert.user_id == self.user_id,
                Alert.type == AlertType.budget,
                Alert.month == month,
            )
        )
        draft = budget_alert(budget)
        return self._replace([draft] if draft else [], now)

    def generate_bill_alerts(self, *, now: Optional[datetime] = None) -> list[Alert]:
        now = now or local_now()
        bills = self.session.scalars(
            select(Bill).where(
                Bill.user_id == self.user_id, Bill.status != BillStatus.paid
            )
        ).all()
        self.session.execute(
            delete(Alert).where(
                Alert.user_id == self.user_id, Alert.type == AlertType.bill
            )
        )
        drafts = [d for d in (bill_alert(b, now=now) for b in bills) if d]
        return self._replace(drafts, now)

    def generate_trend_alerts(self, *, now: Optional[datetime] = None) -> list[Alert]:
        now = now or local_now()
        one_week_ago = now - timedelta(days=7)
        two_weeks_ago = now - timedelta(days=14)
        ledger = TransactionService(self.session, self.user_id)
        this_week = ledger.category_totals_between(one_week_ago, now)
        last_week = ledger.category_totals_between(
            two_weeks_ago, one_week_ago, include_end=False
        )
        self.session.execute(
            delete(Alert).where(
                Alert.user_id == self.user_id, Alert.type == AlertType.trend
            )
        )
        return self._replace(trend_alerts(this_week, last_week), now)

    def regenerate_all(self, *, now: Optional[datetime] = None) -> dict[str, int]:
        now = now or local_now()
        prefs = PreferencesService(self.session, self.user_id).get()
        counts = {"budget": 0, "bill": 0, "trend": 0}
        if prefs.notify_budget:
            counts["budget"] = len(self.generate_budget_alerts(now=now))
        if prefs.notify_bills:
            counts["bill"] = len(self.generate_bill_alerts(now=now))
        counts["trend"] = len(self.generate_trend_alerts(now=now))
        logger.info(
            f"alerts_regenerated: user_id={self.user_id} budget={counts['budget']} "
            f"bill={counts['bill']} trend={counts['trend']}"
        )
        return counts

    def list(
        self, query: AlertQuery, *, now: Optional[datetime] = None
    ) -> tuple[list[Alert], int]:
        now = now or local_now()
        stmt = select(Alert).where(
            Alert.user_id == self.user_id, Alert.expires_at > now
        )
        if query.type:
            stmt = stmt.where(Alert.type == query.type)
        if query.is_read is not None:
            stmt = stmt.where(Alert.is_read.is_(query.is_read))
        total = self.session.execute(
            select(func.count()).select_from(stmt.subquery())
        ).scalar_one()
        stmt = (
            stmt.order_by(Alert.created_at.desc(), Alert.id.desc())
            .offset((query.page - 1) * query.limit)
            .limit(query.limit)
        )
        return list(self.session.scalars(stmt).all()), int(total or 0)

    def mark_read(self, alert_id: int) -> Alert:
        alert = self.session.get(Alert, alert_id)
        if not alert:
            raise NotFoundError("Alert not found")
        if alert.user_id != self.user_id:
            raise AuthorizationError("Not authorized to update this alert")
        alert.is_read = True
        self.session.commit()
        self.session.refresh(alert)
        return alert

    def mark_all_read(self) -> int:
        result = self.session.execute(
            update(Alert)
            .where(Alert.user_id == self.user_id, Alert.is_read.is_(False))
            .values(is_read=True)
            .execution_options(synchronize_session="fetch")
        )
        self.session.commit()
        return int(result.rowcount or 0)


def purge_expired_alerts(session: Session, *, now: Optional[datetime] = None) -> int:
    now = now or local_now()
    result = session.execute(delete(Alert).where(Alert.expires_at <= now))
    session.commit()
    return int(result.rowcount or 0)


def purge_stale_alerts(session: Session, *, now: Optional[datetime] = None) -> int:
    now = now or local_now()
    cutoff = now - timedelta(days=get_settings().alert_ttl_days)
    result = session.execute(delete(Alert).where(Alert.created_at < cutoff))
    session.commit()
    return int(result.rowcount or 0)


def active_user_ids(session: Session) -> list[int]:
    ids: set[int] = set()
    for model in (UserPreferences, Budget, Bill):
        ids.update(session.scalars(select(model.user_id).distinct()).all())
    return sorted(ids)


# -- dashboard --------------------------------------------------------------


class MetricsService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def kpis(self, *, now: Optional[datetime] = None) -> dict[str, object]:
        now = now or local_now()
        month = month_key(now)
        totals = totals_by_type(self.session, self.user_id, month_period(month))
        budget = find_budget(self.session, self.user_id, month)
        upcoming = BillService(self.session, self.user_id).due_between(
            now, now + timedelta(days=7)
        )
        return {
            "total_income": totals[TransactionType.income],
            "total_expenses": totals[TransactionType.expense],
            "monthly_budget": _money(budget.monthly_budget) if budget else _money(0),
            "upcoming_bills": len(upcoming),
        }

    def category_spending(self, month: str) -> list[dict[str, object]]:
        period = _month_or_invalid(month)
        return [
            {"category": category, "amount": amount}
            for category, amount in expense_totals_by_category(
                self.session, self.user_id, period
            )
        ]

    def spending_trend(self, month: str) -> list[dict[str, object]]:
        period = _month_or_invalid(month)
        by_day = daily_expense_totals(self.session, self.user_id, period)
        year, month_number = parse_month(month)
        return [
            {"day": d, "amount": by_day.get(d, _money(0))}
            for d in range(1, days_in_month(year, month_number) + 1)
        ]


# -- reports ----------------------------------------------------------------


@dataclass(frozen=True)
class CategoryBreakdown:
    category: str
    amount: Decimal
    percentage: int


@dataclass
class MonthlyReport:
    month: str
    total_income: Decimal
    total_expenses: Decimal
    savings: Decimal
    top_category: Optional[CategoryBreakdown]
    category_breakdown: list[CategoryBreakdown]
    trend: list[dict[str, object]]
    transactions: list[Transaction]
    total_transactions: int


class ReportService:
    """Month report: totals cover the whole month, the listing honours filters."""

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def monthly(
        self,
        month: str,
        filters: Optional[TransactionFilters] = None,
        *,
        page: int = 1,
        limit: int = 10,
    ) -> MonthlyReport:
        period = _month_or_invalid(month)
        totals = totals_by_type(self.session, self.user_id, period)
        income = totals[TransactionType.income]
        expenses = totals[TransactionType.expense]

        breakdown = [
            CategoryBreakdown(
                category,
                amount,
                round_amount(amount / expenses * 100) if expenses > 0 else 0,
            )
            for category, amount in expense_totals_by_category(
                self.session, self.user_id, period
            )
        ]
        by_day = daily_expense_totals(self.session, self.user_id, period)

        listing = replace(
            filters or TransactionFilters(), start=period.start, end=period.end
        )
        items, total = TransactionService(self.session, self.user_id).list(
            listing, limit=limit, offset=(page - 1) * limit
        )
        return MonthlyReport(
            month=month,
            total_income=income,
            total_expenses=expenses,
            savings=income - expenses,
            top_category=breakdown[0] if breakdown else None,
            category_breakdown=breakdown,
            trend=[{"day": day, "amount": by_day[day]} for day in sorted(by_day)],
            transactions=items,
            total_transactions=total,
        )


# -- categories -------------------------------------------------------------

DEFAULT_CATEGORIES = ("Food", "Travel", "Utilities", "Shopping", "Other")
DEFAULT_CATEGORY_COLOR = "#808080"
DEFAULT_CATEGORY_ICON = "📁"


@dataclass(frozen=True)
class CategoryView:
    id: str
    name: str
    type: TransactionType
    color: str
    icon: str
    is_custom: bool


def category_view(category: Category) -> CategoryView:
    return CategoryView(
        id=str(category.id),
        name=category.name,
        type=category.type,
        color=category.color,
        icon=category.icon,
        is_custom=True,
    )


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def custom(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.id.asc())
        )
        return list(self.session.scalars(stmt).all())

    def list(self) -> list[CategoryView]:
        defaults = [
            CategoryView(
                id=name.lower(),
                name=name,
                type=TransactionType.expense,
                color=DEFAULT_CATEGORY_COLOR,
                icon=DEFAULT_CATEGORY_ICON,
                is_custom=False,
            )
            for name in DEFAULT_CATEGORIES
        ]
        return defaults + [category_view(c) for c in self.custom()]

    def add(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        if not name:
            raise ValidationError("Category name is required")
        existing = self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                func.lower(Category.name) == name.lower(),
            )
        )
        if existing or name.lower() in {n.lower() for n in DEFAULT_CATEGORIES}:
            raise ValidationError("Category already exists")
        category = Category(
            user_id=self.user_id,
            name=name,
            type=data.type,
            color=data.color,
            icon=data.icon,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: str) -> None:
        # Default categories have name-based ids and cannot be removed.
        if not category_id.isdigit():
            raise NotFoundError("Category not found (or cannot delete default)")
        category = self.session.get(Category, int(category_id))
        if not category:
            raise NotFoundError("Category not found (or cannot delete default)")
        if category.user_id != self.user_id:
            raise AuthorizationError("Not authorized to delete this category")
        self.session.delete(category)
        self.session.commit()
