from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from insights import HUNDRED, RISK_HIGH, budget_usage, round_amount
from models import AlertSeverity, AlertType, Bill, BillStatus, Budget
from periods import days_until

LEVEL_DANGER = "danger"
LEVEL_WARNING = "warning"
LEVEL_INFO = "info"

LEVEL_PRIORITY = {LEVEL_DANGER: 3, LEVEL_WARNING: 2, LEVEL_INFO: 1}

# (minimum usage %, severity), checked top-down.
BUDGET_THRESHOLDS: tuple[tuple[int, AlertSeverity], ...] = (
    (100, AlertSeverity.high),
    (90, AlertSeverity.high),
    (75, AlertSeverity.medium),
    (50, AlertSeverity.low),
)

TREND_THRESHOLDS: tuple[tuple[int, AlertSeverity], ...] = (
    (50, AlertSeverity.high),
    (20, AlertSeverity.medium),
)


@dataclass(frozen=True)
class AlertDraft:
    """An alert ready to be persisted by the materializer."""

    type: AlertType
    severity: AlertSeverity
    message: str
    details: dict[str, object] = field(default_factory=dict)


def budget_alert(budget: Budget) -> Optional[AlertDraft]:
    if not budget.monthly_budget:
        return None
    usage = budget_usage(budget)
    for minimum, severity in BUDGET_THRESHOLDS:
        if usage >= minimum:
            break
    else:
        return None

    if usage >= 100:
        message = (
            f"You have exceeded your monthly budget by "
            f"{round_amount(usage - HUNDRED)}%."
        )
    else:
        message = f"You have used {round_amount(usage)}% of your monthly budget."
    return AlertDraft(
        type=AlertType.budget,
        severity=severity,
        message=message,
        details={"budget_usage": round_amount(usage), "month": budget.month},
    )


def bill_alert(bill: Bill, *, now: datetime) -> Optional[AlertDraft]:
    if bill.status == BillStatus.paid:
        return None
    days_left = days_until(bill.due_date, now)
    if days_left < 0:
        severity = AlertSeverity.high
        message = f"Overdue: {bill.name} was due on {bill.due_date.date().isoformat()}."
    elif days_left == 0:
        severity = AlertSeverity.high
        message = f"{bill.name} is due today."
    elif days_left == 1:
        severity = AlertSeverity.medium
        message = f"{bill.name} is due tomorrow."
    elif days_left <= 3:
        severity = AlertSeverity.medium
        message = f"{bill.name} is due in {days_left} days."
    elif days_left <= 7:
        severity = AlertSeverity.low
        message = f"{bill.name} is due in {days_left} days."
    else:
        return None
    return AlertDraft(
        type=AlertType.bill,
        severity=severity,
        message=message,
        details={"bill_id": bill.id, "bill_name": bill.name, "due_date": bill.due_date},
    )


def trend_alerts(
    this_week: dict[str, Decimal], last_week: dict[str, Decimal]
) -> list[AlertDraft]:
    drafts: list[AlertDraft] = []
    for category, amount in this_week.items():
        previous = last_week.get(category, Decimal("0"))
        if not previous:
            continue
        increase = (amount - previous) / previous * HUNDRED
        for minimum, severity in TREND_THRESHOLDS:
            if increase >= minimum:
                break
        else:
            continue
        pct = round_amount(increase)
        drafts.append(
            AlertDraft(
                type=AlertType.trend,
                severity=severity,
                message=f"Your {category} spending increased by {pct}% this week.",
                details={"category": category, "trend_percentage": pct},
            )
        )
    return drafts


@dataclass(frozen=True)
class ConsolidatedAlert:
    id: str
    level: str
    message: str
    date: datetime
    is_read: bool = False


def consolidated_alerts(
    budget: Optional[Budget],
    pending_bills: Sequence[Bill],
    forecast_risk: Optional[str],
    *,
    now: datetime,
) -> list[ConsolidatedAlert]:
    """Fresh, unpersisted alerts ordered danger > warning > info."""
    drafts: list[tuple[str, str, datetime]] = []

    if budget is not None:
        usage = budget_usage(budget)
        if usage > 100:
            drafts.append(
                (
                    LEVEL_DANGER,
                    f"You have exceeded your monthly budget by "
                    f"{round_amount(usage - HUNDRED)}%.",
                    now,
                )
            )
        elif usage > 80:
            drafts.append(
                (
                    LEVEL_WARNING,
                    f"You have exceeded {round_amount(usage)}% of your monthly budget.",
                    now,
                )
            )
    else:
        drafts.append(
            (LEVEL_INFO, "You haven't set a budget for this month yet.", now)
        )

    for bill in pending_bills:
        days_left = days_until(bill.due_date, now)
        if days_left < 0:
            drafts.append(
                (
                    LEVEL_DANGER,
                    f"Overdue: {bill.name} was due on "
                    f"{bill.due_date.date().isoformat()}.",
                    bill.due_date,
                )
            )
        elif days_left <= 3:
            due_text = "today" if days_left == 0 else f"in {days_left} days"
            drafts.append((LEVEL_WARNING, f"{bill.name} is due {due_text}.", now))

    if forecast_risk == RISK_HIGH:
        drafts.append(
            (
                LEVEL_DANGER,
                "AI Forecast: High risk of overspending this month based on "
                "current habits.",
                now,
            )
        )

    alerts = [
        ConsolidatedAlert(id=str(index), level=level, message=message, date=when)
        for index, (level, message, when) in enumerate(drafts, start=1)
    ]
    alerts.sort(key=lambda a: LEVEL_PRIORITY[a.level], reverse=True)
    return alerts
