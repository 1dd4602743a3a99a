"""Rule-based spending insights.

Every function here is a pure derivation over already-fetched rows: the
caller supplies the ledger window, the current-month budget, bills and the
reference time ``now``. Nothing in this module touches the database, so the
same rules back the HTTP endpoints, the alert materializer and the tests.
"""

from __future__ import annotations

import random
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_FLOOR, Decimal
from typing import Callable, Optional, Sequence, Union

from models import Bill, Budget, Transaction
from periods import days_until, remaining_days_in_month

FORECAST_WINDOW_DAYS = 30
PERSONALITY_WINDOW_DAYS = 90
MOOD_WINDOW_DAYS = 90
SUGGESTION_WINDOW_DAYS = 30
CHALLENGE_WINDOW_DAYS = 30

# Predicted usage above this percentage (and at most 100) is "medium" risk.
FORECAST_MEDIUM_THRESHOLD = 75
FORECAST_HIGH_THRESHOLD = 100

PERSONALITY_MIN_TRANSACTIONS = 5
PERSONALITY_WEEKS = 12
HIGH_VALUE_AMOUNT = Decimal("2000")
LARGE_PURCHASE_AMOUNT = Decimal("3000")
UPCOMING_BILL_DAYS = 4

RISK_LOW = "low"
RISK_MEDIUM = "medium"
RISK_HIGH = "high"

HUNDRED = Decimal("100")


def round_amount(value: Union[Decimal, int, float]) -> int:
    """Round half toward positive infinity, like ``Math.round``."""
    return int((Decimal(str(value)) + Decimal("0.5")).to_integral_value(ROUND_FLOOR))


def format_amount(value: Decimal) -> str:
    if value == value.to_integral_value():
        return str(int(value))
    return f"{value:.2f}"


def budget_usage(budget: Budget) -> Decimal:
    return Decimal(budget.spent_so_far) / Decimal(budget.monthly_budget) * HUNDRED


def category_totals(transactions: Sequence[Transaction]) -> dict[str, Decimal]:
    totals: dict[str, Decimal] = {}
    for txn in transactions:
        totals[txn.category] = totals.get(txn.category, Decimal("0")) + txn.amount
    return totals


@dataclass(frozen=True)
class Unavailable:
    """A normal "nothing to show" outcome; never raised."""

    reason: str
    message: str

    @classmethod
    def disabled(cls, message: str) -> "Unavailable":
        return cls("disabled", message)

    @classmethod
    def insufficient_data(cls, message: str) -> "Unavailable":
        return cls("insufficient_data", message)


# -- forecast -------------------------------------------------------------


@dataclass(frozen=True)
class Forecast:
    predicted_expenses: int
    monthly_budget: Decimal
    spent_so_far: Decimal
    remaining_days: int
    daily_average: int
    difference: int
    percentage: int
    risk_level: str
    message: str


def forecast_risk(percentage: Decimal) -> str:
    if percentage > FORECAST_HIGH_THRESHOLD:
        return RISK_HIGH
    if percentage > FORECAST_MEDIUM_THRESHOLD:
        return RISK_MEDIUM
    return RISK_LOW


def _forecast_message(risk_level: str, percentage: Decimal) -> str:
    if risk_level == RISK_LOW:
        return (
            "You're on track! Based on your past 30 days, you will comfortably "
            "stay within your monthly budget."
        )
    if risk_level == RISK_MEDIUM:
        return (
            "You may reach your budget limit by the end of the month. Small "
            "reductions in daily expenses can help."
        )
    overage = round_amount(percentage - HUNDRED)
    return (
        f"Warning! At your current spending pace, you may exceed your monthly "
        f"budget by {overage}%. Consider reducing non-essential expenses."
    )


def build_forecast(
    budget: Optional[Budget],
    recent_expenses: Sequence[Transaction],
    *,
    now: datetime,
) -> Union[Forecast, Unavailable]:
    if budget is None:
        return Unavailable.insufficient_data(
            "Please set your monthly budget to enable forecasting"
        )
    if not recent_expenses:
        return Unavailable.insufficient_data("Not enough data to generate forecast")

    total = sum((txn.amount for txn in recent_expenses), Decimal("0"))
    daily_average = round_amount(total / FORECAST_WINDOW_DAYS)
    remaining_days = remaining_days_in_month(now)
    spent = Decimal(budget.spent_so_far)
    monthly = Decimal(budget.monthly_budget)

    predicted = spent + daily_average * remaining_days
    percentage = predicted / monthly * HUNDRED
    risk_level = forecast_risk(percentage)
    return Forecast(
        predicted_expenses=round_amount(predicted),
        monthly_budget=monthly,
        spent_so_far=spent,
        remaining_days=remaining_days,
        daily_average=daily_average,
        difference=round_amount(predicted - monthly),
        percentage=round_amount(percentage),
        risk_level=risk_level,
        message=_forecast_message(risk_level, percentage),
    )


def projected_usage(
    budget: Budget, recent_expenses: Sequence[Transaction], *, now: datetime
) -> Optional[Decimal]:
    """Projected end-of-month budget usage in percent, without rounding.

    ``build_forecast`` rounds the daily average for display; alert risk and
    the dashboard card use the exact pace instead.
    """
    if not recent_expenses or not budget.monthly_budget:
        return None
    total = sum((txn.amount for txn in recent_expenses), Decimal("0"))
    daily_average = total / FORECAST_WINDOW_DAYS
    predicted = (
        Decimal(budget.spent_so_far) + daily_average * remaining_days_in_month(now)
    )
    return predicted / Decimal(budget.monthly_budget) * HUNDRED


# -- dashboard cards ------------------------------------------------------

SUGGESTED_REDUCTION = Decimal("0.1")


@dataclass(frozen=True)
class DashboardInsight:
    id: str
    type: str
    title: str
    message: str
    severity: str
    timestamp: datetime


def _forecast_card(usage: Decimal) -> tuple[str, str]:
    risk_level = forecast_risk(usage)
    if risk_level == RISK_HIGH:
        overage = round_amount(usage - HUNDRED)
        return risk_level, (
            f"Based on your current trend, you may exceed your monthly budget "
            f"by {overage}%."
        )
    if risk_level == RISK_MEDIUM:
        return risk_level, (
            "You may reach your budget limit by the end of the month. Small "
            "reductions can help."
        )
    return risk_level, (
        "You're on track! You will comfortably stay within your monthly budget."
    )


def build_dashboard_insights(
    *,
    usage: Optional[Decimal],
    month_categories: Sequence[tuple[str, Decimal]],
    show_personality: bool,
    show_suggestion: bool,
    now: datetime,
) -> list[DashboardInsight]:
    """Short cards for the dashboard.

    ``usage`` is the projected budget usage (None hides the forecast card);
    ``month_categories`` are this month's expense totals, largest first.
    """
    cards: list[DashboardInsight] = []
    if usage is not None:
        severity, message = _forecast_card(usage)
        cards.append(
            DashboardInsight(
                "1", "forecast", "AI Spending Forecast", message, severity, now
            )
        )

    if not month_categories:
        return cards
    top_category, top_amount = month_categories[0]
    month_total = sum((amount for _, amount in month_categories), Decimal("0"))

    if show_personality and month_total > 0:
        share = round_amount(top_amount / month_total * HUNDRED)
        cards.append(
            DashboardInsight(
                "2",
                "personality",
                "Personality Insight",
                f"You are a {top_category} Spender: {share}% of your expenses "
                f"are on {top_category}.",
                "info",
                now,
            )
        )
    if show_suggestion:
        reduction = round_amount(top_amount * SUGGESTED_REDUCTION)
        cards.append(
            DashboardInsight(
                "3",
                "suggestion",
                "Smart Suggestion",
                f"Reduce {top_category} expenses by 10% to save {reduction:,} "
                "this month.",
                "info",
                now,
            )
        )
    return cards


# -- personality ----------------------------------------------------------

IMPULSIVE = "Impulsive Spender"
FOODIE = "Foodie Spender"
OCCASIONAL_BIG = "Occasional Big Spender"
LOYALIST = "Category Loyalist"
SAVER = "Saver"
BALANCED = "Balanced Spender"


@dataclass(frozen=True)
class CategoryShare:
    category: str
    percentage: int


@dataclass(frozen=True)
class SpendingMetrics:
    total: Decimal
    transaction_count: int
    distinct_categories: int
    high_value_count: int
    txns_per_week: float
    shares: tuple[CategoryShare, ...]
    budget_usage: Decimal

    @property
    def top(self) -> CategoryShare:
        return self.shares[0]


@dataclass(frozen=True)
class PersonalityProfile:
    description: str
    reason: str
    advice: str


@dataclass(frozen=True)
class Personality:
    type: str
    description: str
    reason: str
    advice: str
    top_categories: list[CategoryShare] = field(default_factory=list)


PROFILES: dict[str, PersonalityProfile] = {
    IMPULSIVE: PersonalityProfile(
        "You make quick purchase decisions and don't always think ahead.",
        "High daily spending frequency and purchases across many different "
        "categories.",
        "Consider a 24-hour spending rule before buying non-essential items.",
    ),
    FOODIE: PersonalityProfile(
        "You love food experiences and spend a significant part of your budget "
        "on meals.",
        "Food is consistently your top spending category (over 30%).",
        "Try meal planning or cooking at home twice a week to save money.",
    ),
    OCCASIONAL_BIG: PersonalityProfile(
        "You don't spend often, but when you do, it's big.",
        "Few transactions overall, but multiple large-value purchases (>2000).",
        "Plan for big purchases in advance to avoid budget pressure.",
    ),
    LOYALIST: PersonalityProfile(
        "You tend to stick to one main spending area each month.",
        "{category} dominates your spending, taking up {percentage}% of your "
        "expenses.",
        "Review if this category aligns with your long-term goals.",
    ),
    SAVER: PersonalityProfile(
        "You are disciplined and manage your money carefully.",
        "Monthly expenses differ significantly from income/budget, with few "
        "transaction spikes.",
        "Continue saving, consider investing or long-term planning.",
    ),
    BALANCED: PersonalityProfile(
        "You maintain a healthy balance between needs and wants.",
        "Spending is evenly split across categories with no extreme spikes.",
        "Stay consistent, consider increasing savings goals.",
    ),
}

# Evaluated in order; the first matching predicate wins.
PERSONALITY_RULES: tuple[tuple[str, Callable[[SpendingMetrics], bool]], ...] = (
    (IMPULSIVE, lambda m: m.distinct_categories > 5 and m.txns_per_week > 10),
    (FOODIE, lambda m: m.top.category == "Food" and m.top.percentage > 30),
    (OCCASIONAL_BIG, lambda m: m.txns_per_week < 5 and m.high_value_count > 2),
    (LOYALIST, lambda m: m.top.percentage > 60),
    (SAVER, lambda m: m.budget_usage < 50 and m.txns_per_week < 5),
)


def spending_metrics(
    expenses: Sequence[Transaction], budget: Optional[Budget]
) -> SpendingMetrics:
    totals = category_totals(expenses)
    total = sum(totals.values(), Decimal("0"))
    ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    shares = tuple(
        CategoryShare(category, round_amount(amount / total * HUNDRED))
        for category, amount in ranked
    )
    # No budget counts as fully used so nobody is labelled a Saver by default.
    usage = budget_usage(budget) if budget is not None else HUNDRED
    return SpendingMetrics(
        total=total,
        transaction_count=len(expenses),
        distinct_categories=len(totals),
        high_value_count=sum(1 for t in expenses if t.amount > HIGH_VALUE_AMOUNT),
        txns_per_week=len(expenses) / PERSONALITY_WEEKS,
        shares=shares,
        budget_usage=usage,
    )


def classify_personality(metrics: SpendingMetrics) -> str:
    for name, predicate in PERSONALITY_RULES:
        if predicate(metrics):
            return name
    return BALANCED


def build_personality(
    expenses: Sequence[Transaction], budget: Optional[Budget]
) -> Union[Personality, Unavailable]:
    if len(expenses) < PERSONALITY_MIN_TRANSACTIONS:
        return Unavailable.insufficient_data("Not enough data to detect personality")

    metrics = spending_metrics(expenses, budget)
    kind = classify_personality(metrics)
    profile = PROFILES[kind]
    return Personality(
        type=kind,
        description=profile.description,
        reason=profile.reason.format(
            category=metrics.top.category, percentage=metrics.top.percentage
        ),
        advice=profile.advice,
        top_categories=list(metrics.shares[:3]),
    )


# -- suggestions ----------------------------------------------------------


@dataclass(frozen=True)
class Suggestion:
    title: str
    description: str
    reason: str


PERSONALITY_TIPS: dict[str, Suggestion] = {
    IMPULSIVE: Suggestion(
        "Control Impulse Purchases",
        "Limit yourself to one non-essential purchase per week.",
        "Impulsive spending pattern detected",
    ),
    FOODIE: Suggestion(
        "Cook More, Order Less",
        "Cook at home twice a week to reduce food expenses.",
        "Foodie spending pattern detected",
    ),
    OCCASIONAL_BIG: Suggestion(
        "Plan Big Purchases",
        "Plan big purchases 14 days ahead to avoid budget stress.",
        "Large purchase pattern detected",
    ),
    SAVER: Suggestion(
        "Invest Your Savings",
        "Excellent discipline. Consider investing your leftover savings.",
        "Saver personality detected",
    ),
}


def build_suggestions(
    recent_expenses: Sequence[Transaction],
    budget: Optional[Budget],
    upcoming_bills: Sequence[Bill],
    personality: Optional[str],
    *,
    now: datetime,
) -> Union[list[Suggestion], Unavailable]:
    if not recent_expenses:
        return Unavailable.insufficient_data("Not enough data for AI suggestions")

    suggestions: list[Suggestion] = []
    totals = category_totals(recent_expenses)
    total = sum(totals.values(), Decimal("0"))

    for category, amount in totals.items():
        pct = amount / total * HUNDRED
        if pct > 25:
            suggestions.append(
                Suggestion(
                    f"Reduce {category} Spending",
                    f"{category} category makes up {round_amount(pct)}% of your "
                    "monthly spending. Try reducing expenses here.",
                    f"High {category} category spending",
                )
            )

    if budget is not None:
        usage = budget_usage(budget)
        if usage > 100:
            suggestions.append(
                Suggestion(
                    "Spending Freeze Recommended",
                    "You have exceeded your monthly budget. Consider a 3-day "
                    "spending freeze.",
                    "Budget exceeded",
                )
            )
        elif usage > 80:
            suggestions.append(
                Suggestion(
                    "Budget Alert",
                    f"You've used {round_amount(usage)}% of your monthly budget. "
                    "Reduce daily spending to avoid overshooting.",
                    "High budget usage",
                )
            )

    if personality in PERSONALITY_TIPS:
        suggestions.append(PERSONALITY_TIPS[personality])

    if len(recent_expenses) / SUGGESTION_WINDOW_DAYS > 4:
        suggestions.append(
            Suggestion(
                "High Daily Spending",
                "Your daily spending frequency is high. Set categories to "
                "Essentials vs Non-Essentials.",
                "High frequency spending",
            )
        )

    large = [t.amount for t in recent_expenses if t.amount > LARGE_PURCHASE_AMOUNT]
    if len(large) > 1:
        suggestions.append(
            Suggestion(
                "Large Purchase Alert",
                f"Your large purchases this month total "
                f"{format_amount(sum(large, Decimal('0')))}. Try spacing them out.",
                "Multiple high-value purchases",
            )
        )

    for bill in upcoming_bills:
        days_left = days_until(bill.due_date, now)
        if 0 <= days_left <= UPCOMING_BILL_DAYS:
            suggestions.append(
                Suggestion(
                    "Upcoming Bill Alert",
                    f"Your {bill.name} is due in {days_left} days. Keep extra "
                    f"{format_amount(bill.amount)} saved.",
                    "Upcoming bill detected",
                )
            )

    return suggestions


# -- mood -----------------------------------------------------------------

MOOD_EMOJIS = {
    "happy": "\U0001f60a",
    "sad": "\U0001f614",
    "angry": "\U0001f624",
    "stressed": "\U0001f613",
    "bored": "\U0001f610",
    "excited": "\U0001f929",
    "neutral": "\U0001f636",
}
UNKNOWN_MOOD_EMOJI = "❓"


@dataclass(frozen=True)
class MoodPattern:
    mood: str
    label: str
    category: str
    percentage: int


@dataclass(frozen=True)
class MoodInsights:
    top_mood: str
    mood_label: str
    description: str
    patterns: list[MoodPattern]
    peak_hours: str


def _hour_label(hour: int) -> str:
    suffix = "pm" if hour >= 12 else "am"
    return f"{hour % 12 or 12}{suffix}"


def peak_hours_label(hour_counts: Counter) -> str:
    if not hour_counts:
        return "N/A"
    # Ties go to the earliest hour of the day.
    hour = min(hour_counts, key=lambda h: (-hour_counts[h], h))
    return f"{_hour_label(hour)} - {_hour_label((hour + 3) % 24)}"


def build_mood_insights(
    tagged_expenses: Sequence[Transaction],
) -> Union[MoodInsights, Unavailable]:
    """Summarize when and on what the user spends, per mood.

    Hours come from ``occurred_at``; rows recorded without a time of day all
    land in the midnight bucket.
    """
    rows = [t for t in tagged_expenses if t.mood is not None]
    if not rows:
        return Unavailable.insufficient_data("No mood data available")

    mood_counts: Counter = Counter()
    mood_categories: dict[str, Counter] = {}
    hour_counts: Counter = Counter()
    for txn in rows:
        mood = txn.mood.value if hasattr(txn.mood, "value") else str(txn.mood)
        mood_counts[mood] += 1
        mood_categories.setdefault(mood, Counter())[txn.category] += 1
        hour_counts[txn.occurred_at.hour] += 1

    top_mood = ""
    best = 0
    for mood, count in mood_counts.items():
        if count > best:
            best = count
            top_mood = mood

    patterns: list[MoodPattern] = []
    for mood, count in mood_counts.items():
        top_category = mood_categories[mood].most_common(1)[0][0]
        patterns.append(
            MoodPattern(
                mood=MOOD_EMOJIS.get(mood, UNKNOWN_MOOD_EMOJI),
                label=mood.capitalize(),
                category=top_category,
                percentage=round_amount(Decimal(count) / len(rows) * HUNDRED),
            )
        )
    patterns.sort(key=lambda p: p.percentage, reverse=True)

    top_pattern = next(p for p in patterns if p.label.lower() == top_mood)
    return MoodInsights(
        top_mood=MOOD_EMOJIS.get(top_mood, UNKNOWN_MOOD_EMOJI),
        mood_label=top_mood.capitalize(),
        description=(
            f"You mostly spend on {top_pattern.category} when feeling {top_mood}."
        ),
        patterns=patterns,
        peak_hours=peak_hours_label(hour_counts),
    )


# -- challenges -----------------------------------------------------------


@dataclass(frozen=True)
class ChallengeTemplate:
    title: str
    description: str
    icon: str
    duration: str


@dataclass(frozen=True)
class Challenge:
    id: int
    title: str
    description: str
    expected_save: int
    duration: str
    difficulty: str
    icon: str
    status: str = "available"


CHALLENGE_POOL: dict[str, tuple[ChallengeTemplate, ...]] = {
    "Food": (
        ChallengeTemplate(
            "No Food Delivery Challenge",
            "Avoid ordering food delivery for 3 consecutive days",
            "\U0001f355",
            "3 days",
        ),
        ChallengeTemplate(
            "Coffee at Home",
            "Make your own coffee instead of buying it for a week",
            "☕",
            "7 days",
        ),
        ChallengeTemplate(
            "Meal Prep Sunday",
            "Prep all your lunches for the week on Sunday",
            "\U0001f371",
            "7 days",
        ),
    ),
    "Shopping": (
        ChallengeTemplate(
            "No New Clothes",
            "Do not buy any new clothes for 2 weeks",
            "\U0001f457",
            "14 days",
        ),
        ChallengeTemplate(
            "24-Hour Rule",
            "Wait 24 hours before making any non-essential purchase",
            "⏳",
            "7 days",
        ),
    ),
    "Transport": (
        ChallengeTemplate(
            "Walk More",
            "Walk for short trips instead of taking a cab",
            "\U0001f6b6",
            "7 days",
        ),
        ChallengeTemplate(
            "Public Transport Week",
            "Use public transport instead of ride-hailing apps",
            "\U0001f68c",
            "7 days",
        ),
    ),
    "Entertainment": (
        ChallengeTemplate(
            "Free Fun Weekend",
            "Find free entertainment activities this weekend",
            "\U0001f389",
            "2 days",
        ),
        ChallengeTemplate(
            "Entertainment Cap",
            "Keep entertainment spending under limit",
            "\U0001f3ae",
            "7 days",
        ),
    ),
}

GENERAL_CHALLENGES: tuple[ChallengeTemplate, ...] = (
    ChallengeTemplate(
        "Zero Spend Day",
        "Go a full day without spending a single rupee",
        "\U0001f6ab",
        "1 day",
    ),
    ChallengeTemplate(
        "Savings Sprint",
        "Save 500 daily for 5 days",
        "\U0001f4b0",
        "5 days",
    ),
)

GENERAL_EXPECTED_SAVE = 500
MIN_EXPECTED_SAVE = 100
MAX_CHALLENGES = 3


def expected_save(monthly_spend: Decimal) -> int:
    save = round_amount(monthly_spend * Decimal("0.15") / 4)
    if save < MIN_EXPECTED_SAVE:
        return GENERAL_EXPECTED_SAVE
    return save


def build_challenges(
    recent_expenses: Sequence[Transaction],
    *,
    rng: Optional[random.Random] = None,
) -> list[Challenge]:
    rng = rng or random.Random()
    totals = category_totals(recent_expenses)
    ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)[:3]

    challenges: list[Challenge] = []
    for category, amount in ranked:
        pool = CHALLENGE_POOL.get(category)
        if not pool:
            continue
        template = rng.choice(pool)
        challenges.append(
            Challenge(
                id=len(challenges) + 1,
                title=template.title,
                description=template.description,
                expected_save=expected_save(amount),
                duration=template.duration,
                difficulty="Medium",
                icon=template.icon,
            )
        )

    if len(challenges) < 2:
        template = rng.choice(GENERAL_CHALLENGES)
        challenges.append(
            Challenge(
                id=len(challenges) + 1,
                title=template.title,
                description=template.description,
                expected_save=GENERAL_EXPECTED_SAVE,
                duration=template.duration,
                difficulty="Easy",
                icon=template.icon,
            )
        )

    return challenges[:MAX_CHALLENGES]
