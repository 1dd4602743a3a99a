from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from database import Base
from models import Alert, AlertSeverity, AlertType, BillStatus, TransactionType
from schemas import (
    AlertQuery,
    BillIn,
    BudgetIn,
    NotificationSettingsIn,
    TransactionIn,
)
from services import (
    AlertService,
    AuthorizationError,
    BillService,
    BudgetService,
    NotFoundError,
    PreferencesService,
    TransactionService,
    active_user_ids,
    purge_expired_alerts,
    purge_stale_alerts,
)

NOW = datetime(2026, 6, 20, 12, 0)


def count_alerts(session: Session, alert_type: AlertType, user_id: int = 1) -> int:
    return session.scalar(
        select(func.count(Alert.id)).where(
            Alert.user_id == user_id, Alert.type == alert_type
        )
    )


def spend(session: Session, amount: str, when: datetime, category: str = "Food") -> None:
    TransactionService(session).create(
        TransactionIn(
            type=TransactionType.expense,
            category=category,
            amount=Decimal(amount),
            occurred_at=when,
        )
    )


def add_bill(session: Session, name: str, due: datetime, status=BillStatus.pending):
    return BillService(session).create(
        BillIn(name=name, amount=Decimal("1500"), due_date=due, status=status)
    )


def test_budget_alert_is_replaced_not_duplicated() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        BudgetService(session).set_budget(
            BudgetIn(monthly_budget=Decimal("1000"), month="2026-06")
        )
        spend(session, "800", NOW - timedelta(days=3))
        alerts = AlertService(session)

        first = alerts.generate_budget_alerts(now=NOW)
        second = alerts.generate_budget_alerts(now=NOW)

        assert len(first) == len(second) == 1
        assert count_alerts(session, AlertType.budget) == 1
        alert = session.scalars(select(Alert)).one()
        assert alert.severity == AlertSeverity.medium
        assert alert.details == {"budget_usage": 80, "month": "2026-06"}
        assert alert.expires_at == NOW + timedelta(days=30)


def test_budget_alerts_without_budget_keep_existing_rows() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        BudgetService(session).set_budget(
            BudgetIn(monthly_budget=Decimal("100"), month="2026-05")
        )
        spend(session, "95", datetime(2026, 5, 28, 10, 0))
        AlertService(session).generate_budget_alerts(now=datetime(2026, 5, 29))

        assert AlertService(session).generate_budget_alerts(now=NOW) == []
        assert count_alerts(session, AlertType.budget) == 1


def test_bill_alerts_cover_unpaid_bills_only() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        add_bill(session, "Rent", NOW + timedelta(days=3))
        add_bill(session, "Gym", NOW + timedelta(days=10))
        add_bill(session, "Phone", NOW + timedelta(days=1), BillStatus.paid)
        alerts = AlertService(session)

        alerts.generate_bill_alerts(now=NOW)
        created = alerts.generate_bill_alerts(now=NOW)

        assert [a.message for a in created] == ["Rent is due in 3 days."]
        assert count_alerts(session, AlertType.bill) == 1


def test_trend_alerts_from_week_over_week_totals() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        spend(session, "1000", NOW - timedelta(days=10))
        spend(session, "1500", NOW - timedelta(days=2))
        spend(session, "300", NOW - timedelta(days=1), category="Transport")

        created = AlertService(session).generate_trend_alerts(now=NOW)

        assert len(created) == 1
        assert created[0].severity == AlertSeverity.high
        assert created[0].category == "Food"
        assert created[0].trend_percentage == 50


def test_regenerate_all_respects_notification_settings() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        BudgetService(session).set_budget(
            BudgetIn(monthly_budget=Decimal("1000"), month="2026-06")
        )
        spend(session, "950", NOW - timedelta(days=1))
        add_bill(session, "Rent", NOW + timedelta(days=2))
        PreferencesService(session).update_notifications(
            NotificationSettingsIn(budget=False)
        )

        counts = AlertService(session).regenerate_all(now=NOW)

        assert counts == {"budget": 0, "bill": 1, "trend": 0}
        assert count_alerts(session, AlertType.budget) == 0


def test_list_hides_expired_and_marks_read() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        add_bill(session, "Rent", NOW + timedelta(days=2))
        add_bill(session, "Water", NOW - timedelta(days=1))
        alerts = AlertService(session)
        alerts.generate_bill_alerts(now=NOW)

        items, total = alerts.list(AlertQuery(), now=NOW)
        assert total == 2

        read = alerts.mark_read(items[0].id)
        assert read.is_read is True
        unread, total = alerts.list(AlertQuery(is_read=False), now=NOW)
        assert total == 1

        assert alerts.mark_all_read() == 1
        assert alerts.list(AlertQuery(is_read=False), now=NOW)[1] == 0

        later = NOW + timedelta(days=31)
        assert alerts.list(AlertQuery(), now=later) == ([], 0)


def test_mark_read_checks_owner() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        add_bill(session, "Rent", NOW + timedelta(days=2))
        created = AlertService(session).generate_bill_alerts(now=NOW)

        with pytest.raises(AuthorizationError):
            AlertService(session, user_id=2).mark_read(created[0].id)
        with pytest.raises(NotFoundError):
            AlertService(session).mark_read(9999)


def test_purges_remove_expired_and_stale_alerts() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        add_bill(session, "Rent", NOW + timedelta(days=2))
        add_bill(session, "Water", NOW + timedelta(days=3))
        alerts = AlertService(session)
        alerts.generate_bill_alerts(now=NOW)

        assert purge_expired_alerts(session, now=NOW + timedelta(days=1)) == 0
        assert purge_stale_alerts(session, now=NOW + timedelta(days=31)) == 2

        alerts.generate_bill_alerts(now=NOW)
        assert purge_expired_alerts(session, now=NOW + timedelta(days=30)) == 2


def test_active_users_include_anyone_with_state() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        PreferencesService(session, user_id=3).get()
        BudgetService(session, user_id=2).set_budget(
            BudgetIn(monthly_budget=Decimal("500"), month="2026-06")
        )
        BillService(session, user_id=2).create(
            BillIn(name="Rent", amount=Decimal("10"), due_date=NOW)
        )

        assert active_user_ids(session) == [2, 3]
