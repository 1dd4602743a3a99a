import logging
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

import services
from database import Base, make_engine
from models import Budget, Mood, Transaction, TransactionType
from schemas import BudgetIn, TransactionIn, TransactionUpdate
from services import (
    AuthorizationError,
    BudgetService,
    NotFoundError,
    TransactionFilters,
    TransactionService,
    ValidationError,
    apply_expense_delta,
    find_budget,
    recompute_spent_so_far,
)

JUNE = datetime(2026, 6, 10, 9, 30)
JULY = datetime(2026, 7, 2, 18, 0)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def spent(session: Session, month: str = "2026-06", user_id: int = 1) -> Decimal:
    return session.scalar(
        select(Budget.spent_so_far).where(
            Budget.user_id == user_id, Budget.month == month
        )
    )


def record(
    session,
    type_=TransactionType.expense,
    amount="100",
    when=JUNE,
    category="Food",
    **extra,
):
    return (
        TransactionService(session)
        .create(
            TransactionIn(
                type=type_,
                category=category,
                amount=Decimal(amount),
                occurred_at=when,
                **extra,
            )
        )
        .transaction
    )


def test_spent_so_far_tracks_every_ledger_mutation() -> None:
    session = make_session()
    BudgetService(session).set_budget(
        BudgetIn(monthly_budget=Decimal("10000"), month="2026-06")
    )
    txns = TransactionService(session)

    coffee = record(session, amount="100")
    dinner = record(session, amount="250", category="Dining")
    salary = record(session, TransactionType.income, "5000", category="Salary")
    record(session, amount="75", when=JULY)
    assert spent(session) == Decimal("350")

    # Amount edit moves the aggregate by new - old.
    txns.update(coffee.id, TransactionUpdate(amount=Decimal("180")))
    assert spent(session) == Decimal("430")

    # expense -> income removes the old amount.
    txns.update(dinner.id, TransactionUpdate(type=TransactionType.income))
    assert spent(session) == Decimal("180")

    # income -> expense adds the new amount.
    txns.update(salary.id, TransactionUpdate(type=TransactionType.expense))
    assert spent(session) == Decimal("5180")

    # Moving an expense into a month without a budget only reverses it here.
    txns.update(coffee.id, TransactionUpdate(occurred_at=JULY))
    assert spent(session) == Decimal("5000")

    txns.delete(salary.id)
    assert spent(session) == Decimal("0")
    assert spent(session) == recompute_spent_so_far(session, 1, "2026-06")


def test_edit_moves_expense_between_budgeted_months() -> None:
    session = make_session()
    budgets = BudgetService(session)
    budgets.set_budget(BudgetIn(monthly_budget=Decimal("1000"), month="2026-06"))
    budgets.set_budget(BudgetIn(monthly_budget=Decimal("1000"), month="2026-07"))
    record(session, amount="40", when=JULY)
    txn = record(session, amount="300")
    assert spent(session, "2026-06") == Decimal("300")

    result = TransactionService(session).update(
        txn.id, TransactionUpdate(occurred_at=JULY, amount=Decimal("120"))
    )

    assert result.budget_synced is True
    assert spent(session, "2026-06") == Decimal("0")
    assert spent(session, "2026-07") == Decimal("160")
    assert spent(session, "2026-07") == recompute_spent_so_far(session, 1, "2026-07")


def test_income_and_other_months_leave_budget_untouched() -> None:
    session = make_session()
    BudgetService(session).set_budget(
        BudgetIn(monthly_budget=Decimal("2000"), month="2026-06")
    )

    record(session, TransactionType.income, "900", category="Salary")
    record(session, amount="40", when=JULY)

    assert spent(session) == Decimal("0")
    assert find_budget(session, 1, "2026-07") is None


def test_delete_clamps_drifted_total_at_zero() -> None:
    session = make_session()
    BudgetService(session).set_budget(
        BudgetIn(monthly_budget=Decimal("1000"), month="2026-06")
    )
    txn = record(session, amount="100")
    session.execute(update(Budget).values(spent_so_far=Decimal("50")))
    session.commit()

    TransactionService(session).delete(txn.id)

    assert spent(session) == Decimal("0")


def test_set_budget_recomputes_from_ledger() -> None:
    session = make_session()
    # No budget yet: nothing to adjust.
    record(session, amount="120")
    record(session, amount="80", category="Transport")
    record(session, TransactionType.income, "3000", category="Salary")
    record(session, amount="500", when=JULY)

    budgets = BudgetService(session)
    budget = budgets.set_budget(
        BudgetIn(monthly_budget=Decimal("1000"), month="2026-06")
    )
    assert budget.spent_so_far == Decimal("200")

    session.execute(update(Budget).values(spent_so_far=Decimal("999")))
    session.commit()
    budget = budgets.set_budget(
        BudgetIn(monthly_budget=Decimal("1500"), month="2026-06")
    )
    assert budget.monthly_budget == Decimal("1500")
    assert budget.spent_so_far == Decimal("200")


def test_set_budget_defaults_to_current_month() -> None:
    session = make_session()
    budget = BudgetService(session).set_budget(
        BudgetIn(monthly_budget=Decimal("700")), now=JULY
    )
    assert budget.month == "2026-07"


def test_concurrent_expenses_do_not_lose_updates(tmp_path) -> None:
    engine = make_engine(f"sqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    with factory() as setup:
        BudgetService(setup).set_budget(
            BudgetIn(monthly_budget=Decimal("1000"), month="2026-06")
        )

    first = factory()
    second = factory()
    try:
        # Both writers start from the same observed total.
        assert find_budget(first, 1, "2026-06").spent_so_far == Decimal("0")
        assert find_budget(second, 1, "2026-06").spent_so_far == Decimal("0")

        apply_expense_delta(first, 1, TransactionType.expense, JUNE, Decimal("100"))
        first.commit()
        apply_expense_delta(second, 1, TransactionType.expense, JUNE, Decimal("40"))
        second.commit()
    finally:
        first.close()
        second.close()

    with factory() as check:
        assert spent(check) == Decimal("140")
    engine.dispose()


def test_budget_sync_failure_keeps_ledger_write(monkeypatch, caplog) -> None:
    session = make_session()
    BudgetService(session).set_budget(
        BudgetIn(monthly_budget=Decimal("1000"), month="2026-06")
    )

    def boom(*args, **kwargs):
        raise SQLAlchemyError("budgets table locked")

    monkeypatch.setattr(services, "apply_expense_delta", boom)
    with caplog.at_level(logging.ERROR, logger="services"):
        result = TransactionService(session).create(
            TransactionIn(
                type=TransactionType.expense,
                category="Food",
                amount=Decimal("60"),
                occurred_at=JUNE,
            )
        )

    assert result.budget_synced is False
    assert result.warning
    assert TransactionService(session).get(result.transaction.id).amount == Decimal("60")
    assert spent(session) == Decimal("0")
    assert "budget_sync_failed" in caplog.text


def test_transactions_are_scoped_to_their_owner() -> None:
    session = make_session()
    txn = record(session)

    with pytest.raises(AuthorizationError):
        TransactionService(session, user_id=2).get(txn.id)
    with pytest.raises(AuthorizationError):
        TransactionService(session, user_id=2).delete(txn.id)
    with pytest.raises(NotFoundError):
        TransactionService(session).update(999, TransactionUpdate(note="x"))


def test_blank_category_is_rejected() -> None:
    session = make_session()
    with pytest.raises(ValidationError, match="Category is required"):
        record(session, category="   ")


def test_partial_update_keeps_omitted_fields() -> None:
    session = make_session()
    txn = record(session, note="Lunch", mood=Mood.happy)

    updated = TransactionService(session).update(
        txn.id, TransactionUpdate(note="Team lunch")
    ).transaction

    assert updated.note == "Team lunch"
    assert updated.mood == Mood.happy
    assert updated.amount == Decimal("100")
    assert updated.category == "Food"


def test_category_is_stored_as_typed() -> None:
    session = make_session()
    record(session, category="Cars")
    record(session, category="Food")

    # One edit away from an existing label is still a different category.
    assert record(session, category="Bars").category == "Bars"
    assert record(session, category="Fond").category == "Fond"
    assert record(session, category="  Groceries ").category == "Groceries"
    assert record(session, category="food").category == "Food"

    renamed = TransactionService(session).update(
        record(session, category="Rent").id, TransactionUpdate(category="Rant")
    )
    assert renamed.transaction.category == "Rant"


def test_list_filters_and_paginates_newest_first() -> None:
    session = make_session()
    for day in range(1, 8):
        record(session, amount=str(day * 10), when=datetime(2026, 6, day, 12, 0))
    record(session, TransactionType.income, "999", category="Salary", note="June pay")

    txns = TransactionService(session)
    page, total = txns.list(
        TransactionFilters(type=TransactionType.expense), limit=3, offset=3
    )
    assert total == 7
    assert [t.occurred_at.day for t in page] == [4, 3, 2]

    found, total = txns.list(TransactionFilters(search="pay"))
    assert total == 1
    assert found[0].category == "Salary"


def test_month_summary_totals() -> None:
    session = make_session()
    record(session, amount="100")
    record(session, amount="50", category="Transport")
    record(session, amount="25")
    record(session, TransactionType.income, "2000", category="Salary")
    record(session, amount="999", when=JULY)

    summary = TransactionService(session).month_summary("2026-06")

    assert summary["total_income"] == Decimal("2000")
    assert summary["total_expenses"] == Decimal("175")
    assert summary["category_breakdown"] == {
        "Food": Decimal("125"),
        "Transport": Decimal("50"),
    }
    with pytest.raises(ValidationError):
        TransactionService(session).month_summary("June")


def test_month_summary_counts_every_row() -> None:
    session = make_session()
    rows = 10_005
    session.execute(
        insert(Transaction),
        [
            {
                "user_id": 1,
                "type": TransactionType.expense,
                "category": "Food" if i % 2 else "Transport",
                "amount": Decimal("1"),
                "occurred_at": datetime(2026, 6, 1 + i % 28, 12, 0),
            }
            for i in range(rows)
        ],
    )
    session.commit()

    summary = TransactionService(session).month_summary("2026-06")

    assert summary["total_expenses"] == Decimal(rows)
    assert summary["category_breakdown"] == {
        "Transport": Decimal("5003"),
        "Food": Decimal("5002"),
    }
    assert len(summary["transactions"]) == rows
