from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from database import Base, make_engine
from main import app, get_db, get_session_factory
from periods import local_now, month_key


@pytest.fixture()
def client():
    engine = make_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_db():
        db = factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_session_factory] = lambda: factory
    yield TestClient(app)
    app.dependency_overrides.clear()
    engine.dispose()


def test_recording_expense_updates_budget_and_alerts(client) -> None:
    assert client.post("/api/budget", json={"monthly_budget": "1000"}).status_code == 200

    resp = client.post(
        "/api/transactions",
        json={
            "type": "expense",
            "category": "Food",
            "amount": "800",
            "occurred_at": local_now().isoformat(),
            "mood": "stressed",
        },
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["budget_synced"] is True
    assert body["warning"] is None
    txn_id = body["transaction"]["id"]

    budget = client.get("/api/budget/current").json()
    assert Decimal(str(budget["spent_so_far"])) == Decimal("800")
    assert budget["percentage_used"] == 80
    assert budget["status_color"] == "yellow"

    stored = client.get("/api/alerts/stored", params={"type": "budget"}).json()
    assert stored["pagination"]["total"] == 1
    assert stored["alerts"][0]["metadata"]["budget_usage"] == 80

    assert client.patch("/api/alerts/read-all").json() == {"updated": 1}

    resp = client.patch(f"/api/transactions/{txn_id}", json={"amount": "300"})
    assert resp.status_code == 200
    budget = client.get("/api/budget/current").json()
    assert Decimal(str(budget["spent_so_far"])) == Decimal("300")

    assert client.delete(f"/api/transactions/{txn_id}").status_code == 200
    budget = client.get("/api/budget/current").json()
    assert Decimal(str(budget["spent_so_far"])) == Decimal("0")


def test_error_statuses(client) -> None:
    resp = client.post(
        "/api/transactions",
        json={
            "type": "expense",
            "category": "Food",
            "amount": "0",
            "occurred_at": local_now().isoformat(),
        },
    )
    assert resp.status_code == 422

    created = client.post(
        "/api/transactions",
        json={
            "type": "income",
            "category": "Salary",
            "amount": "5000",
            "occurred_at": local_now().isoformat(),
        },
    ).json()["transaction"]

    other_user = client.get(
        f"/api/transactions/{created['id']}", headers={"X-User-Id": "2"}
    )
    assert other_user.status_code == 403
    assert client.get("/api/transactions/9999").status_code == 404
    assert client.get("/api/budget/current").status_code == 404
    bad_month = client.get("/api/transactions/summary", params={"month": "2026-13"})
    assert bad_month.status_code == 400
    assert client.get("/api/transactions", params={"limit": "500"}).status_code == 400


def test_insights_report_unavailable_states(client) -> None:
    forecast = client.get("/api/ai/forecast").json()
    assert forecast == {
        "available": False,
        "reason": "insufficient_data",
        "message": "Please set your monthly budget to enable forecasting",
    }

    client.put("/api/settings/ai", json={"enable_ai": False})
    mood = client.get("/api/ai/mood-insights").json()
    assert mood["available"] is False
    assert mood["reason"] == "disabled"

    alerts = client.get("/api/alerts").json()["alerts"]
    assert alerts[0]["level"] == "info"


def test_bills_and_settings_routes(client) -> None:
    due = local_now().replace(microsecond=0)
    resp = client.post(
        "/api/bills",
        json={"name": "Rent", "amount": "12000", "due_date": due.isoformat()},
    )
    assert resp.status_code == 201
    bill = resp.json()
    assert bill["days_left"] == 0
    assert bill["alert_level"] == "danger"

    upcoming = client.get("/api/bills/upcoming").json()["bills"]
    assert [b["name"] for b in upcoming] == ["Rent"]

    paid = client.patch(f"/api/bills/{bill['id']}/paid").json()
    assert paid["status"] == "paid"

    settings = client.put("/api/settings/notifications", json={"bills": False}).json()
    assert settings["bills"] is False
    assert client.get("/api/settings/notifications").json() == settings


def test_category_routes(client) -> None:
    resp = client.post("/api/categories", json={"name": "Gym", "color": "#00aa00"})
    assert resp.status_code == 201
    gym = resp.json()
    assert gym["is_custom"] is True
    assert gym["type"] == "expense"

    assert client.post("/api/categories", json={"name": "gym"}).status_code == 400
    bad_color = client.post("/api/categories", json={"name": "Pets", "color": "green"})
    assert bad_color.status_code == 422

    names = [c["name"] for c in client.get("/api/categories").json()["categories"]]
    assert names == ["Food", "Travel", "Utilities", "Shopping", "Other", "Gym"]

    assert client.delete("/api/categories/food").status_code == 404
    assert client.delete(
        f"/api/categories/{gym['id']}", headers={"X-User-Id": "2"}
    ).status_code == 403
    assert client.delete(f"/api/categories/{gym['id']}").status_code == 200
    assert len(client.get("/api/categories").json()["categories"]) == 5


def test_monthly_report_route(client) -> None:
    month = month_key(local_now())
    for category, amount in (("Food", "300"), ("Rent", "700")):
        client.post(
            "/api/transactions",
            json={
                "type": "expense",
                "category": category,
                "amount": amount,
                "occurred_at": local_now().isoformat(),
            },
        )

    resp = client.get(
        "/api/reports/monthly", params={"month": month, "limit": 1, "category": "Food"}
    )
    assert resp.status_code == 200
    report = resp.json()
    assert report["summary"]["top_category"]["category"] == "Rent"
    assert report["summary"]["top_category"]["percentage"] == 70
    assert [c["category"] for c in report["category_breakdown"]] == ["Rent", "Food"]
    assert [t["category"] for t in report["transactions"]] == ["Food"]
    assert report["pagination"] == {"page": 1, "limit": 1, "total": 1, "pages": 1}

    assert client.get("/api/reports/monthly").status_code == 400


def test_dashboard_ai_insights_route(client) -> None:
    client.post(
        "/api/transactions",
        json={
            "type": "expense",
            "category": "Food",
            "amount": "250",
            "occurred_at": local_now().isoformat(),
        },
    )

    insights = client.get("/api/dashboard/ai-insights").json()["insights"]
    assert [i["type"] for i in insights] == ["personality", "suggestion"]
    assert insights[1]["message"] == (
        "Reduce Food expenses by 10% to save 25 this month."
    )

    client.put("/api/settings/ai", json={"enable_ai": False})
    assert client.get("/api/dashboard/ai-insights").json() == {"insights": []}
