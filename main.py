import logging
from dataclasses import asdict
from typing import Optional, Type, TypeVar

import pydantic
from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker

from config import get_settings
from database import SessionLocal
from insights import Unavailable
from models import Alert, Transaction
from periods import local_now, month_key
from scheduler import SchedulerManager
from schemas import (
    AIPreferencesIn,
    AlertQuery,
    BillIn,
    BillQuery,
    BudgetIn,
    CategoryIn,
    NotificationSettingsIn,
    ReportQuery,
    TransactionIn,
    TransactionQuery,
    TransactionUpdate,
)
from services import (
    AlertService,
    AuthorizationError,
    BillService,
    BudgetService,
    CategoryService,
    InsightService,
    LedgerMutation,
    MetricsService,
    NotFoundError,
    PreferencesService,
    ReportService,
    TransactionFilters,
    TransactionService,
    bill_view,
    category_view,
    get_current_user_id,
    summarize_budget,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="SpendWise")

Q = TypeVar("Q", bound=pydantic.BaseModel)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> sessionmaker:
    return SessionLocal


def current_user_id(x_user_id: Optional[int] = Header(default=None)) -> int:
    return x_user_id or get_current_user_id()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    if get_settings().scheduler_enabled:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception(f"unhandled_error: path={request.url.path}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, AuthorizationError):
        return HTTPException(status_code=403, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def query_from_request(request: Request, model: Type[Q]) -> Q:
    params = {k: v for k, v in request.query_params.items() if v != ""}
    try:
        return model.model_validate(params)
    except pydantic.ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def month_from_request(request: Request) -> str:
    return request.query_params.get("month") or month_key(local_now())


def regenerate_alerts_task(factory: sessionmaker, user_id: int) -> None:
    with factory() as session:
        AlertService(session, user_id).regenerate_all()


def insight_payload(result) -> dict[str, object]:
    if isinstance(result, Unavailable):
        return {"available": False, "reason": result.reason, "message": result.message}
    return {"available": True, "data": result}


def transaction_payload(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "type": txn.type.value,
        "category": txn.category,
        "amount": txn.amount,
        "occurred_at": txn.occurred_at.isoformat(),
        "note": txn.note,
        "mood": txn.mood.value if txn.mood else None,
    }


def mutation_payload(result: LedgerMutation) -> dict[str, object]:
    payload: dict[str, object] = {
        "budget_synced": result.budget_synced,
        "warning": result.warning,
    }
    if result.transaction is not None:
        payload["transaction"] = transaction_payload(result.transaction)
    return payload


def alert_payload(alert: Alert) -> dict[str, object]:
    return {
        "id": alert.id,
        "type": alert.type.value,
        "severity": alert.severity.value,
        "message": alert.message,
        "metadata": alert.details,
        "is_read": alert.is_read,
        "created_at": alert.created_at.isoformat(),
        "expires_at": alert.expires_at.isoformat(),
    }


def pagination(page: int, limit: int, total: int) -> dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": (total + limit - 1) // limit,
    }


# -- transactions ---------------------------------------------------------


@app.get("/api/transactions")
def api_transactions(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    query = query_from_request(request, TransactionQuery)
    items, total = TransactionService(db, user_id).list(
        TransactionFilters.from_query(query),
        limit=query.limit,
        offset=(query.page - 1) * query.limit,
    )
    return {
        "transactions": [transaction_payload(t) for t in items],
        "pagination": pagination(query.page, query.limit, total),
    }


@app.get("/api/transactions/summary")
def api_transaction_summary(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    month = month_from_request(request)
    try:
        summary = TransactionService(db, user_id).month_summary(month)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {
        "month": month,
        "total_income": summary["total_income"],
        "total_expenses": summary["total_expenses"],
        "category_breakdown": summary["category_breakdown"],
        "transactions": [transaction_payload(t) for t in summary["transactions"]],
    }


@app.get("/api/transactions/{transaction_id}")
def api_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        txn = TransactionService(db, user_id).get(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_payload(txn)


@app.post("/api/transactions", status_code=201)
def api_create_transaction(
    payload: TransactionIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
    factory: sessionmaker = Depends(get_session_factory),
):
    try:
        result = TransactionService(db, user_id).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    background_tasks.add_task(regenerate_alerts_task, factory, user_id)
    return mutation_payload(result)


@app.patch("/api/transactions/{transaction_id}")
def api_update_transaction(
    transaction_id: int,
    payload: TransactionUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
    factory: sessionmaker = Depends(get_session_factory),
):
    try:
        result = TransactionService(db, user_id).update(transaction_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    background_tasks.add_task(regenerate_alerts_task, factory, user_id)
    return mutation_payload(result)


@app.delete("/api/transactions/{transaction_id}")
def api_delete_transaction(
    transaction_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
    factory: sessionmaker = Depends(get_session_factory),
):
    try:
        result = TransactionService(db, user_id).delete(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    background_tasks.add_task(regenerate_alerts_task, factory, user_id)
    return mutation_payload(result)


# -- budget ---------------------------------------------------------------


@app.post("/api/budget")
def api_set_budget(
    payload: BudgetIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
    factory: sessionmaker = Depends(get_session_factory),
):
    try:
        budget = BudgetService(db, user_id).set_budget(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    background_tasks.add_task(regenerate_alerts_task, factory, user_id)
    return asdict(summarize_budget(budget))


@app.get("/api/budget/current")
def api_current_budget(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    try:
        budget = BudgetService(db, user_id).current()
    except ValueError as exc:
        raise http_error(exc) from exc
    return asdict(summarize_budget(budget))


@app.get("/api/budget/status")
def api_budget_status(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    try:
        return BudgetService(db, user_id).status()
    except ValueError as exc:
        raise http_error(exc) from exc


# -- bills ----------------------------------------------------------------


@app.get("/api/bills")
def api_bills(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    query = query_from_request(request, BillQuery)
    bills, total = BillService(db, user_id).list(query)
    now = local_now()
    return {
        "bills": [bill_view(b, now=now) for b in bills],
        "pagination": pagination(query.page, query.limit, total),
    }


@app.get("/api/bills/upcoming")
def api_upcoming_bills(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return {"bills": BillService(db, user_id).upcoming()}


@app.post("/api/bills", status_code=201)
def api_create_bill(
    payload: BillIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
    factory: sessionmaker = Depends(get_session_factory),
):
    try:
        bill = BillService(db, user_id).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    background_tasks.add_task(regenerate_alerts_task, factory, user_id)
    return bill_view(bill, now=local_now())


@app.patch("/api/bills/{bill_id}/paid")
def api_mark_bill_paid(
    bill_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
    factory: sessionmaker = Depends(get_session_factory),
):
    try:
        bill = BillService(db, user_id).mark_paid(bill_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    background_tasks.add_task(regenerate_alerts_task, factory, user_id)
    return bill_view(bill, now=local_now())


@app.delete("/api/bills/{bill_id}")
def api_delete_bill(
    bill_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        BillService(db, user_id).delete(bill_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"deleted": bill_id}


# -- insights -------------------------------------------------------------


@app.get("/api/ai/forecast")
def api_forecast(db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    return insight_payload(InsightService(db, user_id).forecast())


@app.get("/api/ai/personality")
def api_personality(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return insight_payload(InsightService(db, user_id).personality())


@app.get("/api/ai/suggestions")
def api_suggestions(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return insight_payload(InsightService(db, user_id).suggestions())


@app.get("/api/ai/mood-insights")
def api_mood_insights(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return insight_payload(InsightService(db, user_id).mood_insights())


@app.get("/api/ai/challenges")
def api_challenges(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return insight_payload(InsightService(db, user_id).challenges())


# -- alerts ---------------------------------------------------------------


@app.get("/api/alerts")
def api_alerts(db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    return {"alerts": InsightService(db, user_id).consolidated_alerts()}


@app.get("/api/alerts/stored")
def api_stored_alerts(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    query = query_from_request(request, AlertQuery)
    alerts, total = AlertService(db, user_id).list(query)
    return {
        "alerts": [alert_payload(a) for a in alerts],
        "pagination": pagination(query.page, query.limit, total),
    }


@app.patch("/api/alerts/read-all")
def api_mark_all_alerts_read(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return {"updated": AlertService(db, user_id).mark_all_read()}


@app.patch("/api/alerts/{alert_id}/read")
def api_mark_alert_read(
    alert_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        alert = AlertService(db, user_id).mark_read(alert_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return alert_payload(alert)


@app.post("/api/alerts/generate", status_code=202)
def api_generate_alerts(
    background_tasks: BackgroundTasks,
    user_id: int = Depends(current_user_id),
    factory: sessionmaker = Depends(get_session_factory),
):
    background_tasks.add_task(regenerate_alerts_task, factory, user_id)
    return {"scheduled": True, "requested_at": local_now().isoformat()}


# -- settings -------------------------------------------------------------


@app.get("/api/settings/ai")
def api_ai_settings(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return PreferencesService(db, user_id).ai_preferences()


@app.put("/api/settings/ai")
def api_update_ai_settings(
    payload: AIPreferencesIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return PreferencesService(db, user_id).update_ai(payload)


@app.get("/api/settings/notifications")
def api_notification_settings(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return PreferencesService(db, user_id).notification_settings()


@app.put("/api/settings/notifications")
def api_update_notification_settings(
    payload: NotificationSettingsIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return PreferencesService(db, user_id).update_notifications(payload)


# -- categories -----------------------------------------------------------


@app.get("/api/categories")
def api_categories(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return {"categories": CategoryService(db, user_id).list()}


@app.post("/api/categories", status_code=201)
def api_add_category(
    payload: CategoryIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        category = CategoryService(db, user_id).add(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return category_view(category)


@app.delete("/api/categories/{category_id}")
def api_delete_category(
    category_id: str,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        CategoryService(db, user_id).delete(category_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"deleted": category_id}


# -- reports --------------------------------------------------------------


@app.get("/api/reports/monthly")
def api_monthly_report(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    query = query_from_request(request, ReportQuery)
    filters = TransactionFilters(
        type=query.type, category=query.category, search=query.search
    )
    try:
        report = ReportService(db, user_id).monthly(
            query.month, filters, page=query.page, limit=query.limit
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    return {
        "month": report.month,
        "summary": {
            "total_income": report.total_income,
            "total_expenses": report.total_expenses,
            "savings": report.savings,
            "top_category": report.top_category,
        },
        "category_breakdown": report.category_breakdown,
        "trend": report.trend,
        "transactions": [transaction_payload(t) for t in report.transactions],
        "pagination": pagination(query.page, query.limit, report.total_transactions),
    }


# -- dashboard ------------------------------------------------------------


@app.get("/api/dashboard/kpis")
def api_kpis(db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    return MetricsService(db, user_id).kpis()


@app.get("/api/dashboard/category-spending")
def api_category_spending(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        return MetricsService(db, user_id).category_spending(month_from_request(request))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/dashboard/spending-trend")
def api_spending_trend(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        return MetricsService(db, user_id).spending_trend(month_from_request(request))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/dashboard/ai-insights")
def api_dashboard_insights(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return {"insights": InsightService(db, user_id).dashboard_insights()}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
