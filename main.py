import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse, Response

from context import OwnerContext, require_owner
from database import init_db
from errors import (
    FinanceError,
    NotAuthenticated,
    NotFound,
    OwnershipMismatch,
    PersistenceFailure,
    ValidationError,
)
from gateway import PersistenceGateway, SQLAlchemyGateway
from models import (
    Account,
    Category,
    Goal,
    NotificationPreferences,
    RecurringTransaction,
    Transaction,
)
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AccountUpdateIn,
    AppNotification,
    Balances,
    BudgetLimitIn,
    BudgetProgress,
    CategoryExpense,
    CategoryIn,
    GoalDepositIn,
    GoalIn,
    MonthlyHistoryEntry,
    NotificationPreferencesIn,
    PaidFlagIn,
    RecurringTransactionIn,
    SuggestionIn,
    TransactionIn,
)
from services import (
    AccountService,
    CategoryService,
    DashboardService,
    GoalService,
    NotificationService,
    RecurringTransactionService,
    TransactionService,
    start_session,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Family Finance Ledger")

_gateway = SQLAlchemyGateway()
scheduler_manager = SchedulerManager(_gateway)


def get_gateway() -> PersistenceGateway:
    return _gateway


def get_owner(x_owner_id: Optional[str] = Header(default=None)) -> OwnerContext:
    return require_owner(OwnerContext(x_owner_id or ""))


@app.on_event("startup")
def startup_event():
    init_db()
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


_STATUS_BY_ERROR = (
    (NotAuthenticated, 401),
    (OwnershipMismatch, 403),
    (NotFound, 404),
    (ValidationError, 400),
)


@app.exception_handler(FinanceError)
def finance_error_handler(request: Request, exc: FinanceError) -> JSONResponse:
    if isinstance(exc, PersistenceFailure):
        logger.error(f"request_failed: path={request.url.path} error={exc}")
        return JSONResponse(status_code=503, content={"detail": exc.user_message})
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return JSONResponse(status_code=status, content={"detail": str(exc)})
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.post("/api/session/start")
def api_session_start(
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    started = start_session(gateway, owner)
    return {
        "seeded": started.seeded,
        "generated": [t.id for t in started.expansion.generated],
        "failed_templates": started.expansion.failed,
        "notifications": [n.model_dump(mode="json") for n in started.notifications],
    }


@app.get("/api/accounts", response_model=list[Account])
def api_list_accounts(
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return AccountService(gateway, owner).list_all()


@app.post("/api/accounts", response_model=Account, status_code=201)
def api_create_account(
    data: AccountIn,
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return AccountService(gateway, owner).create(data)


@app.patch("/api/accounts/{account_id}", response_model=Account)
def api_update_account(
    account_id: str,
    data: AccountUpdateIn,
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return AccountService(gateway, owner).update(account_id, data)


@app.delete("/api/accounts/{account_id}", status_code=204)
def api_delete_account(
    account_id: str,
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    AccountService(gateway, owner).delete(account_id)
    return Response(status_code=204)


@app.get("/api/categories", response_model=list[Category])
def api_list_categories(
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return CategoryService(gateway, owner).list_all()


@app.post("/api/categories", response_model=Category, status_code=201)
def api_create_category(
    data: CategoryIn,
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return CategoryService(gateway, owner).create(data)


@app.put("/api/categories/{category_id}", response_model=Category)
def api_update_category(
    category_id: str,
    data: CategoryIn,
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return CategoryService(gateway, owner).update(category_id, data)


@app.put("/api/categories/{category_id}/budget", response_model=Category)
def api_update_category_budget(
    category_id: str,
    data: BudgetLimitIn,
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return CategoryService(gateway, owner).update_budget(
        category_id, data.budget_limit_cents
    )


@app.delete("/api/categories/{category_id}", status_code=204)
def api_delete_category(
    category_id: str,
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    CategoryService(gateway, owner).delete(category_id)
    return Response(status_code=204)


@app.post("/api/categories/suggest")
def api_suggest_category(
    data: SuggestionIn,
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return {"category_id": CategoryService(gateway, owner).suggest(data.description)}


@app.get("/api/transactions", response_model=list[Transaction])
def api_list_transactions(
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return TransactionService(gateway, owner).list_all()


@app.post("/api/transactions", response_model=Transaction, status_code=201)
def api_create_transaction(
    data: TransactionIn,
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return TransactionService(gateway, owner).create(data)


@app.get("/api/transactions/{transaction_id}", response_model=Transaction)
def api_get_transaction(
    transaction_id: str,
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return TransactionService(gateway, owner).get(transaction_id)


@app.put("/api/transactions/{transaction_id}", response_model=Transaction)
def api_update_transaction(
    transaction_id: str,
    data: TransactionIn,
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return TransactionService(gateway, owner).update(transaction_id, data)


@app.post("/api/transactions/{transaction_id}/paid", response_model=Transaction)
def api_set_transaction_paid(
    transaction_id: str,
    data: PaidFlagIn,
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return TransactionService(gateway, owner).set_paid(transaction_id, data.is_paid)


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def api_delete_transaction(
    transaction_id: str,
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    TransactionService(gateway, owner).delete(transaction_id)
    return Response(status_code=204)


@app.get("/api/recurring", response_model=list[RecurringTransaction])
def api_list_recurring(
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return RecurringTransactionService(gateway, owner).list_all()


@app.post("/api/recurring", response_model=RecurringTransaction, status_code=201)
def api_create_recurring(
    data: RecurringTransactionIn,
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return RecurringTransactionService(gateway, owner).create(data)


@app.post("/api/recurring/run")
def api_run_recurring(
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    result = RecurringTransactionService(gateway, owner).run_expansion()
    return {
        "generated": [t.model_dump(mode="json") for t in result.generated],
        "failed_templates": result.failed,
    }


@app.post("/api/recurring/{template_id}/active", response_model=RecurringTransaction)
def api_toggle_recurring(
    template_id: str,
    active: bool = Query(...),
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return RecurringTransactionService(gateway, owner).set_active(template_id, active)


@app.delete("/api/recurring/{template_id}", status_code=204)
def api_delete_recurring(
    template_id: str,
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    RecurringTransactionService(gateway, owner).delete(template_id)
    return Response(status_code=204)


@app.get("/api/goals", response_model=list[Goal])
def api_list_goals(
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return GoalService(gateway, owner).list_all()


@app.post("/api/goals", response_model=Goal, status_code=201)
def api_create_goal(
    data: GoalIn,
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return GoalService(gateway, owner).create(data)


@app.post("/api/goals/{goal_id}/deposits", response_model=Goal)
def api_deposit_to_goal(
    goal_id: str,
    data: GoalDepositIn,
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return GoalService(gateway, owner).deposit(goal_id, data)


@app.delete("/api/goals/{goal_id}", status_code=204)
def api_delete_goal(
    goal_id: str,
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    GoalService(gateway, owner).delete(goal_id)
    return Response(status_code=204)


@app.get("/api/dashboard/balances", response_model=Balances)
def api_balances(
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return DashboardService(gateway, owner).calculate_balances()


@app.get("/api/reports/monthly-history", response_model=list[MonthlyHistoryEntry])
def api_monthly_history(
    months: Optional[int] = Query(default=None, ge=1, le=60),
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return DashboardService(gateway, owner).monthly_history(months)


@app.get("/api/reports/expenses-by-category", response_model=list[CategoryExpense])
def api_expenses_by_category(
    months: Optional[int] = Query(default=None, ge=1, le=60),
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return DashboardService(gateway, owner).expenses_by_category(months)


@app.get("/api/budgets", response_model=list[BudgetProgress])
def api_budgets(
    year: Optional[int] = Query(default=None, ge=1970, le=3000),
    month: Optional[int] = Query(default=None, ge=1, le=12),
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return DashboardService(gateway, owner).budget_progress(year, month)


@app.get("/api/notifications", response_model=list[AppNotification])
def api_notifications(
    today: Optional[date] = Query(default=None),
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return NotificationService(gateway, owner).check_upcoming_alerts(today)


@app.get("/api/notifications/preferences", response_model=NotificationPreferences)
def api_get_preferences(
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return NotificationService(gateway, owner).get_preferences()


@app.put("/api/notifications/preferences", response_model=NotificationPreferences)
def api_save_preferences(
    data: NotificationPreferencesIn,
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return NotificationService(gateway, owner).save_preferences(data)


@app.get("/api/assistant/context")
def api_assistant_context(
    owner: OwnerContext = Depends(get_owner),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return {"context": DashboardService(gateway, owner).assistant_context()}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
