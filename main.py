import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from balance_cache import BalanceCache
from codec import FieldCodecError
from config import get_settings
from database import get_db
from errors import (
    ConfigurationError,
    NotFoundError,
    UpstreamFetchError,
    ValidationError,
)
from scheduler import SchedulerManager
from schemas import (
    AvailableBalanceOut,
    GoalMovementIn,
    HistoryPointOut,
    MonthlyBalanceOut,
    SavingsGoalIn,
    ScheduledTransactionIn,
    ScheduledTransactionUpdate,
    TransactionIn,
)
from services import (
    BalanceService,
    SavingsGoalService,
    ScheduledTransactionService,
    TransactionService,
)
from store import SqlStore


def configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level)
    # basicConfig is a no-op once the root logger has handlers
    logging.getLogger().setLevel(level)


settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Cash Flow Balance API")
app.state.balance_cache = BalanceCache()


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()

scheduler_manager = SchedulerManager(app.state.balance_cache)


@app.on_event("startup")
def startup_event():
    if settings.scheduler_enabled:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.exception_handler(ValidationError)
def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": str(exc), "fields": exc.fields},
    )


@app.exception_handler(NotFoundError)
def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(UpstreamFetchError)
def upstream_error_handler(request: Request, exc: UpstreamFetchError):
    logger.error(f"upstream_fetch_failed: path={request.url.path} error={exc}")
    return JSONResponse(status_code=502, content={"error": "Failed to load data"})


@app.exception_handler(ConfigurationError)
@app.exception_handler(FieldCodecError)
def stored_data_error_handler(request: Request, exc: ValueError):
    logger.error(f"stored_data_invalid: path={request.url.path} error={exc}")
    return JSONResponse(status_code=500, content={"error": "Failed to compute balance"})


def get_cache(request: Request) -> BalanceCache:
    return request.app.state.balance_cache


def current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user")
    return x_user_id


def balance_service(
    db: Session = Depends(get_db), cache: BalanceCache = Depends(get_cache)
) -> BalanceService:
    return BalanceService(SqlStore(db), cache)


@app.get("/api/health")
def health(cache: BalanceCache = Depends(get_cache)):
    return {"status": "ok", "version": APP_VERSION, "cache": cache.stats()}


@app.get("/api/balance", response_model=AvailableBalanceOut)
def get_balance(
    user_id: str = Depends(current_user_id),
    service: BalanceService = Depends(balance_service),
):
    return service.get_available_balance(user_id)


@app.get("/api/balance/monthly/{month}/{year}", response_model=MonthlyBalanceOut)
def get_monthly_balance(
    month: str,
    year: str,
    user_id: str = Depends(current_user_id),
    service: BalanceService = Depends(balance_service),
):
    return service.get_monthly_balance(user_id, month, year)


@app.get("/api/balance/history", response_model=list[HistoryPointOut])
def get_balance_history(
    user_id: str = Depends(current_user_id),
    service: BalanceService = Depends(balance_service),
):
    return service.get_balance_history(user_id)


@app.get("/api/balance/months")
def get_months(
    user_id: str = Depends(current_user_id),
    service: BalanceService = Depends(balance_service),
):
    return service.get_months(user_id)


@app.get("/api/balance/savings-overview")
def get_savings_overview(
    user_id: str = Depends(current_user_id),
    service: BalanceService = Depends(balance_service),
):
    return service.get_savings_overview(user_id)


@app.get("/api/cash-flow/calendar")
def get_calendar(
    request: Request,
    user_id: str = Depends(current_user_id),
    service: BalanceService = Depends(balance_service),
):
    start = request.query_params.get("start_date")
    end = request.query_params.get("end_date")
    return service.get_calendar(user_id, start, end)


def _scheduled_out(record) -> dict[str, object]:
    return {
        "id": record.id,
        "description": record.description,
        "amount": record.amount,
        "category": record.category,
        "typeId": record.type_id,
        "recurrence_pattern": record.recurrence_pattern.value,
        "recurrence_interval": record.recurrence_interval,
        "recurrence_end_date": (
            record.recurrence_end_date.isoformat() if record.recurrence_end_date else None
        ),
        "next_execution_date": record.next_execution_date.isoformat(),
        "is_active": record.is_active,
    }


def scheduled_service(
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
    cache: BalanceCache = Depends(get_cache),
) -> ScheduledTransactionService:
    return ScheduledTransactionService(db, cache, user_id)


@app.get("/api/cash-flow/scheduled")
def list_scheduled(service: ScheduledTransactionService = Depends(scheduled_service)):
    return [_scheduled_out(record) for record in service.list()]


@app.get("/api/cash-flow/scheduled/{scheduled_id}")
def get_scheduled(
    scheduled_id: int,
    service: ScheduledTransactionService = Depends(scheduled_service),
):
    return _scheduled_out(service.get(scheduled_id))


@app.post("/api/cash-flow/scheduled", status_code=201)
def create_scheduled(
    data: ScheduledTransactionIn,
    service: ScheduledTransactionService = Depends(scheduled_service),
):
    return _scheduled_out(service.create(data))


@app.put("/api/cash-flow/scheduled/{scheduled_id}")
def update_scheduled(
    scheduled_id: int,
    data: ScheduledTransactionUpdate,
    service: ScheduledTransactionService = Depends(scheduled_service),
):
    return _scheduled_out(service.update(scheduled_id, data))


@app.delete("/api/cash-flow/scheduled/{scheduled_id}")
def delete_scheduled(
    scheduled_id: int,
    service: ScheduledTransactionService = Depends(scheduled_service),
):
    service.delete(scheduled_id)
    return {"message": "Scheduled transaction deleted successfully"}


def transaction_service(
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
    cache: BalanceCache = Depends(get_cache),
) -> TransactionService:
    return TransactionService(db, cache, user_id)


@app.get("/api/transactions")
def list_transactions(service: TransactionService = Depends(transaction_service)):
    return [txn.as_dict() for txn in service.list()]


@app.post("/api/transactions", status_code=201)
def create_transaction(
    data: TransactionIn, service: TransactionService = Depends(transaction_service)
):
    return service.create(data).as_dict()


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int,
    data: TransactionIn,
    service: TransactionService = Depends(transaction_service),
):
    return service.update(transaction_id, data).as_dict()


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int, service: TransactionService = Depends(transaction_service)
):
    service.delete(transaction_id)
    return {"message": "Transaction deleted successfully"}


def _goal_out(record) -> dict[str, object]:
    return {
        "id": record.id,
        "goal_name": record.goal_name,
        "target_amount": record.target_amount,
        "current_amount": record.current_amount,
        "target_date": record.target_date.isoformat() if record.target_date else None,
    }


def savings_goal_service(
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
    cache: BalanceCache = Depends(get_cache),
) -> SavingsGoalService:
    return SavingsGoalService(db, cache, user_id)


@app.get("/api/savings-goals")
def list_goals(service: SavingsGoalService = Depends(savings_goal_service)):
    return [_goal_out(goal) for goal in service.list()]


@app.post("/api/savings-goals", status_code=201)
def create_goal(
    data: SavingsGoalIn, service: SavingsGoalService = Depends(savings_goal_service)
):
    return _goal_out(service.create(data))


@app.post("/api/savings-goals/{goal_id}/allocate")
def allocate_to_goal(
    goal_id: int,
    data: GoalMovementIn,
    service: SavingsGoalService = Depends(savings_goal_service),
):
    return _goal_out(service.allocate(goal_id, data))


@app.post("/api/savings-goals/{goal_id}/withdraw")
def withdraw_from_goal(
    goal_id: int,
    data: GoalMovementIn,
    service: SavingsGoalService = Depends(savings_goal_service),
):
    return _goal_out(service.withdraw(goal_id, data))
