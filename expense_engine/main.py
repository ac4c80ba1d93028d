from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from expense_engine.currency_engine import CurrencyEngine
from expense_engine.finance_service import FinanceService
from expense_engine.logging_config import configure_logging
from expense_engine.rate_cache import HttpRateSource, RateCache
from expense_engine.results import OperationResult
from expense_engine.settings import Settings
from expense_engine.store import FinanceStore, build_engine


def build_rate_cache(settings: Settings) -> RateCache:
    source = None
    if settings.rate_api_enabled:
        source = HttpRateSource(url=settings.rate_api_url, timeout=settings.rate_timeout_seconds)
    return RateCache(
        source=source,
        base_currency=settings.rate_base_currency,
        refresh_interval=settings.rate_refresh_seconds,
    )


def build_service(settings: Settings) -> FinanceService:
    store = FinanceStore(build_engine(settings.database_url))
    currency = CurrencyEngine(
        rate_cache=build_rate_cache(settings),
        default_currency=settings.default_currency,
    )
    return FinanceService(store=store, currency=currency)


settings = Settings.from_env()
configure_logging(settings.log_level)
finance_service = build_service(settings)

app = FastAPI(title="Expense Tracker Engine")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def init_db() -> None:
    finance_service.store.create_all()


def get_service() -> FinanceService:
    return finance_service


class MoneyFormatPayload(BaseModel):
    amount: Decimal
    currency: str | None = None


class MoneyFormatResponse(BaseModel):
    amount: Decimal
    currency: str
    formatted: str


class MoneyParsePayload(BaseModel):
    text: str
    currency: str | None = None


class MoneyParseResponse(BaseModel):
    amount: Decimal
    currency: str


class MoneyConvertPayload(BaseModel):
    amount: Decimal
    from_currency: str
    to_currency: str


class MoneyConvertResponse(BaseModel):
    amount: Decimal
    from_currency: str
    to_currency: str
    converted_amount: Decimal
    converted_currency: str
    formatted: str


class CurrencyProfileResponse(BaseModel):
    code: str
    name: str
    symbol: str
    position: str
    decimals: int
    thousands_separator: str
    decimal_separator: str


class CurrenciesResponse(BaseModel):
    default_currency: str
    currencies: list[CurrencyProfileResponse]


class ExchangeRatesResponse(BaseModel):
    base_currency: str
    rates: dict[str, Decimal]
    fetched_at: datetime
    source: str


class BillPayload(BaseModel):
    title: str
    amount: Decimal
    due_date: date
    currency: str | None = None
    recurring: str | None = "none"
    description: str | None = None
    status: str | None = None


class BillStatusPayload(BaseModel):
    status: str


class BillResponse(BaseModel):
    id: int | None = None
    title: str
    amount: Decimal
    currency: str
    formatted_amount: str
    due_date: date
    status: str
    recurring: str
    description: str | None = None
    days_until_due: int
    is_overdue: bool
    display_amount: Decimal
    display_currency: str


class BillPaymentResponse(BaseModel):
    bill: BillResponse
    next_bill: BillResponse | None = None
    message: str | None = None


class NextOccurrenceResponse(BaseModel):
    next_bill: BillResponse | None = None


class BillsOverviewResponse(BaseModel):
    total_bills: int
    paid_bills: int
    pending_bills: int
    overdue_bills: int
    total_outstanding: Decimal
    total_paid: Decimal
    currency: str


class BudgetPayload(BaseModel):
    amount: Decimal
    start_date: date
    end_date: date
    category_id: int | None = None
    currency: str | None = None


class BudgetResponse(BaseModel):
    id: int
    category_id: int | None = None
    amount: Decimal
    currency: str
    start_date: date
    end_date: date
    spent: Decimal
    progress: Decimal
    remaining: Decimal
    status: str
    formatted_amount: str
    formatted_spent: str
    formatted_remaining: str
    display_amount: Decimal
    display_spent: Decimal
    display_currency: str


class BudgetsOverviewResponse(BaseModel):
    total_budget: Decimal
    total_spent: Decimal
    remaining: Decimal
    progress: Decimal
    currency: str


class GoalPayload(BaseModel):
    title: str
    target_amount: Decimal
    deadline: date | None = None
    progress: Decimal | None = None
    currency: str | None = None


class GoalProgressPayload(BaseModel):
    progress: Decimal


class GoalResponse(BaseModel):
    id: int
    title: str
    target_amount: Decimal
    progress: Decimal
    currency: str
    deadline: date | None = None
    percentage: Decimal
    remaining: Decimal
    days_remaining: int | None = None
    is_overdue: bool
    status: str
    formatted_target: str
    formatted_progress: str
    display_target: Decimal
    display_progress: Decimal
    display_currency: str


class GoalsOverviewResponse(BaseModel):
    total_goals: int
    completed_goals: int
    overdue_goals: int
    total_target: Decimal
    total_progress: Decimal
    overall_progress: Decimal
    currency: str


class MutationResponse(BaseModel):
    id: int | None = None
    message: str | None = None


def get_user_id(service: FinanceService, x_user_id: str | None) -> int:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user identity.") from exc
    if not service.owner_exists(user_id):
        raise HTTPException(status_code=404, detail="User not found.")
    return user_id


def unwrap(result: OperationResult) -> Any:
    if not result.success:
        status_code = 404 if result.not_found else 400
        raise HTTPException(status_code=status_code, detail=result.message)
    return result.data


def mutation(result: OperationResult, id_key: str | None = None) -> MutationResponse:
    data = unwrap(result) or {}
    return MutationResponse(id=data.get(id_key) if id_key else None, message=result.message)


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/currencies", response_model=CurrenciesResponse)
def list_currencies(service: FinanceService = Depends(get_service)) -> CurrenciesResponse:
    return CurrenciesResponse(**unwrap(service.supported_currencies()))


@app.get("/currencies/rates", response_model=ExchangeRatesResponse)
def exchange_rates(service: FinanceService = Depends(get_service)) -> ExchangeRatesResponse:
    return ExchangeRatesResponse(**unwrap(service.exchange_rates()))


@app.post("/currency/format", response_model=MoneyFormatResponse)
def format_money(
    payload: MoneyFormatPayload, service: FinanceService = Depends(get_service)
) -> MoneyFormatResponse:
    return MoneyFormatResponse(**unwrap(service.format_money(payload.amount, payload.currency)))


@app.post("/currency/parse", response_model=MoneyParseResponse)
def parse_money(
    payload: MoneyParsePayload, service: FinanceService = Depends(get_service)
) -> MoneyParseResponse:
    return MoneyParseResponse(**unwrap(service.parse_money(payload.text, payload.currency)))


@app.post("/currency/convert", response_model=MoneyConvertResponse)
def convert_money(
    payload: MoneyConvertPayload, service: FinanceService = Depends(get_service)
) -> MoneyConvertResponse:
    result = service.convert_money(payload.amount, payload.from_currency, payload.to_currency)
    return MoneyConvertResponse(**unwrap(result))


@app.get("/bills", response_model=list[BillResponse])
def list_bills(
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: FinanceService = Depends(get_service),
) -> list[BillResponse]:
    user_id = get_user_id(service, x_user_id)
    return [BillResponse(**row) for row in unwrap(service.list_bills(user_id))]


@app.get("/bills/upcoming", response_model=list[BillResponse])
def list_upcoming_bills(
    days: int = Query(30, ge=0),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: FinanceService = Depends(get_service),
) -> list[BillResponse]:
    user_id = get_user_id(service, x_user_id)
    return [BillResponse(**row) for row in unwrap(service.upcoming_bills(user_id, days))]


@app.get("/bills/overview", response_model=BillsOverviewResponse)
def bills_overview(
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: FinanceService = Depends(get_service),
) -> BillsOverviewResponse:
    user_id = get_user_id(service, x_user_id)
    return BillsOverviewResponse(**unwrap(service.bills_overview(user_id)))


@app.get("/bills/{bill_id}/status", response_model=BillResponse)
def bill_status(
    bill_id: int,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: FinanceService = Depends(get_service),
) -> BillResponse:
    user_id = get_user_id(service, x_user_id)
    return BillResponse(**unwrap(service.bill_status(user_id, bill_id)))


@app.get("/bills/{bill_id}/next-occurrence", response_model=NextOccurrenceResponse)
def preview_next_occurrence(
    bill_id: int,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: FinanceService = Depends(get_service),
) -> NextOccurrenceResponse:
    user_id = get_user_id(service, x_user_id)
    return NextOccurrenceResponse(**unwrap(service.next_occurrence(user_id, bill_id)))


@app.post("/bills", response_model=MutationResponse)
def create_bill(
    payload: BillPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: FinanceService = Depends(get_service),
) -> MutationResponse:
    user_id = get_user_id(service, x_user_id)
    result = service.add_bill(
        user_id,
        title=payload.title,
        amount=payload.amount,
        due_date=payload.due_date,
        currency=payload.currency,
        recurring=payload.recurring,
        description=payload.description,
        status=payload.status,
    )
    return mutation(result, "bill_id")


@app.put("/bills/{bill_id}", response_model=MutationResponse)
def update_bill(
    bill_id: int,
    payload: BillPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: FinanceService = Depends(get_service),
) -> MutationResponse:
    user_id = get_user_id(service, x_user_id)
    result = service.update_bill(
        user_id,
        bill_id,
        title=payload.title,
        amount=payload.amount,
        due_date=payload.due_date,
        currency=payload.currency,
        recurring=payload.recurring,
        description=payload.description,
    )
    return mutation(result, "bill_id")


@app.delete("/bills/{bill_id}")
def delete_bill(
    bill_id: int,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: FinanceService = Depends(get_service),
) -> dict:
    user_id = get_user_id(service, x_user_id)
    unwrap(service.delete_bill(user_id, bill_id))
    return {"status": "deleted"}


@app.post("/bills/{bill_id}/pay", response_model=BillPaymentResponse)
def pay_bill(
    bill_id: int,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: FinanceService = Depends(get_service),
) -> BillPaymentResponse:
    user_id = get_user_id(service, x_user_id)
    result = service.mark_paid(user_id, bill_id)
    data = unwrap(result)
    return BillPaymentResponse(
        bill=BillResponse(**data["bill"]),
        next_bill=BillResponse(**data["next_bill"]) if data["next_bill"] else None,
        message=result.message,
    )


@app.put("/bills/{bill_id}/status", response_model=BillResponse)
def update_bill_status(
    bill_id: int,
    payload: BillStatusPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: FinanceService = Depends(get_service),
) -> BillResponse:
    user_id = get_user_id(service, x_user_id)
    return BillResponse(**unwrap(service.update_bill_status(user_id, bill_id, payload.status)))


@app.get("/budgets", response_model=list[BudgetResponse])
def list_budgets(
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: FinanceService = Depends(get_service),
) -> list[BudgetResponse]:
    user_id = get_user_id(service, x_user_id)
    return [BudgetResponse(**row) for row in unwrap(service.budget_progress(user_id))]


@app.get("/budgets/overview", response_model=BudgetsOverviewResponse)
def budgets_overview(
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: FinanceService = Depends(get_service),
) -> BudgetsOverviewResponse:
    user_id = get_user_id(service, x_user_id)
    return BudgetsOverviewResponse(**unwrap(service.budgets_overview(user_id)))


@app.post("/budgets", response_model=MutationResponse)
def create_budget(
    payload: BudgetPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: FinanceService = Depends(get_service),
) -> MutationResponse:
    user_id = get_user_id(service, x_user_id)
    result = service.add_budget(
        user_id,
        amount=payload.amount,
        start_date=payload.start_date,
        end_date=payload.end_date,
        category_id=payload.category_id,
        currency=payload.currency,
    )
    return mutation(result, "budget_id")


@app.put("/budgets/{budget_id}", response_model=MutationResponse)
def update_budget(
    budget_id: int,
    payload: BudgetPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: FinanceService = Depends(get_service),
) -> MutationResponse:
    user_id = get_user_id(service, x_user_id)
    result = service.update_budget(
        user_id,
        budget_id,
        amount=payload.amount,
        start_date=payload.start_date,
        end_date=payload.end_date,
        category_id=payload.category_id,
        currency=payload.currency,
    )
    return mutation(result, "budget_id")


@app.delete("/budgets/{budget_id}")
def delete_budget(
    budget_id: int,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: FinanceService = Depends(get_service),
) -> dict:
    user_id = get_user_id(service, x_user_id)
    unwrap(service.delete_budget(user_id, budget_id))
    return {"status": "deleted"}


@app.get("/goals", response_model=list[GoalResponse])
def list_goals(
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: FinanceService = Depends(get_service),
) -> list[GoalResponse]:
    user_id = get_user_id(service, x_user_id)
    return [GoalResponse(**row) for row in unwrap(service.goal_progress(user_id))]


@app.get("/goals/overview", response_model=GoalsOverviewResponse)
def goals_overview(
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: FinanceService = Depends(get_service),
) -> GoalsOverviewResponse:
    user_id = get_user_id(service, x_user_id)
    return GoalsOverviewResponse(**unwrap(service.goals_overview(user_id)))


@app.post("/goals", response_model=MutationResponse)
def create_goal(
    payload: GoalPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: FinanceService = Depends(get_service),
) -> MutationResponse:
    user_id = get_user_id(service, x_user_id)
    result = service.add_goal(
        user_id,
        title=payload.title,
        target_amount=payload.target_amount,
        deadline=payload.deadline,
        progress=payload.progress,
        currency=payload.currency,
    )
    return mutation(result, "goal_id")


@app.put("/goals/{goal_id}", response_model=MutationResponse)
def update_goal(
    goal_id: int,
    payload: GoalPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: FinanceService = Depends(get_service),
) -> MutationResponse:
    user_id = get_user_id(service, x_user_id)
    result = service.update_goal(
        user_id,
        goal_id,
        title=payload.title,
        target_amount=payload.target_amount,
        deadline=payload.deadline,
        progress=payload.progress,
        currency=payload.currency,
    )
    return mutation(result, "goal_id")


@app.put("/goals/{goal_id}/progress", response_model=MutationResponse)
def update_goal_progress(
    goal_id: int,
    payload: GoalProgressPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: FinanceService = Depends(get_service),
) -> MutationResponse:
    user_id = get_user_id(service, x_user_id)
    return mutation(service.update_goal_progress(user_id, goal_id, payload.progress), "goal_id")


@app.delete("/goals/{goal_id}")
def delete_goal(
    goal_id: int,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: FinanceService = Depends(get_service),
) -> dict:
    user_id = get_user_id(service, x_user_id)
    unwrap(service.delete_goal(user_id, goal_id))
    return {"status": "deleted"}
