from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from functools import wraps
from typing import Any, Callable, Optional

from expense_engine.bill_engine import (
    BillLifecycle,
    BillView,
    describe_bill,
    summarize_bills,
    upcoming_bills,
)
from expense_engine.budget_engine import (
    BudgetProgress,
    evaluate_budget,
    summarize_budgets,
    validate_period,
)
from expense_engine.currency_engine import (
    CurrencyEngine,
    coerce_amount,
    safe_normalize_currency,
)
from expense_engine.goal_engine import GoalProgress, evaluate_goal, summarize_goals
from expense_engine.records import (
    BILL_STATUSES,
    RECURRENCE_INTERVALS,
    Bill,
    Budget,
    Goal,
    RecordNotFoundError,
)
from expense_engine.recurring_schedule import next_occurrence
from expense_engine.results import NOT_FOUND, OperationResult
from expense_engine.store import FinanceStore

ZERO = Decimal("0")


def _as_result(method: Callable[..., OperationResult]) -> Callable[..., OperationResult]:
    @wraps(method)
    def wrapper(*args: Any, **kwargs: Any) -> OperationResult:
        try:
            return method(*args, **kwargs)
        except RecordNotFoundError as exc:
            return OperationResult.failed(str(exc), NOT_FOUND)
        except ValueError as exc:
            return OperationResult.failed(str(exc))

    return wrapper


@dataclass
class FinanceService:
    """Public operations of the engine.

    Every method returns an :class:`OperationResult`; invalid input and
    missing rows come back as failed results instead of exceptions.
    """

    store: FinanceStore
    currency: CurrencyEngine = field(default_factory=CurrencyEngine)
    today: Callable[[], date] = date.today

    def __post_init__(self) -> None:
        self.bills = BillLifecycle(store=self.store, today=self.today)

    # owners

    def owner_currency(self, owner_id: int) -> str:
        user = self.store.get_user(owner_id)
        preferred = user["currency"] if user else None
        return self.currency.resolve_currency(preferred)

    def owner_exists(self, owner_id: int) -> bool:
        return self.store.get_user(owner_id) is not None

    # currency

    @_as_result
    def format_money(self, amount: Any, currency: str | None = None) -> OperationResult:
        value = _require_amount(amount)
        code = self.currency.resolve_currency(currency)
        return OperationResult.ok(
            {"amount": value, "currency": code, "formatted": self.currency.format(value, code)}
        )

    @_as_result
    def parse_money(self, text: str | None, currency: str | None = None) -> OperationResult:
        code = self.currency.resolve_currency(currency)
        return OperationResult.ok({"amount": self.currency.parse(text, code), "currency": code})

    @_as_result
    def convert_money(
        self, amount: Any, from_currency: str | None, to_currency: str | None
    ) -> OperationResult:
        value = _require_amount(amount)
        if not from_currency or not to_currency:
            raise ValueError("Source and target currencies are required.")
        converted = self.currency.exchange(value, from_currency, to_currency)
        return OperationResult.ok(
            {
                "amount": value,
                "from_currency": safe_normalize_currency(from_currency) or from_currency,
                "to_currency": safe_normalize_currency(to_currency) or to_currency,
                "converted_amount": converted.amount,
                "converted_currency": converted.currency,
                "formatted": self.currency.format(converted.amount, converted.currency),
            }
        )

    @_as_result
    def supported_currencies(self) -> OperationResult:
        return OperationResult.ok(
            {
                "default_currency": self.currency.default_currency,
                "currencies": [
                    asdict(self.currency.currency_details(code))
                    for code in self.currency.supported_currencies()
                ],
            }
        )

    @_as_result
    def exchange_rates(self) -> OperationResult:
        snapshot = self.currency.rate_cache.get_rates()
        return OperationResult.ok(
            {
                "base_currency": snapshot.base_currency,
                "rates": dict(snapshot.rates),
                "fetched_at": snapshot.fetched_at,
                "source": snapshot.source,
            }
        )

    # bills

    @_as_result
    def list_bills(self, owner_id: int) -> OperationResult:
        display_currency = self.owner_currency(owner_id)
        views = self._bill_views(owner_id, display_currency)
        return OperationResult.ok([self._bill_payload(view, display_currency) for view in views])

    @_as_result
    def bill_status(self, owner_id: int, bill_id: int) -> OperationResult:
        display_currency = self.owner_currency(owner_id)
        bill = self.bills.get_bill(owner_id, bill_id)
        view = describe_bill(bill, self.today(), self.currency.convert, display_currency)
        return OperationResult.ok(self._bill_payload(view, display_currency))

    @_as_result
    def mark_paid(self, owner_id: int, bill_id: int) -> OperationResult:
        display_currency = self.owner_currency(owner_id)
        outcome = self.bills.mark_paid(owner_id, bill_id)
        return OperationResult.ok(
            {
                "bill": self._describe(outcome.bill, display_currency),
                "next_bill": self._describe(outcome.next_bill, display_currency),
            },
            message="Bill marked as paid successfully",
        )

    @_as_result
    def next_occurrence(self, owner_id: int, bill_id: int) -> OperationResult:
        display_currency = self.owner_currency(owner_id)
        bill = self.bills.get_bill(owner_id, bill_id)
        return OperationResult.ok(
            {"next_bill": self._describe(next_occurrence(bill), display_currency)}
        )

    @_as_result
    def update_bill_status(self, owner_id: int, bill_id: int, status: str | None) -> OperationResult:
        display_currency = self.owner_currency(owner_id)
        bill = self.bills.update_status(owner_id, bill_id, status)
        return OperationResult.ok(
            self._describe(bill, display_currency), message="Bill status updated successfully"
        )

    @_as_result
    def upcoming_bills(self, owner_id: int, days: int = 30) -> OperationResult:
        display_currency = self.owner_currency(owner_id)
        views = upcoming_bills(self._bill_views(owner_id, display_currency), self.today(), days)
        return OperationResult.ok([self._bill_payload(view, display_currency) for view in views])

    @_as_result
    def bills_overview(self, owner_id: int) -> OperationResult:
        display_currency = self.owner_currency(owner_id)
        overview = summarize_bills(self._bill_views(owner_id, display_currency))
        return OperationResult.ok({**asdict(overview), "currency": display_currency})

    @_as_result
    def add_bill(
        self,
        owner_id: int,
        title: str | None,
        amount: Any,
        due_date: Any,
        currency: str | None = None,
        recurring: str | None = None,
        description: str | None = None,
        status: str | None = None,
    ) -> OperationResult:
        bill = self._build_bill(
            owner_id, title, amount, due_date, currency, recurring, description, status
        )
        bill_id = self.store.insert_bill(bill)
        return OperationResult.ok({"bill_id": bill_id}, message="Bill added successfully")

    @_as_result
    def update_bill(
        self,
        owner_id: int,
        bill_id: int,
        title: str | None,
        amount: Any,
        due_date: Any,
        currency: str | None = None,
        recurring: str | None = None,
        description: str | None = None,
    ) -> OperationResult:
        existing = self.bills.get_bill(owner_id, bill_id)
        bill = self._build_bill(owner_id, title, amount, due_date, currency, recurring, description)
        self.store.update_bill(replace(bill, id=existing.id, status=existing.status))
        return OperationResult.ok({"bill_id": bill_id}, message="Bill updated successfully")

    @_as_result
    def delete_bill(self, owner_id: int, bill_id: int) -> OperationResult:
        if not self.store.delete_bill(owner_id, bill_id):
            raise RecordNotFoundError("Bill not found.")
        return OperationResult.ok(message="Bill deleted successfully")

    # budgets

    @_as_result
    def budget_progress(self, owner_id: int) -> OperationResult:
        display_currency = self.owner_currency(owner_id)
        rows = self._budget_rows(owner_id, display_currency)
        return OperationResult.ok([self._budget_payload(row, display_currency) for row in rows])

    @_as_result
    def budgets_overview(self, owner_id: int) -> OperationResult:
        display_currency = self.owner_currency(owner_id)
        overview = summarize_budgets(self._budget_rows(owner_id, display_currency))
        return OperationResult.ok({**asdict(overview), "currency": display_currency})

    @_as_result
    def add_budget(
        self,
        owner_id: int,
        amount: Any,
        start_date: Any,
        end_date: Any,
        category_id: int | None = None,
        currency: str | None = None,
    ) -> OperationResult:
        budget = self._build_budget(owner_id, amount, start_date, end_date, category_id, currency)
        budget_id = self.store.insert_budget(budget)
        return OperationResult.ok({"budget_id": budget_id}, message="Budget added successfully")

    @_as_result
    def update_budget(
        self,
        owner_id: int,
        budget_id: int,
        amount: Any,
        start_date: Any,
        end_date: Any,
        category_id: int | None = None,
        currency: str | None = None,
    ) -> OperationResult:
        if self.store.get_budget(owner_id, budget_id) is None:
            raise RecordNotFoundError("Budget not found.")
        budget = self._build_budget(owner_id, amount, start_date, end_date, category_id, currency)
        self.store.update_budget(replace(budget, id=budget_id))
        return OperationResult.ok({"budget_id": budget_id}, message="Budget updated successfully")

    @_as_result
    def delete_budget(self, owner_id: int, budget_id: int) -> OperationResult:
        if not self.store.delete_budget(owner_id, budget_id):
            raise RecordNotFoundError("Budget not found.")
        return OperationResult.ok(message="Budget deleted successfully")

    # goals

    @_as_result
    def goal_progress(self, owner_id: int) -> OperationResult:
        display_currency = self.owner_currency(owner_id)
        rows = self._goal_rows(owner_id, display_currency)
        return OperationResult.ok([self._goal_payload(row, display_currency) for row in rows])

    @_as_result
    def goals_overview(self, owner_id: int) -> OperationResult:
        display_currency = self.owner_currency(owner_id)
        overview = summarize_goals(self._goal_rows(owner_id, display_currency))
        return OperationResult.ok({**asdict(overview), "currency": display_currency})

    @_as_result
    def add_goal(
        self,
        owner_id: int,
        title: str | None,
        target_amount: Any,
        deadline: Any = None,
        progress: Any = None,
        currency: str | None = None,
    ) -> OperationResult:
        goal = self._build_goal(owner_id, title, target_amount, deadline, progress, currency)
        goal_id = self.store.insert_goal(goal)
        return OperationResult.ok({"goal_id": goal_id}, message="Goal added successfully")

    @_as_result
    def update_goal(
        self,
        owner_id: int,
        goal_id: int,
        title: str | None,
        target_amount: Any,
        deadline: Any = None,
        progress: Any = None,
        currency: str | None = None,
    ) -> OperationResult:
        if self.store.get_goal(owner_id, goal_id) is None:
            raise RecordNotFoundError("Goal not found.")
        goal = self._build_goal(owner_id, title, target_amount, deadline, progress, currency)
        self.store.update_goal(replace(goal, id=goal_id))
        return OperationResult.ok({"goal_id": goal_id}, message="Goal updated successfully")

    @_as_result
    def update_goal_progress(self, owner_id: int, goal_id: int, progress: Any) -> OperationResult:
        if progress is None:
            raise ValueError("Progress is required.")
        value = _parse_amount(progress, allow_zero=True)
        if not self.store.update_goal_progress(owner_id, goal_id, value):
            raise RecordNotFoundError("Goal not found.")
        return OperationResult.ok({"goal_id": goal_id}, message="Progress updated successfully")

    @_as_result
    def delete_goal(self, owner_id: int, goal_id: int) -> OperationResult:
        if not self.store.delete_goal(owner_id, goal_id):
            raise RecordNotFoundError("Goal not found.")
        return OperationResult.ok(message="Goal deleted successfully")

    # helpers

    def _bill_views(self, owner_id: int, display_currency: str) -> list[BillView]:
        today = self.today()
        return [
            describe_bill(bill, today, self.currency.convert, display_currency)
            for bill in self.bills.list_bills(owner_id)
        ]

    def _budget_rows(self, owner_id: int, display_currency: str) -> list[BudgetProgress]:
        budget_rows = self.store.list_budgets(owner_id)
        if not budget_rows:
            return []
        expenses = self.store.list_transactions(
            owner_id,
            start_date=min(budget.start_date for budget in budget_rows),
            end_date=max(budget.end_date for budget in budget_rows),
            txn_type="expense",
        )
        return [
            evaluate_budget(budget, expenses, self.currency.convert, display_currency)
            for budget in budget_rows
        ]

    def _goal_rows(self, owner_id: int, display_currency: str) -> list[GoalProgress]:
        today = self.today()
        return [
            evaluate_goal(goal, today, self.currency.convert, display_currency)
            for goal in self.store.list_goals(owner_id)
        ]

    def _describe(self, bill: Optional[Bill], display_currency: str) -> Optional[dict]:
        if bill is None:
            return None
        view = describe_bill(bill, self.today(), self.currency.convert, display_currency)
        return self._bill_payload(view, display_currency)

    def _bill_payload(self, view: BillView, display_currency: str) -> dict:
        bill = view.bill
        return {
            "id": bill.id,
            "title": bill.title,
            "amount": bill.amount,
            "currency": bill.currency,
            "formatted_amount": self.currency.format(bill.amount, bill.currency),
            "due_date": bill.due_date,
            "status": bill.status,
            "recurring": bill.recurring,
            "description": bill.description,
            "days_until_due": view.days_until_due,
            "is_overdue": view.is_overdue,
            "display_amount": view.display_amount,
            "display_currency": display_currency,
        }

    def _budget_payload(self, row: BudgetProgress, display_currency: str) -> dict:
        budget = row.budget
        return {
            "id": budget.id,
            "category_id": budget.category_id,
            "amount": budget.amount,
            "currency": budget.currency,
            "start_date": budget.start_date,
            "end_date": budget.end_date,
            "spent": row.spent,
            "progress": row.progress,
            "remaining": row.remaining,
            "status": row.status,
            "formatted_amount": self.currency.format(budget.amount, budget.currency),
            "formatted_spent": self.currency.format(row.spent, budget.currency),
            "formatted_remaining": self.currency.format(row.remaining, budget.currency),
            "display_amount": row.display_amount,
            "display_spent": row.display_spent,
            "display_currency": display_currency,
        }

    def _goal_payload(self, row: GoalProgress, display_currency: str) -> dict:
        goal = row.goal
        return {
            "id": goal.id,
            "title": goal.title,
            "target_amount": goal.target_amount,
            "progress": goal.progress,
            "currency": goal.currency,
            "deadline": goal.deadline,
            "percentage": row.percentage,
            "remaining": row.remaining,
            "days_remaining": row.days_remaining,
            "is_overdue": row.is_overdue,
            "status": row.status,
            "formatted_target": self.currency.format(goal.target_amount, goal.currency),
            "formatted_progress": self.currency.format(goal.progress, goal.currency),
            "display_target": row.display_target,
            "display_progress": row.display_progress,
            "display_currency": display_currency,
        }

    def _record_currency(self, owner_id: int, currency: str | None) -> str:
        if currency and self.currency.is_supported(currency):
            return safe_normalize_currency(currency)
        return self.owner_currency(owner_id)

    def _build_bill(
        self,
        owner_id: int,
        title: str | None,
        amount: Any,
        due_date: Any,
        currency: str | None,
        recurring: str | None,
        description: str | None,
        status: str | None = None,
    ) -> Bill:
        title = (title or "").strip()
        if not title or amount in (None, "") or due_date in (None, ""):
            raise ValueError("Title, amount, and due date are required")
        normalized_recurring = (recurring or "none").strip().lower()
        if normalized_recurring not in RECURRENCE_INTERVALS:
            raise ValueError("Recurring must be none, monthly, quarterly, or yearly.")
        normalized_status = (status or "pending").strip().lower()
        if normalized_status not in BILL_STATUSES:
            raise ValueError("Status must be pending, paid, or overdue.")
        parsed_due = _parse_date(due_date, "due_date")
        return Bill(
            owner_id=owner_id,
            title=title,
            amount=_parse_amount(amount),
            currency=self._record_currency(owner_id, currency),
            due_date=parsed_due,
            status=normalized_status,
            recurring=normalized_recurring,
            anchor_day=parsed_due.day if normalized_recurring != "none" else None,
            description=description.strip() if description else None,
        )

    def _build_budget(
        self,
        owner_id: int,
        amount: Any,
        start_date: Any,
        end_date: Any,
        category_id: int | None,
        currency: str | None,
    ) -> Budget:
        if amount in (None, "") or start_date in (None, "") or end_date in (None, ""):
            raise ValueError("Amount, start date, and end date are required")
        start = _parse_date(start_date, "start_date")
        end = _parse_date(end_date, "end_date")
        validate_period(start, end)
        return Budget(
            owner_id=owner_id,
            category_id=category_id,
            amount=_parse_amount(amount),
            currency=self._record_currency(owner_id, currency),
            start_date=start,
            end_date=end,
        )

    def _build_goal(
        self,
        owner_id: int,
        title: str | None,
        target_amount: Any,
        deadline: Any,
        progress: Any,
        currency: str | None,
    ) -> Goal:
        title = (title or "").strip()
        if not title or target_amount in (None, ""):
            raise ValueError("Title and target amount are required")
        return Goal(
            owner_id=owner_id,
            title=title,
            target_amount=_parse_amount(target_amount),
            currency=self._record_currency(owner_id, currency),
            progress=_parse_amount(progress, allow_zero=True) if progress not in (None, "") else ZERO,
            deadline=_parse_date(deadline, "deadline") if deadline not in (None, "") else None,
        )


def _require_amount(value: Any) -> Decimal:
    if value is None or value == "":
        raise ValueError("Amount is required.")
    return coerce_amount(value)


def _parse_amount(value: Any, allow_zero: bool = False) -> Decimal:
    amount = _require_amount(value)
    if allow_zero and amount < ZERO:
        raise ValueError("Amount cannot be negative.")
    if not allow_zero and amount <= ZERO:
        raise ValueError("Amount must be greater than zero.")
    return amount


def _parse_date(value: Any, field_name: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip(), "%Y-%m-%d").date()
    except ValueError as exc:
        raise ValueError(f"Invalid {field_name}. Use YYYY-MM-DD.") from exc
