from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable, Iterable, Optional

from expense_engine.records import Budget, Transaction

ZERO = Decimal("0")
HUNDRED = Decimal("100")
WARNING_THRESHOLD = Decimal("80")

Converter = Callable[[Decimal, str, str], Decimal]


@dataclass(frozen=True)
class BudgetProgress:
    budget: Budget
    spent: Decimal
    progress: Decimal
    remaining: Decimal
    status: str
    display_amount: Decimal
    display_spent: Decimal


@dataclass(frozen=True)
class BudgetOverview:
    total_budget: Decimal
    total_spent: Decimal
    remaining: Decimal
    progress: Decimal


def evaluate_budget(
    budget: Budget,
    transactions: Iterable[Transaction],
    convert: Converter | None = None,
    display_currency: str | None = None,
) -> BudgetProgress:
    convert = convert or _same_amount
    spent = _sum_expenses(
        transactions,
        budget=budget,
        convert=convert,
    )
    progress = _percentage(spent, budget.amount)
    if display_currency:
        display_amount = convert(budget.amount, budget.currency, display_currency)
        display_spent = convert(spent, budget.currency, display_currency)
    else:
        display_amount = budget.amount
        display_spent = spent
    return BudgetProgress(
        budget=budget,
        spent=spent,
        progress=progress,
        remaining=budget.amount - spent,
        status=budget_status(progress),
        display_amount=display_amount,
        display_spent=display_spent,
    )


def budget_status(progress: Decimal) -> str:
    if progress >= HUNDRED:
        return "exceeded"
    if progress >= WARNING_THRESHOLD:
        return "warning"
    return "good"


def summarize_budgets(rows: Iterable[BudgetProgress]) -> BudgetOverview:
    total_budget = ZERO
    total_spent = ZERO
    for row in rows:
        total_budget += row.display_amount
        total_spent += row.display_spent
    return BudgetOverview(
        total_budget=total_budget,
        total_spent=total_spent,
        remaining=total_budget - total_spent,
        progress=_percentage(total_spent, total_budget),
    )


def validate_period(start_date: date, end_date: date) -> None:
    if start_date > end_date:
        raise ValueError("start_date must be on or before end_date.")


def _sum_expenses(
    transactions: Iterable[Transaction],
    *,
    budget: Budget,
    convert: Converter,
) -> Decimal:
    total = ZERO
    for txn in transactions:
        if txn.owner_id != budget.owner_id:
            continue
        if txn.type.strip().lower() != "expense":
            continue
        if budget.category_id is not None and txn.category_id != budget.category_id:
            continue
        if not budget.start_date <= txn.date <= budget.end_date:
            continue
        total += convert(_coerce_amount(txn.amount), txn.currency, budget.currency)
    return total


def _percentage(part: Decimal, whole: Decimal) -> Decimal:
    if whole <= ZERO:
        return ZERO
    return part / whole * HUNDRED


def _same_amount(amount: Decimal, source_currency: Optional[str], target_currency: Optional[str]) -> Decimal:
    return amount


def _coerce_amount(amount: Decimal) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
