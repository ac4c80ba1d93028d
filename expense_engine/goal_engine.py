from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable, Iterable, Optional

from expense_engine.records import Goal

ZERO = Decimal("0")
HUNDRED = Decimal("100")
NEAR_COMPLETION_THRESHOLD = Decimal("75")

Converter = Callable[[Decimal, str, str], Decimal]


@dataclass(frozen=True)
class GoalProgress:
    goal: Goal
    percentage: Decimal
    remaining: Decimal
    days_remaining: Optional[int]
    is_overdue: bool
    status: str
    display_target: Decimal
    display_progress: Decimal


@dataclass(frozen=True)
class GoalOverview:
    total_goals: int
    completed_goals: int
    overdue_goals: int
    total_target: Decimal
    total_progress: Decimal
    overall_progress: Decimal


def evaluate_goal(
    goal: Goal,
    today: date,
    convert: Converter | None = None,
    display_currency: str | None = None,
) -> GoalProgress:
    percentage = _percentage(goal.progress, goal.target_amount)
    if goal.deadline is not None:
        days_remaining: Optional[int] = abs((goal.deadline - today).days)
        is_overdue = goal.deadline < today
    else:
        days_remaining = None
        is_overdue = False

    display_target = goal.target_amount
    display_progress = goal.progress
    if convert is not None and display_currency:
        display_target = convert(goal.target_amount, goal.currency, display_currency)
        display_progress = convert(goal.progress, goal.currency, display_currency)

    return GoalProgress(
        goal=goal,
        percentage=percentage,
        remaining=goal.target_amount - goal.progress,
        days_remaining=days_remaining,
        is_overdue=is_overdue,
        status=goal_status(percentage, is_overdue),
        display_target=display_target,
        display_progress=display_progress,
    )


def goal_status(percentage: Decimal, is_overdue: bool) -> str:
    if percentage >= HUNDRED:
        return "completed"
    if is_overdue:
        return "overdue"
    if percentage >= NEAR_COMPLETION_THRESHOLD:
        return "near_completion"
    return "in_progress"


def summarize_goals(rows: Iterable[GoalProgress]) -> GoalOverview:
    total = 0
    completed = 0
    overdue = 0
    total_target = ZERO
    total_progress = ZERO
    for row in rows:
        total += 1
        if row.status == "completed":
            completed += 1
        elif row.status == "overdue":
            overdue += 1
        total_target += row.display_target
        total_progress += row.display_progress
    return GoalOverview(
        total_goals=total,
        completed_goals=completed,
        overdue_goals=overdue,
        total_target=total_target,
        total_progress=total_progress,
        overall_progress=_percentage(total_progress, total_target),
    )


def _percentage(part: Decimal, whole: Decimal) -> Decimal:
    if whole <= ZERO:
        return ZERO
    return part / whole * HUNDRED
