from __future__ import annotations

from calendar import monthrange
from dataclasses import replace
from datetime import date
import logging

from expense_engine.records import Bill

logger = logging.getLogger(__name__)

INTERVAL_MONTHS = {
    "monthly": 1,
    "quarterly": 3,
    "yearly": 12,
}


def next_occurrence(bill: Bill, interval: str | None = None) -> Bill | None:
    """Build the pending bill that follows ``bill``.

    The next due date is counted from the bill's own due date, keeping the
    anchor day of month where the target month has it. Unrecognised intervals
    produce no bill.
    """
    normalized = _normalize_interval(interval if interval is not None else bill.recurring)
    months = INTERVAL_MONTHS.get(normalized)
    if months is None:
        if normalized != "none":
            logger.warning(
                "Bill %s has unsupported recurrence interval %r; no next occurrence",
                bill.id,
                interval if interval is not None else bill.recurring,
            )
        return None

    anchor_day = bill.anchor_day or bill.due_date.day
    return replace(
        bill,
        id=None,
        status="pending",
        recurring=normalized,
        anchor_day=anchor_day,
        due_date=add_months(bill.due_date, months, anchor_day),
    )


def add_months(start_date: date, months: int, anchor_day: int | None = None) -> date:
    total_month = start_date.month - 1 + months
    year = start_date.year + total_month // 12
    month = total_month % 12 + 1
    last_day = monthrange(year, month)[1]
    day = min(anchor_day or start_date.day, last_day)
    return date(year, month, day)


def _normalize_interval(value: str | None) -> str:
    if not value:
        return "none"
    return value.strip().lower()
