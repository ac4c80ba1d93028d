from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import Decimal
import logging
from typing import Callable, Iterable, List, Optional, Protocol

from expense_engine.records import BILL_STATUSES, Bill, RecordNotFoundError
from expense_engine.recurring_schedule import next_occurrence

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

Converter = Callable[[Decimal, str, str], Decimal]


class BillStore(Protocol):
    def list_bills(self, owner_id: int) -> List[Bill]:
        ...

    def get_bill(self, owner_id: int, bill_id: int) -> Optional[Bill]:
        ...

    def insert_bill(self, bill: Bill) -> int:
        ...

    def mark_bill_overdue(self, owner_id: int, bill_id: int) -> bool:
        ...

    def mark_bill_paid(self, owner_id: int, bill_id: int) -> bool:
        ...

    def set_bill_status(self, owner_id: int, bill_id: int, status: str) -> bool:
        ...


@dataclass(frozen=True)
class BillView:
    bill: Bill
    days_until_due: int
    is_overdue: bool
    display_amount: Decimal


@dataclass(frozen=True)
class BillOverview:
    total_bills: int
    paid_bills: int
    pending_bills: int
    overdue_bills: int
    total_outstanding: Decimal
    total_paid: Decimal


@dataclass(frozen=True)
class PaymentOutcome:
    bill: Bill
    next_bill: Optional[Bill] = None


def derive_status(bill: Bill, today: date) -> str:
    if bill.status == "paid":
        return "paid"
    if bill.due_date < today:
        return "overdue"
    return bill.status


def needs_overdue_correction(bill: Bill, today: date) -> bool:
    return bill.status == "pending" and derive_status(bill, today) == "overdue"


def describe_bill(
    bill: Bill,
    today: date,
    convert: Converter | None = None,
    display_currency: str | None = None,
) -> BillView:
    display_amount = bill.amount
    if convert is not None and display_currency:
        display_amount = convert(bill.amount, bill.currency, display_currency)
    return BillView(
        bill=bill,
        days_until_due=abs((bill.due_date - today).days),
        is_overdue=bill.due_date < today and not bill.is_paid,
        display_amount=display_amount,
    )


def upcoming_bills(views: Iterable[BillView], today: date, days: int) -> List[BillView]:
    if days < 0:
        raise ValueError("days must be zero or greater.")
    horizon = today + timedelta(days=days)
    selected = [
        view
        for view in views
        if not view.bill.is_paid and today <= view.bill.due_date <= horizon
    ]
    return sorted(selected, key=lambda view: view.bill.due_date)


def summarize_bills(views: Iterable[BillView]) -> BillOverview:
    counts = {status: 0 for status in BILL_STATUSES}
    total_outstanding = ZERO
    total_paid = ZERO
    total = 0
    for view in views:
        total += 1
        counts[view.bill.status] = counts.get(view.bill.status, 0) + 1
        if view.bill.is_paid:
            total_paid += view.display_amount
        else:
            total_outstanding += view.display_amount
    return BillOverview(
        total_bills=total,
        paid_bills=counts["paid"],
        pending_bills=counts["pending"],
        overdue_bills=counts["overdue"],
        total_outstanding=total_outstanding,
        total_paid=total_paid,
    )


@dataclass
class BillLifecycle:
    """Status transitions for bills.

    ``pending -> overdue`` happens lazily whenever a bill is read past its due
    date, and the correction is written back with an idempotent update.
    ``pending|overdue -> paid`` only happens through :meth:`mark_paid`, which
    also schedules the next occurrence of recurring bills. A failure while
    scheduling does not undo the payment.
    """

    store: BillStore
    today: Callable[[], date] = date.today

    def list_bills(self, owner_id: int) -> List[Bill]:
        today = self.today()
        return [self._correct(bill, today) for bill in self.store.list_bills(owner_id)]

    def get_bill(self, owner_id: int, bill_id: int) -> Bill:
        bill = self.store.get_bill(owner_id, bill_id)
        if bill is None:
            raise RecordNotFoundError("Bill not found.")
        return self._correct(bill, self.today())

    def mark_paid(self, owner_id: int, bill_id: int) -> PaymentOutcome:
        bill = self.get_bill(owner_id, bill_id)
        if bill.is_paid or not self.store.mark_bill_paid(owner_id, bill_id):
            raise ValueError("Bill is already paid.")
        paid = replace(bill, status="paid")
        logger.info("Bill %s marked paid for user %s", bill_id, owner_id)
        return PaymentOutcome(bill=paid, next_bill=self._schedule_next(paid))

    def update_status(self, owner_id: int, bill_id: int, status: str | None) -> Bill:
        normalized = (status or "").strip().lower()
        if normalized not in BILL_STATUSES:
            raise ValueError("Status must be pending, paid, or overdue.")
        if normalized == "paid":
            return self.mark_paid(owner_id, bill_id).bill
        bill = self.get_bill(owner_id, bill_id)
        if bill.is_paid:
            raise ValueError("Paid bills cannot change status.")
        self.store.set_bill_status(owner_id, bill_id, normalized)
        return replace(bill, status=normalized)

    def _correct(self, bill: Bill, today: date) -> Bill:
        if not needs_overdue_correction(bill, today):
            return bill
        self.store.mark_bill_overdue(bill.owner_id, bill.id)
        logger.info("Bill %s is past due (%s); marked overdue", bill.id, bill.due_date.isoformat())
        return replace(bill, status="overdue")

    def _schedule_next(self, bill: Bill) -> Optional[Bill]:
        if bill.recurring == "none":
            return None
        try:
            upcoming = next_occurrence(bill)
            if upcoming is None:
                return None
            new_id = self.store.insert_bill(upcoming)
        except Exception:
            logger.exception("Could not create next occurrence of bill %s", bill.id)
            return None
        logger.info("Scheduled bill %s due %s after paying bill %s", new_id, upcoming.due_date, bill.id)
        return replace(upcoming, id=new_id)
