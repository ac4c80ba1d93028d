from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

BILL_STATUSES = ("pending", "paid", "overdue")
RECURRENCE_INTERVALS = ("none", "monthly", "quarterly", "yearly")
TRANSACTION_TYPES = ("income", "expense")


class RecordNotFoundError(LookupError):
    """Raised when an owner-scoped row does not exist."""


@dataclass(frozen=True)
class Bill:
    owner_id: int
    title: str
    amount: Decimal
    currency: str
    due_date: date
    status: str = "pending"
    recurring: str = "none"
    anchor_day: Optional[int] = None
    description: Optional[str] = None
    id: Optional[int] = None

    @property
    def is_paid(self) -> bool:
        return self.status == "paid"


@dataclass(frozen=True)
class Budget:
    owner_id: int
    amount: Decimal
    currency: str
    start_date: date
    end_date: date
    category_id: Optional[int] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class Goal:
    owner_id: int
    title: str
    target_amount: Decimal
    currency: str
    progress: Decimal = Decimal("0")
    deadline: Optional[date] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class Transaction:
    owner_id: int
    type: str
    amount: Decimal
    currency: str
    date: date
    category_id: Optional[int] = None
    description: Optional[str] = None
    id: Optional[int] = None
