from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Mapping, Optional

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    TypeDecorator,
    create_engine,
    delete,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from expense_engine.records import Bill, Budget, Goal, Transaction

metadata = MetaData()


class ExactDecimal(TypeDecorator):
    """Numeric column that keeps every digit on SQLite.

    SQLite has no decimal storage, so values are written there as text and
    read back into ``Decimal``. Other backends use ``Numeric`` directly.
    """

    impl = Numeric
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(64))
        return super().load_dialect_impl(dialect)

    def process_bind_param(self, value, dialect):
        if value is None or dialect.name != "sqlite":
            return value
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, Decimal):
            return value
        return Decimal(str(value))


users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), unique=True, nullable=False),
    Column("name", String(255)),
    Column("currency", String(3)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

categories = Table(
    "categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("category_name", String(255), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("type", String(20), nullable=False),
    Column("amount", ExactDecimal(20, 6), nullable=False),
    Column("currency", String(3), nullable=False),
    Column("category_id", Integer, ForeignKey("categories.id")),
    Column("description", Text),
    Column("date", Date, nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

budgets = Table(
    "budgets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("category_id", Integer, ForeignKey("categories.id")),
    Column("amount", ExactDecimal(20, 6), nullable=False),
    Column("currency", String(3), nullable=False),
    Column("start_date", Date, nullable=False),
    Column("end_date", Date, nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

goals = Table(
    "goals",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("title", String(255), nullable=False),
    Column("target_amount", ExactDecimal(20, 6), nullable=False),
    Column("currency", String(3), nullable=False),
    Column("progress", ExactDecimal(20, 6), nullable=False, server_default="0"),
    Column("deadline", Date),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

bills = Table(
    "bills",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("title", String(255), nullable=False),
    Column("amount", ExactDecimal(20, 6), nullable=False),
    Column("currency", String(3), nullable=False),
    Column("due_date", Date, nullable=False),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("recurring", String(20), nullable=False, server_default="none"),
    Column("anchor_day", Integer),
    Column("description", Text),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)


def build_engine(database_url: str) -> Engine:
    connect_args = {}
    kwargs = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if database_url in {"sqlite://", "sqlite:///:memory:"}:
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, connect_args=connect_args, **kwargs)


@dataclass
class FinanceStore:
    """Owner-scoped persistence for bills, budgets, goals and transactions.

    Every read and write filters on the owner id. Writes are single-row
    statements; nothing here spans more than one row.
    """

    engine: Engine

    def create_all(self) -> None:
        metadata.create_all(self.engine)

    # users

    def create_user(self, email: str, name: str | None = None, currency: str | None = None) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                insert(users).values(email=email.strip().lower(), name=name, currency=currency)
            )
            return result.inserted_primary_key[0]

    def get_user(self, user_id: int) -> Optional[Mapping]:
        with self.engine.begin() as conn:
            return conn.execute(
                select(users.c.id, users.c.email, users.c.name, users.c.currency).where(
                    users.c.id == user_id
                )
            ).mappings().first()

    def create_category(self, user_id: int, name: str) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(insert(categories).values(user_id=user_id, category_name=name))
            return result.inserted_primary_key[0]

    # transactions

    def insert_transaction(self, txn: Transaction) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                insert(transactions).values(
                    user_id=txn.owner_id,
                    type=txn.type,
                    amount=txn.amount,
                    currency=txn.currency,
                    category_id=txn.category_id,
                    description=txn.description,
                    date=txn.date,
                )
            )
            return result.inserted_primary_key[0]

    def list_transactions(
        self,
        owner_id: int,
        start_date: date | None = None,
        end_date: date | None = None,
        txn_type: str | None = None,
    ) -> List[Transaction]:
        stmt = select(transactions).where(transactions.c.user_id == owner_id)
        if start_date is not None:
            stmt = stmt.where(transactions.c.date >= start_date)
        if end_date is not None:
            stmt = stmt.where(transactions.c.date <= end_date)
        if txn_type is not None:
            stmt = stmt.where(transactions.c.type == txn_type)
        stmt = stmt.order_by(transactions.c.date.asc(), transactions.c.id.asc())
        with self.engine.begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [_transaction_from_row(row) for row in rows]

    # bills

    def list_bills(self, owner_id: int) -> List[Bill]:
        stmt = (
            select(bills)
            .where(bills.c.user_id == owner_id)
            .order_by(bills.c.due_date.asc(), bills.c.id.asc())
        )
        with self.engine.begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [_bill_from_row(row) for row in rows]

    def get_bill(self, owner_id: int, bill_id: int) -> Optional[Bill]:
        with self.engine.begin() as conn:
            row = conn.execute(
                select(bills).where(bills.c.id == bill_id, bills.c.user_id == owner_id)
            ).mappings().first()
        return _bill_from_row(row) if row else None

    def insert_bill(self, bill: Bill) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                insert(bills).values(
                    user_id=bill.owner_id,
                    title=bill.title,
                    amount=bill.amount,
                    currency=bill.currency,
                    due_date=bill.due_date,
                    status=bill.status,
                    recurring=bill.recurring,
                    anchor_day=bill.anchor_day,
                    description=bill.description,
                )
            )
            return result.inserted_primary_key[0]

    def update_bill(self, bill: Bill) -> bool:
        stmt = (
            update(bills)
            .where(bills.c.id == bill.id, bills.c.user_id == bill.owner_id)
            .values(
                title=bill.title,
                amount=bill.amount,
                currency=bill.currency,
                due_date=bill.due_date,
                recurring=bill.recurring,
                anchor_day=bill.anchor_day,
                description=bill.description,
            )
        )
        with self.engine.begin() as conn:
            return conn.execute(stmt).rowcount > 0

    def delete_bill(self, owner_id: int, bill_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(bills).where(bills.c.id == bill_id, bills.c.user_id == owner_id)
            )
            return result.rowcount > 0

    def mark_bill_overdue(self, owner_id: int, bill_id: int) -> bool:
        stmt = (
            update(bills)
            .where(
                bills.c.id == bill_id,
                bills.c.user_id == owner_id,
                bills.c.status == "pending",
            )
            .values(status="overdue")
        )
        with self.engine.begin() as conn:
            return conn.execute(stmt).rowcount > 0

    def mark_bill_paid(self, owner_id: int, bill_id: int) -> bool:
        stmt = (
            update(bills)
            .where(
                bills.c.id == bill_id,
                bills.c.user_id == owner_id,
                bills.c.status != "paid",
            )
            .values(status="paid")
        )
        with self.engine.begin() as conn:
            return conn.execute(stmt).rowcount > 0

    def set_bill_status(self, owner_id: int, bill_id: int, status: str) -> bool:
        stmt = (
            update(bills)
            .where(
                bills.c.id == bill_id,
                bills.c.user_id == owner_id,
                bills.c.status != "paid",
            )
            .values(status=status)
        )
        with self.engine.begin() as conn:
            return conn.execute(stmt).rowcount > 0

    # budgets

    def list_budgets(self, owner_id: int) -> List[Budget]:
        stmt = (
            select(budgets)
            .where(budgets.c.user_id == owner_id)
            .order_by(budgets.c.start_date.desc(), budgets.c.id.desc())
        )
        with self.engine.begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [_budget_from_row(row) for row in rows]

    def get_budget(self, owner_id: int, budget_id: int) -> Optional[Budget]:
        with self.engine.begin() as conn:
            row = conn.execute(
                select(budgets).where(budgets.c.id == budget_id, budgets.c.user_id == owner_id)
            ).mappings().first()
        return _budget_from_row(row) if row else None

    def insert_budget(self, budget: Budget) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                insert(budgets).values(
                    user_id=budget.owner_id,
                    category_id=budget.category_id,
                    amount=budget.amount,
                    currency=budget.currency,
                    start_date=budget.start_date,
                    end_date=budget.end_date,
                )
            )
            return result.inserted_primary_key[0]

    def update_budget(self, budget: Budget) -> bool:
        stmt = (
            update(budgets)
            .where(budgets.c.id == budget.id, budgets.c.user_id == budget.owner_id)
            .values(
                category_id=budget.category_id,
                amount=budget.amount,
                currency=budget.currency,
                start_date=budget.start_date,
                end_date=budget.end_date,
            )
        )
        with self.engine.begin() as conn:
            return conn.execute(stmt).rowcount > 0

    def delete_budget(self, owner_id: int, budget_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(budgets).where(budgets.c.id == budget_id, budgets.c.user_id == owner_id)
            )
            return result.rowcount > 0

    # goals

    def list_goals(self, owner_id: int) -> List[Goal]:
        stmt = (
            select(goals)
            .where(goals.c.user_id == owner_id)
            .order_by(goals.c.deadline.asc(), goals.c.id.desc())
        )
        with self.engine.begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [_goal_from_row(row) for row in rows]

    def get_goal(self, owner_id: int, goal_id: int) -> Optional[Goal]:
        with self.engine.begin() as conn:
            row = conn.execute(
                select(goals).where(goals.c.id == goal_id, goals.c.user_id == owner_id)
            ).mappings().first()
        return _goal_from_row(row) if row else None

    def insert_goal(self, goal: Goal) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                insert(goals).values(
                    user_id=goal.owner_id,
                    title=goal.title,
                    target_amount=goal.target_amount,
                    currency=goal.currency,
                    progress=goal.progress,
                    deadline=goal.deadline,
                )
            )
            return result.inserted_primary_key[0]

    def update_goal(self, goal: Goal) -> bool:
        stmt = (
            update(goals)
            .where(goals.c.id == goal.id, goals.c.user_id == goal.owner_id)
            .values(
                title=goal.title,
                target_amount=goal.target_amount,
                currency=goal.currency,
                progress=goal.progress,
                deadline=goal.deadline,
            )
        )
        with self.engine.begin() as conn:
            return conn.execute(stmt).rowcount > 0

    def update_goal_progress(self, owner_id: int, goal_id: int, progress: Decimal) -> bool:
        stmt = (
            update(goals)
            .where(goals.c.id == goal_id, goals.c.user_id == owner_id)
            .values(progress=progress)
        )
        with self.engine.begin() as conn:
            return conn.execute(stmt).rowcount > 0

    def delete_goal(self, owner_id: int, goal_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(goals).where(goals.c.id == goal_id, goals.c.user_id == owner_id)
            )
            return result.rowcount > 0


def _bill_from_row(row: Mapping) -> Bill:
    return Bill(
        id=row["id"],
        owner_id=row["user_id"],
        title=row["title"],
        amount=_coerce_amount(row["amount"]),
        currency=row["currency"],
        due_date=row["due_date"],
        status=row["status"],
        recurring=row["recurring"],
        anchor_day=row["anchor_day"],
        description=row["description"],
    )


def _budget_from_row(row: Mapping) -> Budget:
    return Budget(
        id=row["id"],
        owner_id=row["user_id"],
        category_id=row["category_id"],
        amount=_coerce_amount(row["amount"]),
        currency=row["currency"],
        start_date=row["start_date"],
        end_date=row["end_date"],
    )


def _goal_from_row(row: Mapping) -> Goal:
    return Goal(
        id=row["id"],
        owner_id=row["user_id"],
        title=row["title"],
        target_amount=_coerce_amount(row["target_amount"]),
        currency=row["currency"],
        progress=_coerce_amount(row["progress"]),
        deadline=row["deadline"],
    )


def _transaction_from_row(row: Mapping) -> Transaction:
    return Transaction(
        id=row["id"],
        owner_id=row["user_id"],
        type=row["type"],
        amount=_coerce_amount(row["amount"]),
        currency=row["currency"],
        category_id=row["category_id"],
        description=row["description"],
        date=row["date"],
    )


def _coerce_amount(amount) -> Decimal:
    if amount is None:
        return Decimal("0")
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
