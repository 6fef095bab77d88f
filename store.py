from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Iterator, Literal, Optional

from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.orm.exc import StaleDataError

from errors import ConcurrentUpdateError, StoreError
from models import (
    Account,
    Category,
    Payment,
    PaymentStatus,
    PaymentType,
    Transaction,
    TransactionType,
)


GroupBy = Literal["day", "month", "category"]

_BUCKET_FORMATS = {"day": "%Y-%m-%d", "month": "%Y-%m"}


@dataclass(frozen=True)
class AggregateResult:
    sum_cents: int
    count: int


@dataclass(frozen=True)
class BucketTotal:
    key: str
    income_cents: int
    expense_cents: int
    count: int


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    try:
        yield
    except StaleDataError as exc:
        raise ConcurrentUpdateError(
            f"{action}: transaction was modified concurrently"
        ) from exc
    except SQLAlchemyError as exc:
        raise StoreError(f"{action} failed: {exc}") from exc


class TransactionStore:
    """Session-backed persistence used by the recurring and stats engines."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def commit(self) -> None:
        with _store_errors("commit"):
            self.session.commit()

    def rollback(self) -> None:
        with _store_errors("rollback"):
            self.session.rollback()

    def find_account(self, account_id: int, user_id: int) -> Optional[Account]:
        with _store_errors("find_account"):
            account = self.session.get(Account, account_id)
        if not account or account.user_id != user_id:
            return None
        return account

    def find_category(self, category_id: int, user_id: int) -> Optional[Category]:
        with _store_errors("find_category"):
            category = self.session.get(Category, category_id)
        if not category or category.user_id != user_id:
            return None
        return category

    def find_template_by_id(
        self, template_id: int, user_id: Optional[int] = None
    ) -> Optional[Transaction]:
        with _store_errors("find_template_by_id"):
            template = self.session.get(Transaction, template_id)
        if not template or not template.is_recurring:
            return None
        if user_id is not None and template.user_id != user_id:
            return None
        return template

    def find_due_templates(self, now: datetime) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.is_recurring.is_(True),
                Transaction.is_active.is_(True),
                Transaction.next_due_at.is_not(None),
                Transaction.next_due_at <= now,
            )
            .order_by(Transaction.next_due_at, Transaction.id)
        )
        with _store_errors("find_due_templates"):
            return list(self.session.scalars(stmt).all())

    def upcoming_templates(
        self,
        user_id: int,
        now: datetime,
        limit: int = 5,
        *,
        account_id: Optional[int] = None,
    ) -> list[Transaction]:
        clauses = [
            Transaction.user_id == user_id,
            Transaction.is_recurring.is_(True),
            Transaction.is_active.is_(True),
            Transaction.next_due_at >= now,
        ]
        if account_id is not None:
            clauses.append(Transaction.account_id == account_id)
        stmt = (
            select(Transaction)
            .options(
                joinedload(Transaction.account), joinedload(Transaction.category)
            )
            .where(*clauses)
            .order_by(Transaction.next_due_at)
            .limit(limit)
        )
        with _store_errors("upcoming_templates"):
            return list(self.session.scalars(stmt).all())

    def add(self, txn: Transaction) -> Transaction:
        with _store_errors("add"):
            self.session.add(txn)
            self.session.flush()
        return txn

    def create_occurrence(self, **fields: object) -> Transaction:
        occurrence = Transaction(
            is_recurring=False,
            interval=None,
            is_active=False,
            next_due_at=None,
            **fields,
        )
        with _store_errors("create_occurrence"):
            self.session.add(occurrence)
            self.session.flush()
        return occurrence

    def update_template_next_due(
        self, template: Transaction, next_due_at: Optional[datetime]
    ) -> None:
        with _store_errors("update_template_next_due"):
            template.next_due_at = next_due_at
            self.session.flush()

    def flush(self) -> None:
        with _store_errors("flush"):
            self.session.flush()

    def _occurrence_filters(
        self,
        user_id: int,
        start: Optional[datetime],
        end: Optional[datetime],
        account_id: Optional[int],
        type: Optional[TransactionType],
    ) -> list:
        clauses = [
            Transaction.user_id == user_id,
            Transaction.is_recurring.is_(False),
        ]
        if start is not None:
            clauses.append(Transaction.occurred_at >= start)
        if end is not None:
            clauses.append(Transaction.occurred_at <= end)
        if account_id is not None:
            clauses.append(Transaction.account_id == account_id)
        if type is not None:
            clauses.append(Transaction.type == type)
        return clauses

    def aggregate(
        self,
        user_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        *,
        account_id: Optional[int] = None,
        type: Optional[TransactionType] = None,
    ) -> AggregateResult:
        stmt = select(
            func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
            func.count(Transaction.id).label("count"),
        ).where(*self._occurrence_filters(user_id, start, end, account_id, type))
        with _store_errors("aggregate"):
            row = self.session.execute(stmt).one()
        return AggregateResult(sum_cents=int(row.total or 0), count=int(row.count))

    def grouped_sums(
        self,
        user_id: int,
        start: datetime,
        end: datetime,
        group_by: GroupBy,
        *,
        account_id: Optional[int] = None,
        type: Optional[TransactionType] = None,
    ) -> list[BucketTotal]:
        if group_by == "category":
            key = func.coalesce(Category.name, "Uncategorized").label("key")
        elif group_by in _BUCKET_FORMATS:
            key = func.strftime(_BUCKET_FORMATS[group_by], Transaction.occurred_at)
            key = key.label("key")
        else:
            raise ValueError(f"Unsupported grouping: {group_by}")

        income = func.coalesce(
            func.sum(
                case(
                    (
                        Transaction.type == TransactionType.income,
                        Transaction.amount_cents,
                    ),
                    else_=0,
                )
            ),
            0,
        ).label("income")
        expense = func.coalesce(
            func.sum(
                case(
                    (
                        Transaction.type == TransactionType.expense,
                        Transaction.amount_cents,
                    ),
                    else_=0,
                )
            ),
            0,
        ).label("expense")

        stmt = select(key, income, expense, func.count(Transaction.id).label("count"))
        if group_by == "category":
            stmt = stmt.outerjoin(Category, Transaction.category_id == Category.id)
        stmt = (
            stmt.where(*self._occurrence_filters(user_id, start, end, account_id, type))
            .group_by(key)
            .order_by(key)
        )
        with _store_errors("grouped_sums"):
            rows = self.session.execute(stmt).all()
        return [
            BucketTotal(
                key=str(row.key),
                income_cents=int(row.income or 0),
                expense_cents=int(row.expense or 0),
                count=int(row.count),
            )
            for row in rows
        ]

    def payment_totals(
        self,
        user_id: int,
        statuses: Iterable[PaymentStatus],
        *,
        type: Optional[PaymentType] = None,
    ) -> AggregateResult:
        clauses = [Payment.user_id == user_id, Payment.status.in_(list(statuses))]
        if type is not None:
            clauses.append(Payment.type == type)
        stmt = select(
            func.coalesce(func.sum(Payment.amount_cents), 0).label("total"),
            func.count(Payment.id).label("count"),
        ).where(*clauses)
        with _store_errors("payment_totals"):
            row = self.session.execute(stmt).one()
        return AggregateResult(sum_cents=int(row.total or 0), count=int(row.count))
