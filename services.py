from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from errors import NotFoundError, StoreError
from models import (
    Account,
    Category,
    Payment,
    PaymentStatus,
    PaymentType,
    Transaction,
    utc_now,
)
from recurrence import RecurringEngine, materialize, next_occurrence
from schemas import (
    AccountIn,
    CategoryIn,
    PaymentIn,
    RecurringUpdateIn,
    TransactionIn,
)
from store import TransactionStore


logger = logging.getLogger(__name__)


def get_current_user_id() -> int:
    return 1


class AccountService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.name)
        )
        return list(self.session.scalars(stmt).all())

    def create(self, data: AccountIn) -> Account:
        account = Account(user_id=self.user_id, name=data.name, type=data.type)
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.type, Category.name)
        )
        return list(self.session.scalars(stmt).all())

    def create(self, data: CategoryIn) -> Category:
        category = Category(
            user_id=self.user_id, name=data.name, type=data.type, icon=data.icon
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.store = TransactionStore(session)

    def _check_references(self, data: TransactionIn) -> None:
        if not self.store.find_account(data.account_id, self.user_id):
            raise NotFoundError("Account not found")
        if data.category_id is not None:
            category = self.store.find_category(data.category_id, self.user_id)
            if not category:
                raise NotFoundError("Category not found")
            if category.type != data.type:
                raise ValueError("Category type mismatch")

    def _commit(self) -> None:
        try:
            self.store.commit()
        except StoreError:
            self.store.rollback()
            raise

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise NotFoundError("Transaction not found")
        return txn

    def get_template(self, template_id: int) -> Transaction:
        template = self.store.find_template_by_id(template_id, self.user_id)
        if not template:
            raise NotFoundError("Recurring transaction not found")
        return template

    def create(self, data: TransactionIn) -> Transaction:
        """Record a transaction. Recurring input returns the new template."""
        if data.is_recurring:
            template, _occurrence = self.create_recurring(data)
            return template
        self._check_references(data)
        txn = Transaction(
            user_id=self.user_id,
            account_id=data.account_id,
            category_id=data.category_id,
            amount_cents=data.amount_cents,
            type=data.type,
            description=data.description,
            occurred_at=data.occurred_at or utc_now(),
            is_recurring=False,
            is_active=False,
        )
        self.store.add(txn)
        self._commit()
        return txn

    def create_recurring(
        self, data: TransactionIn, now: Optional[datetime] = None
    ) -> tuple[Transaction, Transaction]:
        """Create a template and its first occurrence in one commit.

        The first occurrence is dated ``data.occurred_at`` (default: now) and the
        template becomes due one interval later.
        """
        if not data.is_recurring or data.interval is None:
            raise ValueError("Recurring interval is required when is_recurring is true")
        self._check_references(data)
        occurred_at = data.occurred_at or now or utc_now()
        template = Transaction(
            user_id=self.user_id,
            account_id=data.account_id,
            category_id=data.category_id,
            amount_cents=data.amount_cents,
            type=data.type,
            description=data.description,
            occurred_at=occurred_at,
            is_recurring=True,
            interval=data.interval,
            is_active=True,
            next_due_at=next_occurrence(
                occurred_at, data.interval, anchor_day=occurred_at.day
            ),
        )
        self.store.add(template)
        occurrence = materialize(self.store, template, occurred_at)
        self._commit()
        logger.info(
            f"recurring_created: template={template.id} interval={data.interval.value} "
            f"next_due_at={template.next_due_at.isoformat()}"
        )
        return template, occurrence

    def list_recurring(self) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.is_recurring.is_(True),
            )
            .order_by(Transaction.next_due_at)
        )
        return list(self.session.scalars(stmt).all())

    def occurrences(self, template_id: int) -> list[Transaction]:
        template = self.get_template(template_id)
        stmt = (
            select(Transaction)
            .where(Transaction.parent_template_id == template.id)
            .order_by(Transaction.occurred_at)
        )
        return list(self.session.scalars(stmt).all())

    def upcoming_recurring(
        self, limit: int = 5, now: Optional[datetime] = None
    ) -> list[Transaction]:
        return self.store.upcoming_templates(self.user_id, now or utc_now(), limit)

    def _fast_forward(self, template: Transaction, now: datetime) -> None:
        # Resuming skips the paused stretch instead of backfilling it.
        if template.interval is None:
            return
        if template.next_due_at is None or template.next_due_at < now:
            template.next_due_at = next_occurrence(now, template.interval)

    def toggle_recurring(
        self, template_id: int, now: Optional[datetime] = None
    ) -> Transaction:
        template = self.get_template(template_id)
        now = now or utc_now()
        template.is_active = not template.is_active
        if template.is_active:
            self._fast_forward(template, now)
        self._commit()
        logger.info(
            f"recurring_toggled: template={template.id} active={template.is_active}"
        )
        return template

    def update_recurring(
        self,
        template_id: int,
        data: RecurringUpdateIn,
        now: Optional[datetime] = None,
    ) -> Transaction:
        template = self.get_template(template_id)
        now = now or utc_now()
        reactivating = data.is_active is True and not template.is_active
        if data.is_active is not None:
            template.is_active = data.is_active
        if data.interval is not None:
            template.interval = data.interval

        if data.next_due_at is not None:
            template.next_due_at = data.next_due_at
        elif data.interval is not None:
            template.next_due_at = next_occurrence(now, data.interval)
        elif reactivating:
            self._fast_forward(template, now)
        self._commit()
        return template

    def catch_up_all(self, now: Optional[datetime] = None) -> int:
        engine = RecurringEngine(self.store)
        return engine.post_due_templates(now)


class PaymentService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(
        self,
        type: Optional[PaymentType] = None,
        status: Optional[PaymentStatus] = None,
    ) -> list[Payment]:
        stmt = select(Payment).where(Payment.user_id == self.user_id)
        if type is not None:
            stmt = stmt.where(Payment.type == type)
        if status is not None:
            stmt = stmt.where(Payment.status == status)
        stmt = stmt.order_by(Payment.created_at.desc(), Payment.id.desc())
        return list(self.session.scalars(stmt).all())

    def get(self, payment_id: int) -> Payment:
        payment = self.session.get(Payment, payment_id)
        if not payment or payment.user_id != self.user_id:
            raise NotFoundError("Payment not found")
        return payment

    def create(self, data: PaymentIn) -> Payment:
        payment = Payment(
            user_id=self.user_id,
            amount_cents=data.amount_cents,
            person_name=data.person_name.strip(),
            type=data.type,
            description=data.description,
            due_at=data.due_at,
            status=data.status,
        )
        self.session.add(payment)
        self.session.commit()
        return payment

    def update_status(self, payment_id: int, status: PaymentStatus) -> Payment:
        payment = self.get(payment_id)
        if payment.status == PaymentStatus.paid and status != PaymentStatus.paid:
            raise ValueError(
                "Cannot change status of paid payment to pending or overdue"
            )
        payment.status = status
        self.session.commit()
        logger.info(f"payment_status: payment={payment.id} status={status.value}")
        return payment
