from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def utc_now() -> datetime:
    """Current UTC time as a naive datetime, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TransactionType(str, Enum):
    expense = "EXPENSE"
    income = "INCOME"


TRANSACTION_TYPE_ENUM = SAEnum(
    TransactionType,
    name="transactiontype",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class RecurringInterval(str, Enum):
    daily = "DAILY"
    weekly = "WEEKLY"
    monthly = "MONTHLY"
    yearly = "YEARLY"


RECURRING_INTERVAL_ENUM = SAEnum(
    RecurringInterval,
    name="recurringinterval",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, onupdate=utc_now, nullable=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False, default="BANK")

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="account"
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        TRANSACTION_TYPE_ENUM, nullable=False
    )
    icon: Mapped[Optional[str]] = mapped_column(String(40))

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )


class Transaction(Base, TimestampMixin):
    """A ledger row.

    Rows with ``is_recurring`` set are templates: they never count towards
    statistics and only spawn occurrences. Every other row is an occurrence,
    either one-time or materialized from ``parent_template_id``.
    """

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        TRANSACTION_TYPE_ENUM, nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(Text)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    interval: Mapped[Optional[RecurringInterval]] = mapped_column(
        RECURRING_INTERVAL_ENUM
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    next_due_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    parent_template_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("transactions.id")
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    account: Mapped["Account"] = relationship("Account", back_populates="transactions")
    category: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="transactions"
    )
    parent_template: Mapped[Optional["Transaction"]] = relationship(
        "Transaction", remote_side="Transaction.id", back_populates="occurrences"
    )
    occurrences: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="parent_template"
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_transactions_user_occurred", "user_id", "occurred_at"),
        Index(
            "ix_transactions_user_account_occurred",
            "user_id",
            "account_id",
            "occurred_at",
        ),
        Index("ix_transactions_due", "is_recurring", "is_active", "next_due_at"),
        Index("ix_transactions_parent", "parent_template_id"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
        CheckConstraint(
            "NOT (is_recurring AND parent_template_id IS NOT NULL)",
            name="ck_transactions_occurrence_not_recurring",
        ),
    )


class PaymentType(str, Enum):
    lent = "LENT"
    borrowed = "BORROWED"


class PaymentStatus(str, Enum):
    pending = "PENDING"
    paid = "PAID"
    overdue = "OVERDUE"


PAYMENT_TYPE_ENUM = SAEnum(
    PaymentType,
    name="paymenttype",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)

PAYMENT_STATUS_ENUM = SAEnum(
    PaymentStatus,
    name="paymentstatus",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)

UNSETTLED_PAYMENT_STATUSES = (PaymentStatus.pending, PaymentStatus.overdue)


class Payment(Base, TimestampMixin):
    """Money lent to or borrowed from a person, tracked until settled."""

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    person_name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[PaymentType] = mapped_column(PAYMENT_TYPE_ENUM, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    due_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    status: Mapped[PaymentStatus] = mapped_column(
        PAYMENT_STATUS_ENUM, nullable=False, default=PaymentStatus.pending
    )

    __table_args__ = (
        Index("ix_payments_user_status", "user_id", "status"),
        CheckConstraint("amount_cents > 0", name="ck_payments_amount_positive"),
    )
