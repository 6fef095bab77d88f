from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Literal, Optional

from sqlalchemy.orm import Session

from models import (
    UNSETTLED_PAYMENT_STATUSES,
    PaymentType,
    RecurringInterval,
    Transaction,
    TransactionType,
    utc_now,
)
from periods import (
    DateRange,
    add_months,
    calculate_date_range,
    end_of_day,
    month_end,
    month_start,
    previous_date_range,
    start_of_day,
)
from services import get_current_user_id
from store import TransactionStore


Direction = Literal["increase", "decrease", "no-change"]

COMPARED_METRICS = (
    "total_balance",
    "total_transactions",
    "total_income",
    "total_expenses",
)


@dataclass(frozen=True)
class Aggregates:
    """Totals over one window. Money values are in cents."""

    total_balance: int
    total_transactions: int
    total_income: int
    total_expenses: int
    income_count: int
    expense_count: int


@dataclass(frozen=True)
class Comparison:
    change: float
    direction: Direction


@dataclass(frozen=True)
class ComparisonResult:
    current: Aggregates
    previous: Aggregates
    comparisons: dict[str, Comparison]
    periods: dict[str, DateRange]
    complete_total_balance: int


@dataclass(frozen=True)
class MonthlyPoint:
    month: str
    income: int
    expense: int
    savings: int


@dataclass(frozen=True)
class DailyPoint:
    date: date
    amount: int


@dataclass(frozen=True)
class CategoryShare:
    name: str
    amount: int
    count: int
    percent: float


@dataclass(frozen=True)
class CalendarDay:
    date: date
    count: int
    income: int
    expense: int


@dataclass(frozen=True)
class CalendarMonth:
    year: int
    month: int
    days: list[CalendarDay]
    stats: Aggregates
    days_with_transactions: int
    average_daily_spending: float


@dataclass(frozen=True)
class UpcomingTemplate:
    id: int
    description: Optional[str]
    amount: int
    type: TransactionType
    interval: Optional[RecurringInterval]
    next_due_at: datetime
    account_id: int
    category_id: Optional[int]

    @classmethod
    def from_template(cls, template: Transaction) -> "UpcomingTemplate":
        return cls(
            id=template.id,
            description=template.description,
            amount=template.amount_cents,
            type=template.type,
            interval=template.interval,
            next_due_at=template.next_due_at,
            account_id=template.account_id,
            category_id=template.category_id,
        )


@dataclass(frozen=True)
class PaymentStats:
    """Open lent and borrowed amounts, in cents."""

    unpaid_lent: int
    unpaid_borrowed: int
    active_payments_count: int
    net_balance: int


@dataclass(frozen=True)
class DashboardSummary:
    complete_total_balance: int
    month: ComparisonResult
    upcoming_recurring: list[UpcomingTemplate]


def round2(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def percentage_change(current: int, previous: int) -> Comparison:
    if previous == 0:
        if current > 0:
            return Comparison(change=100.0, direction="increase")
        return Comparison(change=0.0, direction="no-change")

    change = round2((Decimal(current) - Decimal(previous)) / Decimal(previous) * 100)
    if change > 0:
        direction: Direction = "increase"
    elif change < 0:
        direction = "decrease"
    else:
        direction = "no-change"
    return Comparison(change=float(change), direction=direction)


class StatsService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.store = TransactionStore(session)
        self.user_id = user_id or get_current_user_id()

    def transaction_stats(
        self, date_range: DateRange, account_id: Optional[int] = None
    ) -> Aggregates:
        income = self.store.aggregate(
            self.user_id,
            date_range.start,
            date_range.end,
            account_id=account_id,
            type=TransactionType.income,
        )
        expenses = self.store.aggregate(
            self.user_id,
            date_range.start,
            date_range.end,
            account_id=account_id,
            type=TransactionType.expense,
        )
        total = self.store.aggregate(
            self.user_id, date_range.start, date_range.end, account_id=account_id
        )
        return Aggregates(
            total_balance=income.sum_cents - expenses.sum_cents,
            total_transactions=total.count,
            total_income=income.sum_cents,
            total_expenses=expenses.sum_cents,
            income_count=income.count,
            expense_count=expenses.count,
        )

    def complete_total_balance(self, account_id: Optional[int] = None) -> int:
        income = self.store.aggregate(
            self.user_id, account_id=account_id, type=TransactionType.income
        )
        expenses = self.store.aggregate(
            self.user_id, account_id=account_id, type=TransactionType.expense
        )
        return income.sum_cents - expenses.sum_cents

    def compare(
        self, date_range: DateRange, account_id: Optional[int] = None
    ) -> ComparisonResult:
        previous_range = previous_date_range(date_range)
        current = self.transaction_stats(date_range, account_id)
        previous = self.transaction_stats(previous_range, account_id)
        comparisons = {
            metric: percentage_change(
                getattr(current, metric), getattr(previous, metric)
            )
            for metric in COMPARED_METRICS
        }
        return ComparisonResult(
            current=current,
            previous=previous,
            comparisons=comparisons,
            periods={"current": date_range, "previous": previous_range},
            complete_total_balance=self.complete_total_balance(account_id),
        )

    def monthly_graph(
        self, account_id: Optional[int] = None, now: Optional[datetime] = None
    ) -> list[MonthlyPoint]:
        today = (now or utc_now()).date()
        first = add_months(month_start(today), -11)
        buckets = {
            bucket.key: bucket
            for bucket in self.store.grouped_sums(
                self.user_id,
                start_of_day(first),
                end_of_day(month_end(today)),
                "month",
                account_id=account_id,
            )
        }
        points = []
        for offset in range(12):
            month = add_months(first, offset)
            bucket = buckets.get(month.strftime("%Y-%m"))
            income = bucket.income_cents if bucket else 0
            expense = bucket.expense_cents if bucket else 0
            points.append(
                MonthlyPoint(
                    month=calendar.month_abbr[month.month],
                    income=income,
                    expense=expense,
                    savings=income - expense,
                )
            )
        return points

    def daily_spending(
        self,
        days: int = 7,
        now: Optional[datetime] = None,
        account_id: Optional[int] = None,
    ) -> list[DailyPoint]:
        today = (now or utc_now()).date()
        first = today - timedelta(days=days - 1)
        buckets = {
            bucket.key: bucket.expense_cents
            for bucket in self.store.grouped_sums(
                self.user_id,
                start_of_day(first),
                end_of_day(today),
                "day",
                account_id=account_id,
                type=TransactionType.expense,
            )
        }
        return [
            DailyPoint(date=day, amount=buckets.get(day.isoformat(), 0))
            for day in (first + timedelta(days=i) for i in range(days))
        ]

    def monthly_spending(
        self, year: int, account_id: Optional[int] = None
    ) -> list[MonthlyPoint]:
        buckets = {
            bucket.key: bucket
            for bucket in self.store.grouped_sums(
                self.user_id,
                start_of_day(date(year, 1, 1)),
                end_of_day(date(year, 12, 31)),
                "month",
                account_id=account_id,
            )
        }
        points = []
        for month in range(1, 13):
            bucket = buckets.get(f"{year:04d}-{month:02d}")
            income = bucket.income_cents if bucket else 0
            expense = bucket.expense_cents if bucket else 0
            points.append(
                MonthlyPoint(
                    month=calendar.month_abbr[month],
                    income=income,
                    expense=expense,
                    savings=income - expense,
                )
            )
        return points

    def category_distribution(
        self, now: Optional[datetime] = None, account_id: Optional[int] = None
    ) -> list[CategoryShare]:
        today = (now or utc_now()).date()
        buckets = self.store.grouped_sums(
            self.user_id,
            start_of_day(month_start(today)),
            end_of_day(month_end(today)),
            "category",
            account_id=account_id,
            type=TransactionType.expense,
        )
        total = sum(bucket.expense_cents for bucket in buckets)
        if total == 0:
            return []
        shares = [
            CategoryShare(
                name=bucket.key,
                amount=bucket.expense_cents,
                count=bucket.count,
                percent=float(
                    round2(Decimal(bucket.expense_cents) / Decimal(total) * 100)
                ),
            )
            for bucket in buckets
        ]
        return sorted(shares, key=lambda share: share.amount, reverse=True)

    def calendar_month(
        self, year: int, month: int, account_id: Optional[int] = None
    ) -> CalendarMonth:
        first = date(year, month, 1)
        date_range = DateRange(start_of_day(first), end_of_day(month_end(first)))
        buckets = self.store.grouped_sums(
            self.user_id,
            date_range.start,
            date_range.end,
            "day",
            account_id=account_id,
        )
        days = [
            CalendarDay(
                date=date.fromisoformat(bucket.key),
                count=bucket.count,
                income=bucket.income_cents,
                expense=bucket.expense_cents,
            )
            for bucket in buckets
        ]
        month_stats = self.transaction_stats(date_range, account_id)
        # Averaged over days that have activity, not over the calendar month.
        average = (
            round2(Decimal(month_stats.total_expenses) / Decimal(len(days)))
            if days
            else Decimal(0)
        )
        return CalendarMonth(
            year=year,
            month=month,
            days=days,
            stats=month_stats,
            days_with_transactions=len(days),
            average_daily_spending=float(average),
        )

    def dashboard_summary(
        self, now: Optional[datetime] = None, account_id: Optional[int] = None
    ) -> DashboardSummary:
        now = now or utc_now()
        month = self.compare(calculate_date_range("monthly", now=now), account_id)
        upcoming = self.store.upcoming_templates(
            self.user_id, now, account_id=account_id
        )
        return DashboardSummary(
            complete_total_balance=month.complete_total_balance,
            month=month,
            upcoming_recurring=[
                UpcomingTemplate.from_template(template) for template in upcoming
            ],
        )

    def payment_stats(self) -> PaymentStats:
        lent = self.store.payment_totals(
            self.user_id, UNSETTLED_PAYMENT_STATUSES, type=PaymentType.lent
        )
        borrowed = self.store.payment_totals(
            self.user_id, UNSETTLED_PAYMENT_STATUSES, type=PaymentType.borrowed
        )
        active = self.store.payment_totals(self.user_id, UNSETTLED_PAYMENT_STATUSES)
        return PaymentStats(
            unpaid_lent=lent.sum_cents,
            unpaid_borrowed=borrowed.sum_cents,
            active_payments_count=active.count,
            net_balance=lent.sum_cents - borrowed.sum_cents,
        )
