from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker

from database import Base
from errors import ConcurrentUpdateError, NotFoundError
from models import (
    Account,
    PaymentStatus,
    PaymentType,
    RecurringInterval,
    TransactionType,
)
from schemas import CategoryIn, PaymentIn, RecurringUpdateIn, TransactionIn
from services import CategoryService, PaymentService, TransactionService
from stats import StatsService


def make_session() -> Session:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def seed_account(session: Session, user_id: int = 1) -> Account:
    account = Account(user_id=user_id, name="Checking", type="BANK")
    session.add(account)
    session.commit()
    return account


def weekly_gym(session: Session, account: Account):
    return TransactionService(session).create_recurring(
        TransactionIn(
            account_id=account.id,
            amount_cents=2_500,
            type=TransactionType.expense,
            description="Gym",
            occurred_at=datetime(2024, 1, 1, 7, 0),
            is_recurring=True,
            interval=RecurringInterval.weekly,
        )
    )


def test_create_recurring_posts_first_occurrence_and_schedules_next():
    session = make_session()
    account = seed_account(session)

    template, occurrence = TransactionService(session).create_recurring(
        TransactionIn(
            account_id=account.id,
            amount_cents=120_000,
            type=TransactionType.expense,
            description="  Rent  ",
            occurred_at=datetime(2024, 1, 31, 8, 0),
            is_recurring=True,
            interval=RecurringInterval.monthly,
        )
    )

    assert template.is_recurring is True
    assert template.is_active is True
    assert template.description == "Rent"
    assert template.next_due_at == datetime(2024, 2, 29, 8, 0)
    assert occurrence.parent_template_id == template.id
    assert occurrence.is_recurring is False
    assert occurrence.occurred_at == datetime(2024, 1, 31, 8, 0)

    stats = StatsService(session).complete_total_balance()
    assert stats == -120_000


def test_create_dispatches_recurring_input_to_a_template():
    session = make_session()
    account = seed_account(session)
    service = TransactionService(session)

    template = service.create(
        TransactionIn(
            account_id=account.id,
            amount_cents=999,
            type=TransactionType.expense,
            occurred_at=datetime(2024, 2, 29, 9, 0),
            is_recurring=True,
            interval=RecurringInterval.yearly,
        )
    )

    assert template.is_recurring is True
    assert template.next_due_at == datetime(2025, 2, 28, 9, 0)
    assert [o.occurred_at for o in service.occurrences(template.id)] == [
        datetime(2024, 2, 29, 9, 0)
    ]


def test_aware_timestamps_are_stored_as_naive_utc():
    data = TransactionIn(
        account_id=1,
        amount_cents=100,
        type=TransactionType.income,
        occurred_at=datetime(2024, 1, 1, 10, 0, tzinfo=timezone(timedelta(hours=2))),
    )
    assert data.occurred_at == datetime(2024, 1, 1, 8, 0)
    assert data.occurred_at.tzinfo is None


def test_recurring_input_requires_interval():
    with pytest.raises(ValueError, match="interval is required"):
        TransactionIn(
            account_id=1,
            amount_cents=100,
            type=TransactionType.expense,
            is_recurring=True,
        )


def test_one_time_create_rejects_mismatched_category():
    session = make_session()
    account = seed_account(session)
    salary = CategoryService(session).create(
        CategoryIn(name="Salary", type=TransactionType.income)
    )

    with pytest.raises(ValueError, match="Category type mismatch"):
        TransactionService(session).create(
            TransactionIn(
                account_id=account.id,
                category_id=salary.id,
                amount_cents=500,
                type=TransactionType.expense,
            )
        )


def test_create_refuses_another_users_account():
    session = make_session()
    foreign = seed_account(session, user_id=2)

    with pytest.raises(NotFoundError):
        TransactionService(session).create(
            TransactionIn(
                account_id=foreign.id,
                amount_cents=500,
                type=TransactionType.expense,
            )
        )


def test_pause_keeps_schedule_and_resume_skips_missed_weeks():
    session = make_session()
    account = seed_account(session)
    template, _first = weekly_gym(session, account)
    service = TransactionService(session)

    paused = service.toggle_recurring(template.id, now=datetime(2024, 1, 2))
    assert paused.is_active is False
    assert paused.next_due_at == datetime(2024, 1, 8, 7, 0)

    resume_at = datetime(2024, 1, 29, 12, 0)
    resumed = service.toggle_recurring(template.id, now=resume_at)

    assert resumed.is_active is True
    assert resumed.next_due_at == resume_at + timedelta(weeks=1)
    assert service.catch_up_all(now=resume_at) == 0
    assert len(service.occurrences(template.id)) == 1


def monthly_template(session: Session, account: Account, occurred_at: datetime):
    template, _first = TransactionService(session).create_recurring(
        TransactionIn(
            account_id=account.id,
            amount_cents=4_000,
            type=TransactionType.expense,
            description="Streaming",
            occurred_at=occurred_at,
            is_recurring=True,
            interval=RecurringInterval.monthly,
        )
    )
    return template


@pytest.mark.parametrize(
    "occurred_at, resume_at, expected",
    [
        (datetime(2024, 1, 15), datetime(2024, 6, 3, 12, 0), datetime(2024, 7, 3, 12, 0)),
        (datetime(2024, 1, 31), datetime(2025, 2, 1, 12, 0), datetime(2025, 3, 1, 12, 0)),
    ],
)
def test_monthly_resume_is_one_interval_after_now(occurred_at, resume_at, expected):
    session = make_session()
    account = seed_account(session)
    template = monthly_template(session, account, occurred_at)
    service = TransactionService(session)

    service.toggle_recurring(template.id, now=occurred_at)
    resumed = service.toggle_recurring(template.id, now=resume_at)

    assert resumed.next_due_at == expected


def test_switch_to_monthly_is_one_month_after_now():
    session = make_session()
    account = seed_account(session)
    template, _first = TransactionService(session).create_recurring(
        TransactionIn(
            account_id=account.id,
            amount_cents=2_500,
            type=TransactionType.expense,
            occurred_at=datetime(2024, 1, 31, 7, 0),
            is_recurring=True,
            interval=RecurringInterval.weekly,
        )
    )

    updated = TransactionService(session).update_recurring(
        template.id,
        RecurringUpdateIn(interval=RecurringInterval.monthly),
        now=datetime(2024, 2, 1, 9, 0),
    )

    assert updated.next_due_at == datetime(2024, 3, 1, 9, 0)


def test_resume_before_due_date_keeps_next_due():
    session = make_session()
    account = seed_account(session)
    template, _first = weekly_gym(session, account)
    service = TransactionService(session)

    service.toggle_recurring(template.id, now=datetime(2024, 1, 2))
    resumed = service.toggle_recurring(template.id, now=datetime(2024, 1, 3))

    assert resumed.next_due_at == datetime(2024, 1, 8, 7, 0)


def test_update_recurring_interval_reschedules_from_now():
    session = make_session()
    account = seed_account(session)
    template, _first = weekly_gym(session, account)

    updated = TransactionService(session).update_recurring(
        template.id,
        RecurringUpdateIn(interval=RecurringInterval.daily),
        now=datetime(2024, 3, 1, 10, 0),
    )

    assert updated.interval == RecurringInterval.daily
    assert updated.next_due_at == datetime(2024, 3, 2, 10, 0)


def test_update_recurring_accepts_explicit_next_due():
    session = make_session()
    account = seed_account(session)
    template, _first = weekly_gym(session, account)

    updated = TransactionService(session).update_recurring(
        template.id,
        RecurringUpdateIn(
            is_active=False, next_due_at=datetime(2024, 6, 1, tzinfo=timezone.utc)
        ),
    )

    assert updated.is_active is False
    assert updated.next_due_at == datetime(2024, 6, 1)


def test_recurring_update_needs_a_field():
    with pytest.raises(ValueError, match="At least one field"):
        RecurringUpdateIn()


def test_toggle_rejects_one_time_transactions():
    session = make_session()
    account = seed_account(session)
    service = TransactionService(session)
    txn = service.create(
        TransactionIn(account_id=account.id, amount_cents=900, type=TransactionType.expense)
    )

    with pytest.raises(NotFoundError):
        service.toggle_recurring(txn.id)


def test_toggle_detects_concurrent_modification():
    session = make_session()
    account = seed_account(session)
    template, _first = weekly_gym(session, account)
    session.execute(
        text("UPDATE transactions SET version = version + 1 WHERE id = :id"),
        {"id": template.id},
    )

    with pytest.raises(ConcurrentUpdateError):
        TransactionService(session).toggle_recurring(template.id)


def test_paid_payment_cannot_reopen():
    session = make_session()
    service = PaymentService(session)
    payment = service.create(
        PaymentIn(amount_cents=3_000, person_name=" Ana ", type=PaymentType.lent)
    )
    assert payment.status == PaymentStatus.pending
    assert payment.person_name == "Ana"

    service.update_status(payment.id, PaymentStatus.paid)

    with pytest.raises(ValueError, match="Cannot change status of paid payment"):
        service.update_status(payment.id, PaymentStatus.overdue)
    assert service.get(payment.id).status == PaymentStatus.paid


def test_payments_filter_by_type_and_status():
    session = make_session()
    service = PaymentService(session)
    service.create(
        PaymentIn(amount_cents=1_000, person_name="Ana", type=PaymentType.lent)
    )
    service.create(
        PaymentIn(
            amount_cents=2_000,
            person_name="Ben",
            type=PaymentType.borrowed,
            status=PaymentStatus.overdue,
        )
    )

    assert [p.person_name for p in service.list_all(type=PaymentType.lent)] == ["Ana"]
    assert [p.person_name for p in service.list_all(status=PaymentStatus.overdue)] == [
        "Ben"
    ]
    with pytest.raises(NotFoundError):
        service.get(999)
