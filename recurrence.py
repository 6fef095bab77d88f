import logging
from datetime import datetime, timedelta
from typing import Optional

from models import RecurringInterval, Transaction, utc_now
from store import TransactionStore


logger = logging.getLogger(__name__)


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = datetime(year + 1, 1, 1)
    else:
        next_month = datetime(year, month + 1, 1)
    return (next_month - datetime(year, month, 1)).days


def _add_months(base: datetime, months: int, *, desired_day: int) -> datetime:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    # Clamp to the last day when the target month is shorter.
    day = min(desired_day, days_in_month(year, month))
    return base.replace(year=year, month=month, day=day)


def next_occurrence(
    current: datetime,
    interval: Optional[RecurringInterval],
    *,
    anchor_day: Optional[int] = None,
) -> datetime:
    """Return the due time following ``current``.

    Month and year steps keep the time of day and clamp the day of month to
    the target month's length. Passing ``anchor_day`` (the day the series
    started on) lets a clamped date return to its anchor, so a series started
    on Jan 31 runs Feb 29, Mar 31, Apr 30.

    An unknown or missing interval yields ``current`` unchanged; callers must
    not loop on it.
    """
    if interval == RecurringInterval.daily:
        return current + timedelta(days=1)
    if interval == RecurringInterval.weekly:
        return current + timedelta(weeks=1)
    if interval == RecurringInterval.monthly:
        return _add_months(current, 1, desired_day=anchor_day or current.day)
    if interval == RecurringInterval.yearly:
        return _add_months(current, 12, desired_day=anchor_day or current.day)
    return current


def materialize(
    store: TransactionStore,
    template: Transaction,
    occurred_at: Optional[datetime] = None,
) -> Transaction:
    """Persist one occurrence copied from ``template``. The template is untouched."""
    return store.create_occurrence(
        user_id=template.user_id,
        account_id=template.account_id,
        category_id=template.category_id,
        amount_cents=template.amount_cents,
        type=template.type,
        description=template.description,
        occurred_at=occurred_at or template.next_due_at or utc_now(),
        parent_template_id=template.id,
    )


class RecurringEngine:
    def __init__(self, store: TransactionStore) -> None:
        self.store = store

    def catch_up_template(
        self, template: Transaction, now: Optional[datetime] = None
    ) -> int:
        now = now or utc_now()
        cursor = template.next_due_at
        if cursor is None or cursor > now:
            return 0

        interval = template.interval
        if interval is None:
            materialize(self.store, template, cursor)
            logger.warning(
                f"recurring_catch_up: template={template.id} has no interval, "
                "going dormant"
            )
            self.store.update_template_next_due(template, None)
            return 1

        anchor_day = template.occurred_at.day if template.occurred_at else None
        posted = 0
        while cursor < now:
            materialize(self.store, template, cursor)
            posted += 1
            next_cursor = next_occurrence(cursor, interval, anchor_day=anchor_day)
            if next_cursor <= cursor:
                logger.warning(
                    f"recurring_catch_up: template={template.id} "
                    f"interval={interval} did not advance"
                )
                break
            cursor = next_cursor

        if template.is_active and cursor != template.next_due_at:
            self.store.update_template_next_due(template, cursor)
        return posted

    def post_due_templates(self, now: Optional[datetime] = None) -> int:
        now = now or utc_now()
        templates = self.store.find_due_templates(now)
        template_ids = [template.id for template in templates]
        count = 0
        failed = 0
        for template_id, template in zip(template_ids, templates):
            try:
                posted = self.catch_up_template(template, now)
                self.store.commit()
            except Exception:
                failed += 1
                logger.exception(
                    f"recurring_catch_up: template={template_id} failed, rolled back"
                )
                self.store.rollback()
                continue
            if posted:
                count += 1
                logger.info(
                    f"recurring_catch_up: template={template_id} occurrences={posted}"
                )
        if failed:
            logger.warning(
                f"recurring_catch_up: due={len(template_ids)} failed={failed}"
            )
        return count
