from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional

from errors import ValidationError
from models import utc_now


TIME_RANGES = ("monthly", "3months", "6months", "yearly", "custom")

# How many whole months before the current one each preset reaches back.
_PRESET_MONTHS_BACK = {"monthly": 0, "3months": 2, "6months": 5}


@dataclass(frozen=True)
class DateRange:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValidationError("Start date must be before or equal to end date")


def start_of_day(d: date) -> datetime:
    return datetime.combine(d, time.min)


def end_of_day(d: date) -> datetime:
    return datetime.combine(d, time.max)


def month_start(d: date) -> date:
    return d.replace(day=1)


def month_end(d: date) -> date:
    first = month_start(d)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return next_month - date.resolution


def add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


def _parse_day(value: str, label: str) -> date:
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            f"Invalid {label} {value!r}. Use YYYY-MM-DD"
        ) from exc


def calculate_date_range(
    time_range: Optional[str],
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> DateRange:
    now = now or utc_now()
    today = now.date()
    time_range = time_range or "monthly"

    if time_range in _PRESET_MONTHS_BACK:
        first = add_months(month_start(today), -_PRESET_MONTHS_BACK[time_range])
        return DateRange(start_of_day(first), end_of_day(month_end(today)))
    if time_range == "yearly":
        return DateRange(
            start_of_day(date(today.year, 1, 1)),
            end_of_day(date(today.year, 12, 31)),
        )
    if time_range == "custom":
        if not start_date or not end_date:
            raise ValidationError(
                "Custom date range requires both startDate and endDate"
            )
        start = _parse_day(start_date, "startDate")
        end = _parse_day(end_date, "endDate")
        if start > end:
            raise ValidationError("Start date must be before or equal to end date")
        return DateRange(start_of_day(start), end_of_day(end))

    raise ValidationError(
        f"Unknown time range {time_range!r}; expected one of {', '.join(TIME_RANGES)}"
    )


def previous_date_range(current: DateRange) -> DateRange:
    """The equal-length window ending the day before ``current`` starts."""
    duration_days = (current.end - current.start).days
    previous_end = end_of_day(current.start.date() - timedelta(days=1))
    previous_start = start_of_day(
        (previous_end - timedelta(days=duration_days)).date()
    )
    return DateRange(previous_start, previous_end)
