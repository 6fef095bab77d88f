from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models import PaymentStatus, PaymentType, RecurringInterval, TransactionType


def _as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: str = Field(default="BANK", max_length=30)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    icon: Optional[str] = Field(default=None, max_length=40)


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    account_id: int
    category_id: Optional[int] = None
    amount_cents: int = Field(..., gt=0)
    type: TransactionType
    description: Optional[str] = Field(default=None, max_length=500)
    occurred_at: Optional[datetime] = None
    is_recurring: bool = False
    interval: Optional[RecurringInterval] = None

    @field_validator("occurred_at")
    @classmethod
    def normalize_occurred_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_naive_utc(value)

    @field_validator("description")
    @classmethod
    def strip_description(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None

    @model_validator(mode="after")
    def interval_required_when_recurring(self) -> "TransactionIn":
        if self.is_recurring and self.interval is None:
            raise ValueError("Recurring interval is required when is_recurring is true")
        return self


class RecurringUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    is_active: Optional[bool] = None
    interval: Optional[RecurringInterval] = None
    next_due_at: Optional[datetime] = None

    @field_validator("next_due_at")
    @classmethod
    def normalize_next_due_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_naive_utc(value)

    @model_validator(mode="after")
    def at_least_one_field(self) -> "RecurringUpdateIn":
        if self.is_active is None and self.interval is None and self.next_due_at is None:
            raise ValueError("At least one field must be provided")
        return self


class StatsQuery(BaseModel):
    time_range: Literal["monthly", "3months", "6months", "yearly", "custom"] = (
        "monthly"
    )
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    account_id: Optional[int] = None


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    category_id: Optional[int]
    amount_cents: int
    type: TransactionType
    description: Optional[str]
    occurred_at: datetime
    is_recurring: bool
    interval: Optional[RecurringInterval]
    is_active: bool
    next_due_at: Optional[datetime]
    parent_template_id: Optional[int]


class RecurringCreatedOut(BaseModel):
    template: TransactionOut
    first_occurrence: TransactionOut


class PaymentIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount_cents: int = Field(..., gt=0)
    person_name: str = Field(..., min_length=1, max_length=100)
    type: PaymentType
    description: Optional[str] = Field(default=None, max_length=500)
    due_at: Optional[datetime] = None
    status: PaymentStatus = PaymentStatus.pending

    @field_validator("due_at")
    @classmethod
    def normalize_due_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_naive_utc(value)


class PaymentStatusIn(BaseModel):
    status: PaymentStatus


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount_cents: int
    person_name: str
    type: PaymentType
    description: Optional[str]
    due_at: Optional[datetime]
    status: PaymentStatus
