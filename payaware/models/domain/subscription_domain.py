# models/domain/subscription_domain.py
"""
Subscription domain model.

The notification date is never stored on the model itself: it is always
derived from the next payment date and the notification offset, so the two
cannot drift apart after an edit or a recurrence advance.
"""

from datetime import UTC, datetime, timedelta
from enum import Enum

from pydantic import BaseModel, field_validator


class RecurrenceType(str, Enum):
    """Billing recurrence of a subscription."""

    NONE = "none"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class Subscription(BaseModel):
    """Domain model for a recurring payment subscription."""

    id: int
    user_id: int
    service_name: str
    cost: float
    next_payment_date: datetime
    notification_offset: int = 0  # minutes before payment, 0 = at payment time
    recurrence_type: RecurrenceType = RecurrenceType.NONE
    tag: str = ""
    high_priority: bool = False

    @field_validator("recurrence_type", mode="before")
    @classmethod
    def _blank_recurrence_is_none(cls, value):
        # Rows created before recurrence existed carry an empty string
        if value is None or value == "":
            return RecurrenceType.NONE
        return value

    @field_validator("next_payment_date")
    @classmethod
    def _force_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    @field_validator("tag", mode="before")
    @classmethod
    def _blank_tag(cls, value):
        return value or ""

    @property
    def notification_date(self) -> datetime:
        """Moment the reminder should fire."""
        return notification_time(self.next_payment_date, self.notification_offset)

    @property
    def is_recurring(self) -> bool:
        return self.recurrence_type is not RecurrenceType.NONE

    def dedup_key(self) -> str:
        """Redis key marking the current cycle's reminder as queued."""
        return f"reminder:subscription:{self.id}"


def subscription_list_cache_key(user_id: int) -> str:
    return f"subscriptions:user:{user_id}"


def notification_time(next_payment: datetime, offset_minutes: int) -> datetime:
    """Reminder moment for a payment date and an offset in minutes."""
    if offset_minutes == 0:
        return next_payment
    return next_payment - timedelta(minutes=offset_minutes)
