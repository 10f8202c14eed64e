"""
Recurrence engine: due-window checks and billing-date advance.

Pure functions over already-validated subscriptions. Calendar arithmetic uses
dateutil's relativedelta, which clamps a day that does not exist in the target
month to that month's last day (Jan 31 + 1 month -> Feb 28/29, Feb 29 + 1 year
-> Feb 28). The clamped date is what gets persisted, so it becomes the anchor
for every later cycle.
"""

from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

from payaware.models.domain.subscription_domain import (
    RecurrenceType,
    Subscription,
    notification_time,
)

MAX_TAG_LENGTH = 20

_PERIODS = {
    RecurrenceType.MONTHLY: relativedelta(months=1),
    RecurrenceType.YEARLY: relativedelta(years=1),
}


class SubscriptionValidationError(ValueError):
    """Raised when a subscription violates a data invariant."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


def is_due(subscription: Subscription, now: datetime, lookahead: timedelta) -> bool:
    """
    True when the reminder falls inside [now, now + lookahead], bounds included.

    A reminder whose moment already passed stays due until the payment itself
    does, so an offset longer than the time left before payment still fires.
    """
    return (
        subscription.notification_date <= now + lookahead
        and subscription.next_payment_date >= now
    )


def advance(subscription: Subscription) -> Subscription:
    """
    Roll a recurring subscription forward by one billing period.

    Non-recurring subscriptions are returned unchanged; callers must not
    re-queue them. The notification date follows automatically because it is
    derived from next_payment_date.
    """
    period = _PERIODS.get(subscription.recurrence_type)
    if period is None:
        return subscription

    return subscription.model_copy(
        update={"next_payment_date": subscription.next_payment_date + period}
    )


def validate_subscription(subscription: Subscription, now: datetime, *, is_new: bool) -> None:
    """
    Check the invariants the user-facing API enforces on create and edit.

    Raises:
        SubscriptionValidationError: on the first violated rule
    """
    if subscription.cost <= 0:
        raise SubscriptionValidationError("Cost must be greater than zero", field="cost")

    if subscription.notification_offset < 0:
        raise SubscriptionValidationError(
            "Notification offset cannot be negative", field="notification_offset"
        )

    if is_new and subscription.next_payment_date < now:
        raise SubscriptionValidationError(
            "Next payment date cannot be in the past", field="next_payment_date"
        )

    tag = subscription.tag
    if len(tag) > MAX_TAG_LENGTH:
        raise SubscriptionValidationError(
            f"Tag must be at most {MAX_TAG_LENGTH} characters", field="tag"
        )
    if any(ch.isspace() for ch in tag):
        raise SubscriptionValidationError("Tag must be a single word", field="tag")

    if not subscription.service_name.strip():
        raise SubscriptionValidationError("Service name is required", field="service_name")


__all__ = [
    "MAX_TAG_LENGTH",
    "SubscriptionValidationError",
    "advance",
    "is_due",
    "notification_time",
    "validate_subscription",
]
