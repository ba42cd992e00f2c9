"""
Subscription lifecycle rules.

Pure functions over statuses and dates; the service applies them to
persisted subscriptions.

    ACTIVE  <-> PAUSED       update
    ACTIVE  --> CANCELLED    cancel, or update
    PAUSED  --> CANCELLED    update
    ACTIVE  --> EXPIRED      expiry run once end_date has passed
    EXPIRED --> ACTIVE       renew

CANCELLED has no outgoing transitions.
"""

from datetime import datetime

from dateutil.relativedelta import relativedelta

from ..exceptions import InvalidStatusTransitionError
from ..plans.models import BillingCycle
from .models import SubscriptionStatus

CYCLE_LENGTHS: dict[BillingCycle, relativedelta] = {
    BillingCycle.MONTHLY: relativedelta(months=1),
    BillingCycle.YEARLY: relativedelta(years=1),
}

UPDATE_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    SubscriptionStatus.ACTIVE: frozenset({SubscriptionStatus.PAUSED, SubscriptionStatus.CANCELLED}),
    SubscriptionStatus.PAUSED: frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED}),
    SubscriptionStatus.CANCELLED: frozenset(),
    SubscriptionStatus.EXPIRED: frozenset(),
}


def calculate_period_end(start: datetime, billing_cycle: BillingCycle | str) -> datetime:
    """End of a billing period starting at ``start``.

    Calendar arithmetic: Jan 31 + 1 month is Feb 28 (or 29).
    """
    return start + CYCLE_LENGTHS[BillingCycle(billing_cycle)]


def ensure_update_allowed(current: SubscriptionStatus | str, target: SubscriptionStatus | str) -> None:
    """Validate a status change requested through update."""
    current = SubscriptionStatus(current)
    target = SubscriptionStatus(target)

    if current == target:
        return

    if current == SubscriptionStatus.CANCELLED and target == SubscriptionStatus.ACTIVE:
        raise InvalidStatusTransitionError(
            "Cannot reactivate cancelled subscription", current.value, target.value
        )
    if target not in UPDATE_TRANSITIONS[current]:
        raise InvalidStatusTransitionError(
            f"Cannot change subscription status from {current.value} to {target.value}",
            current.value,
            target.value,
        )


def ensure_can_cancel(current: SubscriptionStatus | str) -> None:
    current = SubscriptionStatus(current)
    if current != SubscriptionStatus.ACTIVE:
        raise InvalidStatusTransitionError(
            "Can only cancel active subscriptions",
            current.value,
            SubscriptionStatus.CANCELLED.value,
        )


def ensure_can_renew(current: SubscriptionStatus | str) -> None:
    current = SubscriptionStatus(current)
    if current != SubscriptionStatus.EXPIRED:
        raise InvalidStatusTransitionError(
            "Can only renew expired subscriptions",
            current.value,
            SubscriptionStatus.ACTIVE.value,
        )


def is_due_for_expiry(
    status: SubscriptionStatus | str, end_date: datetime, now: datetime
) -> bool:
    return SubscriptionStatus(status) == SubscriptionStatus.ACTIVE and end_date <= now


def ensure_details_editable(current: SubscriptionStatus | str) -> None:
    """Plan and auto-renew only change while the subscription is live."""
    current = SubscriptionStatus(current)
    if not UPDATE_TRANSITIONS[current]:
        raise InvalidStatusTransitionError(
            f"Cannot change plan or auto-renew of a {current.value} subscription",
            current.value,
            current.value,
        )
