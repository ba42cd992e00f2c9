"""
Tests for the pure subscription lifecycle rules.
"""

from datetime import UTC, datetime

import pytest

from subhub.exceptions import ConflictError, InvalidStatusTransitionError
from subhub.plans.models import BillingCycle
from subhub.subscriptions.lifecycle import (
    calculate_period_end,
    ensure_can_cancel,
    ensure_can_renew,
    ensure_details_editable,
    ensure_update_allowed,
    is_due_for_expiry,
)
from subhub.subscriptions.models import SubscriptionStatus

ACTIVE = SubscriptionStatus.ACTIVE
PAUSED = SubscriptionStatus.PAUSED
CANCELLED = SubscriptionStatus.CANCELLED
EXPIRED = SubscriptionStatus.EXPIRED


class TestCalculatePeriodEnd:
    def test_monthly_adds_one_calendar_month(self):
        start = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)
        assert calculate_period_end(start, BillingCycle.MONTHLY) == datetime(
            2024, 2, 15, 12, 0, tzinfo=UTC
        )

    def test_yearly_adds_one_calendar_year(self):
        start = datetime(2024, 3, 1, tzinfo=UTC)
        assert calculate_period_end(start, "YEARLY") == datetime(2025, 3, 1, tzinfo=UTC)

    def test_month_end_is_clamped(self):
        """Jan 31 plus one month lands on the last day of February."""
        start = datetime(2024, 1, 31, 9, 30, tzinfo=UTC)
        assert calculate_period_end(start, BillingCycle.MONTHLY) == datetime(
            2024, 2, 29, 9, 30, tzinfo=UTC
        )

    def test_leap_day_yearly(self):
        start = datetime(2024, 2, 29, tzinfo=UTC)
        assert calculate_period_end(start, BillingCycle.YEARLY) == datetime(
            2025, 2, 28, tzinfo=UTC
        )

    def test_unknown_cycle_rejected(self):
        with pytest.raises(ValueError):
            calculate_period_end(datetime(2024, 1, 1, tzinfo=UTC), "WEEKLY")


class TestEnsureUpdateAllowed:
    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (ACTIVE, PAUSED),
            (ACTIVE, CANCELLED),
            (PAUSED, ACTIVE),
            (PAUSED, CANCELLED),
            (ACTIVE, ACTIVE),
            (CANCELLED, CANCELLED),
        ],
    )
    def test_allowed(self, current, target):
        ensure_update_allowed(current, target)

    def test_cancelled_cannot_be_reactivated(self):
        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            ensure_update_allowed(CANCELLED, ACTIVE)

        assert exc_info.value.message == "Cannot reactivate cancelled subscription"
        assert exc_info.value.status_code == 409
        assert exc_info.value.context == {"current_status": "CANCELLED", "target_status": "ACTIVE"}

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (CANCELLED, PAUSED),
            (EXPIRED, ACTIVE),
            (EXPIRED, PAUSED),
            (EXPIRED, CANCELLED),
            (ACTIVE, EXPIRED),
        ],
    )
    def test_rejected(self, current, target):
        with pytest.raises(ConflictError):
            ensure_update_allowed(current, target)

    def test_accepts_plain_strings(self):
        ensure_update_allowed("ACTIVE", "PAUSED")


class TestCancelAndRenewGuards:
    def test_cancel_requires_active(self):
        ensure_can_cancel(ACTIVE)
        for status in (PAUSED, CANCELLED, EXPIRED):
            with pytest.raises(InvalidStatusTransitionError, match="Can only cancel active"):
                ensure_can_cancel(status)

    def test_renew_requires_expired(self):
        ensure_can_renew(EXPIRED)
        for status in (ACTIVE, PAUSED, CANCELLED):
            with pytest.raises(InvalidStatusTransitionError, match="Can only renew expired"):
                ensure_can_renew(status)

    def test_details_editable_only_while_live(self):
        ensure_details_editable(ACTIVE)
        ensure_details_editable(PAUSED)
        for status in (CANCELLED, EXPIRED):
            with pytest.raises(InvalidStatusTransitionError, match="Cannot change plan or auto-renew"):
                ensure_details_editable(status)


class TestIsDueForExpiry:
    now = datetime(2024, 6, 1, tzinfo=UTC)

    def test_active_past_end_date(self):
        assert is_due_for_expiry(ACTIVE, datetime(2024, 5, 31, tzinfo=UTC), self.now)

    def test_end_date_equal_to_now_is_due(self):
        assert is_due_for_expiry(ACTIVE, self.now, self.now)

    def test_future_end_date_not_due(self):
        assert not is_due_for_expiry(ACTIVE, datetime(2024, 6, 2, tzinfo=UTC), self.now)

    @pytest.mark.parametrize("status", [PAUSED, CANCELLED, EXPIRED])
    def test_only_active_expires(self, status):
        assert not is_due_for_expiry(status, datetime(2020, 1, 1, tzinfo=UTC), self.now)
