"""
Tests for SubscriptionService against a real SQLite database.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest
from dateutil.relativedelta import relativedelta

from subhub.audit import SYSTEM_ACTOR, AuditAction
from subhub.exceptions import (
    ConflictError,
    DuplicateActiveSubscriptionError,
    FeatureNotImplementedError,
    ForbiddenError,
    InvalidStatusTransitionError,
    PlanNotFoundError,
    SubscriptionNotFoundError,
    ValidationError,
)
from subhub.subscriptions.models import (
    Subscription,
    SubscriptionCreateRequest,
    SubscriptionStatus,
    SubscriptionUpdateRequest,
    UpdatableStatus,
)


class TestCreateSubscription:
    async def test_monthly_plan_sets_one_month_period(
        self, subscription_service, user_info, basic_plan, clock, fetch_audit_entries
    ):
        """A $9.99 MONTHLY subscription created at T ends at T + 1 month."""
        subscription = await subscription_service.create_subscription(
            user_info, SubscriptionCreateRequest(plan_id=basic_plan.id)
        )

        assert subscription.status == SubscriptionStatus.ACTIVE.value
        assert subscription.start_date == clock.now
        assert subscription.end_date == clock.now + relativedelta(months=1)
        assert subscription.end_date == datetime(2024, 2, 15, 12, 0, tzinfo=UTC)
        assert subscription.auto_renew is True
        assert subscription.plan.name == "Basic Plan"

        entries = await fetch_audit_entries(AuditAction.SUBSCRIPTION_CREATED.value)
        assert len(entries) == 1
        assert entries[0].actor_id == user_info.user_id
        assert entries[0].subscription_id == subscription.id
        assert entries[0].metadata_json == {
            "plan_name": "Basic Plan",
            "plan_price": "9.99",
            "billing_cycle": "MONTHLY",
            "auto_renew": True,
        }

    async def test_yearly_plan_sets_one_year_period(
        self, subscription_service, user_info, yearly_plan, clock
    ):
        subscription = await subscription_service.create_subscription(
            user_info, SubscriptionCreateRequest(plan_id=yearly_plan.id, auto_renew=False)
        )

        assert subscription.end_date == datetime(2025, 1, 15, 12, 0, tzinfo=UTC)
        assert subscription.auto_renew is False

    async def test_missing_plan(self, subscription_service, user_info):
        with pytest.raises(PlanNotFoundError):
            await subscription_service.create_subscription(
                user_info, SubscriptionCreateRequest(plan_id="no-such-plan")
            )

    async def test_inactive_plan_rejected(self, subscription_service, user_info, inactive_plan):
        with pytest.raises(ValidationError):
            await subscription_service.create_subscription(
                user_info, SubscriptionCreateRequest(plan_id=inactive_plan.id)
            )

    async def test_duplicate_active_subscription_conflicts(
        self, subscription_service, user_info, basic_plan
    ):
        await subscription_service.create_subscription(
            user_info, SubscriptionCreateRequest(plan_id=basic_plan.id)
        )

        with pytest.raises(DuplicateActiveSubscriptionError) as exc_info:
            await subscription_service.create_subscription(
                user_info, SubscriptionCreateRequest(plan_id=basic_plan.id)
            )
        assert exc_info.value.status_code == 409

    async def test_other_users_may_subscribe_to_same_plan(
        self, subscription_service, user_info, other_user_info, basic_plan
    ):
        first = await subscription_service.create_subscription(
            user_info, SubscriptionCreateRequest(plan_id=basic_plan.id)
        )
        second = await subscription_service.create_subscription(
            other_user_info, SubscriptionCreateRequest(plan_id=basic_plan.id)
        )

        assert first.id != second.id

    async def test_resubscribe_after_cancel(self, subscription_service, user_info, basic_plan):
        first = await subscription_service.create_subscription(
            user_info, SubscriptionCreateRequest(plan_id=basic_plan.id)
        )
        await subscription_service.cancel_subscription(user_info, first.id)

        second = await subscription_service.create_subscription(
            user_info, SubscriptionCreateRequest(plan_id=basic_plan.id)
        )
        assert second.status == SubscriptionStatus.ACTIVE.value

    async def test_partial_index_blocks_second_active_row(
        self, async_db_session, user, basic_plan, clock
    ):
        """The database refuses a second ACTIVE row even if the service check is bypassed."""
        from sqlalchemy.exc import IntegrityError

        for _ in range(2):
            async_db_session.add(
                Subscription(
                    user_id=user.id,
                    plan_id=basic_plan.id,
                    status=SubscriptionStatus.ACTIVE.value,
                    start_date=clock.now,
                    end_date=clock.now + timedelta(days=30),
                )
            )
        with pytest.raises(IntegrityError):
            await async_db_session.commit()
        await async_db_session.rollback()

    async def test_audit_failure_does_not_fail_create(
        self, subscription_service, user_info, basic_plan, async_db_session
    ):
        with patch.object(
            subscription_service.audit,
            "_session_factory",
            side_effect=RuntimeError("audit store down"),
        ):
            subscription = await subscription_service.create_subscription(
                user_info, SubscriptionCreateRequest(plan_id=basic_plan.id)
            )

        stored = await async_db_session.get(Subscription, subscription.id)
        assert stored is not None
        assert stored.status == SubscriptionStatus.ACTIVE.value


class TestQueries:
    async def test_list_user_subscriptions_newest_first(
        self, subscription_service, user_info, other_user_info, basic_plan, yearly_plan
    ):
        first = await subscription_service.create_subscription(
            user_info, SubscriptionCreateRequest(plan_id=basic_plan.id)
        )
        second = await subscription_service.create_subscription(
            user_info, SubscriptionCreateRequest(plan_id=yearly_plan.id)
        )
        await subscription_service.create_subscription(
            other_user_info, SubscriptionCreateRequest(plan_id=basic_plan.id)
        )

        subscriptions = await subscription_service.list_user_subscriptions(user_info.user_id)

        assert [s.id for s in subscriptions] == [second.id, first.id]

    async def test_get_missing_subscription(self, subscription_service):
        with pytest.raises(SubscriptionNotFoundError):
            await subscription_service.get_subscription("missing")

    async def test_non_owner_is_forbidden(
        self, subscription_service, user_info, other_user_info, basic_plan
    ):
        subscription = await subscription_service.create_subscription(
            user_info, SubscriptionCreateRequest(plan_id=basic_plan.id)
        )

        with pytest.raises(ForbiddenError):
            await subscription_service.get_subscription_for(other_user_info, subscription.id)

    async def test_admin_can_view_any(
        self, subscription_service, user_info, admin_info, basic_plan
    ):
        subscription = await subscription_service.create_subscription(
            user_info, SubscriptionCreateRequest(plan_id=basic_plan.id)
        )

        fetched = await subscription_service.get_subscription_for(admin_info, subscription.id)
        assert fetched.id == subscription.id


class TestUpdateSubscription:
    async def _subscribe(self, service, actor, plan):
        return await service.create_subscription(actor, SubscriptionCreateRequest(plan_id=plan.id))

    async def test_pause_and_resume(
        self, subscription_service, user_info, basic_plan, fetch_audit_entries
    ):
        subscription = await self._subscribe(subscription_service, user_info, basic_plan)

        paused = await subscription_service.update_subscription(
            user_info, subscription.id, SubscriptionUpdateRequest(status=UpdatableStatus.PAUSED)
        )
        assert paused.status == SubscriptionStatus.PAUSED.value

        resumed = await subscription_service.update_subscription(
            user_info, subscription.id, SubscriptionUpdateRequest(status=UpdatableStatus.ACTIVE)
        )
        assert resumed.status == SubscriptionStatus.ACTIVE.value

        entries = await fetch_audit_entries(AuditAction.SUBSCRIPTION_UPDATED.value)
        assert [(e.metadata_json["previous_status"], e.metadata_json["new_status"]) for e in entries] == [
            ("ACTIVE", "PAUSED"),
            ("PAUSED", "ACTIVE"),
        ]

    async def test_cancel_via_update_clears_auto_renew(
        self, subscription_service, user_info, basic_plan
    ):
        subscription = await self._subscribe(subscription_service, user_info, basic_plan)

        cancelled = await subscription_service.update_subscription(
            user_info,
            subscription.id,
            SubscriptionUpdateRequest(status=UpdatableStatus.CANCELLED),
        )

        assert cancelled.status == SubscriptionStatus.CANCELLED.value
        assert cancelled.auto_renew is False

    async def test_cancelled_cannot_be_reactivated(
        self, subscription_service, user_info, basic_plan
    ):
        subscription = await self._subscribe(subscription_service, user_info, basic_plan)
        await subscription_service.cancel_subscription(user_info, subscription.id)

        with pytest.raises(InvalidStatusTransitionError, match="Cannot reactivate"):
            await subscription_service.update_subscription(
                user_info, subscription.id, SubscriptionUpdateRequest(status=UpdatableStatus.ACTIVE)
            )

    async def test_toggle_auto_renew(self, subscription_service, user_info, basic_plan):
        subscription = await self._subscribe(subscription_service, user_info, basic_plan)

        updated = await subscription_service.update_subscription(
            user_info, subscription.id, SubscriptionUpdateRequest(auto_renew=False)
        )

        assert updated.auto_renew is False
        assert updated.status == SubscriptionStatus.ACTIVE.value

    async def test_change_plan_keeps_dates(
        self, subscription_service, user_info, basic_plan, yearly_plan
    ):
        subscription = await self._subscribe(subscription_service, user_info, basic_plan)

        updated = await subscription_service.update_subscription(
            user_info, subscription.id, SubscriptionUpdateRequest(plan_id=yearly_plan.id)
        )

        assert updated.plan_id == yearly_plan.id
        assert updated.plan.name == "Pro Yearly"
        assert updated.start_date == subscription.start_date
        assert updated.end_date == subscription.end_date

    async def test_change_to_inactive_plan_rejected(
        self, subscription_service, user_info, basic_plan, inactive_plan
    ):
        subscription = await self._subscribe(subscription_service, user_info, basic_plan)

        with pytest.raises(ValidationError):
            await subscription_service.update_subscription(
                user_info, subscription.id, SubscriptionUpdateRequest(plan_id=inactive_plan.id)
            )

    async def test_resume_conflicts_with_newer_active_subscription(
        self, subscription_service, user_info, basic_plan
    ):
        paused = await self._subscribe(subscription_service, user_info, basic_plan)
        await subscription_service.update_subscription(
            user_info, paused.id, SubscriptionUpdateRequest(status=UpdatableStatus.PAUSED)
        )
        await self._subscribe(subscription_service, user_info, basic_plan)

        with pytest.raises(DuplicateActiveSubscriptionError):
            await subscription_service.update_subscription(
                user_info, paused.id, SubscriptionUpdateRequest(status=UpdatableStatus.ACTIVE)
            )

    async def test_resume_on_deactivated_plan_rejected(
        self, subscription_service, plan_service, user_info, admin_info, basic_plan
    ):
        subscription = await self._subscribe(subscription_service, user_info, basic_plan)
        await subscription_service.update_subscription(
            user_info, subscription.id, SubscriptionUpdateRequest(status=UpdatableStatus.PAUSED)
        )
        await plan_service.deactivate_plan(basic_plan.id, admin_info.user_id)

        with pytest.raises(ValidationError, match="not available"):
            await subscription_service.update_subscription(
                user_info, subscription.id, SubscriptionUpdateRequest(status=UpdatableStatus.ACTIVE)
            )

        current = await subscription_service.get_subscription(subscription.id)
        assert current.status == SubscriptionStatus.PAUSED.value
        assert await plan_service.count_active_subscriptions(basic_plan.id) == 0

    async def test_paused_on_deactivated_plan_can_still_cancel(
        self, subscription_service, plan_service, user_info, admin_info, basic_plan
    ):
        subscription = await self._subscribe(subscription_service, user_info, basic_plan)
        await subscription_service.update_subscription(
            user_info, subscription.id, SubscriptionUpdateRequest(status=UpdatableStatus.PAUSED)
        )
        await plan_service.deactivate_plan(basic_plan.id, admin_info.user_id)

        cancelled = await subscription_service.update_subscription(
            user_info, subscription.id, SubscriptionUpdateRequest(status=UpdatableStatus.CANCELLED)
        )

        assert cancelled.status == SubscriptionStatus.CANCELLED.value

    async def test_cancelled_plan_cannot_change(
        self, subscription_service, user_info, basic_plan, yearly_plan
    ):
        subscription = await self._subscribe(subscription_service, user_info, basic_plan)
        await subscription_service.cancel_subscription(user_info, subscription.id)

        with pytest.raises(InvalidStatusTransitionError):
            await subscription_service.update_subscription(
                user_info, subscription.id, SubscriptionUpdateRequest(plan_id=yearly_plan.id)
            )

        current = await subscription_service.get_subscription(subscription.id)
        assert current.plan_id == basic_plan.id

    async def test_cancelled_auto_renew_cannot_be_enabled(
        self, subscription_service, user_info, basic_plan, fetch_audit_entries
    ):
        subscription = await self._subscribe(subscription_service, user_info, basic_plan)
        await subscription_service.cancel_subscription(user_info, subscription.id)

        with pytest.raises(InvalidStatusTransitionError):
            await subscription_service.update_subscription(
                user_info, subscription.id, SubscriptionUpdateRequest(auto_renew=True)
            )

        assert await fetch_audit_entries(AuditAction.SUBSCRIPTION_UPDATED.value) == []

    async def test_cancelled_unchanged_fields_are_a_no_op(
        self, subscription_service, user_info, basic_plan
    ):
        subscription = await self._subscribe(subscription_service, user_info, basic_plan)
        await subscription_service.cancel_subscription(user_info, subscription.id)

        updated = await subscription_service.update_subscription(
            user_info,
            subscription.id,
            SubscriptionUpdateRequest(auto_renew=False, plan_id=basic_plan.id),
        )

        assert updated.status == SubscriptionStatus.CANCELLED.value
        assert updated.auto_renew is False

    async def test_non_owner_cannot_update(
        self, subscription_service, user_info, other_user_info, basic_plan
    ):
        subscription = await self._subscribe(subscription_service, user_info, basic_plan)

        with pytest.raises(ForbiddenError):
            await subscription_service.update_subscription(
                other_user_info,
                subscription.id,
                SubscriptionUpdateRequest(status=UpdatableStatus.PAUSED),
            )


class TestCancelSubscription:
    async def test_cancel_writes_exactly_one_audit_entry(
        self, subscription_service, user_info, basic_plan, clock, fetch_audit_entries
    ):
        subscription = await subscription_service.create_subscription(
            user_info, SubscriptionCreateRequest(plan_id=basic_plan.id)
        )

        cancelled = await subscription_service.cancel_subscription(user_info, subscription.id)

        assert cancelled.status == SubscriptionStatus.CANCELLED.value
        assert cancelled.auto_renew is False
        entries = await fetch_audit_entries(AuditAction.SUBSCRIPTION_CANCELLED.value)
        assert len(entries) == 1
        assert entries[0].actor_id == user_info.user_id
        assert entries[0].metadata_json == {
            "plan_name": "Basic Plan",
            "cancellation_date": clock.now.isoformat(),
        }

    async def test_cancel_twice_conflicts(self, subscription_service, user_info, basic_plan):
        subscription = await subscription_service.create_subscription(
            user_info, SubscriptionCreateRequest(plan_id=basic_plan.id)
        )
        await subscription_service.cancel_subscription(user_info, subscription.id)

        with pytest.raises(ConflictError, match="Can only cancel active subscriptions"):
            await subscription_service.cancel_subscription(user_info, subscription.id)

    async def test_cancel_paused_conflicts(self, subscription_service, user_info, basic_plan):
        subscription = await subscription_service.create_subscription(
            user_info, SubscriptionCreateRequest(plan_id=basic_plan.id)
        )
        await subscription_service.update_subscription(
            user_info, subscription.id, SubscriptionUpdateRequest(status=UpdatableStatus.PAUSED)
        )

        with pytest.raises(ConflictError):
            await subscription_service.cancel_subscription(user_info, subscription.id)

    async def test_non_owner_cancel_is_forbidden_and_not_audited(
        self, subscription_service, user_info, other_user_info, basic_plan, fetch_audit_entries
    ):
        subscription = await subscription_service.create_subscription(
            user_info, SubscriptionCreateRequest(plan_id=basic_plan.id)
        )

        with pytest.raises(ForbiddenError):
            await subscription_service.cancel_subscription(other_user_info, subscription.id)

        assert await fetch_audit_entries(AuditAction.SUBSCRIPTION_CANCELLED.value) == []
        unchanged = await subscription_service.get_subscription(subscription.id)
        assert unchanged.status == SubscriptionStatus.ACTIVE.value

    async def test_admin_can_cancel_any(
        self, subscription_service, user_info, admin_info, basic_plan, fetch_audit_entries
    ):
        subscription = await subscription_service.create_subscription(
            user_info, SubscriptionCreateRequest(plan_id=basic_plan.id)
        )

        await subscription_service.cancel_subscription(admin_info, subscription.id)

        entries = await fetch_audit_entries(AuditAction.SUBSCRIPTION_CANCELLED.value)
        assert entries[0].actor_id == admin_info.user_id


class TestExpiryAndRenewal:
    async def test_expire_due_moves_only_past_due_active(
        self, subscription_service, user_info, basic_plan, yearly_plan, clock, fetch_audit_entries
    ):
        monthly = await subscription_service.create_subscription(
            user_info, SubscriptionCreateRequest(plan_id=basic_plan.id)
        )
        yearly = await subscription_service.create_subscription(
            user_info, SubscriptionCreateRequest(plan_id=yearly_plan.id)
        )

        clock.advance(relativedelta(months=2))
        expired = await subscription_service.expire_due_subscriptions()

        assert [s.id for s in expired] == [monthly.id]
        assert (await subscription_service.get_subscription(monthly.id)).status == "EXPIRED"
        assert (await subscription_service.get_subscription(yearly.id)).status == "ACTIVE"

        entries = await fetch_audit_entries(AuditAction.SUBSCRIPTION_EXPIRED.value)
        assert len(entries) == 1
        assert entries[0].actor_id == SYSTEM_ACTOR

    async def test_cancelled_subscription_never_expires(
        self, subscription_service, user_info, basic_plan, clock
    ):
        subscription = await subscription_service.create_subscription(
            user_info, SubscriptionCreateRequest(plan_id=basic_plan.id)
        )
        await subscription_service.cancel_subscription(user_info, subscription.id)

        clock.advance(relativedelta(years=1))

        assert await subscription_service.expire_due_subscriptions() == []
        assert (await subscription_service.get_subscription(subscription.id)).status == "CANCELLED"

    async def test_nothing_due(self, subscription_service, user_info, basic_plan):
        await subscription_service.create_subscription(
            user_info, SubscriptionCreateRequest(plan_id=basic_plan.id)
        )

        assert await subscription_service.expire_due_subscriptions() == []

    async def test_renew_expired_restarts_period(
        self, subscription_service, user_info, basic_plan, clock, fetch_audit_entries
    ):
        subscription = await subscription_service.create_subscription(
            user_info, SubscriptionCreateRequest(plan_id=basic_plan.id, auto_renew=False)
        )
        clock.advance(relativedelta(months=3))
        await subscription_service.expire_due_subscriptions()

        renewed = await subscription_service.renew_subscription(user_info, subscription.id)

        assert renewed.status == SubscriptionStatus.ACTIVE.value
        assert renewed.start_date == clock.now
        assert renewed.end_date == clock.now + relativedelta(months=1)
        assert renewed.auto_renew is True
        entries = await fetch_audit_entries(AuditAction.SUBSCRIPTION_RENEWED.value)
        assert len(entries) == 1
        assert entries[0].metadata_json["new_end_date"] == renewed.end_date.isoformat()

    async def test_renew_on_deactivated_plan_rejected(
        self, subscription_service, plan_service, user_info, admin_info, basic_plan, clock
    ):
        subscription = await subscription_service.create_subscription(
            user_info, SubscriptionCreateRequest(plan_id=basic_plan.id)
        )
        clock.advance(relativedelta(months=2))
        await subscription_service.expire_due_subscriptions()
        await plan_service.deactivate_plan(basic_plan.id, admin_info.user_id)

        with pytest.raises(ValidationError, match="not available"):
            await subscription_service.renew_subscription(user_info, subscription.id)

        current = await subscription_service.get_subscription(subscription.id)
        assert current.status == SubscriptionStatus.EXPIRED.value

    async def test_renew_active_conflicts(self, subscription_service, user_info, basic_plan):
        subscription = await subscription_service.create_subscription(
            user_info, SubscriptionCreateRequest(plan_id=basic_plan.id)
        )

        with pytest.raises(ConflictError, match="Can only renew expired subscriptions"):
            await subscription_service.renew_subscription(user_info, subscription.id)

    async def test_renew_cancelled_conflicts(self, subscription_service, user_info, basic_plan):
        subscription = await subscription_service.create_subscription(
            user_info, SubscriptionCreateRequest(plan_id=basic_plan.id)
        )
        await subscription_service.cancel_subscription(user_info, subscription.id)

        with pytest.raises(ConflictError):
            await subscription_service.renew_subscription(user_info, subscription.id)

    async def test_renew_conflicts_with_newer_active_subscription(
        self, subscription_service, user_info, basic_plan, clock
    ):
        old = await subscription_service.create_subscription(
            user_info, SubscriptionCreateRequest(plan_id=basic_plan.id)
        )
        clock.advance(relativedelta(months=2))
        await subscription_service.expire_due_subscriptions()
        await subscription_service.create_subscription(
            user_info, SubscriptionCreateRequest(plan_id=basic_plan.id)
        )

        with pytest.raises(DuplicateActiveSubscriptionError):
            await subscription_service.renew_subscription(user_info, old.id)

    async def test_expiry_triggered_by_admin_records_admin(
        self, subscription_service, user_info, admin_info, basic_plan, clock, fetch_audit_entries
    ):
        await subscription_service.create_subscription(
            user_info, SubscriptionCreateRequest(plan_id=basic_plan.id)
        )
        clock.advance(relativedelta(months=1))

        expired = await subscription_service.expire_due_subscriptions(actor_id=admin_info.user_id)

        assert len(expired) == 1
        entries = await fetch_audit_entries(AuditAction.SUBSCRIPTION_EXPIRED.value)
        assert entries[0].actor_id == admin_info.user_id


class TestNotImplemented:
    async def test_automatic_renewals(self, subscription_service):
        with pytest.raises(FeatureNotImplementedError) as exc_info:
            await subscription_service.process_automatic_renewals()
        assert exc_info.value.status_code == 501

    async def test_usage_tracking(self, subscription_service):
        with pytest.raises(FeatureNotImplementedError):
            await subscription_service.track_usage("sub-1", "api_calls", 10)

