"""Tests for the webhook reconciler state machine (SQLite test DB)."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from trainfit.billing.events import (
    CheckoutCompleted,
    PaymentFailed,
    PaymentSucceeded,
    ProcessorEvent,
    SubscriptionDeleted,
    SubscriptionUpdated,
)
from trainfit.billing.exceptions import InvalidBillingPeriodError, UnknownProcessorStatusError
from trainfit.billing.reconciler import map_processor_status, notify_status_change, reconcile_event
from trainfit.billing.status import PaymentStatus
from trainfit.models.notification import Notification, NotificationType
from trainfit.models.payment import PaymentAttempt, PaymentAttemptStatus
from trainfit.models.subscription import PlanTier, SubscriptionStatus
from trainfit.services.subscription_service import get_subscription, upsert_subscription

NOW = datetime(2026, 3, 10, 15, 0)


async def _subscribed_user(db_session, make_user, **fields):
    user = await make_user(role="client")
    defaults = dict(
        external_customer_id=f"cus_{user.id.hex[:8]}",
        external_subscription_id=f"sub_{user.id.hex[:8]}",
        plan=PlanTier.PREMIUM,
        status=SubscriptionStatus.ACTIVE,
        current_period_start=NOW - timedelta(days=20),
        current_period_end=NOW + timedelta(days=10),
    )
    defaults.update(fields)
    subscription = await upsert_subscription(db_session, user.id, **defaults)
    await db_session.commit()
    return user, subscription


def _succeeded(subscription, payment_id="in_001", event_id="evt_1", amount="49.99"):
    return PaymentSucceeded(
        event_id=event_id,
        external_subscription_id=subscription.external_subscription_id,
        external_customer_id=subscription.external_customer_id,
        external_payment_id=payment_id,
        amount=Decimal(amount),
        paid_at=NOW,
    )


def _failed(subscription, payment_id="in_001", event_id="evt_2", amount="49.99"):
    return PaymentFailed(
        event_id=event_id,
        external_subscription_id=subscription.external_subscription_id,
        external_customer_id=subscription.external_customer_id,
        external_payment_id=payment_id,
        amount=Decimal(amount),
        failure_reason="card_declined",
    )


async def _payment_rows(db_session, subscription_id) -> list[PaymentAttempt]:
    result = await db_session.execute(
        select(PaymentAttempt).where(PaymentAttempt.subscription_id == subscription_id)
    )
    return list(result.scalars().all())


class TestMapProcessorStatus:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("active", SubscriptionStatus.ACTIVE),
            ("trialing", SubscriptionStatus.ACTIVE),
            ("past_due", SubscriptionStatus.PAST_DUE),
            ("unpaid", SubscriptionStatus.PAST_DUE),
            ("canceled", SubscriptionStatus.CANCELLED),
            ("Cancelled", SubscriptionStatus.CANCELLED),
        ],
    )
    def test_known_statuses(self, raw, expected):
        assert map_processor_status(raw) == expected

    def test_unknown_status_raises(self):
        with pytest.raises(UnknownProcessorStatusError):
            map_processor_status("incomplete_expired")


class TestPaymentEvents:
    """payment_succeeded / payment_failed are upserts keyed by the invoice id."""

    @pytest.mark.asyncio
    async def test_replayed_success_keeps_one_row(self, db_session, make_user):
        _, subscription = await _subscribed_user(db_session, make_user)
        event = _succeeded(subscription)

        first = await reconcile_event(db_session, event, NOW)
        await db_session.commit()
        second = await reconcile_event(db_session, event, NOW)
        await db_session.commit()

        rows = await _payment_rows(db_session, subscription.id)
        assert len(rows) == 1
        assert rows[0].status == PaymentAttemptStatus.SUCCEEDED
        assert first.applied and second.applied
        assert first.after.status == PaymentStatus.PAID
        assert second.status_changed is False

    @pytest.mark.asyncio
    async def test_failed_then_succeeded_ends_active_and_paid(self, db_session, make_user):
        user, subscription = await _subscribed_user(db_session, make_user)

        failed = await reconcile_event(db_session, _failed(subscription), NOW)
        await db_session.commit()
        assert failed.applied
        assert (await get_subscription(db_session, user.id)).status == SubscriptionStatus.PAST_DUE

        succeeded = await reconcile_event(db_session, _succeeded(subscription), NOW)
        await db_session.commit()

        rows = await _payment_rows(db_session, subscription.id)
        assert len(rows) == 1
        assert rows[0].status == PaymentAttemptStatus.SUCCEEDED
        assert rows[0].failure_reason is None
        assert (await get_subscription(db_session, user.id)).status == SubscriptionStatus.ACTIVE
        assert succeeded.after.status == PaymentStatus.PAID

    @pytest.mark.asyncio
    async def test_late_failure_does_not_undo_success(self, db_session, make_user):
        user, subscription = await _subscribed_user(db_session, make_user)
        await reconcile_event(db_session, _succeeded(subscription), NOW)
        await db_session.commit()

        result = await reconcile_event(db_session, _failed(subscription), NOW)
        await db_session.commit()

        assert result.applied is False
        rows = await _payment_rows(db_session, subscription.id)
        assert [r.status for r in rows] == [PaymentAttemptStatus.SUCCEEDED]
        assert (await get_subscription(db_session, user.id)).status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_failed_payment_past_due_date_is_overdue(self, db_session, make_user):
        _, subscription = await _subscribed_user(
            db_session, make_user, current_period_end=NOW - timedelta(days=2)
        )

        result = await reconcile_event(db_session, _failed(subscription), NOW)

        assert result.after.status == PaymentStatus.OVERDUE
        assert result.after.amount == Decimal("49.99")

    @pytest.mark.asyncio
    async def test_success_reactivates_cancelled_subscription(self, db_session, make_user):
        user, subscription = await _subscribed_user(
            db_session, make_user, status=SubscriptionStatus.CANCELLED
        )

        result = await reconcile_event(db_session, _succeeded(subscription), NOW)
        await db_session.commit()

        assert result.applied
        assert (await get_subscription(db_session, user.id)).status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_failure_on_cancelled_subscription_is_past_due(self, db_session, make_user):
        user, subscription = await _subscribed_user(
            db_session, make_user, status=SubscriptionStatus.CANCELLED
        )

        result = await reconcile_event(db_session, _failed(subscription), NOW)
        await db_session.commit()

        assert result.applied
        assert (await get_subscription(db_session, user.id)).status == SubscriptionStatus.PAST_DUE

    @pytest.mark.asyncio
    async def test_lookup_falls_back_to_customer_id(self, db_session, make_user):
        _, subscription = await _subscribed_user(db_session, make_user)
        event = PaymentSucceeded(
            event_id="evt_1",
            external_subscription_id="sub_unknown",
            external_customer_id=subscription.external_customer_id,
            external_payment_id="in_009",
            amount=Decimal("49.99"),
        )

        result = await reconcile_event(db_session, event, NOW)

        assert result.applied
        assert result.subscription_id == subscription.id


class TestSubscriptionEvents:
    @pytest.mark.asyncio
    async def test_updated_overwrites_status_period_and_plan(self, db_session, make_user):
        user, subscription = await _subscribed_user(db_session, make_user)
        new_start, new_end = NOW, NOW + timedelta(days=30)
        event = SubscriptionUpdated(
            event_id="evt_3",
            external_subscription_id=subscription.external_subscription_id,
            status="past_due",
            period_start=new_start,
            period_end=new_end,
            cancel_at_period_end=True,
            plan=PlanTier.PROFESSIONAL,
        )

        result = await reconcile_event(db_session, event, NOW)
        await db_session.commit()

        stored = await get_subscription(db_session, user.id)
        assert result.applied
        assert stored.status == SubscriptionStatus.PAST_DUE
        assert stored.current_period_start == new_start
        assert stored.current_period_end == new_end
        assert stored.cancel_at_period_end is True
        assert stored.plan == PlanTier.PROFESSIONAL

    @pytest.mark.asyncio
    async def test_updated_reopens_cancelled_subscription(self, db_session, make_user):
        user, subscription = await _subscribed_user(
            db_session, make_user, status=SubscriptionStatus.CANCELLED
        )
        event = SubscriptionUpdated(
            event_id="evt_4",
            external_subscription_id=subscription.external_subscription_id,
            status="active",
            period_start=NOW,
            period_end=NOW + timedelta(days=30),
        )

        await reconcile_event(db_session, event, NOW)

        assert (await get_subscription(db_session, user.id)).status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_unknown_status_leaves_ledger_untouched(self, db_session, make_user):
        user, subscription = await _subscribed_user(db_session, make_user)
        event = SubscriptionUpdated(
            event_id="evt_5",
            external_subscription_id=subscription.external_subscription_id,
            status="paused_forever",
            period_end=NOW + timedelta(days=60),
        )

        with pytest.raises(UnknownProcessorStatusError):
            await reconcile_event(db_session, event, NOW)
        await db_session.rollback()

        stored = await get_subscription(db_session, user.id)
        assert stored.status == SubscriptionStatus.ACTIVE
        assert stored.current_period_end == NOW + timedelta(days=10)

    @pytest.mark.asyncio
    async def test_inverted_period_is_rejected(self, db_session, make_user):
        _, subscription = await _subscribed_user(db_session, make_user)
        event = SubscriptionUpdated(
            event_id="evt_6",
            external_subscription_id=subscription.external_subscription_id,
            status="active",
            period_start=NOW,
            period_end=NOW - timedelta(days=1),
        )

        with pytest.raises(InvalidBillingPeriodError):
            await reconcile_event(db_session, event, NOW)

    @pytest.mark.asyncio
    async def test_deleted_cancels_and_keeps_payments(self, db_session, make_user):
        user, subscription = await _subscribed_user(db_session, make_user)
        await reconcile_event(db_session, _succeeded(subscription), NOW)
        await db_session.commit()

        event = SubscriptionDeleted(
            event_id="evt_7", external_subscription_id=subscription.external_subscription_id
        )
        result = await reconcile_event(db_session, event, NOW)
        await db_session.commit()

        assert result.applied
        assert (await get_subscription(db_session, user.id)).status == SubscriptionStatus.CANCELLED
        assert len(await _payment_rows(db_session, subscription.id)) == 1

    @pytest.mark.asyncio
    async def test_checkout_links_processor_subscription(self, db_session, make_user):
        user, _ = await _subscribed_user(db_session, make_user, external_subscription_id=None)
        stored = await get_subscription(db_session, user.id)
        event = CheckoutCompleted(
            event_id="evt_8",
            external_subscription_id="sub_fresh",
            external_customer_id=stored.external_customer_id,
            plan=PlanTier.BASIC,
        )

        result = await reconcile_event(db_session, event, NOW)
        await db_session.commit()

        stored = await get_subscription(db_session, user.id)
        assert result.applied
        assert stored.external_subscription_id == "sub_fresh"
        assert stored.plan == PlanTier.BASIC


class TestUnmatchedEvents:
    @pytest.mark.asyncio
    async def test_unknown_subscription_is_not_applied(self, db_session):
        event = SubscriptionDeleted(event_id="evt_9", external_subscription_id="sub_nobody")

        result = await reconcile_event(db_session, event, NOW)

        assert result.applied is False
        assert result.subscription_id is None

    @pytest.mark.asyncio
    async def test_base_event_kind_is_ignored(self, db_session):
        result = await reconcile_event(db_session, ProcessorEvent(event_id="evt_10"), NOW)

        assert result.applied is False
        assert result.kind == "unknown"


class TestNotifyStatusChange:
    @pytest.mark.asyncio
    async def test_status_change_notifies_and_pushes(self, db_session, make_user, realtime):
        user, subscription = await _subscribed_user(db_session, make_user)
        result = await reconcile_event(db_session, _succeeded(subscription), NOW)
        await db_session.commit()

        effects = await notify_status_change(db_session, result, realtime)

        assert [(e.name, e.ok) for e in effects] == [("notification", True), ("realtime", True)]
        channel, event_name, payload = realtime.events[0]
        assert channel == f"user-{user.id}"
        assert event_name == "payment-updated"
        assert payload["status"] == "paid"
        assert payload["amount"] == 49.99

        notification = (
            await db_session.execute(select(Notification).where(Notification.user_id == user.id))
        ).scalar_one()
        assert notification.type == NotificationType.PAYMENT_UPDATE
        assert notification.title == "Payment received"

    @pytest.mark.asyncio
    async def test_realtime_failure_keeps_ledger_and_notification(
        self, db_session, make_user, realtime
    ):
        user, subscription = await _subscribed_user(db_session, make_user)
        result = await reconcile_event(db_session, _succeeded(subscription), NOW)
        await db_session.commit()
        realtime.fail = True

        effects = await notify_status_change(db_session, result, realtime)

        assert effects[1].name == "realtime"
        assert effects[1].ok is False
        assert len(await _payment_rows(db_session, subscription.id)) == 1
        count = await db_session.scalar(
            select(func.count()).select_from(Notification).where(Notification.user_id == user.id)
        )
        assert count == 1

    @pytest.mark.asyncio
    async def test_unchanged_status_sends_nothing(self, db_session, make_user, realtime):
        _, subscription = await _subscribed_user(db_session, make_user)
        event = SubscriptionUpdated(
            event_id="evt_11",
            external_subscription_id=subscription.external_subscription_id,
            status="active",
            period_start=NOW - timedelta(days=20),
            period_end=NOW + timedelta(days=12),
        )
        result = await reconcile_event(db_session, event, NOW)
        await db_session.commit()

        assert await notify_status_change(db_session, result, realtime) == []
        assert realtime.events == []
