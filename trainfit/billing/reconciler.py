"""Webhook reconciler — apply processor events to the billing ledger.

Per-subscription state machine over {ACTIVE, PAST_DUE, CANCELLED}:

- payment_succeeded     -> upsert SUCCEEDED attempt, subscription ACTIVE
- payment_failed        -> upsert FAILED attempt, subscription PAST_DUE
- subscription_updated  -> overwrite status / period / cancel flag verbatim
- subscription_deleted  -> CANCELLED, payments untouched
- checkout_completed    -> link the processor subscription id, ACTIVE

Processors retry deliveries, so every handler is an upsert keyed by the
processor's identifiers: running it twice with the same payload ends in the
same state. A stale payment event (a failure for an invoice already paid)
changes nothing.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from trainfit.billing.effects import EffectOutcome, run_db_effect, run_effect, skip_effect
from trainfit.billing.events import (
    CheckoutCompleted,
    PaymentFailed,
    PaymentSucceeded,
    ProcessorEvent,
    SubscriptionDeleted,
    SubscriptionUpdated,
)
from trainfit.billing.exceptions import UnknownProcessorStatusError
from trainfit.billing.status import StatusView, load_status_view
from trainfit.database import utcnow
from trainfit.models.notification import NotificationType
from trainfit.models.payment import PaymentAttemptStatus
from trainfit.models.subscription import Subscription, SubscriptionStatus
from trainfit.realtime import ConnectionManager, user_channel
from trainfit.services.notification_service import create_notification
from trainfit.services.subscription_service import (
    get_subscription_by_external_customer,
    get_subscription_by_external_subscription,
    upsert_payment,
    upsert_subscription,
)

logger = logging.getLogger(__name__)

# Processor vocabulary -> local lifecycle status. Anything else is rejected.
PROCESSOR_STATUS_MAP: dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELLED,
    "cancelled": SubscriptionStatus.CANCELLED,
}


def map_processor_status(status: str) -> SubscriptionStatus:
    """Map a processor subscription status onto the local enum.

    Raises:
        UnknownProcessorStatusError: For values outside the known vocabulary.
    """
    mapped = PROCESSOR_STATUS_MAP.get(status.strip().lower())
    if mapped is None:
        raise UnknownProcessorStatusError(status)
    return mapped


@dataclass
class ReconcileResult:
    """What happened to the ledger for one event."""

    event_id: str
    kind: str
    applied: bool
    subscription_id: uuid.UUID | None = None
    user_id: uuid.UUID | None = None
    before: StatusView | None = None
    after: StatusView | None = None

    @property
    def status_changed(self) -> bool:
        if self.before is None or self.after is None:
            return False
        return self.before.status != self.after.status


async def _find_subscription(db: AsyncSession, event: ProcessorEvent) -> Subscription | None:
    """Lookup by processor subscription ID first, then by customer ID."""
    subscription = None
    if event.external_subscription_id:
        subscription = await get_subscription_by_external_subscription(
            db, event.external_subscription_id, for_update=True
        )
    if subscription is None and event.external_customer_id:
        subscription = await get_subscription_by_external_customer(
            db, event.external_customer_id, for_update=True
        )
    return subscription


async def handle_payment_succeeded(
    db: AsyncSession, subscription: Subscription, event: PaymentSucceeded, now: datetime
) -> bool:
    _, applied = await upsert_payment(
        db,
        subscription.id,
        event.external_payment_id,
        amount=event.amount,
        currency=event.currency,
        status=PaymentAttemptStatus.SUCCEEDED,
        description=event.description or "Subscription payment",
        paid_at=event.paid_at or now,
    )
    if not applied:
        return False

    if subscription.status != SubscriptionStatus.ACTIVE:
        await upsert_subscription(db, subscription.user_id, status=SubscriptionStatus.ACTIVE)
    logger.info("Payment succeeded: %s on subscription %s", event.external_payment_id, subscription.id)
    return True


async def handle_payment_failed(
    db: AsyncSession, subscription: Subscription, event: PaymentFailed, now: datetime
) -> bool:
    _, applied = await upsert_payment(
        db,
        subscription.id,
        event.external_payment_id,
        amount=event.amount,
        currency=event.currency,
        status=PaymentAttemptStatus.FAILED,
        description=event.description or "Failed subscription payment",
        failure_reason=event.failure_reason or "Payment failed",
    )
    if not applied:
        # Late failure for an invoice that has since been paid.
        return False

    if subscription.status != SubscriptionStatus.PAST_DUE:
        await upsert_subscription(db, subscription.user_id, status=SubscriptionStatus.PAST_DUE)
    logger.info(
        "Payment failed: %s, subscription %s is %s",
        event.external_payment_id,
        subscription.id,
        subscription.status.value,
    )
    return True


async def handle_subscription_updated(
    db: AsyncSession, subscription: Subscription, event: SubscriptionUpdated, now: datetime
) -> bool:
    status = map_processor_status(event.status)
    fields = {
        "status": status,
        "current_period_start": event.period_start,
        "current_period_end": event.period_end,
        "cancel_at_period_end": event.cancel_at_period_end,
    }
    if event.plan is not None:
        fields["plan"] = event.plan
    if event.external_subscription_id and not subscription.external_subscription_id:
        fields["external_subscription_id"] = event.external_subscription_id

    await upsert_subscription(db, subscription.user_id, **fields)
    logger.info(
        "Subscription updated: %s -> status=%s, period_end=%s",
        subscription.id,
        status.value,
        event.period_end,
    )
    return True


async def handle_subscription_deleted(
    db: AsyncSession, subscription: Subscription, event: SubscriptionDeleted, now: datetime
) -> bool:
    await upsert_subscription(db, subscription.user_id, status=SubscriptionStatus.CANCELLED)
    logger.info("Subscription deleted: %s marked cancelled", subscription.id)
    return True


async def handle_checkout_completed(
    db: AsyncSession, subscription: Subscription, event: CheckoutCompleted, now: datetime
) -> bool:
    fields = {
        "external_subscription_id": event.external_subscription_id,
        "status": SubscriptionStatus.ACTIVE,
    }
    if event.plan is not None:
        fields["plan"] = event.plan
    await upsert_subscription(db, subscription.user_id, **fields)
    logger.info(
        "Checkout completed: subscription %s linked to %s",
        subscription.id,
        event.external_subscription_id,
    )
    return True


Handler = Callable[[AsyncSession, Subscription, ProcessorEvent, datetime], Awaitable[bool]]

EVENT_HANDLERS: dict[type[ProcessorEvent], Handler] = {
    PaymentSucceeded: handle_payment_succeeded,
    PaymentFailed: handle_payment_failed,
    SubscriptionUpdated: handle_subscription_updated,
    SubscriptionDeleted: handle_subscription_deleted,
    CheckoutCompleted: handle_checkout_completed,
}


async def reconcile_event(
    db: AsyncSession, event: ProcessorEvent, now: datetime | None = None
) -> ReconcileResult:
    """Apply one processor event to the ledger (flush only, caller commits).

    Unknown event kinds and events for subscriptions we do not hold are
    acknowledged without changes.

    Raises:
        UnknownProcessorStatusError: subscription_updated with an unmapped status.
        InvalidBillingPeriodError: period end before period start.
    """
    now = now or utcnow()
    handler = EVENT_HANDLERS.get(type(event))
    if handler is None:
        logger.debug("No reconciler for event kind %s (id=%s)", event.kind, event.event_id)
        return ReconcileResult(event_id=event.event_id, kind=event.kind, applied=False)

    subscription = await _find_subscription(db, event)
    if subscription is None:
        logger.warning(
            "No local subscription for processor subscription %s / customer %s (%s %s)",
            event.external_subscription_id,
            event.external_customer_id,
            event.kind,
            event.event_id,
        )
        return ReconcileResult(event_id=event.event_id, kind=event.kind, applied=False)

    before = await load_status_view(db, subscription, now)
    applied = await handler(db, subscription, event, now)
    after = await load_status_view(db, subscription, now)

    return ReconcileResult(
        event_id=event.event_id,
        kind=event.kind,
        applied=applied,
        subscription_id=subscription.id,
        user_id=subscription.user_id,
        before=before,
        after=after,
    )


_STATUS_CHANGE_COPY = {
    "paid": ("Payment received", "We received your payment. Thank you!"),
    "overdue": ("Payment overdue", "Your payment is overdue. Please contact your trainer."),
    "pending": ("Payment status updated", "Your payment is pending."),
}

# Payment events explain the change better than the resulting status does.
_PAYMENT_EVENT_COPY = {
    PaymentSucceeded.kind: _STATUS_CHANGE_COPY["paid"],
    PaymentFailed.kind: (
        "Payment failed",
        "Your latest payment could not be processed. Please update your payment method.",
    ),
}


async def notify_status_change(
    db: AsyncSession,
    result: ReconcileResult,
    realtime: ConnectionManager | None = None,
) -> list[EffectOutcome]:
    """Tell the client when an applied event changed their derived status.

    Runs after the ledger transaction is committed; failures are recorded in
    the returned effect list only.
    """
    effects: list[EffectOutcome] = []
    if not result.applied or not result.status_changed or result.user_id is None:
        return effects

    after = result.after
    title, message = _PAYMENT_EVENT_COPY.get(result.kind) or _STATUS_CHANGE_COPY[after.status.value]
    await run_db_effect(
        db,
        effects,
        "notification",
        create_notification(
            db,
            user_id=result.user_id,
            title=title,
            message=message,
            type=NotificationType.PAYMENT_UPDATE,
        ),
    )
    if realtime is None:
        skip_effect(effects, "realtime", "no realtime channel")
    else:
        await run_effect(
            effects,
            "realtime",
            realtime.emit(
                user_channel(result.user_id),
                "payment-updated",
                {
                    "amount": float(after.amount),
                    "dueDate": after.due_date.isoformat(),
                    "plan": after.plan.value,
                    "status": after.status.value,
                },
            ),
        )
    return effects
