"""Payment status derivation — one user-facing status from the ledger.

The derived status is one of ``paid``, ``pending`` or ``overdue`` and is
computed from the subscription and its most recent payment attempt, in
priority order (first match wins):

1. no subscription             -> pending (amount 0, due in 30 days)
2. latest attempt SUCCEEDED    -> paid
3. latest attempt PENDING      -> pending
4. period end in the past      -> overdue
5. otherwise                   -> pending

A successful payment wins even when the period has since lapsed, so clock
skew between the processor and us never flips a paid client to overdue. A
user with no payment rows at all falls through to the date comparison.
"""

import enum
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from trainfit.database import utcnow
from trainfit.models.payment import PaymentAttempt, PaymentAttemptStatus
from trainfit.models.subscription import PlanTier, Subscription
from trainfit.services.subscription_service import get_latest_payment, get_subscription

DEFAULT_DUE_DAYS = 30


class PaymentStatus(str, enum.Enum):
    PAID = "paid"
    PENDING = "pending"
    OVERDUE = "overdue"


@dataclass(frozen=True)
class StatusView:
    """Derived status plus the fields shown next to it."""

    status: PaymentStatus
    amount: Decimal
    due_date: datetime
    plan: PlanTier
    last_payment: datetime | None


def derive_status(
    subscription: Subscription | None,
    most_recent_payment: PaymentAttempt | None,
    now: datetime,
) -> PaymentStatus:
    """Map a subscription and its most recent payment attempt to a status.

    ``now`` is naive UTC, like the stored timestamps.
    """
    if subscription is None:
        return PaymentStatus.PENDING

    if most_recent_payment is not None:
        if most_recent_payment.status == PaymentAttemptStatus.SUCCEEDED:
            return PaymentStatus.PAID
        if most_recent_payment.status == PaymentAttemptStatus.PENDING:
            return PaymentStatus.PENDING

    due = subscription.current_period_end
    if due is not None and due < now:
        return PaymentStatus.OVERDUE
    return PaymentStatus.PENDING


def build_status_view(
    subscription: Subscription | None,
    most_recent_payment: PaymentAttempt | None,
    last_succeeded_payment: PaymentAttempt | None,
    now: datetime,
) -> StatusView:
    """Assemble the status read model.

    The amount is the most recent attempt's amount whatever its status, so a
    trainer sees what was attempted. ``last_payment`` comes from the most
    recent SUCCEEDED attempt, which may be older than the most recent one.
    """
    if subscription is None:
        return StatusView(
            status=PaymentStatus.PENDING,
            amount=Decimal("0"),
            due_date=now + timedelta(days=DEFAULT_DUE_DAYS),
            plan=PlanTier.BASIC,
            last_payment=None,
        )

    last_payment = None
    if last_succeeded_payment is not None:
        last_payment = last_succeeded_payment.paid_at or last_succeeded_payment.created_at

    return StatusView(
        status=derive_status(subscription, most_recent_payment, now),
        amount=most_recent_payment.amount if most_recent_payment is not None else Decimal("0"),
        due_date=subscription.current_period_end or now,
        plan=subscription.plan,
        last_payment=last_payment,
    )


async def load_status_view(
    db: AsyncSession, subscription: Subscription | None, now: datetime | None = None
) -> StatusView:
    """Read the payments needed for ``subscription`` and build its view."""
    now = now or utcnow()
    if subscription is None:
        return build_status_view(None, None, None, now)
    latest = await get_latest_payment(db, subscription.id)
    if latest is not None and latest.status == PaymentAttemptStatus.SUCCEEDED:
        last_succeeded = latest
    else:
        last_succeeded = await get_latest_payment(
            db, subscription.id, status=PaymentAttemptStatus.SUCCEEDED
        )
    return build_status_view(subscription, latest, last_succeeded, now)


async def get_payment_status(
    db: AsyncSession, user_id: uuid.UUID, now: datetime | None = None
) -> StatusView:
    """Derived payment status for a user."""
    subscription = await get_subscription(db, user_id)
    return await load_status_view(db, subscription, now)
