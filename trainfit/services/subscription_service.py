"""Billing ledger store — subscriptions and payment attempts.

All functions flush but never commit; the caller owns the transaction so a
subscription update and its payment upsert land together. Reads that decide a
state transition pass ``for_update=True`` to lock the subscription row.
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from trainfit.billing.exceptions import InvalidBillingPeriodError
from trainfit.billing.stripe_client import create_customer
from trainfit.models.payment import PaymentAttempt, PaymentAttemptStatus, PaymentSource
from trainfit.models.subscription import PlanTier, Subscription, SubscriptionStatus
from trainfit.models.user import User

logger = logging.getLogger(__name__)

_SUBSCRIPTION_FIELDS = frozenset(
    {
        "plan",
        "status",
        "current_period_start",
        "current_period_end",
        "cancel_at_period_end",
        "external_customer_id",
        "external_subscription_id",
    }
)


async def _get_one(db: AsyncSession, stmt, for_update: bool) -> Subscription | None:
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_subscription(
    db: AsyncSession, user_id: uuid.UUID, *, for_update: bool = False
) -> Subscription | None:
    """Return the user's subscription, or None if they were never billed."""
    return await _get_one(
        db, select(Subscription).where(Subscription.user_id == user_id), for_update
    )


async def get_subscription_by_external_customer(
    db: AsyncSession, external_customer_id: str, *, for_update: bool = False
) -> Subscription | None:
    """Look up subscription by processor customer ID (used by webhooks)."""
    return await _get_one(
        db,
        select(Subscription).where(Subscription.external_customer_id == external_customer_id),
        for_update,
    )


async def get_subscription_by_external_subscription(
    db: AsyncSession, external_subscription_id: str, *, for_update: bool = False
) -> Subscription | None:
    """Look up subscription by processor subscription ID (used by webhooks)."""
    return await _get_one(
        db,
        select(Subscription).where(
            Subscription.external_subscription_id == external_subscription_id
        ),
        for_update,
    )


def _check_period(subscription: Subscription) -> None:
    start, end = subscription.current_period_start, subscription.current_period_end
    if start is not None and end is not None and end < start:
        raise InvalidBillingPeriodError(
            f"Billing period end {end.isoformat()} is before its start {start.isoformat()}"
        )


async def upsert_subscription(
    db: AsyncSession, user_id: uuid.UUID, **fields: Any
) -> Subscription:
    """Create the user's subscription or overwrite the given fields on it.

    New subscriptions default to BASIC / ACTIVE.
    """
    unknown = set(fields) - _SUBSCRIPTION_FIELDS
    if unknown:
        raise TypeError(f"Unknown subscription fields: {sorted(unknown)}")

    subscription = await get_subscription(db, user_id, for_update=True)
    if subscription is None:
        logger.info("Creating subscription for user %s", user_id)
        subscription = Subscription(
            user_id=user_id,
            plan=fields.pop("plan", None) or PlanTier.BASIC,
            status=fields.pop("status", None) or SubscriptionStatus.ACTIVE,
            cancel_at_period_end=fields.pop("cancel_at_period_end", False),
            **fields,
        )
        _check_period(subscription)
        db.add(subscription)
    else:
        for name, value in fields.items():
            setattr(subscription, name, value)
        _check_period(subscription)

    await db.flush()
    return subscription


async def ensure_external_customer(
    db: AsyncSession, user: User, subscription: Subscription
) -> str:
    """Ensure the user has a processor customer ID. Create one if missing."""
    if subscription.external_customer_id:
        return subscription.external_customer_id

    customer = await create_customer(
        email=user.email,
        name=user.name or user.email,
        user_id=str(user.id),
    )
    subscription.external_customer_id = customer.id
    await db.flush()
    logger.info("Linked processor customer %s to user %s", customer.id, user.id)
    return customer.id


async def list_payments_descending(
    db: AsyncSession, subscription_id: uuid.UUID, limit: int = 10
) -> list[PaymentAttempt]:
    """Most recent payment attempts first."""
    result = await db.execute(
        select(PaymentAttempt)
        .where(PaymentAttempt.subscription_id == subscription_id)
        .order_by(PaymentAttempt.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_latest_payment(
    db: AsyncSession,
    subscription_id: uuid.UUID,
    status: PaymentAttemptStatus | None = None,
) -> PaymentAttempt | None:
    """Most recent attempt overall, or the most recent one with ``status``."""
    stmt = select(PaymentAttempt).where(PaymentAttempt.subscription_id == subscription_id)
    if status is not None:
        stmt = stmt.where(PaymentAttempt.status == status)
    result = await db.execute(stmt.order_by(PaymentAttempt.created_at.desc()).limit(1))
    return result.scalar_one_or_none()


async def find_payment_by_external_id(
    db: AsyncSession, external_payment_id: str
) -> PaymentAttempt | None:
    """Processor ids are unique across all subscriptions."""
    result = await db.execute(
        select(PaymentAttempt).where(PaymentAttempt.external_payment_id == external_payment_id)
    )
    return result.scalar_one_or_none()


async def add_payment(
    db: AsyncSession,
    subscription_id: uuid.UUID,
    *,
    amount: Decimal,
    status: PaymentAttemptStatus,
    source: PaymentSource,
    currency: str = "usd",
    description: str | None = None,
    paid_at: datetime | None = None,
    external_payment_id: str | None = None,
    failure_reason: str | None = None,
) -> PaymentAttempt:
    """Append a new payment attempt."""
    payment = PaymentAttempt(
        subscription_id=subscription_id,
        amount=amount,
        currency=currency,
        status=status,
        source=source,
        description=description,
        paid_at=paid_at if status == PaymentAttemptStatus.SUCCEEDED else None,
        external_payment_id=external_payment_id,
        failure_reason=failure_reason,
    )
    db.add(payment)
    await db.flush()
    return payment


def can_transition(current: PaymentAttemptStatus, incoming: PaymentAttemptStatus) -> bool:
    """SUCCEEDED is final; PENDING and FAILED may move forward."""
    if current == PaymentAttemptStatus.SUCCEEDED:
        return incoming == PaymentAttemptStatus.SUCCEEDED
    if current == PaymentAttemptStatus.FAILED:
        return incoming in (PaymentAttemptStatus.FAILED, PaymentAttemptStatus.SUCCEEDED)
    return True


async def upsert_payment(
    db: AsyncSession,
    subscription_id: uuid.UUID,
    external_payment_id: str,
    *,
    amount: Decimal,
    currency: str,
    status: PaymentAttemptStatus,
    description: str | None = None,
    paid_at: datetime | None = None,
    failure_reason: str | None = None,
) -> tuple[PaymentAttempt, bool]:
    """Insert or update the processor payment keyed by ``external_payment_id``.

    Returns ``(payment, applied)``. ``applied`` is False when the stored
    attempt is already SUCCEEDED and the incoming status is not: the row is
    left untouched.

    An id already recorded under another subscription is logged and moved
    to ``subscription_id`` when the update applies.
    """
    payment = await find_payment_by_external_id(db, external_payment_id)
    if payment is None:
        payment = await add_payment(
            db,
            subscription_id,
            amount=amount,
            currency=currency,
            status=status,
            source=PaymentSource.PROCESSOR,
            description=description,
            paid_at=paid_at,
            external_payment_id=external_payment_id,
            failure_reason=failure_reason,
        )
        return payment, True

    if not can_transition(payment.status, status):
        logger.info(
            "Ignoring %s for payment %s (already %s)",
            status.value,
            external_payment_id,
            payment.status.value,
        )
        return payment, False

    if payment.subscription_id != subscription_id:
        logger.warning(
            "Payment %s was recorded for subscription %s, moving it to %s",
            external_payment_id,
            payment.subscription_id,
            subscription_id,
        )
        payment.subscription_id = subscription_id
    payment.amount = amount
    payment.currency = currency
    if description is not None:
        payment.description = description
    if status == PaymentAttemptStatus.SUCCEEDED:
        # Replays keep the first recorded paid_at
        payment.paid_at = payment.paid_at or paid_at
        payment.failure_reason = None
    else:
        payment.paid_at = None
        payment.failure_reason = failure_reason
    payment.status = status
    await db.flush()
    return payment, True
