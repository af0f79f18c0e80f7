"""Manual override gateway — trainer corrections to a client's billing.

A correction overwrites the subscription's plan and due date directly and
"fixes the last record" of the payment ledger instead of appending a new one,
so repeated edits don't pile up rows. Only a manually-entered attempt is
fixed in place: when the most recent attempt came from the processor, the
correction is recorded as a new manual attempt and the processor's record is
left intact.

The ledger change is committed before any side effect runs; the client
notification and the realtime push are best effort and reported back as an
``EffectOutcome`` list.
"""

import enum
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from trainfit.billing.effects import EffectOutcome, run_db_effect, run_effect, skip_effect
from trainfit.billing.exceptions import UnmappedPaymentStatusError
from trainfit.billing.plans import parse_plan_tier
from trainfit.billing.status import DEFAULT_DUE_DAYS, StatusView, load_status_view
from trainfit.database import utcnow
from trainfit.models.notification import NotificationType
from trainfit.models.payment import PaymentAttempt, PaymentAttemptStatus, PaymentSource
from trainfit.models.subscription import SubscriptionStatus
from trainfit.realtime import ConnectionManager, user_channel
from trainfit.services.notification_service import create_notification
from trainfit.services.subscription_service import (
    add_payment,
    get_latest_payment,
    get_subscription,
    upsert_subscription,
)

logger = logging.getLogger(__name__)

MANUAL_PAYMENT_DESCRIPTION = "Fee updated by trainer"


class ManualPaymentStatus(str, enum.Enum):
    """Payment status vocabulary accepted from trainers."""

    PAID = "paid"
    SUCCEEDED = "succeeded"
    PENDING = "pending"
    OVERDUE = "overdue"


MANUAL_STATUS_MAP: dict[ManualPaymentStatus, PaymentAttemptStatus] = {
    ManualPaymentStatus.PAID: PaymentAttemptStatus.SUCCEEDED,
    ManualPaymentStatus.SUCCEEDED: PaymentAttemptStatus.SUCCEEDED,
    ManualPaymentStatus.PENDING: PaymentAttemptStatus.PENDING,
    ManualPaymentStatus.OVERDUE: PaymentAttemptStatus.FAILED,
}


def parse_manual_status(value: str | None) -> PaymentAttemptStatus:
    """Map a trainer-supplied status onto the ledger enum. Absent means PENDING.

    Raises:
        UnmappedPaymentStatusError: For anything outside the accepted vocabulary.
    """
    if value is None:
        return PaymentAttemptStatus.PENDING
    try:
        manual = ManualPaymentStatus(value.strip().lower())
    except ValueError:
        raise UnmappedPaymentStatusError(value) from None
    return MANUAL_STATUS_MAP[manual]


@dataclass
class ManualOverrideResult:
    """Snapshot of the ledger after the correction, plus side-effect outcomes."""

    client_id: uuid.UUID
    subscription_id: uuid.UUID
    payment_id: uuid.UUID | None
    amount: Decimal | None
    due_date: datetime | None
    view: StatusView
    effects: list[EffectOutcome] = field(default_factory=list)


def _period_start_for(due_date: datetime, current_start: datetime | None) -> datetime | None:
    """Keep period_end >= period_start when a due date moves backwards."""
    if current_start is None or due_date >= current_start:
        return current_start
    return due_date - timedelta(days=DEFAULT_DUE_DAYS)


async def _apply_payment_correction(
    db: AsyncSession,
    subscription_id: uuid.UUID,
    amount: Decimal,
    status: PaymentAttemptStatus,
    now: datetime,
) -> PaymentAttempt:
    description = f"{MANUAL_PAYMENT_DESCRIPTION} - {now.date().isoformat()}"
    latest = await get_latest_payment(db, subscription_id)

    if latest is not None and latest.source == PaymentSource.MANUAL:
        latest.amount = amount
        latest.status = status
        latest.description = description
        latest.paid_at = now if status == PaymentAttemptStatus.SUCCEEDED else None
        latest.failure_reason = None
        await db.flush()
        logger.info("Updated manual payment %s -> %s %s", latest.id, status.value, amount)
        return latest

    if latest is not None:
        logger.info(
            "Latest payment %s came from the processor; recording correction as a new row",
            latest.id,
        )
    payment = await add_payment(
        db,
        subscription_id,
        amount=amount,
        status=status,
        source=PaymentSource.MANUAL,
        description=description,
        paid_at=now,
    )
    logger.info("Created manual payment %s -> %s %s", payment.id, status.value, amount)
    return payment


def _summary_message(amount: Decimal | None, due_date: datetime | None) -> str:
    parts = ["Your trainer has updated your payment information."]
    if amount is not None:
        parts.append(f"New amount: ${amount:.2f}.")
    if due_date is not None:
        parts.append(f"Due date: {due_date.date().isoformat()}.")
    return " ".join(parts)


async def set_client_payment(
    db: AsyncSession,
    client_id: uuid.UUID,
    *,
    amount: Decimal | None = None,
    due_date: datetime | None = None,
    plan_type: str | None = None,
    status: str | None = None,
    realtime: ConnectionManager | None = None,
    now: datetime | None = None,
) -> ManualOverrideResult:
    """Apply a trainer's correction to ``client_id``'s subscription and ledger.

    The caller is responsible for checking the trainer ↔ client relationship.
    Vocabulary is validated before anything is written.

    Raises:
        UnmappedPaymentStatusError: Unknown ``status``.
        UnknownPlanError: Unknown ``plan_type``.
    """
    now = now or utcnow()
    payment_status = parse_manual_status(status)
    plan = parse_plan_tier(plan_type) if plan_type else None

    subscription = await get_subscription(db, client_id, for_update=True)
    if subscription is None:
        end = due_date or now + timedelta(days=DEFAULT_DUE_DAYS)
        start = now if end >= now else end - timedelta(days=DEFAULT_DUE_DAYS)
        fields = {
            "status": SubscriptionStatus.ACTIVE,
            "current_period_start": start,
            "current_period_end": end,
        }
    else:
        fields = {}
        if due_date is not None:
            fields["current_period_end"] = due_date
            start = _period_start_for(due_date, subscription.current_period_start)
            if start != subscription.current_period_start:
                fields["current_period_start"] = start
    if plan is not None:
        fields["plan"] = plan

    subscription = await upsert_subscription(db, client_id, **fields)
    subscription_id = subscription.id

    payment_id = None
    if amount is not None:
        payment = await _apply_payment_correction(db, subscription_id, amount, payment_status, now)
        payment_id = payment.id

    view = await load_status_view(db, subscription, now)
    await db.commit()
    logger.info(
        "Manual payment override for client %s: status=%s plan=%s due=%s",
        client_id,
        view.status.value,
        view.plan.value,
        view.due_date,
    )

    effects: list[EffectOutcome] = []
    await run_db_effect(
        db,
        effects,
        "notification",
        create_notification(
            db,
            user_id=client_id,
            title="Payment information updated",
            message=_summary_message(amount, due_date),
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
                user_channel(client_id),
                "payment-updated",
                {
                    "amount": float(amount) if amount is not None else None,
                    "dueDate": view.due_date.isoformat(),
                    "plan": view.plan.value,
                    "status": view.status.value,
                },
            ),
        )

    return ManualOverrideResult(
        client_id=client_id,
        subscription_id=subscription_id,
        payment_id=payment_id,
        amount=amount,
        due_date=view.due_date,
        view=view,
        effects=effects,
    )
