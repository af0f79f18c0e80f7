"""Processor-neutral billing events and their translation from Stripe.

The reconciler only understands the dataclasses below. ``from_stripe_event``
is the single place that knows Stripe's event names and object shapes;
event types it does not recognise translate to ``None`` and are ignored.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from trainfit.billing.plans import get_plan_by_price_id
from trainfit.models.subscription import PlanTier

logger = logging.getLogger(__name__)

_CENTS = Decimal("0.01")


@dataclass(frozen=True, kw_only=True)
class ProcessorEvent:
    """Fields shared by every event: the delivery id and how to find the subscription."""

    event_id: str
    external_subscription_id: str | None = None
    external_customer_id: str | None = None

    kind = "unknown"


@dataclass(frozen=True, kw_only=True)
class PaymentSucceeded(ProcessorEvent):
    external_payment_id: str
    amount: Decimal
    currency: str = "usd"
    paid_at: datetime | None = None
    description: str | None = None

    kind = "payment_succeeded"


@dataclass(frozen=True, kw_only=True)
class PaymentFailed(ProcessorEvent):
    external_payment_id: str
    amount: Decimal
    currency: str = "usd"
    description: str | None = None
    failure_reason: str | None = None

    kind = "payment_failed"


@dataclass(frozen=True, kw_only=True)
class SubscriptionUpdated(ProcessorEvent):
    status: str
    period_start: datetime | None = None
    period_end: datetime | None = None
    cancel_at_period_end: bool = False
    plan: PlanTier | None = None

    kind = "subscription_updated"


@dataclass(frozen=True, kw_only=True)
class SubscriptionDeleted(ProcessorEvent):
    kind = "subscription_deleted"


@dataclass(frozen=True, kw_only=True)
class CheckoutCompleted(ProcessorEvent):
    plan: PlanTier | None = None

    kind = "checkout_completed"


# ---------------------------------------------------------------------------
# Stripe translation
# ---------------------------------------------------------------------------


def _ts_to_naive(ts: int | None) -> datetime | None:
    """Convert Stripe Unix timestamp to naive UTC datetime."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, timezone.utc).replace(tzinfo=None)


def _cents_to_amount(cents: int | None) -> Decimal:
    return (Decimal(cents or 0) / 100).quantize(_CENTS)


def _invoice_subscription_id(invoice: Any) -> str | None:
    """Subscription ID of an invoice.

    Newer Stripe API versions moved it under
    ``invoice.parent.subscription_details.subscription``.
    """
    subscription_id = getattr(invoice, "subscription", None)
    if subscription_id:
        return subscription_id
    parent = getattr(invoice, "parent", None)
    details = getattr(parent, "subscription_details", None) if parent else None
    return getattr(details, "subscription", None) if details else None


def _get_first_item(stripe_sub: Any):
    """Get the first subscription item, using bracket notation to avoid
    collision with Python dict .items() in newer Stripe API versions.
    """
    try:
        sub_items = stripe_sub["items"]
    except (KeyError, AttributeError):
        return None
    if sub_items and sub_items.data:
        return sub_items.data[0]
    return None


def _get_price_id(stripe_sub: Any) -> str | None:
    item = _get_first_item(stripe_sub)
    price = getattr(item, "price", None) if item else None
    return getattr(price, "id", None) if price else None


def _get_period(stripe_sub: Any) -> tuple[datetime | None, datetime | None]:
    """Current period start/end, read from the first item and falling back to
    the subscription itself for older API versions.
    """
    item = _get_first_item(stripe_sub)
    for source in (item, stripe_sub):
        if source is None:
            continue
        start = getattr(source, "current_period_start", None)
        end = getattr(source, "current_period_end", None)
        if start is not None or end is not None:
            return _ts_to_naive(start), _ts_to_naive(end)
    return None, None


def _invoice_paid_at(invoice: Any) -> datetime | None:
    transitions = getattr(invoice, "status_transitions", None)
    return _ts_to_naive(getattr(transitions, "paid_at", None)) if transitions else None


def _from_paid_invoice(event_id: str, invoice: Any) -> PaymentSucceeded | None:
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        logger.info("Invoice %s has no subscription (one-time), skipping", invoice.id)
        return None
    return PaymentSucceeded(
        event_id=event_id,
        external_subscription_id=subscription_id,
        external_customer_id=getattr(invoice, "customer", None),
        external_payment_id=invoice.id,
        amount=_cents_to_amount(getattr(invoice, "amount_paid", None)),
        currency=getattr(invoice, "currency", None) or "usd",
        paid_at=_invoice_paid_at(invoice),
        description=getattr(invoice, "description", None),
    )


def _from_failed_invoice(event_id: str, invoice: Any) -> PaymentFailed | None:
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        logger.info("Invoice %s has no subscription (one-time), skipping payment failure", invoice.id)
        return None
    return PaymentFailed(
        event_id=event_id,
        external_subscription_id=subscription_id,
        external_customer_id=getattr(invoice, "customer", None),
        external_payment_id=invoice.id,
        amount=_cents_to_amount(getattr(invoice, "amount_due", None)),
        currency=getattr(invoice, "currency", None) or "usd",
        description=getattr(invoice, "description", None),
        failure_reason="Payment failed",
    )


def _from_subscription(event_id: str, stripe_sub: Any) -> SubscriptionUpdated:
    price_id = _get_price_id(stripe_sub)
    period_start, period_end = _get_period(stripe_sub)
    return SubscriptionUpdated(
        event_id=event_id,
        external_subscription_id=stripe_sub.id,
        external_customer_id=getattr(stripe_sub, "customer", None),
        status=stripe_sub.status,
        period_start=period_start,
        period_end=period_end,
        cancel_at_period_end=bool(getattr(stripe_sub, "cancel_at_period_end", False)),
        plan=get_plan_by_price_id(price_id) if price_id else None,
    )


def _from_checkout_session(event_id: str, session: Any) -> CheckoutCompleted | None:
    subscription_id = getattr(session, "subscription", None)
    if not subscription_id:
        logger.info("Checkout session %s has no subscription (one-time?), skipping", session.id)
        return None
    metadata = getattr(session, "metadata", None)
    plan_name = getattr(metadata, "plan", None) if metadata else None
    plan = None
    if plan_name:
        try:
            plan = PlanTier(str(plan_name).upper())
        except ValueError:
            logger.warning("Checkout session %s carries unknown plan %r", session.id, plan_name)
    return CheckoutCompleted(
        event_id=event_id,
        external_subscription_id=subscription_id,
        external_customer_id=getattr(session, "customer", None),
        plan=plan,
    )


def from_stripe_event(event: Any) -> ProcessorEvent | None:
    """Translate a verified Stripe event. Returns None for unhandled types."""
    obj = event.data.object
    match event.type:
        case "invoice.paid" | "invoice.payment_succeeded":
            return _from_paid_invoice(event.id, obj)
        case "invoice.payment_failed":
            return _from_failed_invoice(event.id, obj)
        case "customer.subscription.created" | "customer.subscription.updated":
            return _from_subscription(event.id, obj)
        case "customer.subscription.deleted":
            return SubscriptionDeleted(
                event_id=event.id,
                external_subscription_id=obj.id,
                external_customer_id=getattr(obj, "customer", None),
            )
        case "checkout.session.completed":
            return _from_checkout_session(event.id, obj)
    return None
