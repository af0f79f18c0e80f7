"""Billing API endpoints — payment status, history, Stripe Checkout and cancellation."""

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from trainfit.api.deps import get_current_active_user, get_db
from trainfit.billing.exceptions import UnknownPlanError
from trainfit.billing.plans import PLANS, get_plan, parse_plan_tier
from trainfit.billing.status import get_payment_status
from trainfit.billing.stripe_client import cancel_at_period_end, create_checkout_session
from trainfit.config import settings
from trainfit.models.subscription import Subscription
from trainfit.models.user import User
from trainfit.schemas.billing import (
    CheckoutRequest,
    CheckoutResponse,
    PaymentHistoryItem,
    PaymentHistoryResponse,
    PaymentStatusResponse,
    PlanResponse,
    PlansListResponse,
    SubscriptionResponse,
)
from trainfit.services.subscription_service import (
    ensure_external_customer,
    get_subscription,
    list_payments_descending,
    upsert_subscription,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])


def _subscription_response(subscription: Subscription) -> SubscriptionResponse:
    return SubscriptionResponse(
        plan=subscription.plan.value,
        status=subscription.status.value,
        external_subscription_id=subscription.external_subscription_id,
        current_period_start=subscription.current_period_start,
        current_period_end=subscription.current_period_end,
        cancel_at_period_end=subscription.cancel_at_period_end,
    )


@router.get("/plans", response_model=PlansListResponse)
async def list_plans() -> PlansListResponse:
    """List available plans (public — no auth required)."""
    return PlansListResponse(
        plans=[
            PlanResponse(
                name=p.tier.value,
                display_name=p.display_name,
                price_monthly_cents=p.price_monthly_cents,
            )
            for p in PLANS.values()
        ]
    )


@router.get("/status", response_model=PaymentStatusResponse)
async def get_my_payment_status(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> PaymentStatusResponse:
    """Derived payment status of the authenticated user."""
    view = await get_payment_status(db, current_user.id)
    return PaymentStatusResponse.from_view(view)


@router.get("/history", response_model=PaymentHistoryResponse)
async def get_payment_history(
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> PaymentHistoryResponse:
    """Most recent payment attempts of the authenticated user."""
    subscription = await get_subscription(db, current_user.id)
    if subscription is None:
        return PaymentHistoryResponse(payments=[])

    payments = await list_payments_descending(db, subscription.id, limit)
    return PaymentHistoryResponse(
        payments=[
            PaymentHistoryItem(
                id=str(p.id),
                amount=float(p.amount),
                currency=p.currency,
                status=p.status.value,
                source=p.source.value,
                description=p.description,
                created_at=p.created_at,
                paid_at=p.paid_at,
            )
            for p in payments
        ]
    )


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    body: CheckoutRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> CheckoutResponse:
    """Create a Stripe Checkout session for a plan subscription."""
    try:
        tier = parse_plan_tier(body.plan)
    except UnknownPlanError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from e

    plan = get_plan(tier)
    if not plan.stripe_price_id:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Stripe price ID not configured for plan.",
        )

    # The webhook finds the local subscription through the customer ID
    subscription = await get_subscription(db, current_user.id)
    if subscription is None:
        subscription = await upsert_subscription(db, current_user.id)
    try:
        customer_id = await ensure_external_customer(db, current_user, subscription)

        success_url = (
            body.success_url
            or f"{settings.frontend_url}/billing?session_id={{CHECKOUT_SESSION_ID}}"
        )
        cancel_url = body.cancel_url or f"{settings.frontend_url}/pricing"

        session = await create_checkout_session(
            customer_id=customer_id,
            price_id=plan.stripe_price_id,
            success_url=success_url,
            cancel_url=cancel_url,
            plan=tier.value,
        )
    except stripe.StripeError as e:
        logger.error("Stripe checkout error: %s", e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(e),
        ) from e

    await db.commit()

    return CheckoutResponse(
        checkout_url=session.url,
        session_id=session.id,
    )


@router.post("/cancel", response_model=SubscriptionResponse)
async def cancel_subscription(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> SubscriptionResponse:
    """Cancel the processor subscription at the end of the current period.

    The status flips to CANCELLED only when Stripe reports the deletion.
    """
    subscription = await get_subscription(db, current_user.id, for_update=True)
    if subscription is None or not subscription.external_subscription_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No active processor subscription to cancel.",
        )

    try:
        await cancel_at_period_end(subscription.external_subscription_id)
    except stripe.StripeError as e:
        logger.error("Stripe cancel error: %s", e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(e),
        ) from e

    subscription = await upsert_subscription(db, current_user.id, cancel_at_period_end=True)
    await db.commit()
    logger.info("Subscription %s set to cancel at period end", subscription.id)
    return _subscription_response(subscription)
