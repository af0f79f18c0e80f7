"""Stripe webhook endpoint — receives and reconciles Stripe events."""

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from trainfit.api.deps import get_db, get_realtime
from trainfit.billing.events import from_stripe_event
from trainfit.billing.exceptions import BillingError
from trainfit.billing.reconciler import notify_status_change, reconcile_event
from trainfit.billing.stripe_client import construct_webhook_event
from trainfit.realtime import ConnectionManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    realtime: ConnectionManager = Depends(get_realtime),
) -> dict[str, str]:
    """Receive and reconcile Stripe webhook events.

    Anything but a 2xx makes Stripe retry the delivery, which is safe because
    reconciliation is idempotent.
    """
    # 1. Read raw body (MUST be raw bytes for signature verification)
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    # 2. Verify signature
    try:
        event = construct_webhook_event(payload, sig_header)
    except stripe.SignatureVerificationError as e:
        logger.warning("Webhook signature verification failed")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        ) from e
    except ValueError as e:
        logger.warning("Invalid webhook payload: %s", e)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload",
        ) from e

    # 3. Translate to a processor-neutral event
    billing_event = from_stripe_event(event)
    if billing_event is None:
        logger.debug("Unhandled webhook event type: %s (id=%s)", event.type, event.id)
        return {"status": "ignored"}

    logger.info("Processing webhook event: %s (id=%s)", event.type, event.id)

    # 4. Apply to the ledger and commit before any side effect
    try:
        result = await reconcile_event(db, billing_event)
        await db.commit()
    except BillingError as e:
        await db.rollback()
        logger.warning("Rejected webhook event %s: %s", event.id, e)
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        ) from e
    except Exception as e:
        await db.rollback()
        logger.exception("Error processing webhook event %s", event.id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        ) from e

    if result.subscription_id is None:
        return {"status": "ignored"}

    await notify_status_change(db, result, realtime)
    return {"status": "processed"}
