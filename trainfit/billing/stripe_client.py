"""Async Stripe API wrapper for TrainFit."""

import logging

import stripe
from stripe import StripeClient

from trainfit.config import settings

logger = logging.getLogger(__name__)


def get_stripe_client() -> StripeClient:
    """Create a StripeClient instance with async HTTP support."""
    return StripeClient(
        settings.stripe_secret_key,
        http_client=stripe.HTTPXClient(),
    )


async def create_customer(email: str, name: str, user_id: str) -> stripe.Customer:
    """Create a Stripe customer linked to a TrainFit user."""
    client = get_stripe_client()
    logger.info("Creating Stripe customer for user %s (%s)", user_id, email)
    customer = await client.v1.customers.create_async(
        params={
            "email": email,
            "name": name,
            "metadata": {"trainfit_user_id": user_id},
        }
    )
    logger.info("Created Stripe customer %s for user %s", customer.id, user_id)
    return customer


async def create_checkout_session(
    customer_id: str,
    price_id: str,
    success_url: str,
    cancel_url: str,
    plan: str,
) -> stripe.checkout.Session:
    """Create a Stripe Checkout Session for a new subscription.

    The plan tier travels in the session metadata so checkout.session.completed
    can set it without another API call.
    """
    client = get_stripe_client()
    logger.info(
        "Creating checkout session for customer %s, price %s",
        customer_id,
        price_id,
    )
    return await client.v1.checkout.sessions.create_async(
        params={
            "mode": "subscription",
            "customer": customer_id,
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": {"plan": plan},
        }
    )


async def cancel_at_period_end(subscription_id: str) -> stripe.Subscription:
    """Ask Stripe to cancel the subscription when the current period ends."""
    client = get_stripe_client()
    logger.info("Scheduling cancellation of Stripe subscription %s", subscription_id)
    return await client.v1.subscriptions.update_async(
        subscription_id,
        params={"cancel_at_period_end": True},
    )


def construct_webhook_event(payload: bytes, sig_header: str) -> stripe.Event:
    """Verify the signature and construct a Stripe webhook event.

    Raises:
        stripe.SignatureVerificationError: If the signature does not match.
        ValueError: If the payload is not valid JSON or no secret is configured.
    """
    if not settings.stripe_webhook_secret:
        raise ValueError("Stripe webhook secret is not configured")
    return stripe.Webhook.construct_event(payload, sig_header, settings.stripe_webhook_secret)
