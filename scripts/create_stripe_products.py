"""Create the TrainFit plan products and monthly prices in Stripe (test mode).

Run once:
    python -m scripts.create_stripe_products

Outputs price IDs to set in .env:
    STRIPE_BASIC_PRICE_ID=price_xxx
    STRIPE_PREMIUM_PRICE_ID=price_xxx
    STRIPE_PROFESSIONAL_PRICE_ID=price_xxx
"""

import asyncio

from trainfit.billing.plans import PLANS
from trainfit.billing.stripe_client import get_stripe_client
from trainfit.config import settings

DESCRIPTIONS = {
    "BASIC": "Personalised routines and progress tracking with your trainer",
    "PREMIUM": "Everything in Basic plus nutrition plans and priority messaging",
    "PROFESSIONAL": "Everything in Premium plus unlimited sessions and video check-ins",
}


async def main() -> None:
    if not settings.stripe_secret_key:
        print("ERROR: STRIPE_SECRET_KEY is not set in .env")
        return

    client = get_stripe_client()
    env_lines = []

    for plan in PLANS.values():
        product = await client.v1.products.create_async(
            params={
                "name": f"TrainFit {plan.display_name}",
                "description": DESCRIPTIONS[plan.tier.value],
                "metadata": {"plan": plan.tier.value},
            }
        )
        price = await client.v1.prices.create_async(
            params={
                "product": product.id,
                "unit_amount": plan.price_monthly_cents,
                "currency": "usd",
                "recurring": {"interval": "month"},
            }
        )
        print(f"Created product: {product.name} ({product.id})")
        print(f"  Price: ${plan.price_monthly_cents / 100:.2f}/mo ({price.id})")
        env_lines.append(f"STRIPE_{plan.tier.value}_PRICE_ID={price.id}")

    print("\n--- Add these to your .env ---")
    for line in env_lines:
        print(line)


if __name__ == "__main__":
    asyncio.run(main())
