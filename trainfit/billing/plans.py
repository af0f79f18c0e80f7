"""Plan definitions — coaching tiers and their monthly prices."""

from dataclasses import dataclass

from trainfit.billing.exceptions import UnknownPlanError
from trainfit.config import settings
from trainfit.models.subscription import PlanTier


@dataclass(frozen=True)
class PlanInfo:
    """Display and pricing data for a plan tier."""

    tier: PlanTier
    display_name: str
    price_monthly_cents: int  # in cents (e.g., 2999 = $29.99)
    stripe_price_id: str | None  # None until configured


PLANS: dict[PlanTier, PlanInfo] = {
    PlanTier.BASIC: PlanInfo(
        tier=PlanTier.BASIC,
        display_name="Basic",
        price_monthly_cents=2999,
        stripe_price_id=settings.stripe_basic_price_id or None,
    ),
    PlanTier.PREMIUM: PlanInfo(
        tier=PlanTier.PREMIUM,
        display_name="Premium",
        price_monthly_cents=4999,
        stripe_price_id=settings.stripe_premium_price_id or None,
    ),
    PlanTier.PROFESSIONAL: PlanInfo(
        tier=PlanTier.PROFESSIONAL,
        display_name="Professional",
        price_monthly_cents=9999,
        stripe_price_id=settings.stripe_professional_price_id or None,
    ),
}


def get_plan(tier: PlanTier) -> PlanInfo:
    return PLANS[tier]


def parse_plan_tier(value: str) -> PlanTier:
    """Parse a caller-supplied plan name ("premium", "PREMIUM") into a tier.

    Raises:
        UnknownPlanError: If the value is not one of the known tiers.
    """
    try:
        return PlanTier(value.strip().upper())
    except ValueError:
        raise UnknownPlanError(value) from None


def get_plan_by_price_id(price_id: str) -> PlanTier | None:
    """Reverse lookup: Stripe price ID -> plan tier. Returns None if not found."""
    for plan in PLANS.values():
        if plan.stripe_price_id and plan.stripe_price_id == price_id:
            return plan.tier
    return None
