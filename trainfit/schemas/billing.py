"""Pydantic v2 request/response schemas for billing endpoints."""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from trainfit.billing.status import StatusView
from trainfit.config import settings
from trainfit.database import local_midnight_utc


class CamelModel(BaseModel):
    """Serialises as camelCase; accepts both camelCase and snake_case input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def to_naive_utc(value: datetime | date | None) -> datetime | None:
    """Normalise caller-supplied dates to the naive UTC stored in the ledger.

    A bare date is the start of that day in the scheduler timezone, so the
    reminder sweep counts days against the same calendar the trainer used.
    Naive datetimes are taken as UTC.
    """
    if value is None:
        return None
    if not isinstance(value, datetime):
        return local_midnight_utc(value, ZoneInfo(settings.scheduler_timezone))
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# --- Request schemas ---


class CheckoutRequest(BaseModel):
    """Request to create a Stripe Checkout session."""

    plan: str  # BASIC, PREMIUM or PROFESSIONAL
    success_url: str | None = None
    cancel_url: str | None = None


class ManualPaymentUpdate(CamelModel):
    """Trainer correction of a client's payment info. Every field is optional."""

    amount: Decimal | None = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    due_date: datetime | date | None = None
    plan_type: str | None = None
    plan: str | None = None  # older clients send "plan"
    status: str | None = None

    @field_validator("due_date", mode="before")
    @classmethod
    def _parse_bare_date(cls, value: Any) -> Any:
        # "2026-10-21" would otherwise parse as a UTC datetime
        if isinstance(value, str) and len(value.strip()) == 10:
            return date.fromisoformat(value.strip())
        return value

    @field_validator("due_date")
    @classmethod
    def _normalise_due_date(cls, value: datetime | date | None) -> datetime | None:
        return to_naive_utc(value)

    @property
    def effective_plan(self) -> str | None:
        return self.plan_type or self.plan


# --- Response schemas ---


class PaymentStatusResponse(CamelModel):
    """Derived payment status plus display fields."""

    status: str  # paid, pending, overdue
    amount: float
    due_date: datetime
    plan: str
    last_payment: datetime | None

    @classmethod
    def from_view(cls, view: StatusView) -> "PaymentStatusResponse":
        return cls(
            status=view.status.value,
            amount=float(view.amount),
            due_date=view.due_date,
            plan=view.plan.value,
            last_payment=view.last_payment,
        )


class EffectResponse(CamelModel):
    name: str
    ok: bool
    skipped: bool = False
    error: str | None = None


class ManualPaymentUpdateResponse(CamelModel):
    """Result of a manual correction, including best-effort side effects."""

    client_id: str
    amount: float | None
    due_date: datetime | None
    payment_status: PaymentStatusResponse
    effects: list[EffectResponse]


class ReminderResponse(CamelModel):
    sent: bool
    message: str
    effects: list[EffectResponse]


class PlanResponse(BaseModel):
    """Plan details for display."""

    name: str
    display_name: str
    price_monthly_cents: int


class PlansListResponse(BaseModel):
    """All available plans."""

    plans: list[PlanResponse]


class SubscriptionResponse(BaseModel):
    """Subscription details for the authenticated user."""

    plan: str
    status: str
    external_subscription_id: str | None
    current_period_start: datetime | None
    current_period_end: datetime | None
    cancel_at_period_end: bool


class PaymentHistoryItem(BaseModel):
    id: str
    amount: float
    currency: str
    status: str
    source: str
    description: str | None
    created_at: datetime
    paid_at: datetime | None


class PaymentHistoryResponse(BaseModel):
    payments: list[PaymentHistoryItem]


class CheckoutResponse(BaseModel):
    """Stripe Checkout session URL returned to frontend."""

    checkout_url: str
    session_id: str
