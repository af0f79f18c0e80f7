"""Tests for payment status derivation (pure, no database)."""

from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

from trainfit.billing.status import (
    DEFAULT_DUE_DAYS,
    PaymentStatus,
    build_status_view,
    derive_status,
)
from trainfit.models.payment import PaymentAttemptStatus
from trainfit.models.subscription import PlanTier

NOW = datetime(2026, 3, 10, 15, 0)


def _subscription(due: datetime | None, plan: PlanTier = PlanTier.PREMIUM):
    return SimpleNamespace(current_period_end=due, plan=plan)


def _payment(status: PaymentAttemptStatus, amount: str = "49.99", paid_at=None, created_at=None):
    return SimpleNamespace(
        status=status,
        amount=Decimal(amount),
        paid_at=paid_at,
        created_at=created_at or NOW - timedelta(days=1),
    )


class TestDeriveStatus:
    """First matching rule wins."""

    def test_no_subscription_is_pending(self):
        assert derive_status(None, None, NOW) == PaymentStatus.PENDING

    def test_succeeded_is_paid_even_after_due_date(self):
        sub = _subscription(NOW - timedelta(days=10))
        payment = _payment(PaymentAttemptStatus.SUCCEEDED)
        assert derive_status(sub, payment, NOW) == PaymentStatus.PAID

    def test_pending_attempt_wins_over_overdue(self):
        sub = _subscription(NOW - timedelta(days=10))
        payment = _payment(PaymentAttemptStatus.PENDING)
        assert derive_status(sub, payment, NOW) == PaymentStatus.PENDING

    def test_failed_attempt_past_due_is_overdue(self):
        sub = _subscription(NOW - timedelta(minutes=1))
        payment = _payment(PaymentAttemptStatus.FAILED)
        assert derive_status(sub, payment, NOW) == PaymentStatus.OVERDUE

    def test_failed_attempt_before_due_is_pending(self):
        sub = _subscription(NOW + timedelta(days=2))
        payment = _payment(PaymentAttemptStatus.FAILED)
        assert derive_status(sub, payment, NOW) == PaymentStatus.PENDING

    def test_no_payments_falls_through_to_dates(self):
        assert derive_status(_subscription(NOW - timedelta(days=1)), None, NOW) == PaymentStatus.OVERDUE
        assert derive_status(_subscription(NOW + timedelta(days=1)), None, NOW) == PaymentStatus.PENDING

    def test_missing_due_date_is_pending(self):
        assert derive_status(_subscription(None), None, NOW) == PaymentStatus.PENDING


class TestBuildStatusView:
    def test_default_view_without_subscription(self):
        view = build_status_view(None, None, None, NOW)

        assert view.status == PaymentStatus.PENDING
        assert view.amount == Decimal("0")
        assert view.due_date == NOW + timedelta(days=DEFAULT_DUE_DAYS)
        assert view.plan == PlanTier.BASIC
        assert view.last_payment is None

    def test_amount_comes_from_latest_attempt(self):
        """A trainer sees the failed amount, while last_payment is the older success."""
        paid_at = NOW - timedelta(days=31)
        sub = _subscription(NOW + timedelta(days=5))
        failed = _payment(PaymentAttemptStatus.FAILED, amount="99.99")
        succeeded = _payment(PaymentAttemptStatus.SUCCEEDED, amount="49.99", paid_at=paid_at)

        view = build_status_view(sub, failed, succeeded, NOW)

        assert view.amount == Decimal("99.99")
        assert view.last_payment == paid_at
        assert view.plan == PlanTier.PREMIUM
        assert view.due_date == sub.current_period_end

    def test_last_payment_falls_back_to_created_at(self):
        created = NOW - timedelta(days=3)
        sub = _subscription(NOW + timedelta(days=5))
        succeeded = _payment(PaymentAttemptStatus.SUCCEEDED, created_at=created)

        view = build_status_view(sub, succeeded, succeeded, NOW)

        assert view.status == PaymentStatus.PAID
        assert view.last_payment == created
