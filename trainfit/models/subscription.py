"""Subscription model — billing relationship per user."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Enum, ForeignKey, String, false
from sqlalchemy.orm import Mapped, mapped_column, relationship

from trainfit.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class PlanTier(str, enum.Enum):
    BASIC = "BASIC"
    PREMIUM = "PREMIUM"
    PROFESSIONAL = "PROFESSIONAL"


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELLED = "CANCELLED"


class Subscription(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Tracks a user's plan tier, lifecycle status and current billing period.

    Cancellation is a status transition; rows are never deleted.
    """

    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint(
            "current_period_start IS NULL OR current_period_end IS NULL "
            "OR current_period_end >= current_period_start",
            name="ck_subscriptions_period_order",
        ),
    )

    # Foreign key — one subscription per user (UNIQUE enforces one-to-one)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
        index=True,
    )

    # Processor identifiers (opaque, owned by the processor)
    external_customer_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    external_subscription_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)

    # Plan & status
    plan: Mapped[PlanTier] = mapped_column(
        Enum(PlanTier, native_enum=False, length=20),
        nullable=False,
        default=PlanTier.BASIC,
    )
    status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus, native_enum=False, length=20),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
    )

    # Billing period (current_period_end is the due date)
    current_period_start: Mapped[datetime | None] = mapped_column(nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(nullable=True)
    cancel_at_period_end: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="subscription", lazy="selectin")  # type: ignore[name-defined]  # noqa: F821

    def __repr__(self) -> str:
        return f"<Subscription(id={self.id}, user_id={self.user_id}, plan={self.plan}, status={self.status})>"
