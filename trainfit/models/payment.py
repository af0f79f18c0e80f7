"""PaymentAttempt model — ledger of collection attempts per subscription."""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Enum, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from trainfit.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class PaymentAttemptStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class PaymentSource(str, enum.Enum):
    """Where a ledger row came from."""

    PROCESSOR = "PROCESSOR"
    MANUAL = "MANUAL"


class PaymentAttempt(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """One recorded attempt to collect payment, successful or not.

    Processor rows are keyed by ``external_payment_id`` (the idempotency key);
    manual rows have none.
    """

    __tablename__ = "payment_attempts"
    __table_args__ = (
        Index("ix_payment_attempts_subscription_created", "subscription_id", "created_at"),
    )

    subscription_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    status: Mapped[PaymentAttemptStatus] = mapped_column(
        Enum(PaymentAttemptStatus, native_enum=False, length=20),
        nullable=False,
        default=PaymentAttemptStatus.PENDING,
    )
    source: Mapped[PaymentSource] = mapped_column(
        Enum(PaymentSource, native_enum=False, length=20),
        nullable=False,
        default=PaymentSource.PROCESSOR,
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_payment_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<PaymentAttempt(id={self.id}, subscription_id={self.subscription_id}, "
            f"status={self.status}, amount={self.amount})>"
        )
