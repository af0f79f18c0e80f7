"""User and trainer relationship models — local read model of the account service."""

import uuid

from sqlalchemy import Boolean, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from trainfit.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Platform account — either a trainer or one of their clients."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    role: Mapped[str] = mapped_column(String(50), default="client", nullable=False)

    # Relationships
    subscription: Mapped["Subscription | None"] = relationship(
        "Subscription", back_populates="user", uselist=False, lazy="selectin"
    )

    @property
    def is_trainer(self) -> bool:
        return self.role == "trainer"

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role!r}>"


class TrainerClient(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Established trainer ↔ client relationship."""

    __tablename__ = "trainer_clients"
    __table_args__ = (UniqueConstraint("trainer_id", "client_id", name="uq_trainer_clients_pair"),)

    trainer_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    def __repr__(self) -> str:
        return f"<TrainerClient trainer_id={self.trainer_id} client_id={self.client_id}>"
