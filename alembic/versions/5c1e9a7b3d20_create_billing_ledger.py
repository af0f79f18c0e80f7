"""create_billing_ledger

Revision ID: 5c1e9a7b3d20
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5c1e9a7b3d20'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # Local read model of the account service
    op.create_table(
        "users",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("role", sa.String(50), nullable=False, server_default="client"),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "trainer_clients",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("trainer_id", sa.UUID(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("client_id", sa.UUID(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("trainer_id", "client_id", name="uq_trainer_clients_pair"),
    )
    op.create_index("ix_trainer_clients_trainer_id", "trainer_clients", ["trainer_id"])
    op.create_index("ix_trainer_clients_client_id", "trainer_clients", ["client_id"])

    # Billing ledger
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("user_id", sa.UUID(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("external_customer_id", sa.String(255), nullable=True, unique=True),
        sa.Column("external_subscription_id", sa.String(255), nullable=True, unique=True),
        sa.Column("plan", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("current_period_start", sa.DateTime(), nullable=True),
        sa.Column("current_period_end", sa.DateTime(), nullable=True),
        sa.Column("cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.CheckConstraint(
            "current_period_start IS NULL OR current_period_end IS NULL "
            "OR current_period_end >= current_period_start",
            name="ck_subscriptions_period_order",
        ),
    )
    # One subscription per user
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"], unique=True)

    op.create_table(
        "payment_attempts",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column(
            "subscription_id",
            sa.UUID(),
            sa.ForeignKey("subscriptions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("source", sa.String(20), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("failure_reason", sa.String(255), nullable=True),
        sa.Column("external_payment_id", sa.String(255), nullable=True, unique=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_payment_attempts_subscription_created",
        "payment_attempts",
        ["subscription_id", "created_at"],
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("user_id", sa.UUID(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("type", sa.String(40), nullable=False),
        sa.Column("client_id", sa.UUID(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    # Daily reminder dedup lookup
    op.create_index(
        "ix_notifications_user_type_created",
        "notifications",
        ["user_id", "type", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_notifications_user_type_created", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_payment_attempts_subscription_created", table_name="payment_attempts")
    op.drop_table("payment_attempts")
    op.drop_index("ix_subscriptions_user_id", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_index("ix_trainer_clients_client_id", table_name="trainer_clients")
    op.drop_index("ix_trainer_clients_trainer_id", table_name="trainer_clients")
    op.drop_table("trainer_clients")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
