"""Trainer ↔ client relationship lookups."""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from trainfit.models.user import TrainerClient, User


async def has_trainer_relationship(
    db: AsyncSession, trainer_id: uuid.UUID, client_id: uuid.UUID
) -> bool:
    result = await db.execute(
        select(TrainerClient.id).where(
            TrainerClient.trainer_id == trainer_id,
            TrainerClient.client_id == client_id,
        )
    )
    return result.first() is not None


async def get_primary_trainer(db: AsyncSession, client_id: uuid.UUID) -> User | None:
    """The client's longest-standing trainer, or None."""
    result = await db.execute(
        select(User)
        .join(TrainerClient, TrainerClient.trainer_id == User.id)
        .where(TrainerClient.client_id == client_id)
        .order_by(TrainerClient.created_at.asc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_user(db: AsyncSession, user_id: uuid.UUID) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()
