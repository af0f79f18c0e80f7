"""Notification service — in-app feed entries and the reminder dedup check."""

import logging
import uuid
from datetime import datetime, timedelta, timezone, tzinfo

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from trainfit.database import local_day_bounds, utcnow
from trainfit.models.notification import Notification, NotificationType

logger = logging.getLogger(__name__)


async def create_notification(
    db: AsyncSession,
    user_id: uuid.UUID,
    title: str,
    message: str,
    type: NotificationType,
    client_id: uuid.UUID | None = None,
) -> Notification:
    """Create a notification (flush only)."""
    notification = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        client_id=client_id,
    )
    db.add(notification)
    await db.flush()
    logger.info("Created %s notification for user %s", type.value, user_id)
    return notification


async def exists_for_user_since(
    db: AsyncSession,
    user_id: uuid.UUID,
    type: NotificationType,
    since: datetime,
) -> bool:
    """True if the user already has a notification of ``type`` created at or after ``since``."""
    result = await db.execute(
        select(func.count())
        .select_from(Notification)
        .where(
            Notification.user_id == user_id,
            Notification.type == type,
            Notification.created_at >= since,
        )
    )
    return result.scalar_one() > 0


async def exists_for_user_today(
    db: AsyncSession,
    user_id: uuid.UUID,
    type: NotificationType,
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> bool:
    """True if the user already got a notification of ``type`` today.

    "Today" starts at local midnight in ``tz`` (UTC when omitted).
    """
    _, midnight = local_day_bounds(now or utcnow(), tz or timezone.utc)
    return await exists_for_user_since(db, user_id, type, midnight)


async def delete_notification(db: AsyncSession, notification_id: uuid.UUID) -> bool:
    """Delete one notification by id (flush only). False if it was already gone."""
    notification = await db.get(Notification, notification_id)
    if notification is None:
        return False
    await db.delete(notification)
    await db.flush()
    return True


async def list_notifications(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    unread_only: bool = False,
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[Notification], int, int]:
    """Return ``(items, total, unread_count)`` newest first."""
    base = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        base = base.where(Notification.is_read.is_(False))

    total = (await db.execute(select(func.count()).select_from(base.subquery()))).scalar_one()
    unread = (
        await db.execute(
            select(func.count())
            .select_from(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        )
    ).scalar_one()

    result = await db.execute(
        base.order_by(Notification.created_at.desc()).offset(offset).limit(limit)
    )
    return list(result.scalars().all()), total, unread


async def mark_as_read(
    db: AsyncSession, user_id: uuid.UUID, notification_id: uuid.UUID
) -> Notification | None:
    """Mark one of the user's notifications as read. None if it isn't theirs."""
    result = await db.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id,
        )
    )
    notification = result.scalar_one_or_none()
    if notification is None:
        return None
    notification.is_read = True
    await db.flush()
    return notification


async def mark_all_as_read(db: AsyncSession, user_id: uuid.UUID) -> int:
    """Mark every unread notification of the user as read. Returns the count."""
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True)
    )
    return result.rowcount or 0


async def cleanup_old_notifications(
    db: AsyncSession, retention_days: int = 30, now: datetime | None = None
) -> int:
    """Delete read notifications older than ``retention_days``. Returns the count."""
    cutoff = (now or utcnow()) - timedelta(days=retention_days)
    result = await db.execute(
        delete(Notification).where(
            Notification.is_read.is_(True),
            Notification.created_at < cutoff,
        )
    )
    deleted = result.rowcount or 0
    logger.info("Deleted %d read notifications older than %d days", deleted, retention_days)
    return deleted
