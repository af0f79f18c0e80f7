"""Async SQLAlchemy engine, session factory, and declarative base."""

import uuid
from datetime import date, datetime, time, timezone, tzinfo

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from trainfit.config import settings

engine = create_async_engine(
    settings.async_database_url,
    echo=settings.debug,
    pool_pre_ping=True,
    pool_size=10,
    max_overflow=20,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


def utcnow() -> datetime:
    """Current time as naive UTC, matching the timestamp columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def local_midnight_utc(day: date, tz: tzinfo) -> datetime:
    """Start of ``day`` in ``tz``, expressed as naive UTC."""
    midnight = datetime.combine(day, time.min, tzinfo=tz)
    return midnight.astimezone(timezone.utc).replace(tzinfo=None)


def local_day_bounds(now: datetime, tz: tzinfo) -> tuple[date, datetime]:
    """Local calendar date of naive-UTC ``now`` and that day's midnight as naive UTC."""
    today = now.replace(tzinfo=timezone.utc).astimezone(tz).date()
    return today, local_midnight_utc(today, tz)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class TimestampMixin:
    """Mixin that adds created_at and updated_at columns.

    ``created_at`` is also filled client-side so that rows written in the same
    transaction keep a stable, microsecond-precise ordering.
    """

    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )


class UUIDPrimaryKeyMixin:
    """Mixin that adds a UUID primary key column."""

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async database session for FastAPI dependency injection.

    Usage::

        @app.get("/items")
        async def get_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
