"""Best-effort side effects — notifications, emails and realtime pushes.

Side effects run after the ledger transaction has been committed. Each one is
recorded as an ``EffectOutcome``; failures are logged and never propagate.
"""

import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@dataclass
class EffectOutcome:
    """Result of one attempted side effect."""

    name: str
    ok: bool
    error: str | None = None
    skipped: bool = False


async def run_effect(
    effects: list[EffectOutcome],
    name: str,
    action: Awaitable[Any],
) -> Any:
    """Await ``action``; record the outcome in ``effects`` and swallow errors."""
    try:
        result = await action
    except Exception as e:
        logger.warning("Side effect %s failed: %s", name, e)
        effects.append(EffectOutcome(name=name, ok=False, error=str(e)))
        return None
    effects.append(EffectOutcome(name=name, ok=True))
    return result


async def run_db_effect(
    db: AsyncSession,
    effects: list[EffectOutcome],
    name: str,
    action: Awaitable[Any],
) -> Any:
    """Like ``run_effect`` but commits on success and rolls back on failure.

    Only call this once the primary ledger mutation has been committed, so
    the rollback can never undo it.
    """
    try:
        result = await action
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.warning("Side effect %s failed: %s", name, e)
        effects.append(EffectOutcome(name=name, ok=False, error=str(e)))
        return None
    effects.append(EffectOutcome(name=name, ok=True))
    return result


def skip_effect(effects: list[EffectOutcome], name: str, reason: str) -> None:
    logger.debug("Side effect %s skipped: %s", name, reason)
    effects.append(EffectOutcome(name=name, ok=True, skipped=True))
