"""Shared API dependencies — single import point for all routers.

Re-exports database session, authentication and collaborator dependencies so
that router modules can import everything they need from one place::

    from trainfit.api.deps import get_db, get_current_trainer
"""

from trainfit.auth.dependencies import (
    get_current_active_user,
    get_current_trainer,
    get_current_user,
)
from trainfit.database import get_db
from trainfit.ratelimit import get_counter_store, manual_edit_rate_limit
from trainfit.realtime import get_realtime
from trainfit.services.email_service import get_email_sender

__all__ = [
    "get_db",
    "get_current_user",
    "get_current_active_user",
    "get_current_trainer",
    "get_counter_store",
    "get_email_sender",
    "get_realtime",
    "manual_edit_rate_limit",
]
