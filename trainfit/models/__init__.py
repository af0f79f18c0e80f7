"""SQLAlchemy models for TrainFit billing.

All models are imported here so that Alembic's autogenerate can discover
them via Base.metadata. If you add a new model, import it in this file.
"""

from trainfit.models.notification import Notification, NotificationType
from trainfit.models.payment import PaymentAttempt, PaymentAttemptStatus, PaymentSource
from trainfit.models.subscription import PlanTier, Subscription, SubscriptionStatus
from trainfit.models.user import TrainerClient, User

__all__ = [
    "Notification",
    "NotificationType",
    "PaymentAttempt",
    "PaymentAttemptStatus",
    "PaymentSource",
    "PlanTier",
    "Subscription",
    "SubscriptionStatus",
    "TrainerClient",
    "User",
]
