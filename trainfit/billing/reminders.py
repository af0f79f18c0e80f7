"""Payment reminders — the daily sweep and the trainer's manual reminder.

Each ACTIVE subscription with a due date is classified by how many days are
left until it falls due, counted in calendar days of the scheduler's timezone:

    0 < days <= 3     -> upcoming
    -7 <= days <= 0   -> overdue
    days < -7         -> urgent
    anything else     -> no reminder

A client gets at most one reminder per local calendar day. The dedup marker is
the client's own ``payment_reminder`` notification, committed before the email
goes out, so it survives restarts and holds across several scheduler instances.
No marker, no email.

Email and notifications are separate best-effort effects. By default a
failed email does not stop the notifications; set
``REMINDER_REQUIRES_EMAIL_DELIVERY=true`` to only notify once the email went out.
In that mode a failed email retracts the marker so the next sweep retries.
"""

import enum
import html
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from trainfit.billing.effects import EffectOutcome, run_db_effect, run_effect, skip_effect
from trainfit.config import settings
from trainfit.database import local_day_bounds, utcnow
from trainfit.models.notification import NotificationType
from trainfit.models.subscription import Subscription, SubscriptionStatus
from trainfit.models.user import User
from trainfit.services.email_service import EmailResult, EmailSender
from trainfit.services.notification_service import (
    create_notification,
    delete_notification,
    exists_for_user_today,
)
from trainfit.services.relationship_service import get_primary_trainer
from trainfit.services.subscription_service import get_subscription

logger = logging.getLogger(__name__)

UPCOMING_WINDOW_DAYS = 3
OVERDUE_WINDOW_DAYS = 7


class ReminderKind(str, enum.Enum):
    UPCOMING = "upcoming"
    OVERDUE = "overdue"
    URGENT = "urgent"


def classify_days_until_due(days: int) -> ReminderKind | None:
    if 0 < days <= UPCOMING_WINDOW_DAYS:
        return ReminderKind.UPCOMING
    if -OVERDUE_WINDOW_DAYS <= days <= 0:
        return ReminderKind.OVERDUE
    if days < -OVERDUE_WINDOW_DAYS:
        return ReminderKind.URGENT
    return None


def _to_local(moment: datetime, tz: ZoneInfo) -> datetime:
    """Naive UTC -> aware local time."""
    return moment.replace(tzinfo=timezone.utc).astimezone(tz)


def days_until_due(due: datetime, today: date, tz: ZoneInfo) -> int:
    return (_to_local(due, tz).date() - today).days


# ---------------------------------------------------------------------------
# Copy
# ---------------------------------------------------------------------------


def _day_word(days: int) -> str:
    return "day" if abs(days) == 1 else "days"


def reminder_subject(kind: ReminderKind, days: int) -> str:
    overdue_by = abs(days)
    if kind == ReminderKind.UPCOMING:
        return f"Reminder: your payment is due in {days} {_day_word(days)} - TrainFit"
    if kind == ReminderKind.OVERDUE:
        return f"Payment overdue by {overdue_by} {_day_word(days)} - TrainFit"
    return f"URGENT: payment overdue by {overdue_by} {_day_word(days)} - TrainFit"


def reminder_title(kind: ReminderKind, days: int) -> str:
    overdue_by = abs(days)
    if kind == ReminderKind.UPCOMING:
        return f"Payment due soon ({days} {_day_word(days)})"
    if kind == ReminderKind.OVERDUE:
        return f"Payment overdue ({overdue_by} {_day_word(days)})"
    return f"URGENT: payment overdue ({overdue_by} {_day_word(days)})"


def reminder_message(kind: ReminderKind, days: int, due: date) -> str:
    overdue_by = abs(days)
    if kind == ReminderKind.UPCOMING:
        return (
            f"Your next payment is due in {days} {_day_word(days)} ({due.isoformat()}). "
            "Remember to pay on time to avoid interruptions."
        )
    if kind == ReminderKind.OVERDUE:
        return (
            f"Your payment has been overdue for {overdue_by} {_day_word(days)} ({due.isoformat()}). "
            "Please contact your trainer to settle it."
        )
    return (
        f"URGENT: your payment has been overdue for {overdue_by} {_day_word(days)} "
        f"({due.isoformat()}). Your account may be suspended. Contact your trainer right away."
    )


def trainer_reminder_title(kind: ReminderKind) -> str:
    if kind == ReminderKind.UPCOMING:
        return "Client payment due soon"
    return "Client payment overdue"


def trainer_reminder_message(kind: ReminderKind, days: int, client_name: str) -> str:
    if kind == ReminderKind.UPCOMING:
        return f"{client_name} has a payment due in {days} {_day_word(days)}"
    return f"{client_name} has a payment overdue by {abs(days)} {_day_word(days)}"


_EMAIL_HEADINGS = {
    ReminderKind.UPCOMING: ("Payment reminder", "#333333"),
    ReminderKind.OVERDUE: ("Payment overdue", "#dc2626"),
    ReminderKind.URGENT: ("URGENT: payment required", "#dc2626"),
}

_EMAIL_BODIES = {
    ReminderKind.UPCOMING: (
        "This is a friendly reminder that your next payment with <strong>{trainer}</strong> "
        "is due on <strong>{due}</strong>. Paying ahead of time avoids interruptions to your training."
    ),
    ReminderKind.OVERDUE: (
        "Your payment with <strong>{trainer}</strong> was due on <strong>{due}</strong>. "
        "Please contact your trainer to arrange it as soon as possible."
    ),
    ReminderKind.URGENT: (
        "Your payment with <strong>{trainer}</strong> was due on <strong>{due}</strong> and needs "
        "immediate attention. Your account may be suspended if it is not paid soon."
    ),
}


def render_reminder_email(
    kind: ReminderKind, client_name: str, trainer_name: str, due: date
) -> str:
    heading, color = _EMAIL_HEADINGS[kind]
    body = _EMAIL_BODIES[kind].format(
        trainer=html.escape(trainer_name),
        due=due.strftime("%A, %B %d, %Y"),
    )
    dashboard_url = f"{settings.frontend_url}/client/dashboard"
    return f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h1 style="color: #dc2626; text-align: center;">TrainFit</h1>
  <h2 style="color: {color};">{heading}</h2>
  <p>Hi <strong>{html.escape(client_name)}</strong>,</p>
  <p>{body}</p>
  <p style="text-align: center; margin: 30px 0;">
    <a href="{dashboard_url}" style="background-color: #dc2626; color: white; padding: 12px 30px;
       text-decoration: none; border-radius: 6px; font-weight: bold;">Go to my dashboard</a>
  </p>
  <p style="color: #666; font-size: 14px;">If you have already paid, you can ignore this message.</p>
  <p style="color: #666; font-size: 12px; text-align: center;">The TrainFit team</p>
</div>
"""


# ---------------------------------------------------------------------------
# Daily sweep
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReminderTarget:
    """Everything needed to remind one client, read up front."""

    subscription_id: uuid.UUID
    client_id: uuid.UUID
    client_email: str
    client_name: str
    due_date: date
    days_until_due: int
    kind: ReminderKind


@dataclass
class ReminderOutcome:
    target: ReminderTarget
    duplicate: bool = False
    marker_failed: bool = False
    email: EmailResult | None = None
    effects: list[EffectOutcome] = field(default_factory=list)


@dataclass
class ReminderRunSummary:
    checked: int = 0
    reminded: int = 0
    emails_sent: int = 0
    skipped_duplicate: int = 0
    failed: int = 0
    outcomes: list[ReminderOutcome] = field(default_factory=list)


async def collect_reminder_targets(
    db: AsyncSession, today: date, tz: ZoneInfo
) -> tuple[int, list[ReminderTarget]]:
    """Classify every ACTIVE subscription with a due date.

    Returns how many were checked and the ones that need a reminder.
    """
    result = await db.execute(
        select(Subscription, User)
        .join(User, User.id == Subscription.user_id)
        .where(
            Subscription.status == SubscriptionStatus.ACTIVE,
            Subscription.current_period_end.is_not(None),
            User.is_active.is_(True),
        )
    )
    rows = result.all()

    targets = []
    for subscription, user in rows:
        days = days_until_due(subscription.current_period_end, today, tz)
        kind = classify_days_until_due(days)
        if kind is None:
            continue
        targets.append(
            ReminderTarget(
                subscription_id=subscription.id,
                client_id=user.id,
                client_email=user.email,
                client_name=user.name or "Client",
                due_date=_to_local(subscription.current_period_end, tz).date(),
                days_until_due=days,
                kind=kind,
            )
        )
    return len(rows), targets


async def remind_client(
    db: AsyncSession,
    email_sender: EmailSender,
    target: ReminderTarget,
    *,
    now: datetime,
    tz: ZoneInfo,
    requires_email_delivery: bool,
) -> ReminderOutcome:
    """Send one classified reminder unless the client already got one today.

    The client notification is committed first and is the dedup marker.
    """
    outcome = ReminderOutcome(target=target)
    if await exists_for_user_today(
        db, target.client_id, NotificationType.PAYMENT_REMINDER, now=now, tz=tz
    ):
        logger.info("Reminder already sent today to %s, skipping", target.client_email)
        outcome.duplicate = True
        return outcome

    trainer = await get_primary_trainer(db, target.client_id)
    trainer_id = trainer.id if trainer is not None else None
    trainer_name = trainer.name if trainer is not None else "your trainer"

    marker = await run_db_effect(
        db,
        outcome.effects,
        "client_notification",
        create_notification(
            db,
            user_id=target.client_id,
            title=reminder_title(target.kind, target.days_until_due),
            message=reminder_message(target.kind, target.days_until_due, target.due_date),
            type=NotificationType.PAYMENT_REMINDER,
        ),
    )
    if marker is None:
        logger.error("Could not record reminder for %s, not emailing", target.client_email)
        outcome.marker_failed = True
        skip_effect(outcome.effects, "email", "dedup marker not recorded")
        skip_effect(outcome.effects, "trainer_notification", "dedup marker not recorded")
        return outcome
    marker_id = marker.id

    outcome.email = await run_effect(
        outcome.effects,
        "email",
        email_sender.send(
            target.client_email,
            reminder_subject(target.kind, target.days_until_due),
            render_reminder_email(target.kind, target.client_name, trainer_name, target.due_date),
        ),
    )
    delivered = outcome.email is not None and outcome.email.success
    if not delivered:
        logger.warning(
            "Reminder email to %s failed: %s",
            target.client_email,
            outcome.email.error if outcome.email is not None else "send raised",
        )

    if requires_email_delivery and not delivered:
        # next sweep retries
        await run_db_effect(
            db,
            outcome.effects,
            "client_notification_retracted",
            delete_notification(db, marker_id),
        )
        skip_effect(outcome.effects, "trainer_notification", "email not delivered")
        return outcome

    if trainer_id is None:
        skip_effect(outcome.effects, "trainer_notification", "client has no trainer")
    else:
        await run_db_effect(
            db,
            outcome.effects,
            "trainer_notification",
            create_notification(
                db,
                user_id=trainer_id,
                title=trainer_reminder_title(target.kind),
                message=trainer_reminder_message(
                    target.kind, target.days_until_due, target.client_name
                ),
                type=NotificationType.CLIENT_PAYMENT_REMINDER,
                client_id=target.client_id,
            ),
        )

    logger.info("Reminder (%s) processed for %s", target.kind.value, target.client_email)
    return outcome


async def run_payment_reminders(
    db: AsyncSession,
    email_sender: EmailSender,
    *,
    now: datetime | None = None,
    timezone_name: str | None = None,
    requires_email_delivery: bool | None = None,
) -> ReminderRunSummary:
    """One sweep over all ACTIVE subscriptions.

    A failure on one subscription is logged and the sweep moves on.
    """
    now = now or utcnow()
    tz = ZoneInfo(timezone_name or settings.scheduler_timezone)
    if requires_email_delivery is None:
        requires_email_delivery = settings.reminder_requires_email_delivery

    today, _ = local_day_bounds(now, tz)
    checked, targets = await collect_reminder_targets(db, today, tz)
    summary = ReminderRunSummary(checked=checked)
    logger.info("Payment reminder sweep: %d of %d subscriptions need a reminder", len(targets), checked)

    for target in targets:
        try:
            outcome = await remind_client(
                db,
                email_sender,
                target,
                now=now,
                tz=tz,
                requires_email_delivery=requires_email_delivery,
            )
        except Exception:
            logger.exception("Reminder failed for subscription %s", target.subscription_id)
            await db.rollback()
            summary.failed += 1
            continue

        summary.outcomes.append(outcome)
        if outcome.duplicate:
            summary.skipped_duplicate += 1
            continue
        if outcome.marker_failed:
            summary.failed += 1
            continue
        summary.reminded += 1
        if outcome.email is not None and outcome.email.success:
            summary.emails_sent += 1

    logger.info(
        "Payment reminder sweep done: reminded=%d emails=%d duplicates=%d failed=%d",
        summary.reminded,
        summary.emails_sent,
        summary.skipped_duplicate,
        summary.failed,
    )
    return summary


# ---------------------------------------------------------------------------
# Manual reminder
# ---------------------------------------------------------------------------


@dataclass
class ManualReminderResult:
    email: EmailResult | None
    effects: list[EffectOutcome] = field(default_factory=list)

    @property
    def delivered(self) -> bool:
        return self.email is not None and self.email.success


async def send_manual_reminder(
    db: AsyncSession,
    email_sender: EmailSender,
    trainer: User,
    client: User,
    *,
    now: datetime | None = None,
    requires_email_delivery: bool | None = None,
) -> ManualReminderResult:
    """A trainer nudges one client: email plus a notification to each side.

    Not subject to the daily dedup; the client notification does count
    towards it, so the automatic sweep skips that client for the rest of the day.
    """
    now = now or utcnow()
    if requires_email_delivery is None:
        requires_email_delivery = settings.reminder_requires_email_delivery
    trainer_id, trainer_name = trainer.id, trainer.name or "your trainer"
    client_id, client_name = client.id, client.name or "Client"

    subscription = await get_subscription(db, client_id)
    due = subscription.current_period_end if subscription is not None else None
    tz = ZoneInfo(settings.scheduler_timezone)
    today, _ = local_day_bounds(now, tz)
    if due is not None:
        days = days_until_due(due, today, tz)
        kind = classify_days_until_due(days) or ReminderKind.UPCOMING
        due_date = _to_local(due, tz).date()
    else:
        days, kind, due_date = 0, ReminderKind.UPCOMING, today

    result = ManualReminderResult(email=None)
    result.email = await run_effect(
        result.effects,
        "email",
        email_sender.send(
            client.email,
            "Payment reminder - TrainFit",
            render_reminder_email(kind, client_name, trainer_name, due_date),
        ),
    )

    if requires_email_delivery and not result.delivered:
        skip_effect(result.effects, "client_notification", "email not delivered")
        skip_effect(result.effects, "trainer_notification", "email not delivered")
        return result

    await run_db_effect(
        db,
        result.effects,
        "client_notification",
        create_notification(
            db,
            user_id=client_id,
            title="Payment reminder",
            message=(
                f"Your trainer {trainer_name} sent you a payment reminder. "
                "Please check your email and make the payment."
            ),
            type=NotificationType.PAYMENT_REMINDER,
        ),
    )
    trainer_message = (
        f"Payment reminder sent to {client_name}"
        if result.delivered
        else f"Payment reminder recorded for {client_name}, but the email could not be delivered"
    )
    await run_db_effect(
        db,
        result.effects,
        "trainer_notification",
        create_notification(
            db,
            user_id=trainer_id,
            title="Reminder sent",
            message=trainer_message,
            type=NotificationType.SYSTEM,
            client_id=client_id,
        ),
    )
    logger.info(
        "Manual reminder from trainer %s to client %s (%d days, email=%s)",
        trainer_id,
        client_id,
        days,
        result.delivered,
    )
    return result
