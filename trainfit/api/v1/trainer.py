"""Trainer-facing billing endpoints — client payment status, corrections, reminders."""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from trainfit.api.deps import (
    get_current_trainer,
    get_db,
    get_email_sender,
    get_realtime,
    manual_edit_rate_limit,
)
from trainfit.billing.effects import EffectOutcome
from trainfit.billing.exceptions import BillingError
from trainfit.billing.overrides import set_client_payment
from trainfit.billing.reminders import send_manual_reminder
from trainfit.billing.status import get_payment_status
from trainfit.models.user import User
from trainfit.realtime import ConnectionManager
from trainfit.schemas.billing import (
    EffectResponse,
    ManualPaymentUpdate,
    ManualPaymentUpdateResponse,
    PaymentStatusResponse,
    ReminderResponse,
)
from trainfit.services.email_service import EmailSender
from trainfit.services.relationship_service import get_user, has_trainer_relationship

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/trainer", tags=["trainer"])


def _effects(effects: list[EffectOutcome]) -> list[EffectResponse]:
    return [
        EffectResponse(name=e.name, ok=e.ok, skipped=e.skipped, error=e.error) for e in effects
    ]


async def _require_client(db: AsyncSession, trainer: User, client_id: uuid.UUID) -> None:
    if not await has_trainer_relationship(db, trainer.id, client_id):
        logger.warning("Trainer %s has no relationship with client %s", trainer.id, client_id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have access to this client.",
        )


@router.get("/clients/{client_id}/payment-status", response_model=PaymentStatusResponse)
async def get_client_payment_status(
    client_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    trainer: User = Depends(get_current_trainer),
) -> PaymentStatusResponse:
    """Derived payment status of one of the trainer's clients."""
    await _require_client(db, trainer, client_id)
    view = await get_payment_status(db, client_id)
    return PaymentStatusResponse.from_view(view)


@router.put(
    "/clients/{client_id}/payment",
    response_model=ManualPaymentUpdateResponse,
    dependencies=[Depends(manual_edit_rate_limit)],
)
async def update_client_payment(
    client_id: uuid.UUID,
    body: ManualPaymentUpdate,
    db: AsyncSession = Depends(get_db),
    trainer: User = Depends(get_current_trainer),
    realtime: ConnectionManager = Depends(get_realtime),
) -> ManualPaymentUpdateResponse:
    """Correct a client's amount, due date, plan or payment status."""
    trainer_id = trainer.id
    await _require_client(db, trainer, client_id)

    try:
        result = await set_client_payment(
            db,
            client_id,
            amount=body.amount,
            due_date=body.due_date,
            plan_type=body.effective_plan,
            status=body.status,
            realtime=realtime,
        )
    except BillingError as e:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        ) from e

    logger.info("Trainer %s updated payment info of client %s", trainer_id, client_id)
    return ManualPaymentUpdateResponse(
        client_id=str(client_id),
        amount=float(result.amount) if result.amount is not None else None,
        due_date=result.due_date,
        payment_status=PaymentStatusResponse.from_view(result.view),
        effects=_effects(result.effects),
    )


@router.post("/clients/{client_id}/payment-reminder", response_model=ReminderResponse)
async def send_client_payment_reminder(
    client_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    trainer: User = Depends(get_current_trainer),
    email_sender: EmailSender = Depends(get_email_sender),
) -> ReminderResponse:
    """Send one payment reminder to a client right away."""
    await _require_client(db, trainer, client_id)

    client = await get_user(db, client_id)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Client not found",
        )

    result = await send_manual_reminder(db, email_sender, trainer, client)
    if not result.delivered:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to send the reminder email",
        )
    return ReminderResponse(
        sent=True,
        message="Payment reminder sent",
        effects=_effects(result.effects),
    )
