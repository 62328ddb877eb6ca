"""
Appointment Auto-Creation Saga.

When a completed payment carries booking data and has no appointment yet:

1. create_appointment  (compensation: delete the appointment)
2. link_payment        (conditional write of payments.appointment_id)

If a step fails, completed steps are compensated in reverse order so no
orphaned appointment survives a failed link.
"""

import uuid
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError
from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from app.fsm.states import AppointmentStatus, PaymentStatus
from app.models.appointment import Appointment
from app.models.payment import Payment
from app.services.exceptions import SagaCompensationError, SagaStepError

logger = logging.getLogger(__name__)

BOOKING_PAYLOAD_KEY = "appointment_data"

SagaAction = Callable[[Dict[str, Any]], Awaitable[None]]


@dataclass
class SagaStep:
    """One forward action with an optional compensating action."""

    name: str
    action: SagaAction
    compensation: Optional[SagaAction] = None


@dataclass
class Saga:
    """Runs steps in order; compensates completed steps on failure."""

    name: str
    steps: List[SagaStep] = field(default_factory=list)

    async def run(self, context: Dict[str, Any]) -> Dict[str, Any]:
        completed: List[SagaStep] = []
        for step in self.steps:
            try:
                await step.action(context)
            except Exception as exc:
                logger.error(f"Saga {self.name}: step '{step.name}' failed: {exc}")
                await self._compensate(completed, context, exc)
                raise SagaStepError(f"{self.name}: step '{step.name}' failed: {exc}") from exc
            completed.append(step)
        return context

    async def _compensate(
        self,
        completed: List[SagaStep],
        context: Dict[str, Any],
        cause: Exception,
    ) -> None:
        for step in reversed(completed):
            if step.compensation is None:
                continue
            try:
                await step.compensation(context)
                logger.info(f"Saga {self.name}: compensated step '{step.name}'")
            except Exception as comp_exc:
                logger.critical(
                    f"Saga {self.name}: compensation for '{step.name}' failed "
                    f"after '{cause}': {comp_exc}. Manual cleanup required.",
                    exc_info=True,
                )
                raise SagaCompensationError(
                    f"{self.name}: compensation for '{step.name}' failed: {comp_exc}"
                ) from comp_exc


class BookingPayload(BaseModel):
    """Booking instructions embedded in payment metadata at initiation."""

    model_config = ConfigDict(extra="ignore")

    branch_id: str = Field(min_length=1)
    appointment_date: datetime
    treatment_type: str = Field(min_length=1)
    notes: Optional[str] = None
    auto_create: bool = True


class AppointmentSaga:
    """Creates and links the appointment paid for by a completed payment."""

    def __init__(
        self,
        db: AsyncSession,
        booking_fee: Optional[Decimal] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.db = db
        self.booking_fee = booking_fee
        self.clock = clock

    def skip_reason(self, payment: Payment) -> Optional[str]:
        """Why the saga must not run for this payment, or None if it should."""
        if payment.status != PaymentStatus.COMPLETED.value:
            return "payment not completed"
        if payment.appointment_id is not None:
            return "appointment already linked"
        booking = (payment.metadata_ or {}).get(BOOKING_PAYLOAD_KEY)
        if not isinstance(booking, dict):
            return "no booking payload"
        if booking.get("auto_create") is False:
            return "auto-creation disabled by payload"
        if self.booking_fee is not None and Decimal(str(payment.amount)) != self.booking_fee:
            return f"amount {payment.amount} is not the booking fee {self.booking_fee}"
        return None

    async def run(self, payment: Payment) -> Optional[Appointment]:
        """
        Run the saga for a freshly persisted payment.

        Returns the created appointment, or None when preconditions are not
        met. Raises SagaStepError / SagaCompensationError on failure.
        """
        reason = self.skip_reason(payment)
        if reason:
            logger.debug(f"Skipping appointment creation for payment {payment.id}: {reason}")
            return None

        try:
            booking = BookingPayload.model_validate(payment.metadata_[BOOKING_PAYLOAD_KEY])
        except PydanticValidationError as e:
            logger.error(f"Invalid booking payload on payment {payment.id}: {e}")
            raise SagaStepError(f"Invalid booking payload: {e}") from e

        context: Dict[str, Any] = {
            "payment": payment,
            "payment_id": payment.id,
            "user_id": payment.user_id,
            "booking": booking,
        }

        saga = Saga(
            name="appointment_auto_creation",
            steps=[
                SagaStep("create_appointment", self._create_appointment, self._delete_appointment),
                SagaStep("link_payment", self._link_payment),
            ],
        )
        await saga.run(context)

        logger.info(
            f"Appointment {context['appointment_id']} created for payment {context['payment_id']}"
        )
        return context["appointment"]

    async def _create_appointment(self, context: Dict[str, Any]) -> None:
        booking: BookingPayload = context["booking"]
        appointment = Appointment(
            id=uuid.uuid4(),
            # Owner comes from the payment, never from the payload
            user_id=context["user_id"],
            branch_id=booking.branch_id,
            appointment_date=booking.appointment_date,
            treatment_type=booking.treatment_type,
            notes=booking.notes,
            status=AppointmentStatus.PENDING.value,
            payment_id=context["payment_id"],
        )
        self.db.add(appointment)
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise
        context["appointment"] = appointment
        context["appointment_id"] = appointment.id

    async def _delete_appointment(self, context: Dict[str, Any]) -> None:
        await self.db.execute(
            delete(Appointment).where(Appointment.id == context["appointment_id"])
        )
        await self.db.commit()
        logger.warning(
            f"Deleted appointment {context['appointment_id']} after failed link "
            f"to payment {context['payment_id']}"
        )

    async def _link_payment(self, context: Dict[str, Any]) -> None:
        try:
            result = await self.db.execute(
                update(Payment)
                .where(Payment.id == context["payment_id"])
                .where(Payment.appointment_id.is_(None))
                .values({
                    Payment.appointment_id: context["appointment_id"],
                    Payment.updated_at: self.clock(),
                })
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise SagaStepError(
                    f"Payment {context['payment_id']} already linked to an appointment"
                )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        set_committed_value(context["payment"], "appointment_id", context["appointment_id"])
