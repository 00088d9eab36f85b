"""Appointment status transitions driven by customers, mechanics and the system."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from backend.core import config
from backend.core.exceptions import InvalidTransitionError, NotFoundError, PermissionDeniedError, StoreError
from backend.models.appointment import Appointment
from backend.models.user import User
from backend.store import AppointmentStore

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    'draft': {'pending', 'cancelled'},
    'pending': {'quoted', 'confirmed', 'cancelled'},
    'quoted': {'pending', 'confirmed', 'cancelled'},
    'confirmed': {'in_progress', 'cancelled'},
    'in_progress': {'completed', 'cancelled'},
    'completed': set(),
    'cancelled': set(),
}

MECHANIC_CANCELLATION_REASON = 'mechanic_cancelled_confirmed'
AUTO_CANCEL_REASON = 'Automatically cancelled - more than 15 minutes overdue'


@dataclass
class AutoCancelResult:
    eliminated_ids: list[int] = field(default_factory=list)

    @property
    def message(self) -> str:
        if not self.eliminated_ids:
            return 'No overdue appointments found'
        return f'Successfully eliminated {len(self.eliminated_ids)} overdue appointments'


def ensure_transition(current: str, target: str) -> None:
    if target not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(f'Cannot move appointment from {current} to {target}.')


def _load(store: AppointmentStore, appointment_id: int) -> Appointment:
    appointment = store.get_appointment(appointment_id)
    if appointment is None:
        raise NotFoundError('Appointment not found.')
    return appointment


def _load_for_selected_mechanic(store: AppointmentStore, appointment_id: int, mechanic_id: int) -> Appointment:
    appointment = _load(store, appointment_id)
    if appointment.selected_mechanic_id != mechanic_id:
        raise PermissionDeniedError('Only the selected mechanic can update this appointment.')
    return appointment


def accept_quote(store: AppointmentStore, appointment_id: int, quote_id: int, user: User) -> Appointment:
    """Confirm ``quote_id`` on behalf of the customer who owns the appointment.

    Guest bookings have no owner yet and must be claimed before a quote can
    be accepted.
    """
    if user.role != 'customer':
        raise PermissionDeniedError('Only customers can accept a quote.')
    appointment = _load(store, appointment_id)
    if appointment.user_id is None or appointment.user_id != user.id:
        raise PermissionDeniedError('Only the customer who booked this appointment can accept a quote.')

    quote = next((candidate for candidate in appointment.quotes if candidate.id == quote_id), None)
    if quote is None:
        raise NotFoundError('Quote not found.')

    ensure_transition(appointment.status, 'confirmed')
    logger.info('Appointment %s confirmed with mechanic %s', appointment_id, quote.mechanic_id)
    return store.select_quote(appointment, quote)


def start_job(store: AppointmentStore, appointment_id: int, mechanic_id: int, eta_minutes: int) -> Appointment:
    appointment = _load_for_selected_mechanic(store, appointment_id, mechanic_id)
    ensure_transition(appointment.status, 'in_progress')
    return store.update_appointment(
        appointment,
        status='in_progress',
        mechanic_eta_minutes=eta_minutes,
        started_at=datetime.utcnow(),
    )


def complete_job(store: AppointmentStore, appointment_id: int, mechanic_id: int) -> Appointment:
    appointment = _load_for_selected_mechanic(store, appointment_id, mechanic_id)
    ensure_transition(appointment.status, 'completed')
    return store.update_appointment(appointment, status='completed', completed_at=datetime.utcnow())


def cancellation_fee(price: Decimal | None) -> Decimal:
    if price is None:
        return Decimal('0.00')
    fee = Decimal(price) * Decimal(str(config.CANCELLATION_FEE_RATE))
    return fee.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def cancel_confirmed(store: AppointmentStore, appointment_id: int, mechanic_id: int) -> tuple[Appointment, Decimal]:
    appointment = _load_for_selected_mechanic(store, appointment_id, mechanic_id)
    if appointment.status not in {'confirmed', 'in_progress'}:
        raise InvalidTransitionError(f'Cannot cancel appointment in {appointment.status} status')

    quote = next((q for q in appointment.quotes if q.mechanic_id == mechanic_id), None)
    fee = cancellation_fee(quote.price if quote is not None else appointment.price)
    logger.info('Mechanic %s cancelled appointment %s with fee %s', mechanic_id, appointment_id, fee)
    return store.cancel_with_log(appointment, mechanic_id, fee, MECHANIC_CANCELLATION_REASON), fee


def cancel_by_customer(store: AppointmentStore, appointment_id: int, user_id: int) -> Appointment:
    appointment = _load(store, appointment_id)
    if appointment.user_id != user_id:
        raise PermissionDeniedError('Only the customer who booked this appointment can cancel it.')
    if appointment.status == 'in_progress':
        raise InvalidTransitionError('A job already in progress cannot be cancelled by the customer.')
    ensure_transition(appointment.status, 'cancelled')
    return store.update_appointment(
        appointment,
        status='cancelled',
        cancelled_at=datetime.utcnow(),
        cancelled_by='customer',
        cancellation_reason='Cancelled by customer',
    )


def auto_cancel_overdue(
    store: AppointmentStore,
    now: datetime | None = None,
    grace_minutes: int | None = None,
) -> AutoCancelResult:
    now = now or datetime.utcnow()
    grace = config.AUTO_CANCEL_GRACE_MINUTES if grace_minutes is None else grace_minutes
    cutoff = now - timedelta(minutes=grace)

    overdue = store.list_overdue_pending(cutoff)
    if not overdue:
        return AutoCancelResult()

    for appointment in overdue:
        logger.info(
            'Auto-cancelling appointment %s scheduled for %s at %s',
            appointment.id,
            appointment.appointment_date,
            appointment.location,
        )

    eliminated_ids = store.cancel_appointments(
        [appointment.id for appointment in overdue],
        cancelled_by='system',
        reason=AUTO_CANCEL_REASON,
    )

    try:
        store.delete_quotes_for_appointments(eliminated_ids)
    except StoreError:
        logger.warning('Auto-cancelled %s appointments but could not clean up their quotes', len(eliminated_ids))

    return AutoCancelResult(eliminated_ids=eliminated_ids)
