from datetime import datetime
from decimal import Decimal

import pytest

from backend.core.exceptions import InvalidTransitionError, NotFoundError, PermissionDeniedError
from backend.models.mechanic import AppointmentCancellation, MechanicQuote
from backend.models.user import User
from backend.services import lifecycle
from backend.store import AppointmentStore


def test_accept_quote_confirms_and_rejects_siblings(db, make_user, make_mechanic, make_appointment, make_quote) -> None:
    customer = make_user()
    chosen_mechanic = make_mechanic()
    other_mechanic = make_mechanic(first_name='Alex')
    appointment = make_appointment(status='quoted', user_id=customer.id)
    chosen = make_quote(appointment, chosen_mechanic, price='150.00')
    other = make_quote(appointment, other_mechanic, price='90.00')

    result = lifecycle.accept_quote(AppointmentStore(db), appointment.id, chosen.id, customer)

    assert result.status == 'confirmed'
    assert result.selected_mechanic_id == chosen_mechanic.id
    assert result.selected_quote_id == chosen.id
    assert result.price == Decimal('150.00')
    assert db.get(MechanicQuote, chosen.id).status == 'accepted'
    assert db.get(MechanicQuote, other.id).status == 'rejected'


def test_accept_quote_rejects_other_customers(db, make_user, make_mechanic, make_appointment, make_quote) -> None:
    owner = make_user()
    stranger = make_user()
    appointment = make_appointment(status='quoted', user_id=owner.id)
    quote = make_quote(appointment, make_mechanic())

    with pytest.raises(PermissionDeniedError):
        lifecycle.accept_quote(AppointmentStore(db), appointment.id, quote.id, stranger)


def test_guest_booking_quote_cannot_be_accepted_by_its_mechanic(db, make_mechanic, make_appointment, make_quote) -> None:
    mechanic = make_mechanic()
    appointment = make_appointment(status='quoted')
    quote = make_quote(appointment, mechanic)
    mechanic_user = db.get(User, mechanic.user_id)

    with pytest.raises(PermissionDeniedError):
        lifecycle.accept_quote(AppointmentStore(db), appointment.id, quote.id, mechanic_user)

    assert AppointmentStore(db).get_appointment(appointment.id).selected_mechanic_id is None


def test_unclaimed_guest_booking_cannot_be_accepted(db, make_user, make_mechanic, make_appointment, make_quote) -> None:
    appointment = make_appointment(status='quoted')
    quote = make_quote(appointment, make_mechanic())

    with pytest.raises(PermissionDeniedError):
        lifecycle.accept_quote(AppointmentStore(db), appointment.id, quote.id, make_user())


def test_accept_quote_requires_quote_on_appointment(db, make_user, make_appointment) -> None:
    customer = make_user()
    appointment = make_appointment(status='quoted', user_id=customer.id)

    with pytest.raises(NotFoundError):
        lifecycle.accept_quote(AppointmentStore(db), appointment.id, 999, customer)


def test_job_moves_through_start_and_complete(db, make_mechanic, make_appointment) -> None:
    mechanic = make_mechanic()
    appointment = make_appointment(status='confirmed')
    store = AppointmentStore(db)
    store.update_appointment(appointment, selected_mechanic_id=mechanic.id)

    started = lifecycle.start_job(store, appointment.id, mechanic.id, eta_minutes=30)
    assert started.status == 'in_progress'
    assert started.mechanic_eta_minutes == 30
    assert started.started_at is not None

    completed = lifecycle.complete_job(store, appointment.id, mechanic.id)
    assert completed.status == 'completed'
    assert completed.completed_at is not None


def test_only_selected_mechanic_can_start_job(db, make_mechanic, make_appointment) -> None:
    selected = make_mechanic()
    other = make_mechanic(first_name='Alex')
    appointment = make_appointment(status='confirmed')
    store = AppointmentStore(db)
    store.update_appointment(appointment, selected_mechanic_id=selected.id)

    with pytest.raises(PermissionDeniedError):
        lifecycle.start_job(store, appointment.id, other.id, eta_minutes=15)


def test_complete_requires_started_job(db, make_mechanic, make_appointment) -> None:
    mechanic = make_mechanic()
    appointment = make_appointment(status='confirmed')
    store = AppointmentStore(db)
    store.update_appointment(appointment, selected_mechanic_id=mechanic.id)

    with pytest.raises(InvalidTransitionError):
        lifecycle.complete_job(store, appointment.id, mechanic.id)


@pytest.mark.parametrize(
    ('price', 'fee'),
    [
        (Decimal('120.00'), Decimal('6.00')),
        (Decimal('99.99'), Decimal('5.00')),
        (None, Decimal('0.00')),
    ],
)
def test_cancellation_fee_is_five_percent(price, fee) -> None:
    assert lifecycle.cancellation_fee(price) == fee


def test_mechanic_cancel_of_confirmed_job_logs_fee(db, make_mechanic, make_appointment, make_quote) -> None:
    mechanic = make_mechanic()
    appointment = make_appointment(status='confirmed')
    make_quote(appointment, mechanic, price='200.00', status='accepted')
    store = AppointmentStore(db)
    store.update_appointment(appointment, selected_mechanic_id=mechanic.id)

    cancelled, fee = lifecycle.cancel_confirmed(store, appointment.id, mechanic.id)

    assert fee == Decimal('10.00')
    assert cancelled.status == 'cancelled'
    assert cancelled.cancelled_by == 'mechanic'
    log = db.query(AppointmentCancellation).one()
    assert log.mechanic_id == mechanic.id
    assert log.reason == 'mechanic_cancelled_confirmed'


def test_customer_can_cancel_own_pending_appointment(db, make_user, make_appointment) -> None:
    customer = make_user()
    appointment = make_appointment(user_id=customer.id)

    cancelled = lifecycle.cancel_by_customer(AppointmentStore(db), appointment.id, customer.id)

    assert cancelled.status == 'cancelled'
    assert cancelled.cancelled_by == 'customer'


def test_customer_cannot_cancel_finished_job(db, make_user, make_appointment) -> None:
    customer = make_user()
    appointment = make_appointment(status='completed', user_id=customer.id)

    with pytest.raises(InvalidTransitionError):
        lifecycle.cancel_by_customer(AppointmentStore(db), appointment.id, customer.id)


def test_auto_cancel_only_touches_pending_past_grace(db, make_mechanic, make_appointment, make_quote) -> None:
    now = datetime(2024, 6, 3, 12, 0)
    overdue = make_appointment(appointment_date=datetime(2024, 6, 3, 11, 30))
    within_grace = make_appointment(appointment_date=datetime(2024, 6, 3, 11, 50))
    confirmed = make_appointment(status='confirmed', appointment_date=datetime(2024, 6, 3, 8, 0))
    make_quote(overdue, make_mechanic())

    result = lifecycle.auto_cancel_overdue(AppointmentStore(db), now=now)

    assert result.eliminated_ids == [overdue.id]
    assert result.message == 'Successfully eliminated 1 overdue appointments'
    store = AppointmentStore(db)
    assert store.get_appointment(overdue.id).status == 'cancelled'
    assert store.get_appointment(overdue.id).cancellation_reason == lifecycle.AUTO_CANCEL_REASON
    assert store.get_appointment(within_grace.id).status == 'pending'
    assert store.get_appointment(confirmed.id).status == 'confirmed'
    assert db.query(MechanicQuote).count() == 0


def test_auto_cancel_reports_when_nothing_is_overdue(db) -> None:
    result = lifecycle.auto_cancel_overdue(AppointmentStore(db), now=datetime(2024, 6, 3, 12, 0))

    assert result.eliminated_ids == []
    assert result.message == 'No overdue appointments found'


def test_transition_table_rejects_leaving_terminal_states() -> None:
    with pytest.raises(InvalidTransitionError):
        lifecycle.ensure_transition('cancelled', 'pending')
