from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import IntegrityError

from backend.core.exceptions import (
    DuplicateSubmissionError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    QuoteValidationError,
)
from backend.models.mechanic import MechanicQuote
from backend.services.appointment_fetcher import fetch_buckets
from backend.services.quote_editor import (
    QuoteDraft,
    QuoteEditor,
    combine_eta,
    split_eta,
    submission_slot,
    validate_draft,
)
from backend.store import AppointmentStore


class _UntouchableStore:
    def __getattr__(self, name):
        raise AssertionError(f'store.{name} must not be called')


def _draft(price='120', date='2024-06-01', time='14:30', notes='') -> QuoteDraft:
    return QuoteDraft(price=price, date=date, time=time, notes=notes)


def test_combine_and_split_eta_round_trip() -> None:
    eta = combine_eta('2024-06-01', '14:30')

    assert eta == datetime(2024, 6, 1, 14, 30)
    assert split_eta(eta) == ('2024-06-01', '14:30')


@pytest.mark.parametrize(
    ('draft', 'message'),
    [
        (QuoteDraft(price='', date='2024-06-01', time='14:30'), 'Please enter a price, date and time for your quote.'),
        (QuoteDraft(price='120', date='', time='14:30'), 'Please enter a price, date and time for your quote.'),
        (QuoteDraft(price='120', date='2024-06-01', time=None), 'Please enter a price, date and time for your quote.'),
        (QuoteDraft(price='abc', date='2024-06-01', time='14:30'), 'Price must be a number.'),
        (QuoteDraft(price='0', date='2024-06-01', time='14:30'), 'Price must be greater than zero.'),
        (QuoteDraft(price='-5', date='2024-06-01', time='14:30'), 'Price must be greater than zero.'),
        (QuoteDraft(price='0.001', date='2024-06-01', time='14:30'), 'Price must be greater than zero.'),
        (QuoteDraft(price='1e30', date='2024-06-01', time='14:30'), 'Price must be at most 99,999,999.99.'),
        (QuoteDraft(price='99999999.999', date='2024-06-01', time='14:30'), 'Price must be at most 99,999,999.99.'),
        (QuoteDraft(price='120', date='06/01/2024', time='14:30'), 'Date must be YYYY-MM-DD and time must be HH:MM.'),
    ],
)
def test_validate_draft_rejects_incomplete_or_invalid_input(draft: QuoteDraft, message: str) -> None:
    with pytest.raises(QuoteValidationError) as exception_info:
        validate_draft(draft)

    assert str(exception_info.value) == message


def test_validate_draft_normalizes_price_and_notes() -> None:
    price, eta, notes = validate_draft(_draft(price='99.5', notes='  bring parts  '))

    assert price == Decimal('99.50')
    assert eta == datetime(2024, 6, 1, 14, 30)
    assert notes == 'bring parts'


def test_empty_price_is_rejected_before_touching_the_store() -> None:
    editor = QuoteEditor(_UntouchableStore(), mechanic_id=1)

    with pytest.raises(QuoteValidationError):
        editor.submit(appointment_id=1, draft=_draft(price=''))


def test_submit_moves_appointment_from_available_to_upcoming(db, make_mechanic, make_appointment) -> None:
    mechanic = make_mechanic()
    appointment = make_appointment()
    store = AppointmentStore(db)
    assert [card.id for card in fetch_buckets(store, mechanic.id).available] == [appointment.id]

    quote = QuoteEditor(store, mechanic.id).submit(appointment.id, _draft())

    buckets = fetch_buckets(store, mechanic.id)
    assert buckets.available == []
    assert [card.id for card in buckets.upcoming] == [appointment.id]
    assert quote.eta.isoformat() == '2024-06-01T14:30:00'
    assert quote.price == Decimal('120.00')
    assert quote.status == 'pending'
    assert store.get_appointment(appointment.id).status == 'quoted'


def test_submitting_twice_updates_the_single_row(db, make_mechanic, make_appointment) -> None:
    mechanic = make_mechanic()
    appointment = make_appointment()
    editor = QuoteEditor(AppointmentStore(db), mechanic.id)

    first = editor.submit(appointment.id, _draft(price='120'))
    second = editor.submit(appointment.id, _draft(price='150', time='16:00'))

    rows = db.query(MechanicQuote).filter(
        MechanicQuote.appointment_id == appointment.id,
        MechanicQuote.mechanic_id == mechanic.id,
    ).all()
    assert len(rows) == 1
    assert first.id == second.id
    assert rows[0].price == Decimal('150.00')
    assert rows[0].eta == datetime(2024, 6, 1, 16, 0)


def test_concurrent_submission_for_same_pair_is_rejected(db, make_mechanic, make_appointment) -> None:
    mechanic = make_mechanic()
    appointment = make_appointment()
    editor = QuoteEditor(AppointmentStore(db), mechanic.id)

    with submission_slot(appointment.id, mechanic.id):
        with pytest.raises(DuplicateSubmissionError):
            editor.submit(appointment.id, _draft())

    assert db.query(MechanicQuote).count() == 0


def test_unique_violation_on_insert_falls_back_to_update() -> None:
    existing = SimpleNamespace(id=9)
    calls = []

    class RacingStore:
        def __init__(self):
            self.lookups = 0

        def get_appointment(self, appointment_id):
            return SimpleNamespace(id=appointment_id, status='pending', selected_mechanic_id=None)

        def find_quote(self, appointment_id, mechanic_id):
            self.lookups += 1
            return None if self.lookups == 1 else existing

        def insert_quote(self, **fields):
            raise IntegrityError('INSERT INTO mechanic_quotes', {}, Exception('UNIQUE constraint failed'))

        def update_quote(self, quote, **fields):
            calls.append((quote, fields))
            return quote

    result = QuoteEditor(RacingStore(), mechanic_id=2).submit(5, _draft())

    assert result is existing
    assert calls[0][1]['price'] == Decimal('120.00')


def test_submit_refuses_appointment_that_is_no_longer_open(db, make_mechanic, make_appointment) -> None:
    mechanic = make_mechanic()
    appointment = make_appointment(status='confirmed')

    with pytest.raises(InvalidTransitionError) as exception_info:
        QuoteEditor(AppointmentStore(db), mechanic.id).submit(appointment.id, _draft())

    assert str(exception_info.value) == 'Cannot quote appointment with status: confirmed'


def test_start_edit_loads_existing_quote_fields(db, make_mechanic, make_appointment, make_quote) -> None:
    mechanic = make_mechanic()
    appointment = make_appointment()
    make_quote(appointment, mechanic, price='120.00', eta=datetime(2024, 6, 4, 10, 0))

    draft = QuoteEditor(AppointmentStore(db), mechanic.id).start_edit(appointment.id)

    assert draft.price == Decimal('120.00')
    assert draft.date == '2024-06-04'
    assert draft.time == '10:00'


def test_start_edit_returns_blank_draft_without_quote(db, make_mechanic, make_appointment) -> None:
    mechanic = make_mechanic()
    appointment = make_appointment()

    draft = QuoteEditor(AppointmentStore(db), mechanic.id).start_edit(appointment.id)

    assert draft == QuoteDraft()


def test_start_edit_refuses_once_customer_selected_mechanic(db, make_mechanic, make_appointment) -> None:
    mechanic = make_mechanic()
    appointment = make_appointment(status='confirmed')
    AppointmentStore(db).update_appointment(appointment, selected_mechanic_id=mechanic.id)

    with pytest.raises(PermissionDeniedError):
        QuoteEditor(AppointmentStore(db), mechanic.id).start_edit(appointment.id)


def test_cancel_quote_requires_confirmation(db, make_mechanic, make_appointment, make_quote) -> None:
    mechanic = make_mechanic()
    appointment = make_appointment()
    quote = make_quote(appointment, mechanic)

    with pytest.raises(QuoteValidationError):
        QuoteEditor(AppointmentStore(db), mechanic.id).cancel_quote(appointment.id, quote.id, confirmed=False)

    assert db.query(MechanicQuote).count() == 1


def test_cancel_quote_returns_appointment_to_available(db, make_mechanic, make_appointment) -> None:
    mechanic = make_mechanic()
    appointment = make_appointment()
    store = AppointmentStore(db)
    editor = QuoteEditor(store, mechanic.id)
    quote = editor.submit(appointment.id, _draft())

    editor.cancel_quote(appointment.id, quote.id, confirmed=True)

    buckets = fetch_buckets(store, mechanic.id)
    assert [card.id for card in buckets.available] == [appointment.id]
    assert buckets.upcoming == []
    assert db.query(MechanicQuote).count() == 0
    assert store.get_appointment(appointment.id).status == 'pending'


def test_cancel_quote_cannot_remove_another_mechanics_row(db, make_mechanic, make_appointment, make_quote) -> None:
    me = make_mechanic()
    other = make_mechanic(first_name='Alex')
    appointment = make_appointment()
    their_quote = make_quote(appointment, other)

    with pytest.raises(NotFoundError):
        QuoteEditor(AppointmentStore(db), me.id).cancel_quote(appointment.id, their_quote.id, confirmed=True)

    assert db.query(MechanicQuote).count() == 1


def test_cancel_quote_keeps_quoted_status_while_other_quotes_remain(db, make_mechanic, make_appointment) -> None:
    me = make_mechanic()
    other = make_mechanic(first_name='Alex')
    appointment = make_appointment()
    store = AppointmentStore(db)
    my_quote = QuoteEditor(store, me.id).submit(appointment.id, _draft())
    QuoteEditor(store, other.id).submit(appointment.id, _draft(price='90'))

    QuoteEditor(store, me.id).cancel_quote(appointment.id, my_quote.id, confirmed=True)

    assert store.get_appointment(appointment.id).status == 'quoted'


def test_skip_persists_and_rejects_second_skip(db, make_mechanic, make_appointment) -> None:
    me = make_mechanic()
    make_mechanic(first_name='Alex')
    appointment = make_appointment()
    store = AppointmentStore(db)
    editor = QuoteEditor(store, me.id)

    result = editor.skip(appointment.id)

    assert result.status == 'pending'
    assert store.has_skipped(me.id, appointment.id)
    with pytest.raises(InvalidTransitionError):
        editor.skip(appointment.id)


def test_skip_refuses_when_mechanic_already_quoted(db, make_mechanic, make_appointment, make_quote) -> None:
    mechanic = make_mechanic()
    appointment = make_appointment()
    make_quote(appointment, mechanic)

    with pytest.raises(InvalidTransitionError):
        QuoteEditor(AppointmentStore(db), mechanic.id).skip(appointment.id)


def test_appointment_is_cancelled_when_every_mechanic_skips(db, make_mechanic, make_appointment) -> None:
    first = make_mechanic()
    second = make_mechanic(first_name='Alex')
    appointment = make_appointment()
    store = AppointmentStore(db)

    QuoteEditor(store, first.id).skip(appointment.id)
    result = QuoteEditor(store, second.id).skip(appointment.id)

    assert result.status == 'cancelled'
    assert result.cancelled_by == 'system'
    assert result.cancellation_reason == 'All mechanics skipped'
