"""Quote editing for one mechanic: load, submit, cancel and skip.

A mechanic holds at most one quote per appointment. ``submit`` checks for
an existing row and updates it in place; only when none exists is a new row
inserted. The check-then-write is guarded twice: an in-process slot per
(appointment, mechanic) pair rejects a second submission while the first is
still running, and the table's unique constraint turns a lost race into an
update of the row that won.
"""

import logging
from contextlib import contextmanager
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from threading import Lock

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError

from backend.core.exceptions import (
    DuplicateSubmissionError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    QuoteValidationError,
    StoreError,
)
from backend.models.appointment import Appointment
from backend.models.mechanic import MechanicQuote
from backend.store import AppointmentStore

logger = logging.getLogger(__name__)

QUOTABLE_STATUSES = {'pending', 'quoted'}
ALL_MECHANICS_SKIPPED_REASON = 'All mechanics skipped'
DATE_FORMAT = '%Y-%m-%d'
TIME_FORMAT = '%H:%M'
# Largest value the Numeric(10, 2) price column holds.
MAX_QUOTE_PRICE = Decimal('99999999.99')
PRICE_TOO_LARGE_MESSAGE = 'Price must be at most 99,999,999.99.'

_inflight_lock = Lock()
_inflight_submissions: set[tuple[int, int]] = set()


class QuoteDraft(BaseModel):
    price: Decimal | str | None = None
    date: str | None = None
    time: str | None = None
    notes: str = ''


def combine_eta(date_value: str, time_value: str) -> datetime:
    try:
        eta_date = date.fromisoformat(date_value.strip())
        eta_time = time.fromisoformat(time_value.strip())
    except ValueError as exc:
        raise QuoteValidationError('Date must be YYYY-MM-DD and time must be HH:MM.') from exc
    return datetime.combine(eta_date, eta_time.replace(second=0, microsecond=0))


def split_eta(eta: datetime) -> tuple[str, str]:
    return eta.strftime(DATE_FORMAT), eta.strftime(TIME_FORMAT)


def parse_price(value: Decimal | str | None) -> Decimal:
    text = '' if value is None else str(value).strip()
    if not text:
        raise QuoteValidationError('Please enter a price, date and time for your quote.')

    try:
        price = Decimal(text)
    except InvalidOperation as exc:
        raise QuoteValidationError('Price must be a number.') from exc

    if not price.is_finite() or price <= 0:
        raise QuoteValidationError('Price must be greater than zero.')
    if price > MAX_QUOTE_PRICE:
        raise QuoteValidationError(PRICE_TOO_LARGE_MESSAGE)

    price = price.quantize(Decimal('0.01'))
    if price <= 0:
        raise QuoteValidationError('Price must be greater than zero.')
    return price


def validate_draft(draft: QuoteDraft) -> tuple[Decimal, datetime, str]:
    """Check a draft locally and return ``(price, eta, notes)``.

    Raises QuoteValidationError for a missing price, date or time, for a
    price that is not a positive number and for a malformed date or time.
    """
    if not (draft.date or '').strip() or not (draft.time or '').strip():
        raise QuoteValidationError('Please enter a price, date and time for your quote.')

    price = parse_price(draft.price)
    eta = combine_eta(draft.date, draft.time)
    return price, eta, (draft.notes or '').strip()


@contextmanager
def submission_slot(appointment_id: int, mechanic_id: int):
    key = (appointment_id, mechanic_id)
    with _inflight_lock:
        if key in _inflight_submissions:
            raise DuplicateSubmissionError('A quote for this appointment is already being submitted.')
        _inflight_submissions.add(key)
    try:
        yield
    finally:
        with _inflight_lock:
            _inflight_submissions.discard(key)


class QuoteEditor:
    def __init__(self, store: AppointmentStore, mechanic_id: int):
        self.store = store
        self.mechanic_id = mechanic_id

    def _load_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.store.get_appointment(appointment_id)
        if appointment is None:
            raise NotFoundError('Appointment not found.')
        return appointment

    def _ensure_not_selected(self, appointment: Appointment) -> None:
        if appointment.selected_mechanic_id == self.mechanic_id:
            raise PermissionDeniedError('Cannot edit quote after being selected by customer.')

    def start_edit(self, appointment_id: int) -> QuoteDraft:
        appointment = self._load_appointment(appointment_id)
        self._ensure_not_selected(appointment)

        quote = self.store.find_quote(appointment_id, self.mechanic_id)
        if quote is None:
            return QuoteDraft()

        eta_date, eta_time = split_eta(quote.eta)
        return QuoteDraft(
            price=Decimal(quote.price),
            date=eta_date,
            time=eta_time,
            notes=quote.notes or '',
        )

    def submit(self, appointment_id: int, draft: QuoteDraft) -> MechanicQuote:
        price, eta, notes = validate_draft(draft)

        with submission_slot(appointment_id, self.mechanic_id):
            appointment = self._load_appointment(appointment_id)
            if appointment.status not in QUOTABLE_STATUSES:
                raise InvalidTransitionError(f'Cannot quote appointment with status: {appointment.status}')
            self._ensure_not_selected(appointment)

            existing = self.store.find_quote(appointment_id, self.mechanic_id)
            if existing is not None:
                return self.store.update_quote(existing, price=price, eta=eta, notes=notes)

            try:
                quote = self.store.insert_quote(
                    appointment_id=appointment_id,
                    mechanic_id=self.mechanic_id,
                    price=price,
                    eta=eta,
                    notes=notes,
                )
            except IntegrityError as exc:
                logger.warning(
                    'Quote insert for appointment %s by mechanic %s hit the unique pair; updating instead',
                    appointment_id,
                    self.mechanic_id,
                )
                existing = self.store.find_quote(appointment_id, self.mechanic_id)
                if existing is None:
                    raise StoreError('insert_quote failed') from exc
                return self.store.update_quote(existing, price=price, eta=eta, notes=notes)

            self._mark_quoted(appointment)
            return quote

    def _mark_quoted(self, appointment: Appointment) -> None:
        if appointment.status != 'pending':
            return
        try:
            self.store.update_appointment(appointment, status='quoted')
        except StoreError:
            logger.warning('Quote saved but appointment %s could not be marked quoted', appointment.id)

    def cancel_quote(self, appointment_id: int, quote_id: int, confirmed: bool) -> None:
        if not confirmed:
            raise QuoteValidationError('Cancelling a quote cannot be undone and must be confirmed.')

        quote = self.store.get_quote(quote_id)
        if quote is None or quote.mechanic_id != self.mechanic_id or quote.appointment_id != appointment_id:
            raise NotFoundError('Quote not found.')

        appointment = self._load_appointment(appointment_id)
        if appointment.selected_mechanic_id == self.mechanic_id and appointment.status in {'confirmed', 'in_progress'}:
            raise InvalidTransitionError('This quote was accepted. Cancel the appointment instead.')

        if not self.store.delete_quote(quote_id, self.mechanic_id):
            raise NotFoundError('Quote not found.')

        if appointment.status == 'quoted' and self.store.count_quotes(appointment_id) == 0:
            self.store.update_appointment(appointment, status='pending')

    def skip(self, appointment_id: int) -> Appointment:
        appointment = self._load_appointment(appointment_id)

        if self.store.find_quote(appointment_id, self.mechanic_id) is not None:
            raise InvalidTransitionError('You already quoted this appointment. Cancel the quote instead.')
        if self.store.has_skipped(self.mechanic_id, appointment_id):
            raise InvalidTransitionError('You have already skipped this appointment.')

        try:
            self.store.insert_skip(self.mechanic_id, appointment_id)
        except IntegrityError as exc:
            raise InvalidTransitionError('You have already skipped this appointment.') from exc

        if appointment.status == 'pending' and self.store.count_skips(appointment_id) >= self.store.count_mechanics():
            logger.info('Every mechanic skipped appointment %s; cancelling it', appointment_id)
            appointment = self.store.update_appointment(
                appointment,
                status='cancelled',
                cancelled_at=datetime.utcnow(),
                cancelled_by='system',
                cancellation_reason=ALL_MECHANICS_SKIPPED_REASON,
            )

        return appointment
