"""CRUD access to appointments, quotes and mechanic relations.

``AppointmentStore`` is handed a session by the caller (a route's ``get_db``
dependency, a websocket refresh, a test fixture) and is the only place the
service layer touches SQLAlchemy. Every database failure surfaces as
``StoreError`` after the session has been rolled back.
"""

import logging
from datetime import datetime
from decimal import Decimal
from functools import wraps

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from backend.core.exceptions import StoreError
from backend.models.appointment import Appointment
from backend.models.mechanic import (
    AppointmentCancellation,
    MechanicProfile,
    MechanicQuote,
    MechanicSkippedAppointment,
)
from backend.models.user import CustomerProfile, User  # noqa: F401
from backend.models.vehicle import Vehicle

logger = logging.getLogger(__name__)


def _wrap_store_errors(method):
    @wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except IntegrityError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.warning('Store operation %s failed: %s', method.__name__, exc)
            raise StoreError(f'{method.__name__} failed') from exc

    return wrapper


class AppointmentStore:
    def __init__(self, db: Session):
        self.db = db

    def _appointment_query(self):
        return self.db.query(Appointment).options(
            selectinload(Appointment.vehicle),
            selectinload(Appointment.quotes),
        )

    @_wrap_store_errors
    def list_appointments(self, statuses: list[str]) -> list[Appointment]:
        return self._appointment_query().filter(
            Appointment.status.in_(statuses),
        ).order_by(Appointment.appointment_date.asc()).all()

    @_wrap_store_errors
    def list_appointments_by_ids(self, appointment_ids: list[int], statuses: list[str]) -> list[Appointment]:
        if not appointment_ids:
            return []
        return self._appointment_query().filter(
            Appointment.id.in_(appointment_ids),
            Appointment.status.in_(statuses),
        ).order_by(Appointment.appointment_date.asc()).all()

    @_wrap_store_errors
    def list_appointments_for_user(self, user_id: int) -> list[Appointment]:
        return self._appointment_query().filter(
            Appointment.user_id == user_id,
        ).order_by(Appointment.appointment_date.desc()).all()

    @_wrap_store_errors
    def list_overdue_pending(self, cutoff: datetime) -> list[Appointment]:
        return self.db.query(Appointment).filter(
            Appointment.status == 'pending',
            Appointment.appointment_date < cutoff,
        ).all()

    @_wrap_store_errors
    def get_appointment(self, appointment_id: int) -> Appointment | None:
        return self._appointment_query().filter(Appointment.id == appointment_id).first()

    @_wrap_store_errors
    def get_mechanic_profile(self, mechanic_id: int) -> MechanicProfile | None:
        return self.db.query(MechanicProfile).filter(MechanicProfile.id == mechanic_id).first()

    @_wrap_store_errors
    def get_mechanic_profile_for_user(self, user_id: int) -> MechanicProfile | None:
        return self.db.query(MechanicProfile).filter(MechanicProfile.user_id == user_id).first()

    @_wrap_store_errors
    def count_mechanics(self) -> int:
        return self.db.query(func.count(MechanicProfile.id)).scalar() or 0

    @_wrap_store_errors
    def find_quote(self, appointment_id: int, mechanic_id: int) -> MechanicQuote | None:
        return self.db.query(MechanicQuote).filter(
            MechanicQuote.appointment_id == appointment_id,
            MechanicQuote.mechanic_id == mechanic_id,
        ).first()

    @_wrap_store_errors
    def get_quote(self, quote_id: int) -> MechanicQuote | None:
        return self.db.query(MechanicQuote).filter(MechanicQuote.id == quote_id).first()

    @_wrap_store_errors
    def list_quotes(self, appointment_id: int) -> list[MechanicQuote]:
        return self.db.query(MechanicQuote).options(
            selectinload(MechanicQuote.mechanic),
        ).filter(
            MechanicQuote.appointment_id == appointment_id,
        ).order_by(MechanicQuote.price.asc()).all()

    @_wrap_store_errors
    def quoted_appointment_ids(self, mechanic_id: int) -> list[int]:
        rows = self.db.query(MechanicQuote.appointment_id).filter(
            MechanicQuote.mechanic_id == mechanic_id,
        ).all()
        return [appointment_id for (appointment_id,) in rows]

    @_wrap_store_errors
    def skipped_appointment_ids(self, mechanic_id: int) -> set[int]:
        rows = self.db.query(MechanicSkippedAppointment.appointment_id).filter(
            MechanicSkippedAppointment.mechanic_id == mechanic_id,
        ).all()
        return {appointment_id for (appointment_id,) in rows}

    @_wrap_store_errors
    def has_skipped(self, mechanic_id: int, appointment_id: int) -> bool:
        return self.db.query(MechanicSkippedAppointment.id).filter(
            MechanicSkippedAppointment.mechanic_id == mechanic_id,
            MechanicSkippedAppointment.appointment_id == appointment_id,
        ).first() is not None

    @_wrap_store_errors
    def count_quotes(self, appointment_id: int) -> int:
        return self.db.query(func.count(MechanicQuote.id)).filter(
            MechanicQuote.appointment_id == appointment_id,
        ).scalar() or 0

    @_wrap_store_errors
    def count_skips(self, appointment_id: int) -> int:
        return self.db.query(func.count(MechanicSkippedAppointment.id)).filter(
            MechanicSkippedAppointment.appointment_id == appointment_id,
        ).scalar() or 0

    @_wrap_store_errors
    def insert_quote(
        self,
        appointment_id: int,
        mechanic_id: int,
        price: Decimal,
        eta: datetime,
        notes: str,
        status: str = 'pending',
    ) -> MechanicQuote:
        quote = MechanicQuote(
            appointment_id=appointment_id,
            mechanic_id=mechanic_id,
            price=price,
            eta=eta,
            notes=notes,
            status=status,
        )
        self.db.add(quote)
        self.db.commit()
        self.db.refresh(quote)
        return quote

    @_wrap_store_errors
    def update_quote(self, quote: MechanicQuote, **fields) -> MechanicQuote:
        for name, value in fields.items():
            setattr(quote, name, value)
        quote.updated_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(quote)
        return quote

    @_wrap_store_errors
    def delete_quote(self, quote_id: int, mechanic_id: int) -> int:
        # Row-by-row deletes so the realtime change capture sees them.
        quote = self.db.query(MechanicQuote).filter(
            MechanicQuote.id == quote_id,
            MechanicQuote.mechanic_id == mechanic_id,
        ).first()
        if quote is None:
            return 0
        self.db.delete(quote)
        self.db.commit()
        return 1

    @_wrap_store_errors
    def delete_quotes_for_appointments(self, appointment_ids: list[int]) -> int:
        if not appointment_ids:
            return 0
        quotes = self.db.query(MechanicQuote).filter(
            MechanicQuote.appointment_id.in_(appointment_ids),
        ).all()
        for quote in quotes:
            self.db.delete(quote)
        self.db.commit()
        return len(quotes)

    @_wrap_store_errors
    def insert_skip(self, mechanic_id: int, appointment_id: int) -> MechanicSkippedAppointment:
        skip = MechanicSkippedAppointment(mechanic_id=mechanic_id, appointment_id=appointment_id)
        self.db.add(skip)
        self.db.commit()
        self.db.refresh(skip)
        return skip

    @_wrap_store_errors
    def update_appointment(self, appointment: Appointment, **fields) -> Appointment:
        for name, value in fields.items():
            setattr(appointment, name, value)
        appointment.updated_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(appointment)
        return appointment

    @_wrap_store_errors
    def select_quote(self, appointment: Appointment, quote: MechanicQuote) -> Appointment:
        now = datetime.utcnow()
        for sibling in appointment.quotes:
            sibling.status = 'accepted' if sibling.id == quote.id else 'rejected'
            sibling.updated_at = now
        appointment.status = 'confirmed'
        appointment.selected_mechanic_id = quote.mechanic_id
        appointment.selected_quote_id = quote.id
        appointment.price = quote.price
        appointment.updated_at = now
        self.db.commit()
        self.db.refresh(appointment)
        return appointment

    @_wrap_store_errors
    def cancel_with_log(
        self,
        appointment: Appointment,
        mechanic_id: int,
        fee: Decimal,
        reason: str,
    ) -> Appointment:
        now = datetime.utcnow()
        self.db.add(
            AppointmentCancellation(
                appointment_id=appointment.id,
                mechanic_id=mechanic_id,
                cancellation_fee=fee,
                reason=reason,
            )
        )
        appointment.status = 'cancelled'
        appointment.cancelled_by = 'mechanic'
        appointment.cancelled_at = now
        appointment.cancellation_fee = fee
        appointment.cancellation_reason = reason
        appointment.updated_at = now
        self.db.commit()
        self.db.refresh(appointment)
        return appointment

    @_wrap_store_errors
    def cancel_appointments(self, appointment_ids: list[int], cancelled_by: str, reason: str) -> list[int]:
        if not appointment_ids:
            return []
        now = datetime.utcnow()
        appointments = self.db.query(Appointment).filter(
            Appointment.id.in_(appointment_ids),
            Appointment.status == 'pending',
        ).all()
        for appointment in appointments:
            appointment.status = 'cancelled'
            appointment.cancelled_at = now
            appointment.cancelled_by = cancelled_by
            appointment.cancellation_reason = reason
            appointment.updated_at = now
        self.db.commit()
        return [appointment.id for appointment in appointments]

    @_wrap_store_errors
    def create_appointment(self, vehicle_fields: dict | None = None, **fields) -> Appointment:
        appointment = Appointment(**fields)
        self.db.add(appointment)
        self.db.flush()
        if vehicle_fields:
            self.db.add(Vehicle(appointment_id=appointment.id, **vehicle_fields))
        self.db.commit()
        return self.get_appointment(appointment.id)

    @_wrap_store_errors
    def claim_guest_appointments(self, phone_number: str, user_id: int) -> list[int]:
        appointments = self.db.query(Appointment).filter(
            Appointment.user_id.is_(None),
            Appointment.phone_number == phone_number,
        ).all()
        for appointment in appointments:
            appointment.user_id = user_id
        self.db.commit()
        return [appointment.id for appointment in appointments]
