"""Loads appointments for a mechanic and splits them into dashboard buckets.

An appointment is *upcoming* for a mechanic as soon as that mechanic has a
quote on it, and *available* otherwise. Quotes from other mechanics never
hide an appointment; only this mechanic's quote or skip does.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from pydantic import BaseModel

from backend.store import AppointmentStore

logger = logging.getLogger(__name__)

OPEN_STATUSES = ['pending', 'quoted']
UPCOMING_STATUSES = ['pending', 'quoted', 'confirmed', 'in_progress']
SCHEDULE_STATUSES = [*UPCOMING_STATUSES, 'completed', 'cancelled']


class VehicleSummary(BaseModel):
    year: int | None = None
    make: str | None = None
    model: str | None = None
    vin: str | None = None
    mileage: int | None = None
    color: str | None = None

    class Config:
        from_attributes = True


class QuoteSummary(BaseModel):
    id: int
    mechanic_id: int
    price: Decimal
    eta: datetime
    notes: str | None = None
    status: str | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class AppointmentCard(BaseModel):
    id: int
    status: str
    location: str
    appointment_date: datetime
    car_runs: bool | None = None
    issue_description: str | None = None
    selected_services: list[str] = []
    selected_car_issues: list[str] = []
    selected_mechanic_id: int | None = None
    vehicle: VehicleSummary | None = None
    my_quote: QuoteSummary | None = None
    quote_count: int = 0


class AppointmentBuckets(BaseModel):
    available: list[AppointmentCard] = []
    upcoming: list[AppointmentCard] = []


def find_mechanic_quote(appointment, mechanic_id: int):
    for quote in appointment.quotes or []:
        if quote.mechanic_id == mechanic_id:
            return quote
    return None


def to_card(appointment, mechanic_id: int) -> AppointmentCard:
    vehicle = getattr(appointment, 'vehicle', None)
    my_quote = find_mechanic_quote(appointment, mechanic_id)
    return AppointmentCard(
        id=appointment.id,
        status=appointment.status,
        location=appointment.location or '',
        appointment_date=appointment.appointment_date,
        car_runs=appointment.car_runs,
        issue_description=appointment.issue_description,
        selected_services=list(appointment.selected_services or []),
        selected_car_issues=list(appointment.selected_car_issues or []),
        selected_mechanic_id=appointment.selected_mechanic_id,
        vehicle=VehicleSummary.model_validate(vehicle) if vehicle is not None else None,
        my_quote=QuoteSummary.model_validate(my_quote) if my_quote is not None else None,
        quote_count=len(appointment.quotes or []),
    )


def partition_appointments(
    appointments: Iterable,
    mechanic_id: int,
    skipped_ids: set[int] | None = None,
) -> AppointmentBuckets:
    skipped_ids = skipped_ids or set()
    buckets = AppointmentBuckets()
    seen: set[int] = set()

    for appointment in appointments:
        if appointment.id in seen:
            continue
        seen.add(appointment.id)

        if find_mechanic_quote(appointment, mechanic_id) is not None:
            if appointment.status in UPCOMING_STATUSES:
                buckets.upcoming.append(to_card(appointment, mechanic_id))
            continue

        if appointment.status in OPEN_STATUSES and appointment.id not in skipped_ids:
            buckets.available.append(to_card(appointment, mechanic_id))

    return buckets


def fetch_buckets(store: AppointmentStore, mechanic_id: int) -> AppointmentBuckets:
    skipped_ids = store.skipped_appointment_ids(mechanic_id)
    open_appointments = store.list_appointments(OPEN_STATUSES)
    quoted_appointments = store.list_appointments_by_ids(
        store.quoted_appointment_ids(mechanic_id),
        UPCOMING_STATUSES,
    )

    buckets = partition_appointments(
        [*quoted_appointments, *open_appointments],
        mechanic_id,
        skipped_ids,
    )
    buckets.upcoming.sort(key=lambda card: card.appointment_date)
    buckets.available.sort(key=lambda card: card.appointment_date)
    logger.debug(
        'Mechanic %s buckets: %s available, %s upcoming',
        mechanic_id,
        len(buckets.available),
        len(buckets.upcoming),
    )
    return buckets


def fetch_quoted_cards(store: AppointmentStore, mechanic_id: int) -> list[AppointmentCard]:
    """Every appointment this mechanic quoted, cancelled ones included."""
    appointments = store.list_appointments_by_ids(
        store.quoted_appointment_ids(mechanic_id),
        SCHEDULE_STATUSES,
    )
    return [to_card(appointment, mechanic_id) for appointment in appointments]
