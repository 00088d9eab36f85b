"""Weekly schedule projection for the mechanic dashboard.

Nothing here is persisted. Each entry's display status is recomputed from
the appointment's own status and its selected mechanic every time a week
is built.
"""

from datetime import date, datetime, timedelta
from typing import Iterable

from pydantic import BaseModel

from backend.services.appointment_fetcher import AppointmentCard

DISPLAY_CANCELLED = 'cancelled'
DISPLAY_CONFIRMED = 'confirmed'
DISPLAY_PENDING = 'pending'

DISPLAY_COLORS = {
    DISPLAY_CANCELLED: '#dc2626',
    DISPLAY_CONFIRMED: '#294a46',
    DISPLAY_PENDING: '#facc15',
}


class ScheduleEntry(BaseModel):
    appointment_id: int
    quote_id: int
    eta: datetime
    location: str
    vehicle_label: str | None = None
    display_status: str
    color: str
    strikethrough: bool


class ScheduleDay(BaseModel):
    date: date
    weekday: str
    is_today: bool
    entries: list[ScheduleEntry] = []


class WeekSchedule(BaseModel):
    week_start: date
    week_end: date
    label: str
    days: list[ScheduleDay]


def display_status(appointment_status: str, selected_mechanic_id: int | None, quote_mechanic_id: int) -> str:
    if appointment_status == 'cancelled':
        return DISPLAY_CANCELLED
    if selected_mechanic_id is not None and selected_mechanic_id == quote_mechanic_id:
        return DISPLAY_CONFIRMED
    return DISPLAY_PENDING


def start_of_week(anchor: date) -> date:
    return anchor - timedelta(days=anchor.weekday())


def shift_week(anchor: date, weeks: int) -> date:
    return anchor + timedelta(weeks=weeks)


def week_days(anchor: date) -> list[date]:
    first_day = start_of_week(anchor)
    return [first_day + timedelta(days=offset) for offset in range(7)]


def format_week_range(week_start: date) -> str:
    week_end = week_start + timedelta(days=6)
    start_month = week_start.strftime('%B')
    end_month = week_end.strftime('%B')

    if start_month == end_month:
        return f'{start_month} {week_start.day} - {week_end.day}, {week_start.year}'
    return f'{start_month} {week_start.day} - {end_month} {week_end.day}, {week_start.year}'


def _vehicle_label(card: AppointmentCard) -> str | None:
    if card.vehicle is None:
        return None
    parts = [str(card.vehicle.year) if card.vehicle.year else None, card.vehicle.make, card.vehicle.model]
    label = ' '.join(part for part in parts if part)
    return label or None


def build_week(
    appointments: Iterable[AppointmentCard],
    mechanic_id: int,
    anchor: date,
    today: date | None = None,
) -> WeekSchedule:
    today = today or date.today()
    days = week_days(anchor)
    buckets: dict[date, list[ScheduleEntry]] = {day: [] for day in days}

    for card in appointments:
        quote = card.my_quote
        if quote is None or quote.mechanic_id != mechanic_id:
            continue

        eta_day = quote.eta.date()
        if eta_day not in buckets:
            continue

        status = display_status(card.status, card.selected_mechanic_id, quote.mechanic_id)
        buckets[eta_day].append(
            ScheduleEntry(
                appointment_id=card.id,
                quote_id=quote.id,
                eta=quote.eta,
                location=card.location,
                vehicle_label=_vehicle_label(card),
                display_status=status,
                color=DISPLAY_COLORS[status],
                strikethrough=status == DISPLAY_CANCELLED,
            )
        )

    return WeekSchedule(
        week_start=days[0],
        week_end=days[-1],
        label=format_week_range(days[0]),
        days=[
            ScheduleDay(
                date=day,
                weekday=day.strftime('%A'),
                is_today=day == today,
                entries=sorted(buckets[day], key=lambda entry: entry.eta.time()),
            )
            for day in days
        ],
    )
