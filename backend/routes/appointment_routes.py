import logging
import re
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_user, get_optional_user
from backend.core.exceptions import InvalidTransitionError, MarketplaceError, NotFoundError, PermissionDeniedError
from backend.database import get_db
from backend.models.appointment import Appointment
from backend.models.user import User
from backend.routes.errors import to_http_exception
from backend.services import lifecycle
from backend.services.appointment_fetcher import VehicleSummary
from backend.store import AppointmentStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=['appointments'])

MAX_ISSUE_DESCRIPTION_LENGTH = 2000
MIN_VEHICLE_YEAR = 1900


def normalize_phone(value: str | None) -> str | None:
    if value is None:
        return None
    digits = re.sub(r'\D', '', value)
    return digits or None


class VehicleRequest(BaseModel):
    year: int
    make: str
    model: str
    vin: str | None = None
    mileage: int | None = Field(default=None, ge=0)
    color: str | None = None

    @field_validator('year')
    @classmethod
    def validate_year(cls, value: int) -> int:
        if value < MIN_VEHICLE_YEAR or value > datetime.utcnow().year + 1:
            raise ValueError('Vehicle year is out of range.')
        return value

    @field_validator('make', 'model')
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Vehicle make and model are required.')
        return normalized

    @field_validator('vin')
    @classmethod
    def validate_vin(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().upper()
        return normalized or None


class CreateAppointmentRequest(BaseModel):
    location: str
    appointment_date: datetime
    car_runs: bool | None = None
    issue_description: str | None = None
    selected_services: list[str] = []
    selected_car_issues: list[str] = []
    phone_number: str | None = None
    save_as_draft: bool = False
    vehicle: VehicleRequest

    @field_validator('location')
    @classmethod
    def validate_location(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Location is required.')
        return normalized

    @field_validator('issue_description')
    @classmethod
    def validate_issue_description(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_ISSUE_DESCRIPTION_LENGTH:
            raise ValueError(f'Issue description must be {MAX_ISSUE_DESCRIPTION_LENGTH} characters or fewer.')

        return normalized

    @field_validator('phone_number')
    @classmethod
    def validate_phone_number(cls, value: str | None) -> str | None:
        return normalize_phone(value)


class ClaimAppointmentsRequest(BaseModel):
    phone_number: str

    @field_validator('phone_number')
    @classmethod
    def validate_phone_number(cls, value: str) -> str:
        normalized = normalize_phone(value)
        if not normalized:
            raise ValueError('Phone number is required.')
        return normalized


class AppointmentResponse(BaseModel):
    id: int
    status: str
    location: str
    appointment_date: datetime
    car_runs: bool | None = None
    issue_description: str | None = None
    selected_services: list[str] = []
    selected_car_issues: list[str] = []
    selected_mechanic_id: int | None = None
    price: Decimal | None = None
    cancellation_fee: Decimal | None = None
    vehicle: VehicleSummary | None = None
    quote_count: int = 0


class CustomerQuoteResponse(BaseModel):
    id: int
    mechanic_id: int
    mechanic_name: str
    mechanic_rating: float | None = None
    mechanic_review_count: int = 0
    price: Decimal
    eta: datetime
    notes: str | None = None
    status: str | None = None


class ClaimAppointmentsResponse(BaseModel):
    claimed_ids: list[int]


def appointment_response(appointment: Appointment) -> AppointmentResponse:
    return AppointmentResponse(
        id=appointment.id,
        status=appointment.status,
        location=appointment.location,
        appointment_date=appointment.appointment_date,
        car_runs=appointment.car_runs,
        issue_description=appointment.issue_description,
        selected_services=list(appointment.selected_services or []),
        selected_car_issues=list(appointment.selected_car_issues or []),
        selected_mechanic_id=appointment.selected_mechanic_id,
        price=appointment.price,
        cancellation_fee=appointment.cancellation_fee,
        vehicle=VehicleSummary.model_validate(appointment.vehicle) if appointment.vehicle is not None else None,
        quote_count=len(appointment.quotes or []),
    )


def ensure_customer_access(appointment: Appointment | None, user: User) -> Appointment:
    if appointment is None:
        raise NotFoundError('Appointment not found.')
    if appointment.user_id != user.id:
        raise PermissionDeniedError('You can only view your own appointments.')
    return appointment


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    current_user: User | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    if current_user is not None and current_user.role == 'mechanic':
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Mechanics cannot book appointments.')

    try:
        appointment = AppointmentStore(db).create_appointment(
            vehicle_fields=data.vehicle.model_dump(),
            user_id=current_user.id if current_user is not None else None,
            status='draft' if data.save_as_draft else 'pending',
            location=data.location,
            appointment_date=data.appointment_date,
            car_runs=data.car_runs,
            issue_description=data.issue_description,
            selected_services=data.selected_services,
            selected_car_issues=data.selected_car_issues,
            phone_number=data.phone_number,
            source='web',
        )
    except MarketplaceError as exc:
        raise to_http_exception(exc) from exc

    logger.info('Appointment %s booked with status %s', appointment.id, appointment.status)
    return appointment_response(appointment)


@router.get('/mine', response_model=list[AppointmentResponse])
def list_my_appointments(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        appointments = AppointmentStore(db).list_appointments_for_user(current_user.id)
    except MarketplaceError as exc:
        raise to_http_exception(exc) from exc
    return [appointment_response(appointment) for appointment in appointments]


@router.post('/claim', response_model=ClaimAppointmentsResponse)
def claim_guest_appointments(
    data: ClaimAppointmentsRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        claimed_ids = AppointmentStore(db).claim_guest_appointments(data.phone_number, current_user.id)
    except MarketplaceError as exc:
        raise to_http_exception(exc) from exc
    return ClaimAppointmentsResponse(claimed_ids=claimed_ids)


@router.post('/{appointment_id}/submit', response_model=AppointmentResponse)
def submit_draft(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    store = AppointmentStore(db)
    try:
        appointment = ensure_customer_access(store.get_appointment(appointment_id), current_user)
        if appointment.status != 'draft':
            raise InvalidTransitionError('Only draft appointments can be submitted.')
        appointment = store.update_appointment(appointment, status='pending')
    except MarketplaceError as exc:
        raise to_http_exception(exc) from exc
    return appointment_response(appointment)


@router.get('/{appointment_id}/quotes', response_model=list[CustomerQuoteResponse])
def list_appointment_quotes(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    store = AppointmentStore(db)
    try:
        ensure_customer_access(store.get_appointment(appointment_id), current_user)
        quotes = store.list_quotes(appointment_id)
    except MarketplaceError as exc:
        raise to_http_exception(exc) from exc

    return [
        CustomerQuoteResponse(
            id=quote.id,
            mechanic_id=quote.mechanic_id,
            mechanic_name=quote.mechanic.display_name if quote.mechanic is not None else 'Mechanic',
            mechanic_rating=quote.mechanic.rating if quote.mechanic is not None else None,
            mechanic_review_count=(quote.mechanic.review_count or 0) if quote.mechanic is not None else 0,
            price=quote.price,
            eta=quote.eta,
            notes=quote.notes,
            status=quote.status,
        )
        for quote in quotes
    ]


@router.post('/{appointment_id}/quotes/{quote_id}/accept', response_model=AppointmentResponse)
def accept_quote(
    appointment_id: int,
    quote_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        appointment = lifecycle.accept_quote(AppointmentStore(db), appointment_id, quote_id, current_user)
    except MarketplaceError as exc:
        raise to_http_exception(exc) from exc
    return appointment_response(appointment)


@router.post('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        appointment = lifecycle.cancel_by_customer(AppointmentStore(db), appointment_id, current_user.id)
    except MarketplaceError as exc:
        raise to_http_exception(exc) from exc
    return appointment_response(appointment)
