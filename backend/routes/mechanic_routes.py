from datetime import date, datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_mechanic
from backend.core.exceptions import MarketplaceError
from backend.database import get_db
from backend.models.mechanic import MechanicProfile
from backend.routes.errors import DATABASE_UNAVAILABLE_DETAIL, to_http_exception
from backend.services import lifecycle
from backend.services.appointment_fetcher import (
    AppointmentBuckets,
    QuoteSummary,
    fetch_buckets,
    fetch_quoted_cards,
)
from backend.services.quote_editor import QuoteDraft, QuoteEditor
from backend.services.schedule import WeekSchedule, build_week, shift_week
from backend.store import AppointmentStore

router = APIRouter(tags=['mechanic'])

ONBOARDING_STEPS = ['personal_info', 'business_info', 'services', 'service_area', 'review', 'completed']


class StartJobRequest(BaseModel):
    eta_minutes: int = Field(ge=0, le=24 * 60)


class AppointmentStatusResponse(BaseModel):
    appointment_id: int
    status: str
    cancellation_fee: Decimal | None = None


class DashboardSnapshot(BaseModel):
    buckets: AppointmentBuckets
    schedule: WeekSchedule


class MechanicProfileUpdateRequest(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    business_name: str | None = None
    bio: str | None = None
    service_radius_miles: int | None = Field(default=None, ge=1, le=500)
    specialties: list[str] | None = None
    metadata: dict | None = None
    onboarding_step: str | None = None
    onboarding_completed: bool | None = None

    @field_validator('first_name', 'last_name', 'phone', 'business_name', 'bio')
    @classmethod
    def normalize_text(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None

    @field_validator('onboarding_step')
    @classmethod
    def validate_onboarding_step(cls, value: str | None) -> str | None:
        if value is not None and value not in ONBOARDING_STEPS:
            raise ValueError('Invalid onboarding step.')
        return value


class MechanicProfileResponse(BaseModel):
    id: int
    user_id: int
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    business_name: str | None = None
    bio: str | None = None
    service_radius_miles: int | None = None
    specialties: list[str] = []
    metadata: dict = {}
    onboarding_step: str | None = None
    onboarding_completed: bool = False
    is_complete: bool = False
    rating: float | None = None
    review_count: int = 0


def profile_response(profile: MechanicProfile) -> MechanicProfileResponse:
    return MechanicProfileResponse(
        id=profile.id,
        user_id=profile.user_id,
        first_name=profile.first_name,
        last_name=profile.last_name,
        phone=profile.phone,
        business_name=profile.business_name,
        bio=profile.bio,
        service_radius_miles=profile.service_radius_miles,
        specialties=list(profile.specialties or []),
        metadata=dict(profile.profile_metadata or {}),
        onboarding_step=profile.onboarding_step,
        onboarding_completed=bool(profile.onboarding_completed),
        is_complete=bool(
            profile.first_name and profile.last_name and profile.phone and profile.onboarding_completed
        ),
        rating=profile.rating,
        review_count=profile.review_count or 0,
    )


def build_dashboard_snapshot(
    store: AppointmentStore,
    mechanic_id: int,
    anchor: date | None = None,
    offset_weeks: int = 0,
) -> DashboardSnapshot:
    week_anchor = shift_week(anchor or date.today(), offset_weeks)
    return DashboardSnapshot(
        buckets=fetch_buckets(store, mechanic_id),
        schedule=build_week(fetch_quoted_cards(store, mechanic_id), mechanic_id, week_anchor),
    )


@router.get('/appointments', response_model=AppointmentBuckets)
def list_mechanic_appointments(
    mechanic: MechanicProfile = Depends(get_current_mechanic),
    db: Session = Depends(get_db),
):
    try:
        return fetch_buckets(AppointmentStore(db), mechanic.id)
    except MarketplaceError as exc:
        raise to_http_exception(exc) from exc


@router.get('/appointments/{appointment_id}/quote-draft', response_model=QuoteDraft)
def get_quote_draft(
    appointment_id: int,
    mechanic: MechanicProfile = Depends(get_current_mechanic),
    db: Session = Depends(get_db),
):
    try:
        return QuoteEditor(AppointmentStore(db), mechanic.id).start_edit(appointment_id)
    except MarketplaceError as exc:
        raise to_http_exception(exc) from exc


@router.put('/appointments/{appointment_id}/quote', response_model=QuoteSummary)
def submit_quote(
    appointment_id: int,
    draft: QuoteDraft,
    mechanic: MechanicProfile = Depends(get_current_mechanic),
    db: Session = Depends(get_db),
):
    try:
        quote = QuoteEditor(AppointmentStore(db), mechanic.id).submit(appointment_id, draft)
    except MarketplaceError as exc:
        raise to_http_exception(exc) from exc
    return QuoteSummary.model_validate(quote)


@router.delete('/appointments/{appointment_id}/quote/{quote_id}', status_code=status.HTTP_204_NO_CONTENT)
def cancel_quote(
    appointment_id: int,
    quote_id: int,
    confirm: bool = Query(default=False),
    mechanic: MechanicProfile = Depends(get_current_mechanic),
    db: Session = Depends(get_db),
):
    try:
        QuoteEditor(AppointmentStore(db), mechanic.id).cancel_quote(appointment_id, quote_id, confirmed=confirm)
    except MarketplaceError as exc:
        raise to_http_exception(exc) from exc


@router.post('/appointments/{appointment_id}/skip', response_model=AppointmentStatusResponse)
def skip_appointment(
    appointment_id: int,
    mechanic: MechanicProfile = Depends(get_current_mechanic),
    db: Session = Depends(get_db),
):
    try:
        appointment = QuoteEditor(AppointmentStore(db), mechanic.id).skip(appointment_id)
    except MarketplaceError as exc:
        raise to_http_exception(exc) from exc
    return AppointmentStatusResponse(appointment_id=appointment.id, status=appointment.status)


@router.post('/appointments/{appointment_id}/start', response_model=AppointmentStatusResponse)
def start_job(
    appointment_id: int,
    data: StartJobRequest,
    mechanic: MechanicProfile = Depends(get_current_mechanic),
    db: Session = Depends(get_db),
):
    try:
        appointment = lifecycle.start_job(AppointmentStore(db), appointment_id, mechanic.id, data.eta_minutes)
    except MarketplaceError as exc:
        raise to_http_exception(exc) from exc
    return AppointmentStatusResponse(appointment_id=appointment.id, status=appointment.status)


@router.post('/appointments/{appointment_id}/complete', response_model=AppointmentStatusResponse)
def complete_job(
    appointment_id: int,
    mechanic: MechanicProfile = Depends(get_current_mechanic),
    db: Session = Depends(get_db),
):
    try:
        appointment = lifecycle.complete_job(AppointmentStore(db), appointment_id, mechanic.id)
    except MarketplaceError as exc:
        raise to_http_exception(exc) from exc
    return AppointmentStatusResponse(appointment_id=appointment.id, status=appointment.status)


@router.post('/appointments/{appointment_id}/cancel', response_model=AppointmentStatusResponse)
def cancel_job(
    appointment_id: int,
    mechanic: MechanicProfile = Depends(get_current_mechanic),
    db: Session = Depends(get_db),
):
    try:
        appointment, fee = lifecycle.cancel_confirmed(AppointmentStore(db), appointment_id, mechanic.id)
    except MarketplaceError as exc:
        raise to_http_exception(exc) from exc
    return AppointmentStatusResponse(appointment_id=appointment.id, status=appointment.status, cancellation_fee=fee)


@router.get('/schedule', response_model=WeekSchedule)
def get_schedule(
    anchor: date | None = Query(default=None),
    offset_weeks: int = Query(default=0, ge=-52, le=52),
    mechanic: MechanicProfile = Depends(get_current_mechanic),
    db: Session = Depends(get_db),
):
    week_anchor = shift_week(anchor or date.today(), offset_weeks)
    try:
        cards = fetch_quoted_cards(AppointmentStore(db), mechanic.id)
    except MarketplaceError as exc:
        raise to_http_exception(exc) from exc
    return build_week(cards, mechanic.id, week_anchor)


@router.get('/dashboard', response_model=DashboardSnapshot)
def get_dashboard(
    mechanic: MechanicProfile = Depends(get_current_mechanic),
    db: Session = Depends(get_db),
):
    try:
        return build_dashboard_snapshot(AppointmentStore(db), mechanic.id)
    except MarketplaceError as exc:
        raise to_http_exception(exc) from exc


@router.get('/profile', response_model=MechanicProfileResponse)
def get_profile(mechanic: MechanicProfile = Depends(get_current_mechanic)):
    return profile_response(mechanic)


@router.put('/profile', response_model=MechanicProfileResponse)
def update_profile(
    data: MechanicProfileUpdateRequest,
    mechanic: MechanicProfile = Depends(get_current_mechanic),
    db: Session = Depends(get_db),
):
    updates = data.model_dump(exclude_unset=True, exclude={'metadata'})
    try:
        for name, value in updates.items():
            setattr(mechanic, name, value)
        if data.metadata:
            mechanic.profile_metadata = {**(mechanic.profile_metadata or {}), **data.metadata}
        if data.onboarding_step == 'completed':
            mechanic.onboarding_completed = True
        mechanic.updated_at = datetime.utcnow()
        db.commit()
        db.refresh(mechanic)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc
    return profile_response(mechanic)
