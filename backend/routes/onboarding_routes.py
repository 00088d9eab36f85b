from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field, ValidationError, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_user, get_optional_user
from backend.core import config
from backend.database import get_db
from backend.models.mechanic import MechanicProfile
from backend.models.user import CustomerProfile, User
from backend.routes.errors import DATABASE_UNAVAILABLE_DETAIL
from backend.services.onboarding_tracker import (
    LocalBufferSink,
    OnboardingTracker,
    RemoteSink,
    TrackingEvent,
)

router = APIRouter(tags=['onboarding'])

local_buffer = LocalBufferSink(config.ONBOARDING_BUFFER_PATH)


class TrackResponse(BaseModel):
    recorded: bool
    sink: str


class CompleteOnboardingRequest(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    referral_source: str | None = None
    session_id: str | None = None
    onboarding_type: Literal['customer', 'post_appointment'] = 'customer'
    total_steps: int = Field(default=19, ge=1)

    @field_validator('first_name', 'last_name', 'phone', 'referral_source', 'session_id')
    @classmethod
    def normalize_text(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None


class OnboardingStatusResponse(BaseModel):
    role: str
    onboarding_completed: bool
    auth_method: str | None = None
    onboarding_step: str | None = None


def get_tracker(db: Session) -> OnboardingTracker:
    return OnboardingTracker(RemoteSink(db), local_buffer)


def determine_auth_method(existing: str | None, user: User, phone: str | None) -> str:
    if existing:
        return existing
    if user.auth_provider == 'google':
        return 'google'
    if user.email and phone:
        return 'both'
    if phone:
        return 'phone'
    return 'email'


@router.post('/track', response_model=TrackResponse)
def track_onboarding(
    event: TrackingEvent,
    current_user: User | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    if current_user is not None and event.user_id is None:
        event = event.model_copy(update={'user_id': current_user.id})

    result = get_tracker(db).record(event)
    return TrackResponse(recorded=result.ok, sink=result.sink)


@router.post('/dropoff', response_model=TrackResponse)
async def track_dropoff(request: Request, db: Session = Depends(get_db)):
    # Sent with navigator.sendBeacon, which posts text/plain without auth headers.
    body = await request.body()
    try:
        event = TrackingEvent.model_validate_json(body)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid drop-off payload.') from exc

    event = event.model_copy(update={'kind': 'drop_off'})
    result = get_tracker(db).record(event)
    return TrackResponse(recorded=result.ok, sink=result.sink)


@router.post('/complete', response_model=OnboardingStatusResponse)
def complete_onboarding(
    data: CompleteOnboardingRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if current_user.role != 'customer':
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Only customers complete this onboarding.')

    try:
        profile = db.query(CustomerProfile).filter(CustomerProfile.user_id == current_user.id).first()
        if profile is None:
            profile = CustomerProfile(user_id=current_user.id)
            db.add(profile)

        phone = data.phone or profile.phone
        profile.auth_method = determine_auth_method(profile.auth_method, current_user, phone)
        profile.first_name = data.first_name or profile.first_name
        profile.last_name = data.last_name or profile.last_name
        profile.phone = phone
        profile.referral_source = data.referral_source or profile.referral_source
        profile.onboarding_completed = True
        profile.updated_at = datetime.utcnow()
        db.commit()
        db.refresh(profile)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc

    if data.session_id:
        get_tracker(db).record(
            TrackingEvent(
                kind='complete',
                onboarding_type=data.onboarding_type,
                session_id=data.session_id,
                step=data.total_steps,
                total_steps=data.total_steps,
                user_id=current_user.id,
            )
        )

    return OnboardingStatusResponse(
        role=current_user.role,
        onboarding_completed=True,
        auth_method=profile.auth_method,
    )


@router.get('/status', response_model=OnboardingStatusResponse)
def onboarding_status(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        if current_user.role == 'mechanic':
            mechanic = db.query(MechanicProfile).filter(MechanicProfile.user_id == current_user.id).first()
            return OnboardingStatusResponse(
                role=current_user.role,
                onboarding_completed=bool(mechanic and mechanic.onboarding_completed),
                onboarding_step=mechanic.onboarding_step if mechanic else None,
            )

        profile = db.query(CustomerProfile).filter(CustomerProfile.user_id == current_user.id).first()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc

    return OnboardingStatusResponse(
        role=current_user.role,
        onboarding_completed=bool(profile and profile.onboarding_completed),
        auth_method=profile.auth_method if profile else None,
    )
