from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_user, get_optional_user
from backend.database import get_db
from backend.models.feedback import Feedback
from backend.models.user import User
from backend.routes.errors import DATABASE_UNAVAILABLE_DETAIL

router = APIRouter(tags=['feedback'])

FEEDBACK_TYPES = {'issue', 'idea'}
MAX_FEEDBACK_LENGTH = 2000
MAX_URL_LENGTH = 2048


class CreateFeedbackRequest(BaseModel):
    type: str
    message: str
    url: str | None = None

    @field_validator('type')
    @classmethod
    def validate_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in FEEDBACK_TYPES:
            raise ValueError('Feedback type must be issue or idea.')
        return normalized

    @field_validator('message')
    @classmethod
    def validate_message(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Feedback message is required.')
        if len(normalized) > MAX_FEEDBACK_LENGTH:
            raise ValueError(f'Feedback message must be {MAX_FEEDBACK_LENGTH} characters or fewer.')
        return normalized

    @field_validator('url')
    @classmethod
    def validate_url(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if len(normalized) > MAX_URL_LENGTH:
            raise ValueError('Feedback url is too long.')
        return normalized or None


class FeedbackResponse(BaseModel):
    id: int
    type: str
    message: str
    url: str | None
    user_id: int | None
    created_at: datetime


def feedback_response(feedback: Feedback) -> FeedbackResponse:
    return FeedbackResponse(
        id=feedback.id,
        type=feedback.type,
        message=feedback.message,
        url=feedback.url,
        user_id=feedback.user_id,
        created_at=feedback.created_at,
    )


@router.post('', response_model=FeedbackResponse, status_code=status.HTTP_201_CREATED)
def submit_feedback(
    payload: CreateFeedbackRequest,
    current_user: User | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    feedback = Feedback(
        type=payload.type,
        message=payload.message,
        url=payload.url,
        user_id=current_user.id if current_user is not None else None,
    )
    try:
        db.add(feedback)
        db.commit()
        db.refresh(feedback)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc

    return feedback_response(feedback)


@router.get('/mine', response_model=list[FeedbackResponse])
def list_my_feedback(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        entries = (
            db.query(Feedback)
            .filter(Feedback.user_id == current_user.id)
            .order_by(Feedback.created_at.desc(), Feedback.id.desc())
            .all()
        )
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc

    return [feedback_response(entry) for entry in entries]
