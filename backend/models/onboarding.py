"""Onboarding progress tracking model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from backend.database import Base


class OnboardingTracking(Base):
    """One row per onboarding session, updated as the user moves through steps."""
    __tablename__ = "onboarding_tracking"
    __table_args__ = (
        UniqueConstraint("onboarding_type", "session_id", name="uq_onboarding_tracking_session"),
    )

    id = Column(Integer, primary_key=True)
    onboarding_type = Column(String, nullable=False)
    session_id = Column(String, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True)
    current_step = Column(Integer, nullable=False)
    current_step_name = Column(String)
    highest_step_reached = Column(Integer, nullable=False)
    total_steps = Column(Integer, nullable=False)
    dropped_off = Column(Boolean, default=False)
    drop_off_step = Column(Integer)
    drop_off_step_name = Column(String)
    drop_off_page = Column(String)
    time_on_last_step_seconds = Column(Integer)
    total_time_seconds = Column(Integer)
    last_active_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
