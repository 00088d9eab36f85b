"""Appointment model definitions."""

import enum
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, Numeric, String, Text
from sqlalchemy.orm import relationship

from backend.database import Base


class AppointmentStatus(str, enum.Enum):
    """Persisted appointment status vocabulary."""

    DRAFT = "draft"
    PENDING = "pending"
    QUOTED = "quoted"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Appointment(Base):
    """Represents one service request from a vehicle owner."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    status = Column(String, default=AppointmentStatus.PENDING.value, nullable=False)
    location = Column(String, nullable=False)
    appointment_date = Column(DateTime, nullable=False)
    car_runs = Column(Boolean, nullable=True)
    issue_description = Column(Text)
    selected_services = Column(JSON, default=list)
    selected_car_issues = Column(JSON, default=list)
    phone_number = Column(String)
    source = Column(String)

    selected_mechanic_id = Column(Integer, ForeignKey("mechanic_profiles.id"), nullable=True)
    selected_quote_id = Column(Integer, nullable=True)
    price = Column(Numeric(10, 2))
    mechanic_eta_minutes = Column(Integer)

    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    cancelled_at = Column(DateTime)
    cancelled_by = Column(String)
    cancellation_reason = Column(String)
    cancellation_fee = Column(Numeric(10, 2))

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    vehicle = relationship("Vehicle", back_populates="appointment", uselist=False)
    quotes = relationship("MechanicQuote", back_populates="appointment", order_by="MechanicQuote.created_at")
