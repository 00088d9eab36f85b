"""Mechanic profile, quote and skip model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, JSON, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from backend.database import Base


class MechanicProfile(Base):
    """Business identity of a mechanic; its id is the mechanic_id used elsewhere."""
    __tablename__ = "mechanic_profiles"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    first_name = Column(String)
    last_name = Column(String)
    phone = Column(String)
    business_name = Column(String)
    bio = Column(Text)
    service_radius_miles = Column(Integer)
    specialties = Column(JSON, default=list)
    profile_metadata = Column("metadata", JSON, default=dict)
    onboarding_step = Column(String, default="personal_info")
    onboarding_completed = Column(Boolean, default=False)
    rating = Column(Float, default=0.0)
    review_count = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def display_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or self.business_name or "Mechanic"


class MechanicQuote(Base):
    """One mechanic's bid on one appointment."""
    __tablename__ = "mechanic_quotes"
    __table_args__ = (
        UniqueConstraint("appointment_id", "mechanic_id", name="uq_mechanic_quotes_appointment_mechanic"),
    )

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    mechanic_id = Column(Integer, ForeignKey("mechanic_profiles.id"), nullable=False, index=True)
    price = Column(Numeric(10, 2), nullable=False)
    eta = Column(DateTime, nullable=False)
    notes = Column(Text, default="")
    status = Column(String, default="pending")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    appointment = relationship("Appointment", back_populates="quotes")
    mechanic = relationship("MechanicProfile")


class MechanicSkippedAppointment(Base):
    """Records that a mechanic dismissed an appointment from their own feed."""
    __tablename__ = "mechanic_skipped_appointments"
    __table_args__ = (
        UniqueConstraint("mechanic_id", "appointment_id", name="uq_mechanic_skips_mechanic_appointment"),
    )

    id = Column(Integer, primary_key=True)
    mechanic_id = Column(Integer, ForeignKey("mechanic_profiles.id"), nullable=False, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False)
    skipped_at = Column(DateTime, default=datetime.utcnow)


class AppointmentCancellation(Base):
    __tablename__ = "appointment_cancellations"

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False)
    mechanic_id = Column(Integer, ForeignKey("mechanic_profiles.id"), nullable=False)
    cancellation_fee = Column(Numeric(10, 2), nullable=False)
    reason = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
