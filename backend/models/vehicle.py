"""Vehicle model definitions."""

from sqlalchemy import Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from backend.database import Base


class Vehicle(Base):
    """The vehicle attached to a single appointment."""
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), unique=True, nullable=False)
    year = Column(Integer, nullable=False)
    make = Column(String, nullable=False)
    model = Column(String, nullable=False)
    vin = Column(String)
    mileage = Column(Integer)
    color = Column(String)

    appointment = relationship("Appointment", back_populates="vehicle")
