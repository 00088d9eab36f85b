"""Pytest configuration and fixtures."""

import os
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from backend.database import Base  # noqa: E402
from backend.models.appointment import Appointment  # noqa: E402
from backend.models.feedback import Feedback  # noqa: E402, F401
from backend.models.mechanic import MechanicProfile, MechanicQuote  # noqa: E402
from backend.models.onboarding import OnboardingTracking  # noqa: E402, F401
from backend.models.user import CustomerProfile, User  # noqa: E402, F401
from backend.models.vehicle import Vehicle  # noqa: E402


@pytest.fixture
def session_factory():
    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    try:
        yield factory
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    counter = {'value': 0}

    def _make_user(role: str = 'customer', email: str | None = None, auth_provider: str = 'email') -> User:
        counter['value'] += 1
        user = User(
            email=email or f'{role}{counter["value"]}@example.com',
            hashed_password='',
            role=role,
            auth_provider=auth_provider,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_mechanic(db, make_user):
    def _make_mechanic(first_name: str = 'Sam', last_name: str = 'Rivera') -> MechanicProfile:
        user = make_user(role='mechanic')
        profile = MechanicProfile(user_id=user.id, first_name=first_name, last_name=last_name, phone='5550100')
        db.add(profile)
        db.commit()
        db.refresh(profile)
        return profile

    return _make_mechanic


@pytest.fixture
def make_appointment(db):
    def _make_appointment(
        status: str = 'pending',
        appointment_date: datetime = datetime(2024, 6, 3, 9, 0),
        user_id: int | None = None,
        with_vehicle: bool = True,
        location: str = '12 Main St, Springfield',
        phone_number: str | None = None,
    ) -> Appointment:
        appointment = Appointment(
            status=status,
            location=location,
            appointment_date=appointment_date,
            car_runs=True,
            issue_description='Brakes squeal',
            selected_services=['Brake inspection'],
            selected_car_issues=['Noise'],
            user_id=user_id,
            phone_number=phone_number,
        )
        db.add(appointment)
        db.flush()
        if with_vehicle:
            db.add(Vehicle(appointment_id=appointment.id, year=2018, make='Honda', model='Civic'))
        db.commit()
        db.refresh(appointment)
        return appointment

    return _make_appointment


@pytest.fixture
def make_quote(db):
    def _make_quote(
        appointment: Appointment,
        mechanic: MechanicProfile,
        price: str = '120.00',
        eta: datetime = datetime(2024, 6, 4, 10, 0),
        status: str = 'pending',
    ) -> MechanicQuote:
        quote = MechanicQuote(
            appointment_id=appointment.id,
            mechanic_id=mechanic.id,
            price=Decimal(price),
            eta=eta,
            notes='',
            status=status,
        )
        db.add(quote)
        db.commit()
        db.refresh(quote)
        return quote

    return _make_quote
