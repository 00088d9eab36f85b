from datetime import date, datetime

import pytest
from fastapi import HTTPException

from backend.core.exceptions import StoreError
from backend.routes import mechanic_routes
from backend.routes.mechanic_routes import MechanicProfileUpdateRequest, StartJobRequest
from backend.services.quote_editor import QuoteDraft
from backend.store import AppointmentStore


def test_submit_quote_route_returns_saved_quote(db, make_mechanic, make_appointment) -> None:
    mechanic = make_mechanic()
    appointment = make_appointment()

    quote = mechanic_routes.submit_quote(
        appointment.id,
        QuoteDraft(price='120', date='2024-06-01', time='14:30'),
        mechanic=mechanic,
        db=db,
    )

    assert quote.mechanic_id == mechanic.id
    assert quote.eta == datetime(2024, 6, 1, 14, 30)
    buckets = mechanic_routes.list_mechanic_appointments(mechanic=mechanic, db=db)
    assert [card.id for card in buckets.upcoming] == [appointment.id]


def test_submit_quote_with_empty_price_is_bad_request(db, make_mechanic, make_appointment) -> None:
    mechanic = make_mechanic()
    appointment = make_appointment()

    with pytest.raises(HTTPException) as exception_info:
        mechanic_routes.submit_quote(
            appointment.id,
            QuoteDraft(price='', date='2024-06-01', time='14:30'),
            mechanic=mechanic,
            db=db,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Please enter a price, date and time for your quote.'


def test_cancel_quote_without_confirmation_is_bad_request(db, make_mechanic, make_appointment, make_quote) -> None:
    mechanic = make_mechanic()
    appointment = make_appointment()
    quote = make_quote(appointment, mechanic)

    with pytest.raises(HTTPException) as exception_info:
        mechanic_routes.cancel_quote(appointment.id, quote.id, confirm=False, mechanic=mechanic, db=db)

    assert exception_info.value.status_code == 400


def test_cancel_missing_quote_is_not_found(db, make_mechanic, make_appointment) -> None:
    mechanic = make_mechanic()
    appointment = make_appointment()

    with pytest.raises(HTTPException) as exception_info:
        mechanic_routes.cancel_quote(appointment.id, 404, confirm=True, mechanic=mechanic, db=db)

    assert exception_info.value.status_code == 404


def test_second_skip_is_conflict(db, make_mechanic, make_appointment) -> None:
    mechanic = make_mechanic()
    make_mechanic(first_name='Alex')
    appointment = make_appointment()

    first = mechanic_routes.skip_appointment(appointment.id, mechanic=mechanic, db=db)
    assert first.status == 'pending'

    with pytest.raises(HTTPException) as exception_info:
        mechanic_routes.skip_appointment(appointment.id, mechanic=mechanic, db=db)
    assert exception_info.value.status_code == 409


def test_store_failure_maps_to_service_unavailable(db, make_mechanic, monkeypatch) -> None:
    mechanic = make_mechanic()

    def failing_fetch(store, mechanic_id):
        raise StoreError('list_appointments failed')

    monkeypatch.setattr(mechanic_routes, 'fetch_buckets', failing_fetch)

    with pytest.raises(HTTPException) as exception_info:
        mechanic_routes.list_mechanic_appointments(mechanic=mechanic, db=db)

    assert exception_info.value.status_code == 503
    assert exception_info.value.detail == 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'


def test_start_and_cancel_job_routes(db, make_mechanic, make_appointment, make_quote) -> None:
    mechanic = make_mechanic()
    appointment = make_appointment(status='confirmed')
    make_quote(appointment, mechanic, price='80.00', status='accepted')
    AppointmentStore(db).update_appointment(appointment, selected_mechanic_id=mechanic.id)

    started = mechanic_routes.start_job(appointment.id, StartJobRequest(eta_minutes=20), mechanic=mechanic, db=db)
    cancelled = mechanic_routes.cancel_job(appointment.id, mechanic=mechanic, db=db)

    assert started.status == 'in_progress'
    assert cancelled.status == 'cancelled'
    assert str(cancelled.cancellation_fee) == '4.00'


def test_complete_job_by_unselected_mechanic_is_forbidden(db, make_mechanic, make_appointment) -> None:
    mechanic = make_mechanic()
    appointment = make_appointment(status='in_progress')

    with pytest.raises(HTTPException) as exception_info:
        mechanic_routes.complete_job(appointment.id, mechanic=mechanic, db=db)

    assert exception_info.value.status_code == 403


def test_schedule_route_places_quote_on_its_day(db, make_mechanic, make_appointment, make_quote) -> None:
    me = make_mechanic()
    chosen = make_mechanic(first_name='Alex')
    appointment = make_appointment(status='confirmed')
    make_quote(appointment, me, eta=datetime(2024, 6, 5, 14, 30))
    AppointmentStore(db).update_appointment(appointment, selected_mechanic_id=chosen.id)

    week = mechanic_routes.get_schedule(anchor=date(2024, 5, 29), offset_weeks=1, mechanic=me, db=db)

    assert week.week_start == date(2024, 6, 3)
    entries = [entry for day in week.days for entry in day.entries]
    assert [(entry.appointment_id, entry.display_status) for entry in entries] == [(appointment.id, 'pending')]
    assert entries[0].eta.date() == date(2024, 6, 5)


def test_dashboard_snapshot_bundles_buckets_and_week(db, make_mechanic, make_appointment) -> None:
    mechanic = make_mechanic()
    appointment = make_appointment()

    snapshot = mechanic_routes.build_dashboard_snapshot(AppointmentStore(db), mechanic.id, anchor=date(2024, 6, 3))

    assert [card.id for card in snapshot.buckets.available] == [appointment.id]
    assert snapshot.schedule.label == 'June 3 - 9, 2024'


def test_update_profile_merges_metadata_and_completes_onboarding(db, make_mechanic) -> None:
    mechanic = make_mechanic()
    mechanic.profile_metadata = {'tools': 'full'}
    db.commit()

    response = mechanic_routes.update_profile(
        MechanicProfileUpdateRequest(
            business_name='  Rivera Auto ',
            metadata={'mobile': True},
            onboarding_step='completed',
        ),
        mechanic=mechanic,
        db=db,
    )

    assert response.business_name == 'Rivera Auto'
    assert response.metadata == {'tools': 'full', 'mobile': True}
    assert response.onboarding_completed is True
    assert response.is_complete is True
    assert response.first_name == 'Sam'


def test_profile_update_rejects_unknown_onboarding_step() -> None:
    with pytest.raises(ValueError):
        MechanicProfileUpdateRequest(onboarding_step='halfway')
