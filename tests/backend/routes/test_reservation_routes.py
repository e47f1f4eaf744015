import pytest
from pydantic import ValidationError

from backend.models.reservation import Reservation
from backend.routes.reservation_routes import CreateReservationRequest
from backend.services.registry import get_coordinator
from backend.services.reservations import ReservationCoordinator
from backend.services.throttle import SubmissionThrottle


def _payload(doctor, day, slot='09:00', reason='Persistent cough'):
    return {'doctor_id': doctor.id, 'date': day.isoformat(), 'slot': slot, 'reason': reason}


def test_create_reservation_returns_201(client, doctor, monday, make_user, auth_header) -> None:
    patient = make_user('patient@example.com')

    response = client.post('/reservations', json=_payload(doctor, monday, slot='9:00 AM'), headers=auth_header(patient))

    assert response.status_code == 201
    body = response.json()
    assert body['slot'] == '09:00'
    assert body['status'] == 'pending'
    assert body['patient_id'] == patient.id

    slots = client.get('/availability/slots', params={'doctor_id': doctor.id, 'date': monday.isoformat()}).json()['slots']
    assert slots == ['09:30', '10:00']


def test_second_booking_for_same_slot_conflicts(client, doctor, monday, make_user, auth_header) -> None:
    first = make_user('first@example.com')
    second = make_user('second@example.com')

    assert client.post('/reservations', json=_payload(doctor, monday), headers=auth_header(first)).status_code == 201
    response = client.post('/reservations', json=_payload(doctor, monday), headers=auth_header(second))

    assert response.status_code == 409
    assert response.json()['detail']['code'] == 'slot_taken'
    assert response.json()['detail']['success'] is False


def test_booking_closed_day_is_doctor_unavailable(client, doctor, sunday, make_user, auth_header) -> None:
    patient = make_user('patient@example.com')

    response = client.post('/reservations', json=_payload(doctor, sunday), headers=auth_header(patient))

    assert response.status_code == 409
    assert response.json()['detail']['code'] == 'doctor_unavailable'


def test_booking_without_reason_is_invalid(client, db, doctor, monday, make_user, auth_header) -> None:
    patient = make_user('patient@example.com')

    response = client.post('/reservations', json=_payload(doctor, monday, reason=' '), headers=auth_header(patient))

    assert response.status_code == 400
    assert response.json()['detail']['code'] == 'invalid'
    assert db.query(Reservation).count() == 0


def test_booking_unknown_doctor_returns_404(client, monday, make_user, auth_header) -> None:
    patient = make_user('patient@example.com')

    response = client.post(
        '/reservations',
        json={'doctor_id': 999, 'date': monday.isoformat(), 'slot': '09:00', 'reason': 'Checkup'},
        headers=auth_header(patient),
    )

    assert response.status_code == 404


def test_rapid_resubmission_returns_429_with_retry_after(client, broadcaster, doctor, monday, make_user, auth_header) -> None:
    from backend.main import app

    throttled = ReservationCoordinator(broadcaster, throttle=SubmissionThrottle(5, clock=lambda: 50.0))
    app.dependency_overrides[get_coordinator] = lambda: throttled
    patient = make_user('patient@example.com')

    assert client.post('/reservations', json=_payload(doctor, monday), headers=auth_header(patient)).status_code == 201
    response = client.post('/reservations', json=_payload(doctor, monday, slot='09:30'), headers=auth_header(patient))

    assert response.status_code == 429
    assert response.headers['Retry-After'] == '5'
    assert response.json()['detail']['code'] == 'rate_limited'
    assert response.json()['detail']['retry_after'] == 5


def test_only_patients_can_book(client, doctor, monday, make_user, auth_header) -> None:
    staff = make_user('staff@example.com', role='doctor', doctor_id=doctor.id)

    response = client.post('/reservations', json=_payload(doctor, monday), headers=auth_header(staff))

    assert response.status_code == 403


def test_booking_requires_a_token(client, doctor, monday) -> None:
    assert client.post('/reservations', json=_payload(doctor, monday)).status_code in (401, 403)

    response = client.post('/reservations', json=_payload(doctor, monday), headers={'Authorization': 'Bearer garbage'})
    assert response.status_code == 401


def test_mine_lists_own_reservations(client, doctor, monday, make_user, auth_header) -> None:
    patient = make_user('patient@example.com')
    other = make_user('other@example.com')
    client.post('/reservations', json=_payload(doctor, monday, slot='10:00'), headers=auth_header(patient))
    client.post('/reservations', json=_payload(doctor, monday, slot='09:00'), headers=auth_header(other))

    response = client.get('/reservations/mine', headers=auth_header(patient))

    assert response.status_code == 200
    assert [entry['slot'] for entry in response.json()] == ['10:00']


def test_cancel_reopens_slot(client, doctor, monday, make_user, auth_header) -> None:
    patient = make_user('patient@example.com')
    reservation_id = client.post('/reservations', json=_payload(doctor, monday), headers=auth_header(patient)).json()['id']

    response = client.put(
        f'/reservations/{reservation_id}/cancel',
        json={'reason': 'Schedule conflict'},
        headers=auth_header(patient),
    )

    assert response.status_code == 200
    assert response.json()['status'] == 'cancelled'
    assert response.json()['cancellation_reason'] == 'Schedule conflict'
    slots = client.get('/availability/slots', params={'doctor_id': doctor.id, 'date': monday.isoformat()}).json()['slots']
    assert '09:00' in slots

    again = client.put(f'/reservations/{reservation_id}/cancel', headers=auth_header(patient))
    assert again.status_code == 409


def test_cancel_by_someone_else_is_forbidden(client, doctor, monday, make_user, auth_header) -> None:
    owner = make_user('owner@example.com')
    intruder = make_user('intruder@example.com')
    reservation_id = client.post('/reservations', json=_payload(doctor, monday), headers=auth_header(owner)).json()['id']

    response = client.put(f'/reservations/{reservation_id}/cancel', headers=auth_header(intruder))

    assert response.status_code == 403


def test_cancel_unknown_reservation_returns_404(client, make_user, auth_header) -> None:
    patient = make_user('patient@example.com')

    assert client.put('/reservations/12345/cancel', headers=auth_header(patient)).status_code == 404


def test_assigned_doctor_confirms_pending_reservation(client, doctor, monday, make_user, auth_header) -> None:
    patient = make_user('patient@example.com')
    physician = make_user('physician@example.com', role='doctor', doctor_id=doctor.id)
    reservation_id = client.post('/reservations', json=_payload(doctor, monday), headers=auth_header(patient)).json()['id']

    assert client.put(f'/reservations/{reservation_id}/confirm', headers=auth_header(patient)).status_code == 403

    response = client.put(f'/reservations/{reservation_id}/confirm', headers=auth_header(physician))

    assert response.status_code == 200
    assert response.json()['status'] == 'confirmed'


def test_create_reservation_request_strips_slot() -> None:
    request = CreateReservationRequest(doctor_id=1, date='2030-01-07', slot='  9:00 AM ', reason='Checkup')

    assert request.slot == '9:00 AM'


def test_create_reservation_request_rejects_blank_slot() -> None:
    with pytest.raises(ValidationError):
        CreateReservationRequest(doctor_id=1, date='2030-01-07', slot='   ')
