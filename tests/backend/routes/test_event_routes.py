import asyncio

from backend.routes.event_routes import availability_socket, availability_stream
from backend.services.broadcast import AvailabilityChangedEvent


class ConnectedRequest:
    async def is_disconnected(self) -> bool:
        return False


class ResetSocket:
    """Accepts, then fails every send while the peer stays silent."""

    async def accept(self) -> None:
        pass

    async def send_json(self, payload: dict) -> None:
        raise RuntimeError('connection reset by peer')

    async def receive_text(self) -> str:
        await asyncio.Event().wait()


def test_socket_receives_update_after_booking(client, broadcaster, doctor, monday, make_user, auth_header) -> None:
    patient = make_user('patient@example.com')

    with client.websocket_connect(f'/events/ws?doctor_id={doctor.id}') as websocket:
        response = client.post(
            '/reservations',
            json={'doctor_id': doctor.id, 'date': monday.isoformat(), 'slot': '09:00', 'reason': 'Checkup'},
            headers=auth_header(patient),
        )
        assert response.status_code == 201

        message = websocket.receive_json()

    assert message == {'event': 'doctor-availability-updated', 'doctorId': doctor.id, 'date': monday.isoformat()}


def test_socket_unsubscribes_on_disconnect(client, broadcaster) -> None:
    with client.websocket_connect('/events/ws'):
        pass

    assert broadcaster.subscriber_count == 0


def test_stream_emits_server_sent_events(broadcaster, monday) -> None:
    async def scenario():
        response = await availability_stream(ConnectedRequest(), doctor_id=None, broadcaster=broadcaster)
        chunks = response.body_iterator

        greeting = await chunks.__anext__()
        broadcaster.publish(AvailabilityChangedEvent(7, monday))
        event = await asyncio.wait_for(chunks.__anext__(), timeout=1)
        await chunks.aclose()
        return response.media_type, greeting, event

    media_type, greeting, event = asyncio.run(scenario())

    assert media_type == 'text/event-stream'
    assert greeting == ': connected\n\n'
    assert event == (
        'event: doctor-availability-updated\n'
        f'data: {{"event": "doctor-availability-updated", "doctorId": 7, "date": "{monday.isoformat()}"}}\n\n'
    )
    assert broadcaster.subscriber_count == 0


def test_socket_closes_when_sending_fails(broadcaster, monday, caplog) -> None:
    async def scenario():
        handler = asyncio.create_task(availability_socket(ResetSocket(), doctor_id=None, broadcaster=broadcaster))
        await asyncio.sleep(0)
        broadcaster.publish(AvailabilityChangedEvent(7, monday))
        await asyncio.wait_for(handler, timeout=1)

    with caplog.at_level('ERROR', logger='backend.routes.event_routes'):
        asyncio.run(scenario())

    assert broadcaster.subscriber_count == 0
    assert 'closed after an error' in caplog.text
