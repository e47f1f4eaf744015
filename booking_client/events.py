import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import date

import httpx

logger = logging.getLogger(__name__)

AVAILABILITY_UPDATED_EVENT = 'doctor-availability-updated'


@dataclass(frozen=True)
class AvailabilityChanged:
    doctor_id: int
    date: date


def parse_event(payload: dict) -> AvailabilityChanged | None:
    if payload.get('event') != AVAILABILITY_UPDATED_EVENT:
        return None
    try:
        return AvailabilityChanged(
            doctor_id=int(payload['doctorId']),
            date=date.fromisoformat(payload['date']),
        )
    except (KeyError, TypeError, ValueError):
        logger.warning('Ignoring malformed availability event: %r', payload)
        return None


async def stream_availability_events(
    client: httpx.AsyncClient,
    doctor_id: int | None = None,
    path: str = '/events/stream',
) -> AsyncIterator[AvailabilityChanged]:
    """Yield availability events from the server-sent event stream."""
    params = {'doctor_id': doctor_id} if doctor_id is not None else None
    async with client.stream('GET', path, params=params, timeout=None) as response:
        response.raise_for_status()
        async for line in response.aiter_lines():
            if not line.startswith('data:'):
                continue
            try:
                payload = json.loads(line[len('data:'):].strip())
            except ValueError:
                logger.warning('Ignoring undecodable event line: %r', line)
                continue
            event = parse_event(payload)
            if event is not None:
                yield event
