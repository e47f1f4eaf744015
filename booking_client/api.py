"""Thin async wrapper over the booking REST API."""

import logging
from dataclasses import dataclass
from datetime import date

import httpx

from booking_client.errors import (
    ERRORS_BY_CODE,
    BookingError,
    DoctorNotFound,
    InvalidBooking,
    NetworkUnreachable,
    RateLimited,
    ServerError,
)

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_SECONDS = 5


@dataclass(frozen=True)
class AvailabilityView:
    doctor_id: int
    date: date
    slots: tuple[str, ...]
    message: str | None = None

    def __contains__(self, slot: str) -> bool:
        return slot in self.slots


class BookingApi:
    def __init__(self, client: httpx.AsyncClient, token: str | None = None) -> None:
        self.client = client
        self.token = token

    def _headers(self) -> dict:
        return {'Authorization': f'Bearer {self.token}'} if self.token else {}

    async def fetch_slots(self, doctor_id: int, slot_date: date) -> AvailabilityView:
        response = await self._request(
            'GET',
            '/availability/slots',
            params={'doctor_id': doctor_id, 'date': slot_date.isoformat()},
        )
        body = response.json()
        return AvailabilityView(
            doctor_id=doctor_id,
            date=slot_date,
            slots=tuple(body.get('slots') or ()),
            message=body.get('message'),
        )

    async def book(self, doctor_id: int, slot_date: date, slot: str, reason: str) -> dict:
        response = await self._request(
            'POST',
            '/reservations',
            json={'doctor_id': doctor_id, 'date': slot_date.isoformat(), 'slot': slot, 'reason': reason},
            headers=self._headers(),
        )
        return response.json()

    async def cancel(self, reservation_id: int, reason: str | None = None) -> dict:
        response = await self._request(
            'PUT',
            f'/reservations/{reservation_id}/cancel',
            json={'reason': reason},
            headers=self._headers(),
        )
        return response.json()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            logger.warning('Booking API unreachable: %s %s (%s)', method, url, exc)
            raise NetworkUnreachable('Unable to reach the booking service. Check your connection and try again.') from exc

        if response.is_success:
            return response
        raise error_from_response(response)


def error_from_response(response: httpx.Response) -> BookingError:
    try:
        body = response.json()
    except ValueError:
        body = {}

    detail = body.get('detail') if isinstance(body, dict) else None
    if isinstance(detail, dict):
        code = detail.get('code')
        message = detail.get('message') or 'Request failed.'
    else:
        code = None
        message = detail if isinstance(detail, str) else 'Request failed.'

    if response.status_code == 429 or code == 'rate_limited':
        retry_after = _retry_after(detail, response)
        return RateLimited(message, retry_after=retry_after)

    if code in ERRORS_BY_CODE:
        return ERRORS_BY_CODE[code](message)
    if response.status_code == 404:
        return DoctorNotFound(message)
    if response.status_code in (400, 422):
        return InvalidBooking(message if isinstance(detail, (str, dict)) else 'Please check the booking details.')
    return ServerError(message)


def _retry_after(detail, response: httpx.Response) -> int:
    if isinstance(detail, dict) and detail.get('retry_after') is not None:
        return int(detail['retry_after'])
    header = response.headers.get('Retry-After')
    if header and header.isdigit():
        return int(header)
    return DEFAULT_RETRY_AFTER_SECONDS
