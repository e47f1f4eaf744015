"""Client-side reconciliation of the booking form with server availability.

A ``BookingSession`` tracks one focused (doctor, date) pair, the last
availability view fetched for it, and the slot the user picked. The view is a
cache and is never trusted on its own: the slot is re-checked when it is
selected, again right before the booking request, and whenever the server
announces that availability for the focused pair changed. Any response that
arrives after the user has moved to another doctor or date is dropped.
"""

import asyncio
import logging
import math
import time
from collections.abc import AsyncIterable, Callable
from dataclasses import dataclass
from datetime import date

from booking_client.api import AvailabilityView, BookingApi
from booking_client.draft import BookingDraft, DraftStore
from booking_client.errors import BookingError, DoctorUnavailable, RateLimited, SlotTaken
from booking_client.events import AvailabilityChanged, parse_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notice:
    kind: str
    message: str
    slot: str | None = None


class BookingSession:
    def __init__(
        self,
        api: BookingApi,
        drafts: DraftStore | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.api = api
        self.drafts = drafts
        self._clock = clock

        self.doctor_id: int | None = None
        self.date: date | None = None
        self.view: AvailabilityView | None = None
        self.selected_slot: str | None = None
        self.unavailable_slot: str | None = None
        self.reason = ''
        self.notices: list[Notice] = []
        self.submitting = False

        self._context = 0
        self._cooldown_until: float | None = None

    @property
    def focused(self) -> tuple[int | None, date | None]:
        return self.doctor_id, self.date

    @property
    def slots(self) -> tuple[str, ...]:
        return self.view.slots if self.view else ()

    def cooldown_remaining(self) -> int:
        if self._cooldown_until is None:
            return 0
        remaining = self._cooldown_until - self._clock()
        if remaining <= 0:
            self._cooldown_until = None
            return 0
        return math.ceil(remaining)

    @property
    def can_submit(self) -> bool:
        return (
            not self.submitting
            and self.selected_slot is not None
            and self.cooldown_remaining() == 0
        )

    async def focus(self, doctor_id: int, slot_date: date) -> AvailabilityView | None:
        """Switch to a new doctor/date; the old selection and view are dropped."""
        self._context += 1
        self.doctor_id = doctor_id
        self.date = slot_date
        self.view = None
        self.selected_slot = None
        self.unavailable_slot = None
        self._save_draft()
        return await self.refresh()

    async def refresh(self) -> AvailabilityView | None:
        if self.doctor_id is None or self.date is None:
            return None

        context = self._context
        try:
            view = await self.api.fetch_slots(self.doctor_id, self.date)
        except BookingError as exc:
            if context == self._context:
                self._notify(exc.code, exc.message)
            return None

        if context != self._context:
            logger.debug('Discarding availability for doctor %s on %s: context changed.', view.doctor_id, view.date)
            return None

        self.view = view
        return view

    async def select(self, slot: str) -> bool:
        """Pick ``slot`` from the current view and confirm it against the server.

        ``slot`` must be a label taken from ``self.slots``. Returns ``True`` when
        the slot is still free.
        """
        if self.doctor_id is None or self.date is None:
            raise RuntimeError('Choose a doctor and a date before selecting a time.')

        self.selected_slot = slot
        self.unavailable_slot = None
        self._save_draft()

        view = await self.refresh()
        if view is None:
            return False
        if self.selected_slot != slot:
            # Superseded by a later selection.
            return slot in view
        return self._reconcile_selection(view)

    def set_reason(self, reason: str) -> None:
        self.reason = reason
        self._save_draft()

    async def handle_event(self, event: AvailabilityChanged | dict) -> bool:
        """Re-resolve when ``event`` concerns the focused doctor and date."""
        if isinstance(event, dict):
            event = parse_event(event)
            if event is None:
                return False

        if (event.doctor_id, event.date) != self.focused:
            return False

        view = await self.refresh()
        if view is not None:
            self._reconcile_selection(view)
        return True

    async def listen(self, events: AsyncIterable) -> None:
        async for event in events:
            await self.handle_event(event)

    async def submit(self, reason: str | None = None) -> dict | None:
        """Book the selected slot; returns the reservation or ``None`` with a notice."""
        if reason is not None:
            self.set_reason(reason)

        if self.submitting:
            self._notify('submitting', 'Your booking request is already being sent.')
            return None

        remaining = self.cooldown_remaining()
        if remaining:
            self._notify('rate_limited', f'Please wait {remaining} seconds before submitting again.')
            return None
        if self.selected_slot is None or self.doctor_id is None or self.date is None:
            self._notify('invalid', 'Please select a time slot.')
            return None

        context = self._context
        doctor_id, slot_date, slot = self.doctor_id, self.date, self.selected_slot

        self.submitting = True
        try:
            view = await self.refresh()
            if view is None or context != self._context:
                return None
            if not self._reconcile_selection(view):
                return None

            try:
                reservation = await self.api.book(doctor_id, slot_date, slot, self.reason)
            except SlotTaken:
                if context == self._context:
                    await self._drop_taken_slot(slot)
                return None
            except RateLimited as exc:
                self._cooldown_until = self._clock() + exc.retry_after
                self._notify('rate_limited', f'Too many attempts. You can submit again in {exc.retry_after} seconds.')
                return None
            except DoctorUnavailable as exc:
                if context == self._context:
                    self.selected_slot = None
                    self._notify(exc.code, exc.message)
                    await self.refresh()
                return None
            except BookingError as exc:
                if context == self._context:
                    self._notify(exc.code, exc.message)
                return None
        finally:
            self.submitting = False

        logger.info('Booked %s with doctor %s on %s.', slot, doctor_id, slot_date)
        if context == self._context:
            if self.drafts is not None:
                self.drafts.clear()
            self.selected_slot = None
            self._notify('booked', f'Your appointment at {slot} has been requested.', slot)
        return reservation

    async def wait_for_cooldown(self, on_tick: Callable[[int], None] | None = None, interval: float = 1.0) -> None:
        """Count down the server-imposed retry window without retrying."""
        remaining = self.cooldown_remaining()
        while remaining:
            if on_tick is not None:
                on_tick(remaining)
            await asyncio.sleep(min(interval, remaining))
            remaining = self.cooldown_remaining()
        if on_tick is not None:
            on_tick(0)

    async def restore_draft(self) -> BookingDraft | None:
        if self.drafts is None:
            return None

        draft = self.drafts.load()
        if draft is None or draft.doctor_id is None or draft.date is None:
            return draft

        self.reason = draft.reason
        await self.focus(draft.doctor_id, draft.date)
        if draft.slot:
            await self.select(draft.slot)
        return draft

    def _reconcile_selection(self, view: AvailabilityView) -> bool:
        slot = self.selected_slot
        if slot is None or slot in view:
            return True

        self.selected_slot = None
        self.unavailable_slot = slot
        self._notify('slot_taken', f'The {slot} slot is no longer available. Please choose another time.', slot)
        self._save_draft()
        return False

    async def _drop_taken_slot(self, slot: str) -> None:
        self.selected_slot = None
        self.unavailable_slot = slot
        self._notify('slot_taken', f'The {slot} slot was just booked by someone else. Please choose another time.', slot)
        self._save_draft()
        await self.refresh()

    def _notify(self, kind: str, message: str, slot: str | None = None) -> None:
        self.notices.append(Notice(kind=kind, message=message, slot=slot))

    def _save_draft(self) -> None:
        if self.drafts is None:
            return
        self.drafts.save(BookingDraft(
            doctor_id=self.doctor_id,
            date=self.date,
            slot=self.selected_slot,
            reason=self.reason,
        ))
