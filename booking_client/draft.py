"""Persisted in-progress booking form.

One draft at a time, written as JSON next to the user's other client state.
A draft older than the freshness window is treated as absent and removed.
"""

import datetime
import logging
import time
from collections.abc import Callable
from pathlib import Path

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

DRAFT_TTL_SECONDS = 24 * 60 * 60


class BookingDraft(BaseModel):
    doctor_id: int | None = None
    date: datetime.date | None = None
    slot: str | None = None
    reason: str = ''
    saved_at: float = 0.0


class DraftStore:
    def __init__(
        self,
        path: Path | str,
        ttl_seconds: float = DRAFT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.path = Path(path)
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def save(self, draft: BookingDraft) -> BookingDraft:
        stamped = draft.model_copy(update={'saved_at': self._clock()})
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(stamped.model_dump_json(), encoding='utf-8')
        return stamped

    def load(self) -> BookingDraft | None:
        if not self.path.exists():
            return None

        try:
            draft = BookingDraft.model_validate_json(self.path.read_text(encoding='utf-8'))
        except (OSError, ValidationError, ValueError):
            logger.warning('Discarding unreadable booking draft at %s', self.path)
            self.clear()
            return None

        if self._clock() - draft.saved_at > self.ttl_seconds:
            self.clear()
            return None

        return draft

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
