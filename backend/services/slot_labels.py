"""Slot label parsing.

Labels arrive in several spellings ("9:30 AM", "09:30", "9:30"). Everything
is folded to a 24-hour ``HH:MM`` string before it is compared or stored, so two
spellings of the same wall-clock minute always name the same slot.
"""

import re
from datetime import datetime, time, timedelta

_LABEL_PATTERN = re.compile(r'^\s*(\d{1,2}):(\d{2})\s*(AM|PM)?\s*$', re.IGNORECASE)


class InvalidSlotLabel(ValueError):
    pass


def parse_slot_label(label: str) -> time:
    if not isinstance(label, str):
        raise InvalidSlotLabel('Slot label must be a string.')

    match = _LABEL_PATTERN.match(label)
    if not match:
        raise InvalidSlotLabel(f'Unrecognised slot label: {label!r}.')

    hour = int(match.group(1))
    minute = int(match.group(2))
    period = (match.group(3) or '').upper()

    if period:
        if not 1 <= hour <= 12:
            raise InvalidSlotLabel(f'Unrecognised slot label: {label!r}.')
        if period == 'PM' and hour != 12:
            hour += 12
        elif period == 'AM' and hour == 12:
            hour = 0

    if hour > 23 or minute > 59:
        raise InvalidSlotLabel(f'Unrecognised slot label: {label!r}.')

    return time(hour, minute)


def format_slot_label(value: time) -> str:
    return f'{value.hour:02d}:{value.minute:02d}'


def normalize_slot_label(label: str) -> str:
    return format_slot_label(parse_slot_label(label))


def to_minutes(label: str) -> int:
    value = parse_slot_label(label)
    return value.hour * 60 + value.minute


def build_slot_labels(day_start: str, day_end: str, step_minutes: int) -> list[str]:
    """Labels every ``step_minutes`` from ``day_start`` up to, not including, ``day_end``."""
    if step_minutes <= 0:
        raise ValueError('step_minutes must be positive.')

    anchor = datetime(2000, 1, 1)
    current = datetime.combine(anchor.date(), parse_slot_label(day_start))
    end = datetime.combine(anchor.date(), parse_slot_label(day_end))

    labels: list[str] = []
    while current < end:
        labels.append(format_slot_label(current.time()))
        current += timedelta(minutes=step_minutes)

    return labels
