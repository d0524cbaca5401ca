"""Timetable slots for one class/stream, stored as a JSON list."""

import re
import uuid

DAYS = ['monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday']
TIME_RE = re.compile(r'^([01]\d|2[0-3]):([0-5]\d)$')


def _minutes(value):
    match = TIME_RE.match((value or '').strip())
    if not match:
        raise ValueError(f'Invalid time "{value}". Use HH:MM.')
    return int(match.group(1)) * 60 + int(match.group(2))


def _text(payload, *keys):
    for key in keys:
        value = payload.get(key)
        if value not in (None, ''):
            return str(value).strip()
    return ''


def validate_slot(payload, slot_id=None):
    """Normalize a submitted slot; accepts camelCase or snake_case time keys."""
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValueError('Invalid slot payload.')
    day = _text(payload, 'day').lower()
    if day not in DAYS:
        raise ValueError('Day must be one of Monday to Saturday.')
    subject = _text(payload, 'subject')
    if not subject:
        raise ValueError('Subject is required.')
    start_time = _text(payload, 'start_time', 'startTime')
    end_time = _text(payload, 'end_time', 'endTime')
    if _minutes(end_time) <= _minutes(start_time):
        raise ValueError('End time must be after start time.')
    teacher_id = _text(payload, 'teacher_id')
    return {
        'id': slot_id or _text(payload, 'id') or uuid.uuid4().hex,
        'day': day,
        'subject': subject,
        'subject_code': _text(payload, 'subject_code'),
        'teacher_id': int(teacher_id) if teacher_id.isdigit() else None,
        'teacher': _text(payload, 'teacher'),
        'start_time': start_time,
        'end_time': end_time,
        'location': _text(payload, 'location'),
    }


def find_overlaps(slots, candidate):
    """Slots on the candidate's day whose time range intersects it."""
    start = _minutes(candidate['start_time'])
    end = _minutes(candidate['end_time'])
    overlaps = []
    for slot in slots:
        if slot.get('id') == candidate.get('id') or slot.get('day') != candidate['day']:
            continue
        if _minutes(slot['start_time']) < end and start < _minutes(slot['end_time']):
            overlaps.append(slot)
    return overlaps


def _reject_overlap(slots, candidate):
    clashes = find_overlaps(slots, candidate)
    if clashes:
        other = clashes[0]
        raise ValueError(
            f"{candidate['day'].title()} {candidate['start_time']}-{candidate['end_time']} overlaps "
            f"{other['subject']} ({other['start_time']}-{other['end_time']})."
        )


def sort_slots(slots):
    return sorted(slots, key=lambda s: (DAYS.index(s['day']) if s.get('day') in DAYS else len(DAYS),
                                        s.get('start_time', '')))


def add_slot(slots, payload):
    slot = validate_slot(payload)
    _reject_overlap(slots, slot)
    return sort_slots(list(slots) + [slot]), slot


def update_slot(slots, slot_id, payload):
    if not any(s.get('id') == slot_id for s in slots):
        raise KeyError(slot_id)
    slot = validate_slot(payload, slot_id=slot_id)
    _reject_overlap(slots, slot)
    return sort_slots([slot if s.get('id') == slot_id else s for s in slots]), slot


def remove_slot(slots, slot_id):
    remaining = [s for s in slots if s.get('id') != slot_id]
    if len(remaining) == len(slots):
        raise KeyError(slot_id)
    return remaining


def slots_by_day(slots):
    grouped = {day: [] for day in DAYS}
    for slot in sort_slots(slots):
        grouped.setdefault(slot['day'], []).append(slot)
    return grouped
