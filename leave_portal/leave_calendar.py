"""
Calendar view data: approved leaves and college holidays as dated events.

Event dates are inclusive on both ends, like the leave records themselves.
"""
import logging

from .errors import NotFoundError, ValidationError
from .models import APPROVED, _as_date
from .notifications import record_audit
from .submission import parse_date

logger = logging.getLogger(__name__)


def list_holidays(client, start=None, end=None):
    holidays = client.select('holidays', order_by='holiday_date')
    return [holiday for holiday in holidays
            if _in_range(_as_date(holiday.holiday_date), _as_date(holiday.holiday_date), start, end)]


def add_holiday(client, actor, title, holiday_date, description=None):
    title = (title or '').strip()
    if not title or not holiday_date:
        raise ValidationError('Holiday title and date are required')
    holiday = client.insert('holidays', {
        'title': title,
        'holiday_date': parse_date(holiday_date, 'holiday_date'),
        'description': (description or '').strip() or None,
        'created_by': actor.user_id,
    })
    record_audit(client, actor.user_id, 'create_holiday', 'holiday', holiday.id, {'title': title})
    return holiday


def delete_holiday(client, actor, holiday_id):
    deleted = client.delete('holidays', where={'id': holiday_id})
    if not deleted:
        raise NotFoundError('Holiday not found')
    record_audit(client, actor.user_id, 'delete_holiday', 'holiday', holiday_id,
                 {'title': deleted[0].title})
    return deleted[0]


def _in_range(first, last, start, end):
    if start is not None and last < start:
        return False
    if end is not None and first > end:
        return False
    return True


def calendar_events(leaves, holidays, start=None, end=None):
    """Approved leaves and holidays overlapping [start, end], ordered by start date"""
    events = []
    for leave in leaves:
        if leave.status != APPROVED:
            continue
        first, last = _as_date(leave.start_date), _as_date(leave.end_date)
        if not _in_range(first, last, start, end):
            continue
        events.append({
            'id': f'leave-{leave.id}',
            'type': 'leave',
            'title': f'{leave.requester_name or "Student"} - {leave.leave_type}',
            'start': first.isoformat(),
            'end': last.isoformat(),
            'requester': leave.requester_name,
            'reason': leave.reason,
        })
    for holiday in holidays:
        day = _as_date(holiday.holiday_date)
        if not _in_range(day, day, start, end):
            continue
        events.append({
            'id': f'holiday-{holiday.id}',
            'type': 'holiday',
            'title': holiday.title,
            'start': day.isoformat(),
            'end': day.isoformat(),
            'description': holiday.description,
        })
    events.sort(key=lambda event: (event['start'], event['id']))
    return events
