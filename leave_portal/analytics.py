"""
Reporting and analytics over a snapshot of leave applications.

Everything here is a pure function of the list it is given; dashboards
fetch the current records and recompute from scratch on every refresh.
"""
import csv
import io
from datetime import date, datetime, timezone

from .models import APPROVED, LEAVE_STATUSES, PENDING, REJECTED

DEFAULT_LEAVE_TYPE = 'Other'


def _round(value):
    # Half-up, the way dashboard percentages have always been shown
    return int(value + 0.5)


def percentage(part, total):
    if not total:
        return 0
    return _round(part / total * 100)


def _as_datetime(value):
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return datetime.fromisoformat(str(value).replace('Z', '+00:00'))


def _month_key(value):
    moment = _as_datetime(value)
    return f'{moment.year}-{moment.month:02d}'


def status_counts(leaves):
    counts = {status: 0 for status in LEAVE_STATUSES}
    for leave in leaves:
        if leave.status in counts:
            counts[leave.status] += 1
    counts['total'] = len(leaves)
    return counts


def status_breakdown(leaves):
    counts = status_counts(leaves)
    return [
        {
            'name': status.capitalize(),
            'value': counts[status],
            'percentage': percentage(counts[status], counts['total']),
        }
        for status in (APPROVED, REJECTED, PENDING)
    ]


def leaves_by_month(leaves):
    months = {}
    for leave in leaves:
        key = _month_key(leave.applied_on)
        months[key] = months.get(key, 0) + 1
    return [{'month': month, 'count': count} for month, count in sorted(months.items())]


def monthly_trends(leaves, months=None, now=None):
    """Approved/rejected/pending counts per month, optionally only the last `months` months"""
    if months is not None:
        now = now or datetime.now(timezone.utc)
        cutoff = _months_before(now, months)
        leaves = [leave for leave in leaves if _comparable(leave.applied_on, now) >= cutoff]

    periods = {}
    for leave in leaves:
        stats = periods.setdefault(_month_key(leave.applied_on),
                                   {APPROVED: 0, REJECTED: 0, PENDING: 0})
        if leave.status in stats:
            stats[leave.status] += 1

    return [
        {
            'period': period,
            'approved': stats[APPROVED],
            'rejected': stats[REJECTED],
            'pending': stats[PENDING],
            'total': stats[APPROVED] + stats[REJECTED] + stats[PENDING],
        }
        for period, stats in sorted(periods.items())
    ]


def leaves_by_type(leaves):
    types = {}
    for leave in leaves:
        leave_type = leave.leave_type or DEFAULT_LEAVE_TYPE
        types[leave_type] = types.get(leave_type, 0) + 1
    total = len(leaves)
    rows = [
        {'type': leave_type, 'count': count, 'percentage': percentage(count, total)}
        for leave_type, count in types.items()
    ]
    return sorted(rows, key=lambda row: row['count'], reverse=True)


def _group_by_requester(leaves):
    groups = {}
    for leave in leaves:
        group = groups.setdefault(leave.requester_id, {'name': leave.requester_name, 'leaves': []})
        group['leaves'].append(leave)
    return groups


def top_requesters(leaves, n=10):
    rows = [
        {'requester_id': requester_id, 'requester_name': group['name'], 'count': len(group['leaves'])}
        for requester_id, group in _group_by_requester(leaves).items()
    ]
    rows.sort(key=lambda row: row['count'], reverse=True)
    return rows[:n]


def average_duration(leaves):
    if not leaves:
        return 0
    return _round(sum(leave.duration_days for leave in leaves) / len(leaves))


def requester_patterns(leaves):
    patterns = []
    for requester_id, group in _group_by_requester(leaves).items():
        own = group['leaves']
        approved = sum(1 for leave in own if leave.status == APPROVED)
        patterns.append({
            'requester_id': requester_id,
            'requester_name': group['name'],
            'total_leaves': len(own),
            'approved_rate': percentage(approved, len(own)),
            'average_duration': average_duration(own),
            'emergency_count': sum(1 for leave in own if leave.is_emergency),
        })
    patterns.sort(key=lambda row: row['total_leaves'], reverse=True)
    return patterns


def filter_leaves(leaves, start_date=None, end_date=None, requester_id=None,
                  leave_type=None, status=None, audience=None):
    """Filter on the day each leave was applied for (inclusive range) and on plain fields"""
    start = _as_datetime(start_date).date() if start_date else None
    end = _as_datetime(end_date).date() if end_date else None

    selected = []
    for leave in leaves:
        applied = _as_datetime(leave.applied_on).date()
        if start and applied < start:
            continue
        if end and applied > end:
            continue
        if requester_id is not None and str(leave.requester_id) != str(requester_id):
            continue
        if leave_type and leave.leave_type != leave_type:
            continue
        if status and leave.status != status:
            continue
        if audience in ('student', 'faculty') and leave.requester_role != audience:
            continue
        selected.append(leave)
    return selected


class LeaveReport:
    def __init__(self, leaves, top_n=10):
        counts = status_counts(leaves)
        self.total_leaves = counts['total']
        self.approved_leaves = counts[APPROVED]
        self.rejected_leaves = counts[REJECTED]
        self.pending_leaves = counts[PENDING]
        self.average_duration = average_duration(leaves)
        self.emergency_leaves = sum(1 for leave in leaves if leave.is_emergency)
        self.leaves_by_type = [
            {'type': row['type'], 'count': row['count']} for row in leaves_by_type(leaves)
        ]
        self.leaves_by_month = leaves_by_month(leaves)
        self.top_requesters = top_requesters(leaves, top_n)

    def to_dict(self):
        return dict(vars(self))


def build_report(leaves, **filters):
    return LeaveReport(filter_leaves(leaves, **filters))


def dashboard_stats(leaves, audience='all', recent=5):
    """Everything the admin dashboard shows, for one audience"""
    if audience in ('student', 'faculty'):
        leaves = [leave for leave in leaves if leave.requester_role == audience]
    counts = status_counts(leaves)
    newest_first = sorted(leaves, key=lambda leave: _as_datetime(leave.applied_on), reverse=True)
    return {
        'audience': audience,
        'total_leaves': counts['total'],
        'approved_leaves': counts[APPROVED],
        'rejected_leaves': counts[REJECTED],
        'pending_leaves': counts[PENDING],
        'status_data': status_breakdown(leaves),
        'type_data': leaves_by_type(leaves),
        'monthly_data': leaves_by_month(leaves),
        'trends': monthly_trends(leaves),
        'recent_leaves': [leave.to_dict() for leave in newest_first[:recent]],
    }


CSV_HEADERS = [
    'Requester ID', 'Requester Name', 'Leave Type', 'Start Date', 'End Date',
    'Duration (days)', 'Status', 'Emergency', 'Applied On', 'Reason',
]


def export_csv(leaves):
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n')
    writer.writerow(CSV_HEADERS)
    for leave in leaves:
        writer.writerow([
            leave.requester_id,
            leave.requester_name,
            leave.leave_type,
            leave.start_date,
            leave.end_date,
            leave.duration_days,
            leave.status,
            'Yes' if leave.is_emergency else 'No',
            _as_datetime(leave.applied_on).date().isoformat(),
            (leave.reason or '').replace(',', ';'),
        ])
    return buffer.getvalue()


def _months_before(moment, months):
    month_index = moment.year * 12 + moment.month - 1 - months
    year, month = divmod(month_index, 12)
    return moment.replace(year=year, month=month + 1, day=min(moment.day, 28))


def _comparable(value, reference):
    """`value` as a datetime that can be compared with `reference`"""
    moment = _as_datetime(value)
    if reference.tzinfo is not None and moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    if reference.tzinfo is None and moment.tzinfo is not None:
        return moment.replace(tzinfo=None)
    return moment
