"""
Authorization policy for leave status transitions.

Every approve/reject/override goes through `authorize_transition`, which
returns an explicit allow/deny `Decision`. Nothing else in the code base
compares roles to decide whether a transition may happen.
"""
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from .errors import AuthorizationError, PolicyError, ValidationError
from .models import ADMIN, DECISION_STATUSES, FACULTY, PENDING

REVIEWER_ROLES = (FACULTY, ADMIN)


class Decision:
    """Outcome of a policy check"""

    def __init__(self, allowed, reason=None, error=None, is_override=False):
        self.allowed = allowed
        self.reason = reason
        self.error = error
        self.is_override = is_override

    @classmethod
    def allow(cls, is_override=False):
        return cls(True, is_override=is_override)

    @classmethod
    def deny(cls, error, reason):
        return cls(False, reason=reason, error=error)

    def raise_for_denial(self):
        if not self.allowed:
            raise self.error(self.reason)

    def __bool__(self):
        return self.allowed

    def __repr__(self):
        if self.allowed:
            return f'<Decision allow override={self.is_override}>'
        return f'<Decision deny {self.error.__name__}: {self.reason}>'


def authorize_transition(actor_role, leave, target_status, now, tz='UTC', override_requested=False):
    """Decide whether `actor_role` may move `leave` to `target_status` at `now`

    A decided leave only changes status when the caller asked for an
    override; plain approve/reject requests never reverse a decision.
    """
    if target_status not in DECISION_STATUSES:
        return Decision.deny(ValidationError, 'Invalid status: must be approved or rejected')

    if actor_role not in REVIEWER_ROLES:
        return Decision.deny(AuthorizationError, 'Only faculty or admins can update status')

    if leave.requester_role == FACULTY and actor_role != ADMIN:
        return Decision.deny(AuthorizationError, 'Only admins can review faculty leave applications')

    if leave.status == PENDING:
        return Decision.allow()

    if leave.status == target_status:
        return Decision.deny(PolicyError, f'Leave application is already {leave.status}')

    # approved <-> rejected
    if actor_role != ADMIN:
        return Decision.deny(AuthorizationError, 'Only admins can override decisions')

    decided_at = leave.status_decided_at or leave.updated_at
    if decided_at is None:
        return Decision.deny(PolicyError, 'Cannot change decision: decision time unavailable')

    if not same_calendar_day(decided_at, now, tz):
        return Decision.deny(PolicyError, 'Decision can only be changed on the same day it was made.')

    if not override_requested:
        return Decision.deny(PolicyError, f'Leave application is already {leave.status}; '
                                          'changing it needs an explicit override')

    return Decision.allow(is_override=True)


def same_calendar_day(first, second, tz='UTC'):
    zone = ZoneInfo(tz)
    return to_aware(first).astimezone(zone).date() == to_aware(second).astimezone(zone).date()


def to_aware(value):
    """Timestamps without an offset are taken to be UTC"""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value
