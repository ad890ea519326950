"""
Leave review state machine.

    pending --(faculty/admin)--> approved | rejected
    approved <--(admin, explicit override, same calendar day as the decision)--> rejected

`status_decided_at` is written once, on the move out of pending. An override
records where it came from and when, and leaves the decision time alone.
"""
import logging
from datetime import datetime, timezone

from .errors import LeavePortalError, NotFoundError, PolicyError, ValidationError
from .models import APPROVED, DECISION_STATUSES, PENDING, REJECTED
from .notifications import notify, record_audit
from .policy import authorize_transition

logger = logging.getLogger(__name__)


def utcnow():
    return datetime.now(timezone.utc)


def get_leave(client, leave_id):
    leave = client.select_one('leave_applications', where={'id': leave_id})
    if leave is None:
        raise NotFoundError('Leave not found')
    return leave


def review_leave(client, actor, leave_id, status, comments=None, approver_name=None,
                 override_from=None, now=None, tz='UTC', mailer=None):
    """Approve or reject a leave application, or override a same-day decision

    `override_from`, when given, is the status the caller saw before asking
    for the override; the call fails if the record has moved on since.
    Without it a decided leave is never reversed. Rejections must carry a
    comment. `mailer` also emails the decision to the requester.
    """
    now = now or utcnow()
    comments = (comments or '').strip() or None

    if status not in DECISION_STATUSES:
        raise ValidationError('Invalid status: must be approved or rejected')
    if status == REJECTED and not comments:
        raise ValidationError('Comments are required when rejecting a leave application')

    leave = get_leave(client, leave_id)

    if override_from and override_from != PENDING and override_from != leave.status:
        raise PolicyError(f'Leave application is no longer {override_from}')

    override_requested = bool(override_from) and override_from != PENDING
    decision = authorize_transition(actor.role, leave, status, now, tz, override_requested)
    if not decision:
        logger.warning('Denied %s of leave %s by user %s (%s): %s',
                       status, leave_id, actor.user_id, actor.role, decision.reason)
        decision.raise_for_denial()

    payload = {
        'status': status,
        'reviewed_by': actor.user_id,
        'comments': comments,
        'approved_by_name': (approver_name or '').strip() or actor.full_name,
        'updated_at': now,
    }
    if decision.is_override:
        payload.update({
            'overridden_by_admin': True,
            'overridden_from': leave.status,
            'overridden_at': now,
        })
    elif leave.status == PENDING:
        payload['status_decided_at'] = now

    updated = client.update('leave_applications', payload, where={'id': leave_id})
    if not updated:
        raise NotFoundError('Leave not found')
    leave = updated[0]

    # The status change is committed; failures below are logged, never raised
    verb = 'approved' if status == APPROVED else 'rejected'
    details = {}
    if comments:
        details['comments'] = comments
    if decision.is_override:
        details['overridden_from'] = payload['overridden_from']
    try:
        record_audit(client, actor.user_id, f'{status}_leave', 'leave_application', leave_id,
                     details or None)
    except LeavePortalError as exc:
        logger.error('Leave %s was %s but the audit entry failed: %s', leave_id, verb, exc.message)

    message = f'Your {leave.leave_type} leave from {leave.start_date} to {leave.end_date} was {verb}'
    if decision.is_override:
        message += ' (decision changed by an administrator)'
    if comments:
        message += f': {comments}'
    try:
        notify(client, leave.requester_id, f'Leave {verb}', message, related_to=leave_id)
        if mailer is not None:
            requester = client.select_one('profiles', where={'id': leave.requester_id})
            if requester is not None:
                mailer.send(requester.email, f'Leave application {verb}', message)
    except LeavePortalError as exc:
        logger.error('Leave %s was %s but the requester was not notified: %s',
                     leave_id, verb, exc.message)

    logger.info('Leave %s %s by user %s%s', leave_id, verb, actor.user_id,
                ' (override)' if decision.is_override else '')
    return leave


def approve_leave(client, actor, leave_id, comments=None, **kwargs):
    return review_leave(client, actor, leave_id, APPROVED, comments, **kwargs)


def reject_leave(client, actor, leave_id, comments, **kwargs):
    return review_leave(client, actor, leave_id, REJECTED, comments, **kwargs)
