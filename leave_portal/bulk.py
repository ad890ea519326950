"""
Bulk approve/reject.

Each leave goes through the normal review transition on its own, one after
another. Items that already succeeded stay applied when a later one fails;
the returned count is the number of leaves actually changed. Bulk runs never
request overrides, so leaves that were already decided are reported as failures.
"""
import logging

from .errors import LeavePortalError, ValidationError
from .models import APPROVED, DECISION_STATUSES, REJECTED
from .notifications import record_audit
from .review import review_leave, utcnow

logger = logging.getLogger(__name__)

OPERATION_TYPES = {APPROVED: 'approve', REJECTED: 'reject'}


class BulkResult:
    def __init__(self, success, count, error=None, operation_id=None):
        self.success = success
        self.count = count
        self.error = error
        self.operation_id = operation_id

    def to_dict(self):
        return {
            'success': self.success,
            'count': self.count,
            'error': self.error,
            'operation_id': self.operation_id,
        }

    def __repr__(self):
        return f'<BulkResult success={self.success} count={self.count}>'


def bulk_update_status(client, actor, leave_ids, status, comments=None, now=None, tz='UTC',
                       mailer=None):
    if status not in DECISION_STATUSES:
        raise ValidationError('Invalid status: must be approved or rejected')
    comments = (comments or '').strip() or None
    if status == REJECTED and not comments:
        raise ValidationError('A reason is required to reject leave applications')
    if not leave_ids:
        raise ValidationError('Select at least one leave application')

    operation_type = OPERATION_TYPES[status]
    leave_ids = list(leave_ids)
    operation = client.insert('bulk_operations', {
        'operation_type': operation_type,
        'performed_by': actor.user_id,
        'status': 'pending',
        'details': {'leave_ids': leave_ids, 'comments': comments},
    })

    success_count = 0
    errors = []
    for leave_id in leave_ids:
        try:
            review_leave(client, actor, leave_id, status, comments, now=now, tz=tz, mailer=mailer)
        except LeavePortalError as exc:
            errors.append(f'Failed to {operation_type} leave {leave_id}: {exc.message}')
        else:
            success_count += 1

    client.update('bulk_operations', {
        'affected_count': success_count,
        'status': 'completed' if success_count == len(leave_ids) else 'failed',
        'completed_at': now or utcnow(),
        'details': {'leave_ids': leave_ids, 'comments': comments, 'errors': errors},
    }, where={'id': operation.id})

    record_audit(client, actor.user_id, f'bulk_{operation_type}', 'bulk_operation', operation.id,
                 {'requested': len(leave_ids), 'succeeded': success_count})

    if errors:
        logger.warning('Bulk %s by user %s: %d of %d failed', operation_type, actor.user_id,
                       len(errors), len(leave_ids))
    else:
        logger.info('Bulk %s by user %s: %d leaves', operation_type, actor.user_id, success_count)

    return BulkResult(
        success=success_count > 0,
        count=success_count,
        error='; '.join(errors) if errors else None,
        operation_id=operation.id,
    )


def bulk_approve(client, actor, leave_ids, comments=None, **kwargs):
    return bulk_update_status(client, actor, leave_ids, APPROVED, comments, **kwargs)


def bulk_reject(client, actor, leave_ids, reason, **kwargs):
    return bulk_update_status(client, actor, leave_ids, REJECTED, reason, **kwargs)


def list_bulk_operations(client, limit=50):
    return client.select('bulk_operations', order_by='created_at', descending=True, limit=limit)
