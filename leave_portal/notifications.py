import logging

from .errors import NotFoundError

logger = logging.getLogger(__name__)


def notify(client, user_id, title, message, related_to=None):
    """Append a notification for one user"""
    return client.insert('notifications', {
        'user_id': user_id,
        'title': title,
        'message': message,
        'related_to': str(related_to) if related_to is not None else None,
        'is_read': False,
    })


def notify_role(client, role, title, message, related_to=None):
    """Notify every profile that has `role`"""
    recipients = client.select('profiles', where={'role': role})
    return [notify(client, profile.id, title, message, related_to) for profile in recipients]


def list_notifications(client, user_id):
    return client.select('notifications', where={'user_id': user_id},
                         order_by='created_at', descending=True)


def unread_count(client, user_id):
    return client.count('notifications', where={'user_id': user_id, 'is_read': False})


def mark_read(client, user_id, notification_id):
    updated = client.update('notifications', {'is_read': True},
                            where={'id': notification_id, 'user_id': user_id})
    if not updated:
        raise NotFoundError('Notification not found')
    return updated[0]


def mark_all_read(client, user_id):
    updated = client.update('notifications', {'is_read': True},
                            where={'user_id': user_id, 'is_read': False})
    return len(updated)


def record_audit(client, user_id, action, entity_type, entity_id=None, details=None):
    """Append an audit log entry"""
    logger.info('audit: user=%s action=%s %s=%s', user_id, action, entity_type, entity_id)
    return client.insert('audit_logs', {
        'user_id': user_id,
        'action': action,
        'entity_type': entity_type,
        'entity_id': str(entity_id) if entity_id is not None else None,
        'details': details,
    })


def list_audit_logs(client, limit=100):
    return client.select('audit_logs', order_by='created_at', descending=True, limit=limit)
