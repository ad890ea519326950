import logging
from datetime import datetime, timezone

from .errors import NotFoundError, ValidationError
from .models import FACULTY, STUDENT
from .notifications import record_audit

logger = logging.getLogger(__name__)

# Admin accounts only come from the bootstrap-admin function
ASSIGNABLE_ROLES = (FACULTY, STUDENT)


def list_users(client, role=None):
    where = {'role': role} if role else None
    return client.select('profiles', where=where, order_by='created_at', descending=True)


def get_user(client, user_id):
    profile = client.select_one('profiles', where={'id': user_id})
    if profile is None:
        raise NotFoundError('User not found')
    return profile


def update_user_role(client, actor, user_id, new_role):
    if new_role not in ASSIGNABLE_ROLES:
        raise ValidationError("Invalid role. Only 'faculty' and 'student' roles can be assigned.")

    profile = get_user(client, user_id)
    updated = client.update('profiles', {
        'role': new_role,
        'updated_at': datetime.now(timezone.utc),
    }, where={'id': profile.id})

    record_audit(client, actor.user_id, 'update_role', 'profile', profile.id,
                 {'from': profile.role, 'to': new_role})
    logger.info('User %s role changed from %s to %s by %s', profile.id, profile.role, new_role,
                actor.user_id)
    return updated[0]
