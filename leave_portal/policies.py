"""
Leave policy administration: quotas, blocked date ranges and approval
workflows that admins maintain for the college. Rules are free-form JSON.
"""
import logging
from datetime import datetime, timezone

from .errors import NotFoundError, ValidationError
from .notifications import record_audit

logger = logging.getLogger(__name__)

POLICY_TYPES = ('quota', 'date_restriction', 'approval_workflow')
EDITABLE_FIELDS = ('policy_name', 'policy_type', 'policy_rules', 'is_active')


def _clean(values, partial=False):
    cleaned = {}
    unknown = set(values) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f'Unknown policy fields: {", ".join(sorted(unknown))}')

    if 'policy_name' in values or not partial:
        name = str(values.get('policy_name') or '').strip()
        if not name:
            raise ValidationError('Policy name is required')
        cleaned['policy_name'] = name
    if 'policy_type' in values or not partial:
        if values.get('policy_type') not in POLICY_TYPES:
            raise ValidationError(f'Policy type must be one of: {", ".join(POLICY_TYPES)}')
        cleaned['policy_type'] = values['policy_type']
    if 'policy_rules' in values or not partial:
        rules = values.get('policy_rules')
        if rules is None:
            rules = {}
        if not isinstance(rules, dict):
            raise ValidationError('Policy rules must be an object')
        cleaned['policy_rules'] = rules
    if 'is_active' in values:
        if not isinstance(values['is_active'], bool):
            raise ValidationError('is_active must be true or false')
        cleaned['is_active'] = values['is_active']
    return cleaned


def list_policies(client, active_only=False):
    where = {'is_active': True} if active_only else None
    return client.select('leave_policies', where=where, order_by='created_at', descending=True)


def get_policy(client, policy_id):
    policy = client.select_one('leave_policies', where={'id': policy_id})
    if policy is None:
        raise NotFoundError('Policy not found')
    return policy


def create_policy(client, actor, values):
    cleaned = _clean(values)
    cleaned.setdefault('is_active', True)
    cleaned['created_by'] = actor.user_id
    policy = client.insert('leave_policies', cleaned)
    record_audit(client, actor.user_id, 'create_policy', 'leave_policy', policy.id,
                 {'policy_name': policy.policy_name, 'policy_type': policy.policy_type})
    logger.info('Policy %s created by user %s', policy.id, actor.user_id)
    return policy


def update_policy(client, actor, policy_id, values):
    cleaned = _clean(values, partial=True)
    if not cleaned:
        raise ValidationError('Nothing to update')
    get_policy(client, policy_id)

    cleaned['updated_at'] = datetime.now(timezone.utc)
    policy = client.update('leave_policies', cleaned, where={'id': policy_id})[0]
    record_audit(client, actor.user_id, 'update_policy', 'leave_policy', policy_id,
                 {'fields': sorted(field for field in cleaned if field != 'updated_at')})
    return policy


def toggle_policy(client, actor, policy_id, is_active):
    return update_policy(client, actor, policy_id, {'is_active': is_active})


def delete_policy(client, actor, policy_id):
    deleted = client.delete('leave_policies', where={'id': policy_id})
    if not deleted:
        raise NotFoundError('Policy not found')
    record_audit(client, actor.user_id, 'delete_policy', 'leave_policy', policy_id,
                 {'policy_name': deleted[0].policy_name})
    logger.info('Policy %s deleted by user %s', policy_id, actor.user_id)
    return deleted[0]
