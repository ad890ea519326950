# Entity definitions for the Leave Portal
# Every table access goes through TABLES, so a column that is not declared
# here is rejected before any SQL is sent

from datetime import date, datetime

from .errors import SchemaError

PENDING = 'pending'
APPROVED = 'approved'
REJECTED = 'rejected'
LEAVE_STATUSES = (PENDING, APPROVED, REJECTED)
DECISION_STATUSES = (APPROVED, REJECTED)

STUDENT = 'student'
FACULTY = 'faculty'
ADMIN = 'admin'
ROLES = (STUDENT, FACULTY, ADMIN)


class Entity:
    """A row of one table, with attributes named after its columns"""
    table = None
    columns = ()
    json_columns = ()

    def __init__(self, **values):
        unknown = set(values) - set(self.columns)
        if unknown:
            raise SchemaError(f'Unknown columns for {self.table}: {", ".join(sorted(unknown))}')
        for column in self.columns:
            setattr(self, column, values.get(column))

    @classmethod
    def from_row(cls, row):
        if row is None:
            return None
        return cls(**{key: value for key, value in dict(row).items() if key in cls.columns})

    def to_dict(self):
        data = {}
        for column in self.columns:
            value = getattr(self, column)
            if isinstance(value, (date, datetime)):
                value = value.isoformat()
            data[column] = value
        return data

    def __repr__(self):
        return f'<{type(self).__name__} id={getattr(self, "id", None)}>'


class Profile(Entity):
    """Students, faculty and admins"""
    table = 'profiles'
    columns = (
        'id', 'email', 'full_name', 'password_hash', 'role', 'student_id',
        'department', 'created_at', 'updated_at',
    )

    def to_dict(self):
        data = super().to_dict()
        data.pop('password_hash', None)
        return data


class AdminCredential(Entity):
    """Credentials accepted by the bootstrap-admin function"""
    table = 'admin_users'
    columns = ('id', 'email', 'password_hash', 'full_name', 'created_at')


class LeaveApplication(Entity):
    """A request for approved absence over a date range"""
    table = 'leave_applications'
    columns = (
        'id', 'requester_id', 'requester_name', 'requester_role', 'leave_type',
        'reason', 'start_date', 'end_date', 'is_emergency', 'attachment_url',
        'status', 'reviewed_by', 'approved_by_name', 'comments', 'applied_on',
        'status_decided_at', 'updated_at', 'overridden_by_admin',
        'overridden_from', 'overridden_at',
    )

    @property
    def duration_days(self):
        start, end = _as_date(self.start_date), _as_date(self.end_date)
        if start is None or end is None:
            return 1
        return (end - start).days + 1

    @property
    def is_decided(self):
        return self.status in DECISION_STATUSES


class AuditLog(Entity):
    table = 'audit_logs'
    columns = ('id', 'user_id', 'action', 'entity_type', 'entity_id', 'details', 'created_at')
    json_columns = ('details',)


class Notification(Entity):
    table = 'notifications'
    columns = ('id', 'user_id', 'title', 'message', 'related_to', 'is_read', 'created_at')


class BulkOperation(Entity):
    table = 'bulk_operations'
    columns = (
        'id', 'operation_type', 'performed_by', 'affected_count', 'status',
        'details', 'created_at', 'completed_at',
    )
    json_columns = ('details',)


class LeavePolicy(Entity):
    """An admin-managed rule set: leave quotas, blocked dates or approval steps"""
    table = 'leave_policies'
    columns = (
        'id', 'policy_name', 'policy_type', 'policy_rules', 'is_active', 'created_by',
        'created_at', 'updated_at',
    )
    json_columns = ('policy_rules',)


class Holiday(Entity):
    table = 'holidays'
    columns = ('id', 'title', 'holiday_date', 'description', 'created_by', 'created_at')


TABLES = {
    entity.table: entity
    for entity in (Profile, AdminCredential, LeaveApplication, AuditLog, Notification, BulkOperation,
                   LeavePolicy, Holiday)
}


def entity_for(table, columns=()):
    """Look up the entity class of a table and check the given column names against it"""
    entity = TABLES.get(table)
    if entity is None:
        raise SchemaError(f'Unknown table: {table}')
    unknown = [column for column in columns if column not in entity.columns]
    if unknown:
        raise SchemaError(f'Unknown columns for {table}: {", ".join(unknown)}')
    return entity


def _as_date(value):
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value)[:10], '%Y-%m-%d').date()
