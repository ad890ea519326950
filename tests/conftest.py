"""
Leave Portal - Test Configuration and Fixtures
"""
import os
from datetime import datetime, timezone

import pytest
from werkzeug.security import generate_password_hash

os.environ.setdefault('LOG_LEVEL', 'WARNING')

from leave_portal.app import create_app
from leave_portal.auth import SESSION_KEY, UserSession
from leave_portal.config import Config
from leave_portal.models import TABLES, entity_for

FIXED_NOW = datetime(2025, 6, 1, 10, 0, tzinfo=timezone.utc)

TABLE_DEFAULTS = {
    'profiles': {'role': 'student'},
    'leave_applications': {
        'status': 'pending',
        'requester_role': 'student',
        'is_emergency': False,
        'overridden_by_admin': False,
    },
    'notifications': {'is_read': False},
    'bulk_operations': {'affected_count': 0, 'status': 'pending'},
    'leave_policies': {'is_active': True, 'policy_rules': {}},
}

TIMESTAMP_DEFAULTS = ('created_at', 'updated_at', 'applied_on')


class MemoryClient:
    """In-memory stand-in for PostgresClient with the same table interface"""

    def __init__(self, now=FIXED_NOW):
        self.now = now
        self.rows = {table: [] for table in TABLES}
        self.next_ids = {table: 1 for table in TABLES}
        self.timeouts = []
        self.fail_on = {}
        self.notifications_feed = None

    def _maybe_fail(self, operation, table):
        error = self.fail_on.get((operation, table))
        if error is not None:
            raise error

    def _matches(self, row, where):
        return all(row.get(column) == value for column, value in (where or {}).items())

    def with_timeout(self, seconds):
        self.timeouts.append(seconds)
        return self

    def select(self, table, where=None, order_by=None, descending=False, limit=None):
        entity = entity_for(table, list(where or {}) + ([order_by] if order_by else []))
        self._maybe_fail('select', table)
        rows = [row for row in self.rows[table] if self._matches(row, where)]
        if order_by:
            rows.sort(key=lambda row: (row.get(order_by) is not None, row.get(order_by), row['id']),
                      reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return [entity.from_row(dict(row)) for row in rows]

    def select_one(self, table, where):
        rows = self.select(table, where=where, limit=1)
        return rows[0] if rows else None

    def count(self, table, where=None):
        entity_for(table, where or {})
        return sum(1 for row in self.rows[table] if self._matches(row, where))

    def insert(self, table, values):
        entity = entity_for(table, values)
        self._maybe_fail('insert', table)
        row = {column: None for column in entity.columns}
        row.update(TABLE_DEFAULTS.get(table, {}))
        for column in TIMESTAMP_DEFAULTS:
            if column in entity.columns:
                row[column] = self.now
        row.update(values)
        row['id'] = self.next_ids[table]
        self.next_ids[table] += 1
        self.rows[table].append(row)
        return entity.from_row(dict(row))

    def insert_many(self, table, rows):
        return [self.insert(table, values) for values in rows]

    def update(self, table, values, where):
        entity = entity_for(table, list(values) + list(where))
        self._maybe_fail('update', table)
        updated = []
        for row in self.rows[table]:
            if self._matches(row, where):
                row.update(values)
                updated.append(entity.from_row(dict(row)))
        return updated

    def delete(self, table, where):
        entity = entity_for(table, where)
        self._maybe_fail('delete', table)
        deleted = [row for row in self.rows[table] if self._matches(row, where)]
        self.rows[table] = [row for row in self.rows[table] if not self._matches(row, where)]
        return [entity.from_row(dict(row)) for row in deleted]

    def upsert(self, table, values, conflict_column):
        existing = self.select_one(table, {conflict_column: values[conflict_column]})
        if existing is None:
            return self.insert(table, values)
        return self.update(table, values, {conflict_column: values[conflict_column]})[0]

    def listen(self, channel):
        return self.notifications_feed


@pytest.fixture
def client():
    return MemoryClient()


def _make_profile(client, email, full_name, role, password='secret123', **extra):
    return client.insert('profiles', {
        'email': email,
        'full_name': full_name,
        'password_hash': generate_password_hash(password),
        'role': role,
        **extra,
    })


@pytest.fixture
def student_profile(client):
    return _make_profile(client, 'student1@college.edu', 'Arjun Sharma', 'student',
                         student_id='CS2024001')


@pytest.fixture
def other_student_profile(client):
    return _make_profile(client, 'student2@college.edu', 'Priya Nair', 'student',
                         student_id='CS2024002')


@pytest.fixture
def faculty_profile(client):
    return _make_profile(client, 'faculty1@college.edu', 'Dr. Meera Rao', 'faculty')


@pytest.fixture
def admin_profile(client):
    return _make_profile(client, 'admin@college.edu', 'College Administrator', 'admin')


@pytest.fixture
def student(student_profile):
    return UserSession.from_profile(student_profile)


@pytest.fixture
def faculty(faculty_profile):
    return UserSession.from_profile(faculty_profile)


@pytest.fixture
def admin(admin_profile):
    return UserSession.from_profile(admin_profile)


@pytest.fixture
def make_leave(client, student_profile):
    """Insert a leave application directly, bypassing submission"""
    def _make_leave(requester=None, **values):
        requester = requester or student_profile
        row = {
            'requester_id': requester.id,
            'requester_name': requester.full_name,
            'requester_role': requester.role if requester.role != 'admin' else 'student',
            'leave_type': 'Medical',
            'reason': 'Fever',
            'start_date': '2025-06-10',
            'end_date': '2025-06-12',
        }
        row.update(values)
        return client.insert('leave_applications', row)
    return _make_leave


@pytest.fixture
def app(client, mailer, tmp_path):
    config = Config(
        DATABASE_URL=None,
        SECRET_KEY='test-secret-key-for-testing-only',
        UPLOAD_FOLDER=str(tmp_path / 'uploads'),
        LOGIN_TIMEOUT_SECONDS=2,
        LOG_LEVEL='WARNING',
        TIMEZONE='UTC',
    )
    flask_app = create_app(config, client=client, mailer=mailer)
    flask_app.config['TESTING'] = True
    return flask_app


@pytest.fixture
def http(app):
    return app.test_client()


@pytest.fixture
def login_as(http):
    """Put a UserSession straight into the cookie session"""
    def _login_as(user_session):
        with http.session_transaction() as sess:
            sess[SESSION_KEY] = user_session.to_dict()
        return http
    return _login_as


class RecordingMailer:
    """Collects (to, subject, text) instead of talking to an SMTP server"""

    def __init__(self):
        self.sent = []

    def send(self, to, subject, text):
        self.sent.append((to, subject, text))
        return True


@pytest.fixture
def mailer():
    return RecordingMailer()
