import os

from werkzeug.security import generate_password_hash

from .config import Config
from .db import PostgresClient

SCHEMA = [
    '''
    CREATE TABLE IF NOT EXISTS profiles (
        id SERIAL PRIMARY KEY,
        email VARCHAR(255) UNIQUE NOT NULL,
        full_name VARCHAR(255) NOT NULL,
        password_hash VARCHAR(255) NOT NULL,
        role VARCHAR(20) NOT NULL DEFAULT 'student'
            CHECK (role IN ('student', 'faculty', 'admin')),
        student_id VARCHAR(64),
        department VARCHAR(255),
        created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS admin_users (
        id SERIAL PRIMARY KEY,
        email VARCHAR(255) UNIQUE NOT NULL,
        password_hash VARCHAR(255) NOT NULL,
        full_name VARCHAR(255) NOT NULL,
        created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS leave_applications (
        id SERIAL PRIMARY KEY,
        requester_id INTEGER NOT NULL REFERENCES profiles (id) ON DELETE CASCADE,
        requester_name VARCHAR(255),
        requester_role VARCHAR(20) NOT NULL DEFAULT 'student'
            CHECK (requester_role IN ('student', 'faculty')),
        leave_type VARCHAR(100) NOT NULL,
        reason TEXT NOT NULL,
        start_date DATE NOT NULL,
        end_date DATE NOT NULL,
        is_emergency BOOLEAN NOT NULL DEFAULT FALSE,
        attachment_url TEXT,
        status VARCHAR(20) NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'approved', 'rejected')),
        reviewed_by INTEGER REFERENCES profiles (id),
        approved_by_name VARCHAR(255),
        comments TEXT,
        applied_on TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
        status_decided_at TIMESTAMPTZ,
        updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
        overridden_by_admin BOOLEAN NOT NULL DEFAULT FALSE,
        overridden_from VARCHAR(20),
        overridden_at TIMESTAMPTZ,
        CHECK (start_date <= end_date)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS audit_logs (
        id SERIAL PRIMARY KEY,
        user_id INTEGER REFERENCES profiles (id) ON DELETE SET NULL,
        action VARCHAR(100) NOT NULL,
        entity_type VARCHAR(100) NOT NULL,
        entity_id VARCHAR(64),
        details JSONB,
        created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS notifications (
        id SERIAL PRIMARY KEY,
        user_id INTEGER NOT NULL REFERENCES profiles (id) ON DELETE CASCADE,
        title VARCHAR(255) NOT NULL,
        message TEXT NOT NULL,
        related_to VARCHAR(64),
        is_read BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS bulk_operations (
        id SERIAL PRIMARY KEY,
        operation_type VARCHAR(20) NOT NULL CHECK (operation_type IN ('approve', 'reject')),
        performed_by INTEGER REFERENCES profiles (id) ON DELETE SET NULL,
        affected_count INTEGER NOT NULL DEFAULT 0,
        status VARCHAR(20) NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'completed', 'failed')),
        details JSONB,
        created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
        completed_at TIMESTAMPTZ
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS leave_policies (
        id SERIAL PRIMARY KEY,
        policy_name VARCHAR(255) NOT NULL,
        policy_type VARCHAR(32) NOT NULL
            CHECK (policy_type IN ('quota', 'date_restriction', 'approval_workflow')),
        policy_rules JSONB NOT NULL DEFAULT '{}'::jsonb,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_by INTEGER REFERENCES profiles (id) ON DELETE SET NULL,
        created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS holidays (
        id SERIAL PRIMARY KEY,
        title VARCHAR(255) NOT NULL,
        holiday_date DATE NOT NULL,
        description TEXT,
        created_by INTEGER REFERENCES profiles (id) ON DELETE SET NULL,
        created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
    )
    ''',
    'CREATE INDEX IF NOT EXISTS leave_applications_requester_idx ON leave_applications (requester_id)',
    'CREATE INDEX IF NOT EXISTS leave_applications_status_idx ON leave_applications (status)',
    'CREATE INDEX IF NOT EXISTS notifications_user_idx ON notifications (user_id, is_read)',
    'CREATE INDEX IF NOT EXISTS holidays_date_idx ON holidays (holiday_date)',
]

# Row changes are published with pg_notify so listeners can re-fetch
CHANGE_TRIGGER = '''
    CREATE OR REPLACE FUNCTION notify_leave_portal_change() RETURNS trigger AS $$
    BEGIN
        PERFORM pg_notify(
            TG_ARGV[0],
            json_build_object('table', TG_TABLE_NAME, 'op', TG_OP, 'id', NEW.id)::text
        );
        RETURN NEW;
    END;
    $$ LANGUAGE plpgsql
'''

WATCHED_TABLES = ('leave_applications', 'notifications')


def init_db(client, channel='leave_portal_changes'):
    """Create tables and change triggers if they don't exist yet"""
    with client.cursor() as cursor:
        for statement in SCHEMA:
            cursor.execute(statement)
        cursor.execute(CHANGE_TRIGGER)
        for table in WATCHED_TABLES:
            trigger = f'{table}_changes'
            cursor.execute(f'DROP TRIGGER IF EXISTS {trigger} ON {table}')
            cursor.execute(
                f'CREATE TRIGGER {trigger} AFTER INSERT OR UPDATE ON {table} '
                f'FOR EACH ROW EXECUTE FUNCTION notify_leave_portal_change(%s)',
                (channel,),
            )


def init_postgresql_database():
    """Reset the PostgreSQL database and load sample data"""

    config = Config.from_env()
    if not config.DATABASE_URL:
        print("Error: DATABASE_URL environment variable not found")
        return

    client = PostgresClient(config.DATABASE_URL)

    with client.cursor() as cursor:
        for table in ('holidays', 'leave_policies', 'bulk_operations', 'notifications',
                      'audit_logs', 'leave_applications', 'admin_users', 'profiles'):
            cursor.execute(f'DROP TABLE IF EXISTS {table} CASCADE')

    init_db(client, config.REALTIME_CHANNEL)

    admin_password = os.environ.get('BOOTSTRAP_ADMIN_PASSWORD', 'admin123')
    client.insert('admin_users', {
        'email': 'admin@college.edu',
        'password_hash': generate_password_hash(admin_password),
        'full_name': 'College Administrator',
    })

    student_password = generate_password_hash('student123')
    faculty_password = generate_password_hash('faculty123')
    faculty = client.insert('profiles', {
        'email': 'faculty1@college.edu', 'full_name': 'Dr. Meera Rao',
        'password_hash': faculty_password, 'role': 'faculty', 'department': 'Physics',
    })
    student1 = client.insert('profiles', {
        'email': 'student1@college.edu', 'full_name': 'Arjun Sharma',
        'password_hash': student_password, 'role': 'student',
        'student_id': 'CS2024001', 'department': 'Computer Science',
    })
    student2 = client.insert('profiles', {
        'email': 'student2@college.edu', 'full_name': 'Priya Nair',
        'password_hash': student_password, 'role': 'student',
        'student_id': 'CS2024002', 'department': 'Computer Science',
    })

    client.insert_many('leave_applications', [
        {
            'requester_id': student1.id, 'requester_name': student1.full_name,
            'requester_role': 'student', 'leave_type': 'Medical',
            'reason': 'Medical appointment', 'start_date': '2024-01-15', 'end_date': '2024-01-17',
            'status': 'approved', 'reviewed_by': faculty.id, 'approved_by_name': faculty.full_name,
            'status_decided_at': '2024-01-12T10:00:00+00:00',
        },
        {
            'requester_id': student1.id, 'requester_name': student1.full_name,
            'requester_role': 'student', 'leave_type': 'Personal',
            'reason': 'Family emergency', 'start_date': '2024-01-20', 'end_date': '2024-01-22',
            'is_emergency': True, 'status': 'rejected', 'reviewed_by': faculty.id,
            'comments': 'Need more documentation', 'status_decided_at': '2024-01-19T09:30:00+00:00',
        },
        {
            'requester_id': student2.id, 'requester_name': student2.full_name,
            'requester_role': 'student', 'leave_type': 'Personal',
            'reason': 'Personal work', 'start_date': '2024-01-25', 'end_date': '2024-01-27',
        },
    ])

    client.insert_many('leave_policies', [
        {'policy_name': 'Annual medical leave', 'policy_type': 'quota',
         'policy_rules': {'leave_type': 'Medical', 'max_days': 15}},
        {'policy_name': 'No leave during exams', 'policy_type': 'date_restriction',
         'policy_rules': {'blocked_from': '2024-04-15', 'blocked_to': '2024-04-30'},
         'is_active': False},
    ])
    client.insert_many('holidays', [
        {'title': "New Year's Day", 'holiday_date': '2024-01-01', 'description': 'National Holiday'},
        {'title': 'Republic Day', 'holiday_date': '2024-01-26', 'description': 'National Holiday'},
    ])

    print("PostgreSQL database initialized successfully!")
    print("Bootstrap admin - Email: admin@college.edu (POST /functions/bootstrap-admin to activate)")
    print("Faculty credentials - Email: faculty1@college.edu, Password: faculty123")
    print("Student credentials - Email: student1@college.edu, Password: student123")
    print("Student credentials - Email: student2@college.edu, Password: student123")
    print("Sample leave applications, policies and holidays have been created.")


if __name__ == '__main__':
    init_postgresql_database()
