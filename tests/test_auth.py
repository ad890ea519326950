"""
Tests for sign-in, sign-up, password reset, admin bootstrap and UserSession
"""
import pytest
from werkzeug.security import check_password_hash, generate_password_hash

from leave_portal import auth
from leave_portal.errors import AuthenticationError, RemoteTimeout, ValidationError
from leave_portal.users import update_user_role

SECRET = 'test-secret'


class TestSignIn:

    def test_valid_credentials(self, client, student_profile):
        user_session = auth.sign_in(client, 'Student1@College.edu ', 'secret123', timeout=5)

        assert user_session.user_id == student_profile.id
        assert user_session.role == 'student'
        assert user_session.student_id == 'CS2024001'
        assert client.timeouts == [5]

    def test_wrong_password(self, client, student_profile):
        with pytest.raises(AuthenticationError):
            auth.sign_in(client, 'student1@college.edu', 'nope')

    def test_unknown_email(self, client):
        with pytest.raises(AuthenticationError):
            auth.sign_in(client, 'ghost@college.edu', 'secret123')

    def test_missing_fields(self, client):
        with pytest.raises(ValidationError):
            auth.sign_in(client, '', '')

    def test_timeout_is_a_failed_login(self, client, student_profile):
        client.fail_on[('select', 'profiles')] = RemoteTimeout('slow')
        with pytest.raises(AuthenticationError) as exc_info:
            auth.sign_in(client, 'student1@college.edu', 'secret123', timeout=1)
        assert 'timed out' in exc_info.value.message


class TestSignUp:

    def test_registers_student(self, client):
        profile = auth.sign_up(client, 'New@College.edu', 'abcdef', 'abcdef', 'Kiran Das', 'CS2024100')
        assert profile.role == 'student'
        assert profile.email == 'new@college.edu'
        assert check_password_hash(profile.password_hash, 'abcdef')

    def test_password_mismatch(self, client):
        with pytest.raises(ValidationError):
            auth.sign_up(client, 'a@college.edu', 'abcdef', 'abcdeg', 'A')

    def test_short_password(self, client):
        with pytest.raises(ValidationError):
            auth.sign_up(client, 'a@college.edu', 'abc', 'abc', 'A')

    def test_duplicate_email(self, client, student_profile):
        with pytest.raises(ValidationError):
            auth.sign_up(client, 'student1@college.edu', 'abcdef', 'abcdef', 'Copy')


class TestPasswordReset:

    def test_round_trip(self, client, student_profile):
        token = auth.request_password_reset(client, 'student1@college.edu', SECRET)

        auth.reset_password(client, token, 'brand-new-pass', SECRET, max_age=3600)

        assert auth.sign_in(client, 'student1@college.edu', 'brand-new-pass').user_id == student_profile.id

    def test_unknown_email_gets_no_token(self, client):
        assert auth.request_password_reset(client, 'ghost@college.edu', SECRET) is None

    def test_tampered_token(self, client, student_profile):
        token = auth.request_password_reset(client, 'student1@college.edu', SECRET)
        with pytest.raises(ValidationError):
            auth.reset_password(client, token, 'brand-new-pass', 'other-secret', max_age=3600)


class TestBootstrapAdmin:

    def test_creates_admin_profile(self, client):
        client.insert('admin_users', {
            'email': 'admin@college.edu',
            'password_hash': generate_password_hash('admin123'),
            'full_name': 'College Administrator',
        })

        profile = auth.bootstrap_admin(client, 'admin@college.edu', 'admin123')

        assert profile.role == 'admin'
        assert auth.sign_in(client, 'admin@college.edu', 'admin123').role == 'admin'

    def test_promotes_existing_profile(self, client, faculty_profile):
        client.insert('admin_users', {
            'email': 'faculty1@college.edu',
            'password_hash': generate_password_hash('admin123'),
            'full_name': 'Dr. Meera Rao',
        })
        profile = auth.bootstrap_admin(client, 'faculty1@college.edu', 'admin123')
        assert profile.id == faculty_profile.id
        assert profile.role == 'admin'

    def test_invalid_credentials(self, client):
        with pytest.raises(AuthenticationError):
            auth.bootstrap_admin(client, 'admin@college.edu', 'admin123')


class TestUserSession:

    def test_dict_round_trip(self, student):
        restored = auth.UserSession.from_dict(student.to_dict())
        assert restored.user_id == student.user_id
        assert restored.issued_at == student.issued_at

    def test_refresh_picks_up_new_role(self, client, admin, student, student_profile):
        update_user_role(client, admin, student_profile.id, 'faculty')
        profile = client.select_one('profiles', {'id': student_profile.id})

        student.refresh(profile)

        assert student.role == 'faculty'
        assert student.has_role('faculty', 'admin')


def test_admin_role_cannot_be_assigned(client, admin, student_profile):
    with pytest.raises(ValidationError):
        update_user_role(client, admin, student_profile.id, 'admin')
