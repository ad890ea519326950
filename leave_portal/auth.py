"""
Sign-in, sign-up, password reset and the per-user session object.

A `UserSession` is created at login, kept in the signed Flask cookie,
rebuilt for every request and handed to route handlers by
`login_required`. Logging out clears it.
"""
import functools
import logging
from datetime import datetime, timezone

from flask import g, session
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from werkzeug.security import check_password_hash, generate_password_hash

from .errors import (AuthenticationError, AuthorizationError, RemoteTimeout,
                     ValidationError)
from .models import ADMIN, STUDENT

logger = logging.getLogger(__name__)

SESSION_KEY = 'user_session'
RESET_SALT = 'password-reset'
MIN_PASSWORD_LENGTH = 6


class UserSession:
    """Who is logged in, and as what"""

    def __init__(self, user_id, email, full_name, role, student_id=None,
                 issued_at=None, refreshed_at=None):
        self.user_id = user_id
        self.email = email
        self.full_name = full_name
        self.role = role
        self.student_id = student_id
        self.issued_at = issued_at or _now_iso()
        self.refreshed_at = refreshed_at or self.issued_at

    @classmethod
    def from_profile(cls, profile):
        return cls(profile.id, profile.email, profile.full_name, profile.role, profile.student_id)

    @classmethod
    def from_dict(cls, data):
        return cls(**data)

    def to_dict(self):
        return dict(vars(self))

    def refresh(self, profile):
        """Pick up profile changes (e.g. a new role) after re-authentication"""
        self.email = profile.email
        self.full_name = profile.full_name
        self.role = profile.role
        self.student_id = profile.student_id
        self.refreshed_at = _now_iso()
        return self

    def has_role(self, *roles):
        return self.role in roles

    def __repr__(self):
        return f'<UserSession {self.user_id} {self.role}>'


def _now_iso():
    return datetime.now(timezone.utc).isoformat()


def start_session(user_session):
    session.clear()
    session[SESSION_KEY] = user_session.to_dict()
    g.user_session = user_session
    return user_session


def current_session():
    """The UserSession of this request, or None"""
    if 'user_session' not in g:
        data = session.get(SESSION_KEY)
        g.user_session = UserSession.from_dict(data) if data else None
    return g.user_session


def end_session():
    session.clear()
    g.user_session = None


def refresh_session(client, user_session):
    """Re-read the profile behind `user_session` so role changes apply immediately"""
    profile = client.select_one('profiles', where={'id': user_session.user_id})
    if profile is None:
        end_session()
        raise AuthenticationError('Your account no longer exists, please log in again')
    if profile.role != user_session.role:
        logger.info('User %s role is now %s (session said %s)', profile.id, profile.role,
                    user_session.role)
    return start_session(user_session.refresh(profile))


def login_required(*roles):
    """Pass the current UserSession to the view as `user_session`, optionally checking its role"""
    def decorator(view):
        @functools.wraps(view)
        def wrapped(*args, **kwargs):
            user_session = current_session()
            if user_session is None:
                raise AuthenticationError('Please log in first')
            if roles and not user_session.has_role(*roles):
                raise AuthorizationError('Unauthorized access')
            return view(*args, user_session=user_session, **kwargs)
        return wrapped
    return decorator


def sign_in(client, email, password, timeout=None):
    """Check credentials and return a new UserSession

    With `timeout`, each database call made while logging in is bounded by
    it and running out of time counts as a failed login.
    """
    email = (email or '').strip().lower()
    if not email or not password:
        raise ValidationError('Email and password are required')

    login_client = client.with_timeout(timeout) if timeout else client
    try:
        profile = login_client.select_one('profiles', where={'email': email})
    except RemoteTimeout:
        logger.warning('Login for %s timed out', email)
        raise AuthenticationError('Login timed out, please try again')

    if profile is None or not check_password_hash(profile.password_hash, password):
        logger.info('Failed login for %s', email)
        raise AuthenticationError('Invalid email or password')

    logger.info('User %s logged in as %s', profile.id, profile.role)
    return UserSession.from_profile(profile)


def sign_up(client, email, password, confirm_password, full_name, student_id=None,
            department=None):
    """Register a new student account"""
    email = (email or '').strip().lower()
    full_name = (full_name or '').strip()
    if not email or not full_name:
        raise ValidationError('Email and full name are required')
    if password != confirm_password:
        raise ValidationError('Passwords do not match')
    if len(password or '') < MIN_PASSWORD_LENGTH:
        raise ValidationError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters long')

    if client.select_one('profiles', where={'email': email}) is not None:
        raise ValidationError('An account with this email already exists')

    profile = client.insert('profiles', {
        'email': email,
        'full_name': full_name,
        'password_hash': generate_password_hash(password),
        'role': STUDENT,
        'student_id': (student_id or '').strip() or None,
        'department': (department or '').strip() or None,
    })
    logger.info('Registered student %s', profile.id)
    return profile


def _reset_serializer(secret_key):
    return URLSafeTimedSerializer(secret_key, salt=RESET_SALT)


def request_password_reset(client, email, secret_key):
    """Return a signed reset token for `email`, or None when no such account exists"""
    email = (email or '').strip().lower()
    profile = client.select_one('profiles', where={'email': email})
    if profile is None:
        logger.info('Password reset requested for unknown email %s', email)
        return None
    return _reset_serializer(secret_key).dumps({'user_id': profile.id, 'email': email})


def reset_password(client, token, new_password, secret_key, max_age):
    try:
        data = _reset_serializer(secret_key).loads(token, max_age=max_age)
    except SignatureExpired:
        raise ValidationError('This reset link has expired')
    except BadSignature:
        raise ValidationError('Invalid reset link')

    if len(new_password or '') < MIN_PASSWORD_LENGTH:
        raise ValidationError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters long')

    updated = client.update('profiles', {
        'password_hash': generate_password_hash(new_password),
        'updated_at': datetime.now(timezone.utc),
    }, where={'id': data['user_id'], 'email': data['email']})
    if not updated:
        raise ValidationError('Invalid reset link')
    logger.info('Password reset for user %s', data['user_id'])
    return updated[0]


def bootstrap_admin(client, email, password):
    """Provision an admin profile for credentials listed in admin_users"""
    email = (email or '').strip().lower()
    if not email or not password:
        raise ValidationError('Email and password required')

    credential = client.select_one('admin_users', where={'email': email})
    if credential is None or not check_password_hash(credential.password_hash, password):
        logger.warning('Rejected admin bootstrap for %s', email)
        raise AuthenticationError('Invalid admin credentials')

    now = datetime.now(timezone.utc)
    profile = client.upsert('profiles', {
        'email': email,
        'full_name': credential.full_name,
        'password_hash': credential.password_hash,
        'role': ADMIN,
        'updated_at': now,
    }, conflict_column='email')
    logger.info('Bootstrapped admin profile %s', profile.id)
    return profile
