import os
import logging

from dotenv import load_dotenv

# Values in a local .env file never override variables already set in the environment
load_dotenv()


class Config:
    """Runtime settings, read from environment variables"""

    def __init__(self, **overrides):
        self.DATABASE_URL = os.environ.get('DATABASE_URL')
        self.SECRET_KEY = os.environ.get('SESSION_SECRET', 'your-secret-key-change-this')
        self.LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
        self.PORT = int(os.environ.get('PORT', 5000))

        # Only the login flow is bounded by a timeout
        self.LOGIN_TIMEOUT_SECONDS = float(os.environ.get('LOGIN_TIMEOUT_SECONDS', 10))

        # Same-day override checks compare calendar dates in this zone
        self.TIMEZONE = os.environ.get('LEAVE_PORTAL_TIMEZONE', 'UTC')

        self.UPLOAD_FOLDER = os.environ.get(
            'UPLOAD_FOLDER', os.path.join(os.getcwd(), 'uploads')
        )
        self.MAX_ATTACHMENT_MB = int(os.environ.get('MAX_ATTACHMENT_MB', 5))
        self.ALLOWED_ATTACHMENT_EXTENSIONS = {'pdf', 'png', 'jpg', 'jpeg', 'doc', 'docx'}

        self.PASSWORD_RESET_MAX_AGE = int(os.environ.get('PASSWORD_RESET_MAX_AGE', 3600))
        self.REALTIME_CHANNEL = os.environ.get('REALTIME_CHANNEL', 'leave_portal_changes')

        # Outgoing mail; without SMTP_HOST messages are only logged
        self.SMTP_HOST = os.environ.get('SMTP_HOST')
        self.SMTP_PORT = int(os.environ.get('SMTP_PORT', 587))
        self.SMTP_USER = os.environ.get('SMTP_USER')
        self.SMTP_PASSWORD = os.environ.get('SMTP_PASSWORD')
        self.SMTP_USE_TLS = os.environ.get('SMTP_USE_TLS', 'true').lower() in ('1', 'true', 'yes')
        self.MAIL_FROM = os.environ.get('MAIL_FROM')

        for key, value in overrides.items():
            setattr(self, key, value)

    @classmethod
    def from_env(cls):
        return cls()

    def as_flask_config(self):
        """Upper-case attributes, in the shape app.config.from_mapping expects"""
        return {key: value for key, value in vars(self).items() if key.isupper()}

    @property
    def log_level(self):
        return getattr(logging, self.LOG_LEVEL, logging.INFO)
