"""
Outgoing email for password resets and leave decisions.

Mail is best effort: `Mailer.send` logs failures and returns False instead
of raising, so a broken SMTP server never fails the request that sent it.
Without an SMTP host the message is only logged.
"""
import logging
import smtplib
from email.message import EmailMessage

logger = logging.getLogger(__name__)


class Mailer:

    def __init__(self, host=None, port=587, username=None, password=None, sender=None,
                 use_tls=True, timeout=15):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.use_tls = use_tls
        self.timeout = timeout

    @classmethod
    def from_config(cls, config):
        return cls(
            host=config.SMTP_HOST,
            port=config.SMTP_PORT,
            username=config.SMTP_USER,
            password=config.SMTP_PASSWORD,
            sender=config.MAIL_FROM,
            use_tls=config.SMTP_USE_TLS,
        )

    @property
    def is_configured(self):
        return bool(self.host and self.sender)

    def build_message(self, to, subject, text):
        message = EmailMessage()
        message['From'] = self.sender
        message['To'] = to
        message['Subject'] = subject
        message.set_content(text)
        return message

    def send(self, to, subject, text):
        """Send a plain-text email; True when the SMTP server accepted it"""
        if not to or not subject:
            logger.warning('Email without recipient or subject dropped')
            return False
        if not self.is_configured:
            logger.info('SMTP not configured, not sending "%s" to %s:\n%s', subject, to, text)
            return False

        message = self.build_message(to, subject, text)
        try:
            if self.use_tls:
                with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                    server.starttls()
                    self._login(server)
                    server.send_message(message)
            else:
                with smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout) as server:
                    self._login(server)
                    server.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error('Failed to send "%s" to %s: %s', subject, to, exc)
            return False

        logger.info('Sent "%s" to %s', subject, to)
        return True

    def _login(self, server):
        if self.username and self.password:
            server.login(self.username, self.password)


def send_password_reset(mailer, email, reset_url, max_age):
    text = (
        'A password reset was requested for your College Leave Portal account.\n\n'
        f'Open this link to choose a new password: {reset_url}\n\n'
        f'The link expires in {max_age // 60} minutes. If you did not ask for a reset, '
        'you can ignore this email.'
    )
    return mailer.send(email, 'Reset your password', text)
