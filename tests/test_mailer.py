import smtplib
from unittest.mock import patch

from leave_portal.config import Config
from leave_portal.mailer import Mailer, send_password_reset


def configured(**overrides):
    values = dict(host='smtp.college.edu', port=587, username='portal', password='pw',
                  sender='noreply@college.edu')
    values.update(overrides)
    return Mailer(**values)


def test_unconfigured_mailer_only_logs():
    with patch('leave_portal.mailer.smtplib.SMTP') as smtp:
        assert Mailer().send('student1@college.edu', 'Hello', 'Hi') is False
    smtp.assert_not_called()


def test_send_over_starttls():
    with patch('leave_portal.mailer.smtplib.SMTP') as smtp:
        assert configured().send('student1@college.edu', 'Leave application approved', 'Enjoy') is True

    smtp.assert_called_once_with('smtp.college.edu', 587, timeout=15)
    server = smtp.return_value.__enter__.return_value
    server.starttls.assert_called_once()
    server.login.assert_called_once_with('portal', 'pw')
    message = server.send_message.call_args[0][0]
    assert message['To'] == 'student1@college.edu'
    assert message['From'] == 'noreply@college.edu'
    assert message['Subject'] == 'Leave application approved'


def test_send_over_ssl_without_login():
    mailer = configured(port=465, use_tls=False, username=None, password=None)
    with patch('leave_portal.mailer.smtplib.SMTP_SSL') as smtp_ssl:
        assert mailer.send('student1@college.edu', 'Hello', 'Hi') is True
    server = smtp_ssl.return_value.__enter__.return_value
    server.login.assert_not_called()
    server.send_message.assert_called_once()


def test_smtp_failure_returns_false():
    with patch('leave_portal.mailer.smtplib.SMTP') as smtp:
        server = smtp.return_value.__enter__.return_value
        server.send_message.side_effect = smtplib.SMTPRecipientsRefused({})
        assert configured().send('student1@college.edu', 'Hello', 'Hi') is False


def test_connection_failure_returns_false():
    with patch('leave_portal.mailer.smtplib.SMTP', side_effect=ConnectionRefusedError()):
        assert configured().send('student1@college.edu', 'Hello', 'Hi') is False


def test_missing_recipient_is_dropped():
    with patch('leave_portal.mailer.smtplib.SMTP') as smtp:
        assert configured().send(None, 'Hello', 'Hi') is False
    smtp.assert_not_called()


def test_from_config():
    config = Config(SMTP_HOST='smtp.college.edu', SMTP_PORT=2525, MAIL_FROM='noreply@college.edu',
                    SMTP_USE_TLS=False)
    mailer = Mailer.from_config(config)
    assert mailer.is_configured
    assert (mailer.port, mailer.use_tls) == (2525, False)


def test_password_reset_email():
    with patch('leave_portal.mailer.smtplib.SMTP') as smtp:
        send_password_reset(configured(), 'student1@college.edu',
                            'http://localhost/password-reset/abc', 3600)
    message = smtp.return_value.__enter__.return_value.send_message.call_args[0][0]
    assert message['Subject'] == 'Reset your password'
    body = message.get_content()
    assert 'http://localhost/password-reset/abc' in body
    assert '60 minutes' in body
