"""Email dispatch: dev mode, redaction and SMTP failure handling."""

import smtplib

from tasknest.service.email import SUBJECTS, EmailService, _redact_email
from tasknest.service.verification import Purpose


class RecordingSMTP:
    sent = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self, context=None):
        pass

    def login(self, user, password):
        pass

    def sendmail(self, sender, recipient, message):
        RecordingSMTP.sent.append((sender, recipient, message))


def _configured():
    return EmailService(
        smtp_host="smtp.example.com",
        smtp_user="mailer@example.com",
        smtp_password="pw",
        from_email="noreply@example.com",
    )


class TestEmailService:
    def test_dev_mode_without_host(self):
        service = EmailService()

        assert service.is_configured is False
        assert service.send_verification_code("a@example.com", "123456", Purpose.SIGNUP)

    def test_sends_code_over_starttls(self, monkeypatch):
        RecordingSMTP.sent = []
        monkeypatch.setattr(smtplib, "SMTP", RecordingSMTP)

        assert _configured().send_verification_code(
            "a@example.com", "042137", Purpose.RESET_PASSWORD
        )

        sender, recipient, message = RecordingSMTP.sent[0]
        assert sender == "noreply@example.com"
        assert recipient == "a@example.com"
        assert SUBJECTS[Purpose.RESET_PASSWORD] in message

    def test_connection_failure_reports_false(self, monkeypatch):
        def _refuse(*args, **kwargs):
            raise ConnectionRefusedError("no server")

        monkeypatch.setattr(smtplib, "SMTP", _refuse)

        assert _configured().send("a@example.com", "subject", "<p>hi</p>") is False

    def test_smtp_error_reports_false(self, monkeypatch):
        class FailingSMTP(RecordingSMTP):
            def sendmail(self, sender, recipient, message):
                raise smtplib.SMTPDataError(554, b"rejected")

        monkeypatch.setattr(smtplib, "SMTP", FailingSMTP)

        assert _configured().send("a@example.com", "subject", "<p>hi</p>") is False


def test_redact_email():
    assert _redact_email("alice@example.com") == "al***@example.com"
    assert _redact_email("not-an-address") == "redacted"
